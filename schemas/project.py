"""
Project Schemas

Status enums and reference lists shared by the pipeline and the API.
"""

from enum import Enum


class ProjectStatus(str, Enum):
    """Lifecycle of a comparison project. The only externally visible completion signal."""
    DRAFT = "draft"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


class DocumentStatus(str, Enum):
    """Upload/extraction status of a bid document."""
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    PROCESSED = "processed"
    ERROR = "error"


class ReviewTier(str, Enum):
    """Confidence tier gating human review of an extracted item."""
    LOW = "low"        # mandatory review
    MEDIUM = "medium"  # optional review
    HIGH = "high"


class BreakdownType(str, Enum):
    """Ways of grouping scope items for comparison."""
    BY_LOCATION = "by_location"
    BY_MATERIAL = "by_material"
    BY_PHASE = "by_phase"
    BY_SYSTEM = "by_system"
    BY_UNIT = "by_unit"
    BY_FLOOR = "by_floor"
    BY_AREA = "by_area"
    CUSTOM = "custom"


TRADE_TYPES = [
    "Electrical",
    "Plumbing",
    "HVAC",
    "Mechanical",
    "Fire Protection",
    "Roofing",
    "Concrete",
    "Masonry",
    "Steel/Structural",
    "Drywall/Framing",
    "Painting",
    "Flooring",
    "Millwork/Casework",
    "Glass/Glazing",
    "Landscaping",
    "Sitework/Earthwork",
    "Demolition",
    "Insulation",
    "Waterproofing",
    "Other",
]
