"""
BidVet - Pydantic Schemas

Data models for extraction, comparison, leveling, edits and breakdowns.
"""

from schemas.project import (
    ProjectStatus,
    DocumentStatus,
    ReviewTier,
    BreakdownType,
    TRADE_TYPES,
)
from schemas.extraction import (
    ExtractedLineItem,
    ItemExtractionResult,
    NormalizedGroup,
    NormalizationResult,
    ContractorRecommendation,
)
from schemas.comparison import (
    ScopeBucket,
    ContractorSummary,
    ComparisonSummary,
    LevelingBaseline,
    LevelingConfig,
)
from schemas.breakdown import (
    BreakdownNode,
    BreakdownStructure,
    BreakdownOptionResult,
    BreakdownGenerationResult,
    BreakdownSelectRequest,
    TemplateCreateRequest,
)
from schemas.items import (
    EDITABLE_FIELDS,
    ItemUpdateRequest,
    ItemRevertRequest,
    ItemOut,
    EditResponse,
    RevertResponse,
    HistoryPage,
)

__all__ = [
    # Project
    "ProjectStatus",
    "DocumentStatus",
    "ReviewTier",
    "BreakdownType",
    "TRADE_TYPES",
    # Extraction
    "ExtractedLineItem",
    "ItemExtractionResult",
    "NormalizedGroup",
    "NormalizationResult",
    "ContractorRecommendation",
    # Comparison
    "ScopeBucket",
    "ContractorSummary",
    "ComparisonSummary",
    "LevelingBaseline",
    "LevelingConfig",
    # Breakdown
    "BreakdownNode",
    "BreakdownStructure",
    "BreakdownOptionResult",
    "BreakdownGenerationResult",
    "BreakdownSelectRequest",
    "TemplateCreateRequest",
    # Items
    "EDITABLE_FIELDS",
    "ItemUpdateRequest",
    "ItemRevertRequest",
    "ItemOut",
    "EditResponse",
    "RevertResponse",
    "HistoryPage",
]
