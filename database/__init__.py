"""
Database Package

SQLAlchemy models and connection management.
"""

from database.connection import (
    get_db,
    get_db_context,
    init_db,
    close_db,
    get_engine,
    get_session_factory
)

from database.models import (
    Base,
    Organization,
    User,
    OrganizationMember,
    Project,
    BidDocument,
    ExtractedItem,
    ItemEditHistory,
    ComparisonResult,
    BreakdownTemplate,
    BreakdownOption,
    TradeConfidenceThreshold,
    TrainingContribution,
    AIPipelineMetric
)

__all__ = [
    # Connection
    "get_db",
    "get_db_context",
    "init_db",
    "close_db",
    "get_engine",
    "get_session_factory",
    # Models
    "Base",
    "Organization",
    "User",
    "OrganizationMember",
    "Project",
    "BidDocument",
    "ExtractedItem",
    "ItemEditHistory",
    "ComparisonResult",
    "BreakdownTemplate",
    "BreakdownOption",
    "TradeConfidenceThreshold",
    "TrainingContribution",
    "AIPipelineMetric"
]
