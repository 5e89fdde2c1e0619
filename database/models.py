"""
Database Models

SQLAlchemy models for BidVet bid comparison with team sharing support.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional, List

from sqlalchemy import (
    String, Text, Integer, Float, Boolean, DateTime, JSON, Uuid,
    ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# ============================================================================
# CORE MODELS: Organizations & Users
# ============================================================================

class Organization(Base):
    """
    Organization (team) model.

    Projects attached to an organization are shared read/write with its members.
    """
    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )

    members: Mapped[List["OrganizationMember"]] = relationship(
        back_populates="organization",
        cascade="all, delete-orphan"
    )


class User(Base):
    """Account owning projects. Credentials live with the identity provider."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    full_name: Mapped[Optional[str]] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    training_data_opt_in: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )

    memberships: Mapped[List["OrganizationMember"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan"
    )


class OrganizationMember(Base):
    """
    Organization membership with roles.

    Roles: owner, admin, member
    """
    __tablename__ = "organization_members"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    role: Mapped[str] = mapped_column(String(50), default="member")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )

    organization: Mapped["Organization"] = relationship(back_populates="members")
    user: Mapped["User"] = relationship(back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_org_user"),
    )


# ============================================================================
# PROJECT & DOCUMENT MODELS
# ============================================================================

class Project(Base):
    """A bid comparison for one trade package."""
    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    organization_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="SET NULL")
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    trade_type: Mapped[str] = mapped_column(String(100), nullable=False)
    location: Mapped[Optional[str]] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(50), default="draft")
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    breakdown_type: Mapped[Optional[str]] = mapped_column(String(50))
    breakdown_structure: Mapped[Optional[dict]] = mapped_column(JSONType)
    breakdown_source: Mapped[Optional[str]] = mapped_column(String(50))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_projects_user", "user_id"),
        Index("idx_projects_status", "status"),
    )


class BidDocument(Base):
    """One uploaded bid file per contractor per project."""
    __tablename__ = "bid_documents"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False
    )
    contractor_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_ref: Mapped[str] = mapped_column(Text, nullable=False)
    file_type: Mapped[Optional[str]] = mapped_column(String(255))
    file_size: Mapped[int] = mapped_column(Integer, default=0)
    upload_status: Mapped[str] = mapped_column(String(50), default="uploaded")
    raw_text: Mapped[Optional[str]] = mapped_column(Text)
    text_positions: Mapped[Optional[dict]] = mapped_column(JSONType)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_bid_documents_project", "project_id"),
    )


class ExtractedItem(Base):
    """A structured line item pulled out of a bid document."""
    __tablename__ = "extracted_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    bid_document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("bid_documents.id", ondelete="CASCADE"),
        nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, default=0)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100))
    normalized_description: Mapped[Optional[str]] = mapped_column(Text)
    quantity: Mapped[Optional[float]] = mapped_column(Float)
    unit: Mapped[Optional[str]] = mapped_column(String(50))
    unit_price: Mapped[Optional[float]] = mapped_column(Float)
    total_price: Mapped[Optional[float]] = mapped_column(Float)
    is_exclusion: Mapped[bool] = mapped_column(Boolean, default=False)
    is_inclusion: Mapped[bool] = mapped_column(Boolean, default=False)
    confidence_score: Mapped[float] = mapped_column(Float, default=0.0)
    needs_review: Mapped[bool] = mapped_column(Boolean, default=False)
    review_tier: Mapped[str] = mapped_column(String(20), default="high")
    raw_text: Mapped[Optional[str]] = mapped_column(Text)
    ai_notes: Mapped[Optional[str]] = mapped_column(Text)
    user_modified: Mapped[bool] = mapped_column(Boolean, default=False)
    is_baseline: Mapped[bool] = mapped_column(Boolean, default=False)
    leveled_price: Mapped[Optional[float]] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_extracted_items_document", "bid_document_id"),
    )


class ItemEditHistory(Base):
    """Append-only record of one field change on an extracted item."""
    __tablename__ = "item_edit_history"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("extracted_items.id", ondelete="CASCADE"),
        nullable=False
    )
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL")
    )
    field_name: Mapped[str] = mapped_column(String(50), nullable=False)
    old_value: Mapped[Optional[object]] = mapped_column(JSONType)
    new_value: Mapped[Optional[object]] = mapped_column(JSONType)
    change_reason: Mapped[Optional[str]] = mapped_column(Text)
    batch_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow
    )

    __table_args__ = (
        Index("idx_item_history_item", "item_id", "created_at"),
        Index("idx_item_history_batch", "batch_id"),
    )


class ComparisonResult(Base):
    """Derived side-by-side comparison, one per project."""
    __tablename__ = "comparison_results"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        unique=True,
        nullable=False
    )
    total_bids: Mapped[int] = mapped_column(Integer, default=0)
    price_low: Mapped[Optional[float]] = mapped_column(Float)
    price_high: Mapped[Optional[float]] = mapped_column(Float)
    price_average: Mapped[Optional[float]] = mapped_column(Float)
    total_scope_items: Mapped[int] = mapped_column(Integer, default=0)
    common_items: Mapped[int] = mapped_column(Integer, default=0)
    gap_items: Mapped[int] = mapped_column(Integer, default=0)
    summary_json: Mapped[dict] = mapped_column(JSONType, default=dict)
    recommendation_json: Mapped[Optional[dict]] = mapped_column(JSONType)
    leveling_json: Mapped[Optional[dict]] = mapped_column(JSONType)
    scope_gaps: Mapped[list] = mapped_column(JSONType, default=list)
    generated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )


# ============================================================================
# BREAKDOWN MODELS
# ============================================================================

class BreakdownTemplate(Base):
    """Reusable scope structure saved by a user for a trade."""
    __tablename__ = "breakdown_templates"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    trade_type: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    breakdown_structure: Mapped[dict] = mapped_column(JSONType, nullable=False)
    use_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("user_id", "trade_type", "name", name="uq_template_name"),
    )


class BreakdownOption(Base):
    """AI-suggested breakdown for a project, cached until regenerated."""
    __tablename__ = "breakdown_options"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False
    )
    option_index: Mapped[int] = mapped_column(Integer, default=0)
    breakdown_type: Mapped[str] = mapped_column(String(50), nullable=False)
    breakdown_structure: Mapped[dict] = mapped_column(JSONType, nullable=False)
    confidence_score: Mapped[float] = mapped_column(Float, default=0.0)
    explanation: Mapped[Optional[str]] = mapped_column(Text)
    is_recommended: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )


# ============================================================================
# CALIBRATION MODELS
# ============================================================================

class TradeConfidenceThreshold(Base):
    """Calibrated review thresholds for one trade."""
    __tablename__ = "trade_confidence_thresholds"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    trade_type: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    low_threshold: Mapped[float] = mapped_column(Float, nullable=False)
    medium_threshold: Mapped[float] = mapped_column(Float, nullable=False)
    total_corrections: Mapped[int] = mapped_column(Integer, default=0)
    corrections_at_high: Mapped[int] = mapped_column(Integer, default=0)
    corrections_at_medium: Mapped[int] = mapped_column(Integer, default=0)
    corrections_at_low: Mapped[int] = mapped_column(Integer, default=0)
    last_calibrated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class TrainingContribution(Base):
    """Anonymized user correction. Carries no user or project reference."""
    __tablename__ = "training_contributions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    trade_type: Mapped[str] = mapped_column(String(100), nullable=False)
    document_type: Mapped[str] = mapped_column(String(50), nullable=False)
    correction_type: Mapped[str] = mapped_column(String(50), nullable=False)
    original_value: Mapped[Optional[str]] = mapped_column(Text)
    corrected_value: Mapped[Optional[str]] = mapped_column(Text)
    confidence_score_original: Mapped[Optional[float]] = mapped_column(Float)
    was_marked_needs_review: Mapped[bool] = mapped_column(Boolean, default=False)
    moderation_status: Mapped[str] = mapped_column(String(20), default="pending")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow
    )

    __table_args__ = (
        Index("idx_contributions_trade", "trade_type", "moderation_status"),
    )


class AIPipelineMetric(Base):
    """
    Anonymized measurements of one analysis run.

    pipeline_run_id is random per run; rows carry no project or user reference.
    """
    __tablename__ = "ai_pipeline_metrics"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    pipeline_run_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    trade_type: Mapped[str] = mapped_column(String(100), nullable=False)
    document_type: Mapped[Optional[str]] = mapped_column(String(20))
    document_count: Mapped[int] = mapped_column(Integer, default=0)
    document_size_bytes: Mapped[int] = mapped_column(Integer, default=0)

    # Extraction
    extraction_success: Mapped[Optional[bool]] = mapped_column(Boolean)
    extraction_duration_ms: Mapped[Optional[int]] = mapped_column(Integer)
    extraction_items_count: Mapped[Optional[int]] = mapped_column(Integer)

    # Normalization
    normalization_success: Mapped[Optional[bool]] = mapped_column(Boolean)
    normalization_duration_ms: Mapped[Optional[int]] = mapped_column(Integer)
    normalization_match_rate: Mapped[Optional[float]] = mapped_column(Float)
    normalization_scope_gaps_count: Mapped[Optional[int]] = mapped_column(Integer)

    # Recommendation
    recommendation_success: Mapped[Optional[bool]] = mapped_column(Boolean)
    recommendation_duration_ms: Mapped[Optional[int]] = mapped_column(Integer)
    recommendation_confidence: Mapped[Optional[str]] = mapped_column(String(10))

    # Confidence aggregates
    avg_confidence_score: Mapped[Optional[float]] = mapped_column(Float)
    min_confidence_score: Mapped[Optional[float]] = mapped_column(Float)
    max_confidence_score: Mapped[Optional[float]] = mapped_column(Float)
    low_confidence_items_count: Mapped[Optional[int]] = mapped_column(Integer)
    items_needing_review_count: Mapped[Optional[int]] = mapped_column(Integer)

    failed_stage: Mapped[Optional[str]] = mapped_column(String(20))
    error_code: Mapped[Optional[str]] = mapped_column(String(50))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow
    )

    __table_args__ = (
        Index("idx_pipeline_metrics_trade", "trade_type", "created_at"),
    )
