"""
Comparison Schemas

Data models for scope buckets, per-contractor rollups and leveling.
"""

from typing import Optional
from pydantic import BaseModel, Field, field_validator


class ScopeBucket(BaseModel):
    """A cluster of items from different contractors judged to be the same work."""
    normalized_description: str = Field(..., description="Canonical description of the work")
    category: Optional[str] = Field(default=None)
    unit: Optional[str] = Field(default=None, description="Canonical unit, when any item has one")
    item_ids: list[str] = Field(default_factory=list, description="Member item ids")
    present_in: list[str] = Field(
        default_factory=list,
        description="Document ids whose member item is not an exclusion"
    )
    missing_from: list[str] = Field(
        default_factory=list,
        description="Document ids with no member item or only an exclusion"
    )
    estimated_value: Optional[float] = Field(
        default=None,
        description="Minimum price among present contractors"
    )
    is_scope_gap: bool = Field(default=False)
    breakdown_node_id: Optional[str] = Field(default=None)


class ContractorSummary(BaseModel):
    """Rollup of one contractor's bid."""
    id: str = Field(..., description="Bid document id")
    name: str = Field(..., description="Contractor name")
    item_count: int = 0
    exclusion_count: int = 0
    exclusions_value: float = 0.0
    base_bid: float = Field(default=0.0, description="Sum of included item prices")
    total_bid: float = Field(
        default=0.0,
        description="Base bid plus the estimated value of scope this contractor is missing"
    )
    confidence_avg: float = 0.0
    needs_review_count: int = 0
    scope_gap_count: int = 0


class ComparisonSummary(BaseModel):
    """Side-by-side summary persisted as ComparisonResult.summary_json."""
    contractors: list[ContractorSummary] = Field(default_factory=list)
    scope_gaps: list[ScopeBucket] = Field(default_factory=list)
    total_scope_items: int = 0
    common_items: int = 0
    gap_items: int = 0
    price_low: Optional[float] = None
    price_high: Optional[float] = None
    price_average: Optional[float] = None


class LevelingBaseline(BaseModel):
    """Baseline quantity and reference contractor for one scope bucket."""
    normalized_description: str = Field(..., min_length=1)
    baseline_quantity: float = Field(..., ge=0)
    baseline_contractor_id: str = Field(..., description="Reference bid document id")

    @field_validator("baseline_contractor_id", mode="before")
    @classmethod
    def stringify_id(cls, value):
        return str(value)


class LevelingConfig(BaseModel):
    """Set of baselines applied to a project."""
    baselines: list[LevelingBaseline] = Field(default_factory=list)


class LevelingResponse(BaseModel):
    leveling: Optional[LevelingConfig] = None


class LevelingUpdateResponse(BaseModel):
    success: bool = True
    updated_item_count: int = 0
