"""
Extraction Schemas

Data models for the structured JSON returned by the bid analysis agents.
"""

from typing import Literal, Optional
from pydantic import BaseModel, Field, field_validator


class ExtractedLineItem(BaseModel):
    """A single line item pulled out of a bid document."""
    description: str = Field(..., min_length=1, description="Scope item description")
    quantity: Optional[float] = Field(default=None, description="Quantity if stated")
    unit: Optional[str] = Field(default=None, description="Unit of measure (SF, LF, EA, LS)")
    unit_price: Optional[float] = Field(default=None, description="Price per unit if stated")
    total_price: Optional[float] = Field(default=None, description="Total price for the item")
    category: Optional[str] = Field(
        default=None,
        description="labor, materials, equipment, permits, general_conditions, overhead, other"
    )
    is_exclusion: bool = Field(default=False, description="Explicitly excluded (NIC, by others)")
    is_inclusion: bool = Field(default=False, description="Explicitly called out as included")
    confidence_score: float = Field(
        default=0.5,
        description="Extraction confidence, clamped into [0, 1]"
    )
    needs_review: bool = Field(default=False, description="Model's own review suggestion")
    raw_text: Optional[str] = Field(default=None, description="Source text of the item")
    notes: Optional[str] = Field(default=None, description="Clarifying notes")

    @field_validator("confidence_score", mode="before")
    @classmethod
    def clamp_confidence(cls, value):
        if value is None:
            return 0.0
        value = float(value)
        return min(1.0, max(0.0, value))


class ItemExtractionResult(BaseModel):
    """Complete result from extracting one bid document."""
    contractor_name: Optional[str] = Field(default=None, description="Extracted company name")
    base_bid_total: Optional[float] = Field(default=None, description="Stated base bid total")
    items: list[ExtractedLineItem] = Field(default_factory=list, description="Line items")
    exclusions_summary: list[str] = Field(default_factory=list)
    inclusions_summary: list[str] = Field(default_factory=list)
    extraction_notes: Optional[str] = Field(default=None)


class NormalizedGroup(BaseModel):
    """One scope bucket as grouped by the normalization agent."""
    normalized_description: str = Field(..., min_length=1)
    category: Optional[str] = Field(default=None)
    item_ids: list[str] = Field(default_factory=list, description="Extracted item ids in the group")


class NormalizationResult(BaseModel):
    """Grouping of items across contractors."""
    groups: list[NormalizedGroup] = Field(default_factory=list)
    normalization_notes: Optional[str] = Field(default=None)


class KeyFactor(BaseModel):
    factor: str
    description: str = ""


class RecommendationWarning(BaseModel):
    contractor_id: Optional[str] = None
    type: str = "other"
    description: str = ""


class ContractorRecommendation(BaseModel):
    """Recommended contractor with a confidence tier and reasoning."""
    recommended_contractor_id: Optional[str] = Field(default=None)
    recommended_contractor_name: Optional[str] = Field(default=None)
    confidence: Literal["high", "medium", "low"] = Field(default="low")
    reasoning: str = Field(default="", description="Why this contractor is recommended")
    key_factors: list[KeyFactor] = Field(default_factory=list)
    warnings: list[RecommendationWarning] = Field(default_factory=list)
