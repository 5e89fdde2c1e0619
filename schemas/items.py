"""
Item Schemas

Request and response models for extracted item edits, reverts and history.
"""

from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field


EDITABLE_FIELDS = (
    "description",
    "category",
    "quantity",
    "unit",
    "unit_price",
    "total_price",
    "is_exclusion",
    "is_inclusion",
)


class ItemUpdateRequest(BaseModel):
    """Partial update; only fields present in the request body are considered."""
    description: Optional[str] = None
    category: Optional[str] = None
    quantity: Optional[float] = None
    unit: Optional[str] = None
    unit_price: Optional[float] = None
    total_price: Optional[float] = None
    is_exclusion: Optional[bool] = None
    is_inclusion: Optional[bool] = None
    change_reason: Optional[str] = Field(default=None, description="Reason for the edit")

    def changes(self) -> dict[str, Any]:
        """Submitted editable fields, excluding the reason."""
        data = self.model_dump(exclude_unset=True)
        data.pop("change_reason", None)
        return data


class ItemRevertRequest(BaseModel):
    """Revert by batch, or the most recent change to one field."""
    batch_id: Optional[str] = None
    field_name: Optional[str] = None


class ItemOut(BaseModel):
    """Serialized extracted item."""
    model_config = {"from_attributes": True}

    id: str
    bid_document_id: str
    description: str
    category: Optional[str] = None
    normalized_description: Optional[str] = None
    quantity: Optional[float] = None
    unit: Optional[str] = None
    unit_price: Optional[float] = None
    total_price: Optional[float] = None
    is_exclusion: bool = False
    is_inclusion: bool = False
    confidence_score: float = 0.0
    needs_review: bool = False
    review_tier: str = "high"
    user_modified: bool = False
    is_baseline: bool = False
    leveled_price: Optional[float] = None

    @classmethod
    def from_item(cls, item) -> "ItemOut":
        return cls(
            id=str(item.id),
            bid_document_id=str(item.bid_document_id),
            description=item.description,
            category=item.category,
            normalized_description=item.normalized_description,
            quantity=item.quantity,
            unit=item.unit,
            unit_price=item.unit_price,
            total_price=item.total_price,
            is_exclusion=item.is_exclusion,
            is_inclusion=item.is_inclusion,
            confidence_score=item.confidence_score,
            needs_review=item.needs_review,
            review_tier=item.review_tier,
            user_modified=item.user_modified,
            is_baseline=item.is_baseline,
            leveled_price=item.leveled_price,
        )


class EditResponse(BaseModel):
    changed: bool
    changed_fields: list[str] = Field(default_factory=list)
    batch_id: Optional[str] = None
    item: ItemOut


class RevertResponse(BaseModel):
    reverted_fields: list[str] = Field(default_factory=list)
    revert_batch_id: str
    item: ItemOut


class HistoryChange(BaseModel):
    id: str
    field_name: str
    old_value: Any = None
    new_value: Any = None
    change_reason: Optional[str] = None
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None


class HistoryBatch(BaseModel):
    batch_id: str
    created_at: Optional[datetime] = None
    change_reason: Optional[str] = None
    changes: list[HistoryChange] = Field(default_factory=list)


class HistoryPage(BaseModel):
    item_id: str
    batches: list[HistoryBatch] = Field(default_factory=list)
    total: int = 0
    limit: int = 50
    offset: int = 0
