"""
Items Router (v1)

Human corrections to extracted line items, with reversible history.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database.connection import get_db
from database.models import User
from api.auth.dependencies import get_current_user
from schemas.items import (
    ItemUpdateRequest,
    ItemRevertRequest,
    ItemOut,
    EditResponse,
    RevertResponse,
    HistoryPage
)
from services.edit_ledger import edit_item, revert_item, get_item_history

router = APIRouter(prefix="/items", tags=["Items"])


@router.patch("/{item_id}", response_model=EditResponse)
async def update_item(
    item_id: str,
    body: ItemUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Edit an extracted item.

    Only fields whose value actually changes are written and recorded.
    All changes from one request share a batch id.
    """
    result = await edit_item(db, item_id, current_user, body.changes(), body.change_reason)
    return EditResponse(
        changed=result["changed"],
        changed_fields=result["changed_fields"],
        batch_id=result["batch_id"],
        item=ItemOut.from_item(result["item"]),
    )


@router.post("/{item_id}/revert", response_model=RevertResponse)
async def revert(
    item_id: str,
    body: ItemRevertRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Revert a batch of edits, or the latest change to one field."""
    result = await revert_item(
        db, item_id, current_user,
        batch_id=body.batch_id,
        field_name=body.field_name
    )
    return RevertResponse(
        reverted_fields=result["reverted_fields"],
        revert_batch_id=result["revert_batch_id"],
        item=ItemOut.from_item(result["item"]),
    )


@router.get("/{item_id}/history", response_model=HistoryPage)
async def history(
    item_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await get_item_history(db, item_id, current_user, limit=limit, offset=offset)
