"""
Edit / Audit Ledger

Manual corrections to extracted items. Every changed field is written to
the item and to an append-only history row; rows from one edit share a
batch id. Reverts are recorded as new batches, so they can be reverted too.

The item update is committed first. A failure writing history (or the
anonymized training contribution) is logged and does not undo the edit.
"""

import json
import logging
import uuid
from pathlib import Path
from typing import Any, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from database.models import User, BidDocument, ExtractedItem, ItemEditHistory, TrainingContribution
from schemas.items import EDITABLE_FIELDS, HistoryBatch, HistoryChange, HistoryPage
from services.access import get_owned_item, ensure_not_processing
from services.anonymizer import detect_corrections
from services.exceptions import NotFound, ValidationError

logger = logging.getLogger("bidvet.services.edit_ledger")

NUMERIC_FIELDS = {"quantity", "unit_price", "total_price"}
BOOLEAN_FIELDS = {"is_exclusion", "is_inclusion"}
MAX_HISTORY_PAGE = 200


def values_equal(a: Any, b: Any) -> bool:
    """Deep equality with numbers compared by value (2 == 2.0) and bools kept distinct."""
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return float(a) == float(b)
    return a == b


def _validate_value(field: str, value: Any) -> Any:
    if field not in EDITABLE_FIELDS:
        raise ValidationError(f"Field '{field}' cannot be edited")
    if field == "description":
        if value is None or not str(value).strip():
            raise ValidationError("Description cannot be empty")
        return str(value)
    if field in BOOLEAN_FIELDS:
        if not isinstance(value, bool):
            raise ValidationError(f"Field '{field}' must be true or false")
        return value
    if field in NUMERIC_FIELDS and value is not None:
        if isinstance(value, bool):
            raise ValidationError(f"Field '{field}' must be a number")
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ValidationError(f"Field '{field}' must be a number")
    return value


def _document_type(document: BidDocument) -> str:
    return Path(document.file_name).suffix.lstrip(".").lower() or "unknown"


async def _write_history(
    db: AsyncSession,
    item: ExtractedItem,
    user_id: uuid.UUID,
    changes: list[tuple[str, Any, Any]],
    reason: Optional[str],
    batch_id: uuid.UUID
):
    """Append history rows; failures are logged and the session is reset."""
    try:
        for field, old_value, new_value in changes:
            db.add(ItemEditHistory(
                item_id=item.id,
                user_id=user_id,
                field_name=field,
                old_value=old_value,
                new_value=new_value,
                change_reason=reason,
                batch_id=batch_id,
            ))
        await db.commit()
    except Exception:
        logger.exception(f"Failed to record edit history for item {item.id} (batch {batch_id})")
        await db.rollback()
        await db.refresh(item)


async def _record_training(
    db: AsyncSession,
    item: ExtractedItem,
    context: dict,
    before: dict,
    after: dict
):
    """Anonymized corrections for users who opted in to sharing training data."""
    corrections = detect_corrections(before, after)
    if not corrections:
        return
    status = "approved" if settings.training_auto_approve else "pending"
    try:
        for correction in corrections:
            db.add(TrainingContribution(
                trade_type=context["trade_type"],
                document_type=context["document_type"],
                correction_type=correction["correction_type"],
                original_value=json.dumps(correction["original_value"]),
                corrected_value=json.dumps(correction["corrected_value"]),
                confidence_score_original=context["confidence_score"],
                was_marked_needs_review=context["needs_review"],
                moderation_status=status,
            ))
        await db.commit()
    except Exception:
        logger.exception(f"Failed to record training contribution for item {item.id}")
        await db.rollback()
        await db.refresh(item)


async def edit_item(
    db: AsyncSession,
    item_id,
    user: User,
    fields: dict,
    reason: Optional[str] = None
) -> dict:
    """
    Apply a partial update to an item and log each changed field.

    Args:
        db: Database session
        item_id: Item to edit
        user: Requesting user
        fields: Submitted field values (only editable fields)
        reason: Optional human-readable reason

    Returns:
        Dict with changed, changed_fields, batch_id (None when unchanged), item

    Raises:
        NotFound: Item missing
        Forbidden: Item's project belongs to someone else
        ValidationError: Unknown field or invalid value
        ConflictError: Analysis in progress
    """
    item, document, project = await get_owned_item(db, item_id, user)
    ensure_not_processing(project, "edit items")

    changes = []
    for field, value in fields.items():
        value = _validate_value(field, value)
        current = getattr(item, field)
        if not values_equal(current, value):
            changes.append((field, current, value))

    if not changes:
        return {"changed": False, "changed_fields": [], "batch_id": None, "item": item}

    before = {field: old for field, old, _ in changes}
    after = {field: new for field, _, new in changes}
    user_id = user.id
    context = {
        "opt_in": user.training_data_opt_in,
        "trade_type": project.trade_type,
        "document_type": _document_type(document),
        "confidence_score": item.confidence_score,
        "needs_review": item.needs_review,
    }

    for field, _, new_value in changes:
        setattr(item, field, new_value)
    item.user_modified = True
    await db.commit()

    batch_id = uuid.uuid4()
    await _write_history(db, item, user_id, changes, reason, batch_id)

    if context["opt_in"]:
        await _record_training(db, item, context, before, after)

    changed_fields = [field for field, _, _ in changes]
    logger.info(f"Item {item.id} edited: {', '.join(changed_fields)} (batch {batch_id})")
    return {
        "changed": True,
        "changed_fields": changed_fields,
        "batch_id": str(batch_id),
        "item": item,
    }


async def revert_item(
    db: AsyncSession,
    item_id,
    user: User,
    batch_id: Optional[str] = None,
    field_name: Optional[str] = None
) -> dict:
    """
    Restore an item from its history.

    With batch_id every field changed in that batch gets its old value back;
    with field_name only the most recent change to that field is undone.
    The revert is logged as a new batch whose values swap the originals.

    Returns:
        Dict with reverted_fields, revert_batch_id, item

    Raises:
        ValidationError: Neither or both selectors given, or unknown field
        NotFound: Item missing or no matching history
        Forbidden: Item's project belongs to someone else
        ConflictError: Analysis in progress
    """
    if bool(batch_id) == bool(field_name):
        raise ValidationError("Provide exactly one of batch_id or field_name")
    if field_name and field_name not in EDITABLE_FIELDS:
        raise ValidationError(f"Field '{field_name}' cannot be reverted")

    item, _, project = await get_owned_item(db, item_id, user)
    ensure_not_processing(project, "revert items")

    query = (
        select(ItemEditHistory)
        .where(ItemEditHistory.item_id == item.id)
        .order_by(ItemEditHistory.created_at.desc(), ItemEditHistory.id.desc())
    )
    if batch_id:
        try:
            query = query.where(ItemEditHistory.batch_id == uuid.UUID(str(batch_id)))
        except ValueError:
            raise NotFound("No history found to revert")
    else:
        query = query.where(ItemEditHistory.field_name == field_name).limit(1)

    records = list((await db.execute(query)).scalars().all())
    if not records:
        raise NotFound("No history found to revert")

    latest: dict[str, ItemEditHistory] = {}
    for record in records:
        latest.setdefault(record.field_name, record)

    changes = []
    for field, record in latest.items():
        setattr(item, field, record.old_value)
        changes.append((field, record.new_value, record.old_value))
    item.user_modified = True
    user_id = user.id
    await db.commit()

    revert_batch_id = uuid.uuid4()
    reason = f"Reverted batch {batch_id}" if batch_id else f"Reverted last change to {field_name}"
    await _write_history(db, item, user_id, changes, reason, revert_batch_id)

    reverted = list(latest)
    logger.info(f"Item {item.id} reverted: {', '.join(reverted)} (batch {revert_batch_id})")
    return {
        "reverted_fields": reverted,
        "revert_batch_id": str(revert_batch_id),
        "item": item,
    }


async def get_item_history(
    db: AsyncSession,
    item_id,
    user: User,
    limit: int = 50,
    offset: int = 0
) -> HistoryPage:
    """History rows for an item, newest first, grouped by batch."""
    item, _, _ = await get_owned_item(db, item_id, user)
    limit = max(1, min(limit, MAX_HISTORY_PAGE))
    offset = max(0, offset)

    total = (await db.execute(
        select(func.count(ItemEditHistory.id)).where(ItemEditHistory.item_id == item.id)
    )).scalar_one()
    rows = (await db.execute(
        select(ItemEditHistory)
        .where(ItemEditHistory.item_id == item.id)
        .order_by(ItemEditHistory.created_at.desc(), ItemEditHistory.id.desc())
        .limit(limit)
        .offset(offset)
    )).scalars().all()

    batches: dict[str, HistoryBatch] = {}
    for row in rows:
        key = str(row.batch_id)
        if key not in batches:
            batches[key] = HistoryBatch(
                batch_id=key,
                created_at=row.created_at,
                change_reason=row.change_reason,
            )
        batches[key].changes.append(HistoryChange(
            id=str(row.id),
            field_name=row.field_name,
            old_value=row.old_value,
            new_value=row.new_value,
            change_reason=row.change_reason,
            user_id=str(row.user_id) if row.user_id else None,
            created_at=row.created_at,
        ))

    return HistoryPage(
        item_id=str(item.id),
        batches=list(batches.values()),
        total=total,
        limit=limit,
        offset=offset,
    )
