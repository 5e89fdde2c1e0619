"""
Item Extraction Service

Turns a document's raw text into ExtractedItem rows via the LLM and tags
each item with a review tier from the trade's confidence thresholds.
"""

import asyncio
import logging
from functools import partial

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import BidDocument, ExtractedItem
from schemas.extraction import ItemExtractionResult
from schemas.project import DocumentStatus, ReviewTier
from services.calibration import ConfidenceThresholds
from services.exceptions import ParseError, ExtractionFailed, classify_llm_error

logger = logging.getLogger("bidvet.services.item_extractor")


async def call_llm(fn, *args):
    """
    Run a blocking LLM call in the default thread pool.

    Raises:
        LLMError: Every failure, classified
    """
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, partial(fn, *args))
    except Exception as e:
        raise classify_llm_error(e) from e


def parse_extraction(data: dict) -> ItemExtractionResult:
    """Validate extraction JSON; schema violations are parse errors."""
    try:
        return ItemExtractionResult.model_validate(data)
    except PydanticValidationError as e:
        raise ParseError(f"Invalid extraction output: {e.error_count()} validation errors") from e


async def extract_items_for_document(
    db: AsyncSession,
    document: BidDocument,
    trade_type: str,
    llm,
    thresholds: ConfidenceThresholds
) -> list[ExtractedItem]:
    """
    Replace a document's items with a fresh LLM extraction.

    Prior items are deleted in the same transaction as the insert, so a
    failed run leaves the previous items untouched.

    Args:
        db: Database session
        document: Document with raw_text
        trade_type: Trade of the project
        llm: Object exposing extract_items(trade_type, raw_text) -> dict
        thresholds: Review tier thresholds for the trade

    Returns:
        Inserted items in document order

    Raises:
        ExtractionFailed: Document has no text
        LLMError: Classified LLM failure
    """
    if not document.raw_text:
        raise ExtractionFailed(f"No text extracted from {document.file_name}")

    data = await call_llm(llm.extract_items, trade_type, document.raw_text)
    extraction = parse_extraction(data)

    await db.execute(delete(ExtractedItem).where(ExtractedItem.bid_document_id == document.id))

    items = []
    for position, line in enumerate(extraction.items):
        tier = thresholds.tier_for(line.confidence_score)
        item = ExtractedItem(
            bid_document_id=document.id,
            position=position,
            description=line.description.strip(),
            category=line.category,
            quantity=line.quantity,
            unit=line.unit,
            unit_price=line.unit_price,
            total_price=line.total_price,
            is_exclusion=line.is_exclusion,
            is_inclusion=line.is_inclusion,
            confidence_score=line.confidence_score,
            review_tier=tier.value,
            needs_review=tier != ReviewTier.HIGH,
            raw_text=line.raw_text,
            ai_notes=line.notes,
        )
        db.add(item)
        items.append(item)

    document.upload_status = DocumentStatus.PROCESSED.value
    document.error_message = None
    await db.commit()

    review = sum(1 for i in items if i.needs_review)
    logger.info(f"Extracted {len(items)} items from {document.file_name} ({review} need review)")
    return items


async def list_document_items(db: AsyncSession, document_ids: list) -> list[ExtractedItem]:
    """Items of the given documents in insertion order."""
    if not document_ids:
        return []
    result = await db.execute(
        select(ExtractedItem)
        .where(ExtractedItem.bid_document_id.in_(document_ids))
        .order_by(ExtractedItem.bid_document_id, ExtractedItem.position)
    )
    return list(result.scalars().all())
