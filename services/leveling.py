"""
Leveling Engine

Applies baseline quantities to scope buckets and recomputes leveled prices
on the project's items. Every update clears all previous baseline flags
and leveled prices before applying the new configuration, inside a single
transaction.
"""

import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import User, Project, BidDocument, ExtractedItem, ComparisonResult
from schemas.comparison import LevelingConfig
from services.access import as_uuid, get_owned_project, ensure_not_processing
from services.exceptions import NotFound, ValidationError

logger = logging.getLogger("bidvet.services.leveling")


def _match_key(text: Optional[str]) -> str:
    """Case and whitespace insensitive comparison key."""
    return " ".join((text or "").split()).lower()


async def _get_result(db: AsyncSession, project: Project) -> ComparisonResult:
    result = (await db.execute(
        select(ComparisonResult).where(ComparisonResult.project_id == project.id)
    )).scalar_one_or_none()
    if result is None:
        raise NotFound("No comparison result for this project; run analysis first")
    return result


def _document_ids(project: Project):
    return select(BidDocument.id).where(BidDocument.project_id == project.id)


async def _canonical_baselines(db: AsyncSession, project: Project, config: LevelingConfig) -> LevelingConfig:
    """Reference documents as canonical ids; each must belong to the project."""
    known = {str(doc_id) for doc_id in (await db.execute(_document_ids(project))).scalars().all()}
    baselines = []
    for baseline in config.baselines:
        try:
            doc_id = str(as_uuid(baseline.baseline_contractor_id, "Reference document"))
        except NotFound:
            doc_id = None
        if doc_id not in known:
            raise ValidationError(
                f"Unknown reference document '{baseline.baseline_contractor_id}' for this project"
            )
        baselines.append(baseline.model_copy(update={"baseline_contractor_id": doc_id}))
    return LevelingConfig(baselines=baselines)


async def _clear_items(db: AsyncSession, project: Project) -> int:
    cleared = await db.execute(
        update(ExtractedItem)
        .where(
            ExtractedItem.bid_document_id.in_(_document_ids(project)),
            (ExtractedItem.is_baseline.is_(True)) | (ExtractedItem.leveled_price.is_not(None))
        )
        .values(is_baseline=False, leveled_price=None)
        .execution_options(synchronize_session="fetch")
    )
    return cleared.rowcount or 0


def apply_baselines(items: list, config: LevelingConfig) -> int:
    """
    Set is_baseline and leveled_price on matching items.

    An item matches a baseline when its normalized description or its own
    description equals the baseline's description. The first matching
    baseline wins.

    Returns:
        Number of items touched
    """
    baselines = {}
    for baseline in config.baselines:
        baselines.setdefault(_match_key(baseline.normalized_description), baseline)

    updated = 0
    for item in items:
        baseline = baselines.get(_match_key(item.normalized_description))
        if baseline is None:
            baseline = baselines.get(_match_key(item.description))
        if baseline is None:
            continue

        item.is_baseline = str(item.bid_document_id) == baseline.baseline_contractor_id
        item.leveled_price = (
            baseline.baseline_quantity * item.unit_price
            if item.unit_price is not None else None
        )
        updated += 1
    return updated


async def get_leveling(db: AsyncSession, project_id, user: User) -> Optional[LevelingConfig]:
    """
    Stored leveling configuration, or None when leveling has not been set.

    Raises:
        NotFound: Project or comparison result missing
        Forbidden: Project belongs to someone else
    """
    project = await get_owned_project(db, project_id, user)
    result = await _get_result(db, project)
    if not result.leveling_json:
        return None
    return LevelingConfig.model_validate(result.leveling_json)


async def set_leveling(db: AsyncSession, project_id, user: User, config: LevelingConfig) -> dict:
    """
    Replace the project's leveling configuration and recompute leveled prices.

    Args:
        db: Database session
        project_id: Project to level
        user: Requesting user
        config: Baselines to apply

    Returns:
        Dict with success, updated_item_count

    Raises:
        NotFound: Project or comparison result missing
        Forbidden: Project belongs to someone else
        ValidationError: Reference document is not one of the project's bids
        ConflictError: Analysis in progress
    """
    project = await get_owned_project(db, project_id, user)
    ensure_not_processing(project, "change leveling")
    result = await _get_result(db, project)
    config = await _canonical_baselines(db, project, config)

    try:
        await _clear_items(db, project)
        items = list((await db.execute(
            select(ExtractedItem).where(ExtractedItem.bid_document_id.in_(_document_ids(project)))
            .execution_options(populate_existing=True)
        )).scalars().all())
        updated = apply_baselines(items, config)
        result.leveling_json = config.model_dump(mode="json")
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        f"Leveling set for project {project.id}: "
        f"{len(config.baselines)} baselines, {updated} items updated"
    )
    return {"success": True, "updated_item_count": updated}


async def clear_leveling(db: AsyncSession, project_id, user: User) -> dict:
    """
    Remove the leveling configuration and every item's baseline flag and leveled price.

    Raises:
        NotFound: Project or comparison result missing
        Forbidden: Project belongs to someone else
        ConflictError: Analysis in progress
    """
    project = await get_owned_project(db, project_id, user)
    ensure_not_processing(project, "clear leveling")
    result = await _get_result(db, project)

    try:
        cleared = await _clear_items(db, project)
        result.leveling_json = None
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(f"Leveling cleared for project {project.id} ({cleared} items reset)")
    return {"success": True, "cleared_item_count": cleared}
