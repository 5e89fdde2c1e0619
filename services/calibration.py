"""
Confidence Calibration Service

Per-trade review thresholds and the batch job that recalibrates them from
approved user corrections.
"""

import logging
import math
from datetime import datetime, timezone

from pydantic import BaseModel
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from database.models import (
    TradeConfidenceThreshold, TrainingContribution, ExtractedItem, BidDocument, Project
)
from schemas.project import ReviewTier, TRADE_TYPES

logger = logging.getLogger("bidvet.services.calibration")


class ConfidenceThresholds(BaseModel):
    """Low/medium threshold pair for a trade."""
    low: float
    medium: float
    is_calibrated: bool = False

    def tier_for(self, confidence: float) -> ReviewTier:
        """Bucket a confidence score into a review tier."""
        if confidence < self.low:
            return ReviewTier.LOW
        if confidence < self.medium:
            return ReviewTier.MEDIUM
        return ReviewTier.HIGH


def default_thresholds() -> ConfidenceThresholds:
    return ConfidenceThresholds(
        low=settings.confidence_threshold_low,
        medium=settings.confidence_threshold_medium,
    )


async def get_confidence_thresholds(db: AsyncSession, trade_type: str) -> ConfidenceThresholds:
    """Calibrated thresholds for a trade, or the configured defaults."""
    result = await db.execute(
        select(TradeConfidenceThreshold).where(TradeConfidenceThreshold.trade_type == trade_type)
    )
    row = result.scalar_one_or_none()
    if row is None:
        return default_thresholds()
    return ConfidenceThresholds(
        low=row.low_threshold,
        medium=row.medium_threshold,
        is_calibrated=row.last_calibrated_at is not None,
    )


def suggest_thresholds(
    current_medium: float,
    correction_rate: float,
    avg_corrected_confidence: float
) -> tuple[float, float]:
    """
    Move the medium threshold against the observed correction rate.

    Args:
        current_medium: Current medium threshold
        correction_rate: Share of high-confidence items that users corrected
        avg_corrected_confidence: Mean original confidence of corrected items

    Returns:
        (low, medium), rounded to two decimals
    """
    target = settings.calibration_target_rate
    step = settings.calibration_step
    medium = current_medium

    if correction_rate > target:
        # Medium must sit above the confidence typical of corrected items
        medium = max(current_medium + step, math.ceil((avg_corrected_confidence + 0.1) * 100) / 100)
    elif correction_rate < target / 2:
        medium = current_medium - step

    medium = min(max(medium, settings.calibration_medium_floor), settings.calibration_medium_ceiling)
    low = max(medium - 0.2, settings.calibration_low_floor)
    return round(low, 2), round(medium, 2)


async def _count_high_confidence_items(db: AsyncSession, trade_type: str, medium: float) -> int:
    result = await db.execute(
        select(func.count(ExtractedItem.id))
        .join(BidDocument, ExtractedItem.bid_document_id == BidDocument.id)
        .join(Project, BidDocument.project_id == Project.id)
        .where(
            Project.trade_type == trade_type,
            ExtractedItem.confidence_score >= medium
        )
    )
    return result.scalar_one()


async def calibrate_trade(db: AsyncSession, trade_type: str, force: bool = False) -> dict:
    """
    Recalibrate one trade's thresholds.

    Returns:
        Per-trade result with current/suggested thresholds and was_updated/skipped flags
    """
    current = await get_confidence_thresholds(db, trade_type)

    result = await db.execute(
        select(TrainingContribution.confidence_score_original).where(
            TrainingContribution.trade_type == trade_type,
            TrainingContribution.moderation_status == "approved",
            TrainingContribution.confidence_score_original.is_not(None)
        )
    )
    confidences = list(result.scalars().all())

    high = sum(1 for c in confidences if c >= current.medium)
    medium = sum(1 for c in confidences if current.low <= c < current.medium)
    low = sum(1 for c in confidences if c < current.low)

    outcome = {
        "trade_type": trade_type,
        "total_corrections": len(confidences),
        "corrections_at_high": high,
        "corrections_at_medium": medium,
        "corrections_at_low": low,
        "correction_rate": None,
        "current_low_threshold": current.low,
        "current_medium_threshold": current.medium,
        "suggested_low_threshold": current.low,
        "suggested_medium_threshold": current.medium,
        "was_updated": False,
        "skipped": False,
    }

    if len(confidences) < settings.calibration_min_samples and not force:
        outcome["skipped"] = True
        return outcome

    if not confidences:
        outcome["skipped"] = True
        return outcome

    high_items = await _count_high_confidence_items(db, trade_type, current.medium)
    rate = high / high_items if high_items else high / len(confidences)
    avg_confidence = sum(confidences) / len(confidences)

    suggested_low, suggested_medium = suggest_thresholds(current.medium, rate, avg_confidence)
    outcome["correction_rate"] = round(rate, 4)
    outcome["suggested_low_threshold"] = suggested_low
    outcome["suggested_medium_threshold"] = suggested_medium

    min_delta = settings.calibration_min_delta - 1e-9
    moved = (
        abs(suggested_low - current.low) >= min_delta
        or abs(suggested_medium - current.medium) >= min_delta
    )
    if not moved and not force:
        return outcome

    row = (await db.execute(
        select(TradeConfidenceThreshold).where(TradeConfidenceThreshold.trade_type == trade_type)
    )).scalar_one_or_none()
    if row is None:
        row = TradeConfidenceThreshold(trade_type=trade_type)
        db.add(row)

    row.low_threshold = suggested_low
    row.medium_threshold = suggested_medium
    row.total_corrections = len(confidences)
    row.corrections_at_high = high
    row.corrections_at_medium = medium
    row.corrections_at_low = low
    row.last_calibrated_at = datetime.now(timezone.utc)
    await db.commit()

    outcome["was_updated"] = True
    return outcome


async def calibrate_all(db: AsyncSession, force: bool = False) -> dict:
    """
    Recalibrate every known trade plus any trade seen in the contribution ledger.

    Args:
        db: Database session
        force: Ignore the minimum sample count and the change threshold

    Returns:
        Dict with trades_updated, trades_skipped, total_trades, results
    """
    seen = await db.execute(select(TrainingContribution.trade_type).distinct())
    trades = list(TRADE_TYPES)
    for trade_type in seen.scalars().all():
        if trade_type not in trades:
            trades.append(trade_type)

    results = []
    for trade_type in trades:
        results.append(await calibrate_trade(db, trade_type, force=force))

    updated = [r for r in results if r["was_updated"]]
    for r in updated:
        logger.info(
            f"{r['trade_type']}: low {r['current_low_threshold']} -> {r['suggested_low_threshold']}, "
            f"medium {r['current_medium_threshold']} -> {r['suggested_medium_threshold']}"
        )

    summary = {
        "trades_updated": len(updated),
        "trades_skipped": sum(1 for r in results if r["skipped"]),
        "total_trades": len(trades),
        "total_corrections_processed": sum(r["total_corrections"] for r in results),
        "results": results,
    }
    logger.info(
        f"Calibration complete. Updated: {summary['trades_updated']}, "
        f"Skipped: {summary['trades_skipped']}"
    )
    return summary
