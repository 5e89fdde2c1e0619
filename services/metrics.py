"""
Pipeline Metrics

Collects anonymized per-run measurements of the analysis pipeline: stage
outcomes and durations, the classified error code of a failed run, and
confidence aggregates over the extracted items.

Rows are keyed by a random run id and the trade. They never reference the
project, its documents or the user.
"""

import logging
import time
import uuid
from pathlib import Path
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from database.models import AIPipelineMetric

logger = logging.getLogger("bidvet.services.metrics")


class PipelineMetrics:
    """
    Collector for one analysis run.

    Usage:
        metrics = PipelineMetrics("Electrical")
        metrics.start("extraction")
        ...
        metrics.finish()
        await metrics.flush(db)
    """

    def __init__(self, trade_type: str):
        self.values: dict = {
            "pipeline_run_id": uuid.uuid4(),
            "trade_type": trade_type,
        }
        self._stage: Optional[str] = None
        self._started = 0.0

    def describe_documents(self, documents: list):
        types = {Path(d.file_name).suffix.lstrip(".").lower() or "unknown" for d in documents}
        self.values["document_type"] = types.pop() if len(types) == 1 else "mixed"
        self.values["document_count"] = len(documents)
        self.values["document_size_bytes"] = sum(d.file_size or 0 for d in documents)

    def start(self, stage: str):
        """Begin timing a stage (extraction, normalization or recommendation)."""
        self._stage = stage
        self._started = time.perf_counter()

    def finish(self, success: bool = True):
        """Close the running stage with its outcome and duration."""
        if self._stage is None:
            return
        self.values[f"{self._stage}_success"] = success
        self.values[f"{self._stage}_duration_ms"] = int((time.perf_counter() - self._started) * 1000)
        self._stage = None

    def fail(self, error_code: str):
        """Record the run's failure against the running stage, if any."""
        self.values["error_code"] = error_code
        self.values["failed_stage"] = self._stage
        self.finish(success=False)

    def record_items(self, items: list):
        scores = [i.confidence_score for i in items if i.confidence_score is not None]
        self.values["extraction_items_count"] = len(items)
        self.values["items_needing_review_count"] = sum(1 for i in items if i.needs_review)
        self.values["low_confidence_items_count"] = sum(1 for i in items if i.review_tier == "low")
        if scores:
            self.values["avg_confidence_score"] = round(sum(scores) / len(scores), 4)
            self.values["min_confidence_score"] = min(scores)
            self.values["max_confidence_score"] = max(scores)

    def record_scope(self, total_scope_items: int, common_items: int, gap_items: int):
        if total_scope_items:
            self.values["normalization_match_rate"] = round(common_items / total_scope_items, 4)
        self.values["normalization_scope_gaps_count"] = gap_items

    def record_recommendation(self, confidence: Optional[str]):
        self.values["recommendation_confidence"] = confidence

    async def flush(self, db: AsyncSession):
        """Persist the row. Failures are logged; the run's outcome stands."""
        try:
            db.add(AIPipelineMetric(**self.values))
            await db.commit()
        except Exception:
            logger.exception(f"Failed to record pipeline metrics for run {self.values['pipeline_run_id']}")
            await db.rollback()
