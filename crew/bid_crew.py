"""
BidVet - Crew Orchestration

Entry point the pipeline uses to invoke the bid analysis agents.
"""

import logging
import time
from datetime import datetime
from typing import Optional

from agents import (
    extract_bid_items,
    normalize_bid_items,
    recommend_contractor,
    generate_breakdown_options
)

logger = logging.getLogger("bidvet.crew")


class BidCrew:
    """
    LLM collaborator for one project's analysis.

    Each call is synchronous and either returns the agent's validated JSON
    dict or raises a classified LLMError. The analyzer runs calls in a
    worker thread.
    """

    def __init__(self, project_id: Optional[str] = None):
        self.project_id = project_id or "-"
        self.logs: list[dict] = []

    def _log(self, message: str, level: str = "info"):
        """Add a log entry."""
        self.logs.append({
            "timestamp": datetime.now().isoformat(),
            "level": level,
            "message": message
        })
        log_method = getattr(logger, level.lower(), logger.info)
        log_method(f"[{self.project_id}] {message}")

    def _timed(self, name: str, fn, *args) -> dict:
        started = time.monotonic()
        try:
            result = fn(*args)
        except Exception as e:
            self._log(f"{name} failed: {e}", "error")
            raise
        self._log(f"{name} completed in {time.monotonic() - started:.1f}s")
        return result

    def extract_items(self, trade_type: str, raw_text: str) -> dict:
        """Structured line items for one document."""
        return self._timed("Extraction", extract_bid_items, trade_type, raw_text)

    def normalize(self, trade_type: str, contractors: list[dict]) -> dict:
        """Group items across contractors."""
        return self._timed("Normalization", normalize_bid_items, trade_type, contractors)

    def recommend(self, trade_type: str, summary: dict) -> dict:
        """Recommended contractor with confidence tier and reasoning."""
        return self._timed("Recommendation", recommend_contractor, trade_type, summary)

    def generate_breakdowns(self, trade_type: str, samples: list[dict]) -> dict:
        """Suggested breakdown structures."""
        return self._timed("Breakdown generation", generate_breakdown_options, trade_type, samples)
