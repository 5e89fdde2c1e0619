"""
BidVet - Agents Package

CrewAI agents for bid extraction, normalization, recommendation and breakdowns.
"""

from agents.base import get_llm, get_default_llm, validate_json_output, classify_llm_error
from agents.extraction_agent import (
    create_extraction_agent,
    create_extraction_task,
    extract_bid_items
)
from agents.normalization_agent import (
    create_normalization_agent,
    create_normalization_task,
    normalize_bid_items
)
from agents.recommendation_agent import (
    create_recommendation_agent,
    create_recommendation_task,
    recommend_contractor
)
from agents.breakdown_agent import (
    create_breakdown_agent,
    create_breakdown_task,
    generate_breakdown_options
)

__all__ = [
    # Base
    "get_llm",
    "get_default_llm",
    "validate_json_output",
    "classify_llm_error",
    # Extraction
    "create_extraction_agent",
    "create_extraction_task",
    "extract_bid_items",
    # Normalization
    "create_normalization_agent",
    "create_normalization_task",
    "normalize_bid_items",
    # Recommendation
    "create_recommendation_agent",
    "create_recommendation_task",
    "recommend_contractor",
    # Breakdown
    "create_breakdown_agent",
    "create_breakdown_task",
    "generate_breakdown_options",
]
