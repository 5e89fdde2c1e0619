"""
Recommendation Agent

Recommends a contractor from the leveled comparison, weighing price against
scope gaps, exclusions and extraction confidence.
"""

import json
from crewai import Agent, Task

from agents.base import get_default_llm, AGENT_VERBOSE, run_task


def create_recommendation_agent() -> Agent:
    """Create the Bid Recommendation Agent."""
    return Agent(
        role="Preconstruction Advisor",
        goal="Recommend the best-value subcontractor, not merely the lowest number",
        backstory="""You have awarded hundreds of subcontracts. You know a low bid full of
exclusions turns into change orders, and you explain your reasoning in plain language.

IMPORTANT: You must output ONLY valid JSON. No explanatory text before or after the JSON.""",
        llm=get_default_llm(),
        verbose=AGENT_VERBOSE,
        allow_delegation=False
    )


def create_recommendation_task(agent: Agent, trade_type: str, summary: dict) -> Task:
    """
    Create the recommendation task.

    Args:
        agent: The Bid Recommendation Agent
        trade_type: Trade of the bid package
        summary: Comparison summary (contractors and scope gaps)
    """
    contractors = summary.get("contractors", [])
    scope_gaps = [
        {
            "description": gap.get("normalized_description"),
            "missing_from": gap.get("missing_from"),
            "estimated_value": gap.get("estimated_value"),
        }
        for gap in summary.get("scope_gaps", [])
    ]

    return Task(
        description=f"""Recommend one of these {trade_type} subcontractors.

CONTRACTORS (id is the contractor id to use in your answer; total_bid adds the
estimated value of scope each contractor is missing):
{json.dumps(contractors, indent=2, default=str)}

SCOPE GAPS:
{json.dumps(scope_gaps, indent=2, default=str)}

Consider total cost including exclusions and gaps, completeness of scope, change-order
risk, and confidence in each bid. The lowest base bid is not always the best value.

Return a JSON object with this structure:
{{
    "recommended_contractor_id": "id",
    "recommended_contractor_name": "name",
    "confidence": "high" | "medium" | "low",
    "reasoning": "2-3 sentences",
    "key_factors": [{{"factor": "short name", "description": "explanation"}}],
    "warnings": [{{"contractor_id": "id or null", "type": "exclusion_risk | scope_gap | price_concern | other", "description": "message"}}]
}}""",
        expected_output="A valid JSON object containing the recommendation",
        agent=agent
    )


def recommend_contractor(trade_type: str, summary: dict) -> dict:
    """
    Generate a recommendation.

    Raises:
        LLMError: Classified failure
    """
    agent = create_recommendation_agent()
    task = create_recommendation_task(agent, trade_type, summary)
    return run_task(agent, task, ["recommended_contractor_id", "confidence"])
