"""
Normalization Agent

Groups line items from different contractors that describe the same work.
"""

import json
from crewai import Agent, Task

from agents.base import get_default_llm, AGENT_VERBOSE, run_task


def create_normalization_agent() -> Agent:
    """Create the Scope Normalization Agent."""
    return Agent(
        role="Scope Leveling Estimator",
        goal="Match equivalent scope items across competing bids",
        backstory="""You level bids for a general contractor. You know that "Electrical rough"
and "Rough-in wiring" are the same work, and that a lump sum in one bid may cover several
lines in another. You never pair two lines from the same contractor.

IMPORTANT: You must output ONLY valid JSON. No explanatory text before or after the JSON.""",
        llm=get_default_llm(),
        verbose=AGENT_VERBOSE,
        allow_delegation=False
    )


def create_normalization_task(agent: Agent, trade_type: str, contractors: list[dict]) -> Task:
    """
    Create the normalization task.

    Args:
        agent: The Scope Normalization Agent
        trade_type: Trade of the bid package
        contractors: [{contractor_id, contractor_name, items: [{id, description, ...}]}]
    """
    return Task(
        description=f"""Group the {trade_type} scope items below so each group is one piece of
work across contractors.

ITEMS BY CONTRACTOR:
{json.dumps(contractors, indent=2, default=str)}

Rules:
- Match by meaning, not wording.
- A group holds at most one item per contractor.
- Every item id appears in exactly one group; unmatched items get their own group.
- Give each group a short standard description.

Return a JSON object with this structure:
{{
    "groups": [
        {{
            "normalized_description": "Standard description",
            "category": "category",
            "item_ids": ["item id", "item id"]
        }}
    ],
    "normalization_notes": "overall notes"
}}""",
        expected_output="A valid JSON object containing the item groups",
        agent=agent
    )


def normalize_bid_items(trade_type: str, contractors: list[dict]) -> dict:
    """
    Run cross-contractor normalization.

    Returns:
        Grouping as dict

    Raises:
        LLMError: Classified failure
    """
    agent = create_normalization_agent()
    task = create_normalization_task(agent, trade_type, contractors)
    return run_task(agent, task, ["groups"])
