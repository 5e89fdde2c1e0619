"""
Breakdown Agent

Suggests two or three ways to organize a project's scope items for comparison
(by location, material, phase, system...).
"""

from crewai import Agent, Task

from agents.base import get_default_llm, AGENT_VERBOSE, run_task


BREAKDOWN_GUIDANCE = {
    "Electrical": "by system (power, lighting, fire alarm, low voltage, controls), by phase "
                  "(underground, rough-in, trim, testing), by floor or zone, by material",
    "Plumbing": "by system (domestic water, sanitary, storm, gas), by fixture type, "
                "by floor, by phase (underground, rough-in, finish)",
    "HVAC": "by system (heating, cooling, ventilation, controls, exhaust), by equipment, "
            "by zone, by phase",
    "Fire Protection": "by system type (wet, dry, pre-action, standpipe, pump), by hazard, "
                       "by floor, by component",
    "Concrete": "by element (footings, walls, slabs, columns), by location, by phase",
    "Drywall/Framing": "by system (framing, board, ceilings), by area type, by rating, by phase",
    "Roofing": "by system (membrane, insulation, flashing, drainage), by roof area, by phase",
}


def create_breakdown_agent() -> Agent:
    """Create the Breakdown Strategy Agent."""
    return Agent(
        role="Bid Leveling Analyst",
        goal="Propose clear ways to organize scope items for side-by-side comparison",
        backstory="""You organize bid tabs for estimators. You pick groupings that follow how
the bids themselves are written, using industry-standard terms.

IMPORTANT: You must output ONLY valid JSON. No explanatory text before or after the JSON.""",
        llm=get_default_llm(),
        verbose=AGENT_VERBOSE,
        allow_delegation=False
    )


def create_breakdown_task(agent: Agent, trade_type: str, samples: list[dict]) -> Task:
    """
    Create the breakdown task.

    Args:
        agent: The Breakdown Strategy Agent
        trade_type: Trade of the bid package
        samples: [{contractor_name, text_sample}]
    """
    samples_text = "\n\n".join(
        f"--- Document {i + 1}: {s['contractor_name']} ---\n{s['text_sample']}"
        for i, s in enumerate(samples)
    )
    guidance = BREAKDOWN_GUIDANCE.get(
        trade_type,
        "by major scope category, by location, by phase, by material or equipment"
    )

    return Task(
        description=f"""Suggest 2-3 distinct ways to group scope items from these {trade_type} bids.

Common strategies for {trade_type}: {guidance}

DOCUMENT SAMPLES:
{samples_text}

Rules:
1. Each option has 3-8 top-level nodes, nested at most 2 levels.
2. Node ids are unique within an option.
3. Mark exactly one option as recommended.

Return a JSON object with this structure:
{{
    "options": [
        {{
            "type": "by_location | by_material | by_phase | by_system | by_unit | by_floor | by_area | custom",
            "structure": {{
                "type": "same as above",
                "nodes": [
                    {{"id": "node-1", "name": "Category", "children": [{{"id": "node-1-1", "name": "Subcategory"}}]}}
                ]
            }},
            "confidence": 0.85,
            "explanation": "why this grouping fits these documents",
            "is_recommended": true
        }}
    ],
    "analysis_notes": "notes about the document structure"
}}""",
        expected_output="A valid JSON object containing breakdown options",
        agent=agent
    )


def generate_breakdown_options(trade_type: str, samples: list[dict]) -> dict:
    """
    Generate breakdown options.

    Raises:
        LLMError: Classified failure
    """
    agent = create_breakdown_agent()
    task = create_breakdown_task(agent, trade_type, samples)
    return run_task(agent, task, ["options"])
