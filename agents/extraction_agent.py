"""
Bid Extraction Agent

Converts a subcontractor bid's raw text into structured line items with
pricing, exclusion flags and per-item confidence scores.
"""

from crewai import Agent, Task

from agents.base import get_default_llm, AGENT_VERBOSE, run_task


# Bid documents can be long; the tail rarely holds pricing
MAX_DOCUMENT_CHARS = 60000

TRADE_SCOPE_HINTS = {
    "Electrical": "rough-in wiring and conduit, panels and service, fixtures and devices, "
                  "low voltage, fire alarm, temporary power, permits, testing",
    "Plumbing": "rough-in piping, fixtures, water heaters, gas piping, backflow prevention, "
                "insulation, excavation, permits, testing",
    "HVAC": "equipment (RTUs, splits, chillers, boilers), ductwork, refrigerant and hydronic "
            "piping, controls, insulation, test and balance, start-up, permits",
    "Mechanical": "equipment, piping systems, controls, insulation, test and balance, commissioning",
    "Fire Protection": "sprinkler heads and piping, fire pump, standpipes, alarm integration, "
                       "backflow preventer, permits, testing",
    "Roofing": "tear-off, insulation, membrane or shingles, flashing and trim, drainage, warranty",
    "Concrete": "forming, reinforcing, placement, finishing, curing, pumping, testing",
    "Masonry": "block and brick, mortar, reinforcement, scaffolding, flashing",
    "Steel/Structural": "fabrication, erection, connections, fireproofing, shop drawings",
    "Drywall/Framing": "metal framing, hanging, taping and finishing, insulation, rated assemblies",
    "Painting": "surface preparation, primer, wall and trim paint, specialty coatings",
    "Flooring": "preparation and leveling, tile, carpet, resilient flooring, base",
    "Demolition": "selective demolition, haul-off, disposal fees, abatement, protection",
}


EXTRACTION_SYSTEM_PROMPT = """You are an experienced construction estimator who reads
subcontractor bids every day. You extract every priced line, allowance, alternate and
exclusion exactly as written, and you are honest about uncertainty.

IMPORTANT: You must output ONLY valid JSON. No explanatory text before or after the JSON."""


def create_extraction_agent() -> Agent:
    """Create the Bid Extraction Agent."""
    return Agent(
        role="Bid Extraction Specialist",
        goal="Extract every line item, price and exclusion from a subcontractor bid",
        backstory=EXTRACTION_SYSTEM_PROMPT,
        llm=get_default_llm(),
        verbose=AGENT_VERBOSE,
        allow_delegation=False
    )


def create_extraction_task(agent: Agent, trade_type: str, raw_text: str) -> Task:
    """
    Create the extraction task.

    Args:
        agent: The Bid Extraction Agent
        trade_type: Trade of the bid package (e.g. Electrical)
        raw_text: Text extracted from the bid document
    """
    hints = TRADE_SCOPE_HINTS.get(
        trade_type,
        "major scope categories for this trade, materials, labor, equipment, permits"
    )

    return Task(
        description=f"""Extract the line items from this {trade_type} subcontractor bid.

For each item return description, quantity, unit (SF, LF, EA, LS...), unit_price,
total_price, category (labor, materials, equipment, permits, general_conditions,
overhead, other), is_exclusion, is_inclusion, confidence_score, needs_review,
raw_text (the source line) and notes.

Rules:
1. Exclusion sections ("Exclusions", "Not Included", "By Others", "Clarifications")
   produce items with is_exclusion=true.
2. Lines priced $0, "TBD", "NIC" or "By Others" are usually exclusions.
3. Add-ons, alternates and allowances are separate items.
4. A lump sum without breakdown is still one item.
5. confidence_score: 1.0 clearly stated, 0.8 reasonably inferred, 0.6 some ambiguity,
   0.4 significant uncertainty. Use null for numbers that are not stated.

Typical {trade_type} scope: {hints}

DOCUMENT TEXT:
---
{raw_text[:MAX_DOCUMENT_CHARS]}
---

Return a JSON object with this structure:
{{
    "contractor_name": "company name or null",
    "base_bid_total": number or null,
    "items": [
        {{
            "description": "string",
            "quantity": number or null,
            "unit": "string or null",
            "unit_price": number or null,
            "total_price": number or null,
            "category": "string",
            "is_exclusion": false,
            "is_inclusion": false,
            "confidence_score": 0.9,
            "needs_review": false,
            "raw_text": "string",
            "notes": "string or null"
        }}
    ],
    "exclusions_summary": ["key exclusions"],
    "inclusions_summary": ["key inclusions"],
    "extraction_notes": "overall notes"
}}""",
        expected_output="A valid JSON object containing the extracted line items",
        agent=agent
    )


def extract_bid_items(trade_type: str, raw_text: str) -> dict:
    """
    Run item extraction on one bid document.

    Args:
        trade_type: Trade of the bid package
        raw_text: Text extracted from the document

    Returns:
        Extraction result as dict

    Raises:
        LLMError: Classified failure
    """
    agent = create_extraction_agent()
    task = create_extraction_task(agent, trade_type, raw_text)
    return run_task(agent, task, ["items"])
