"""
Correction Anonymizer

Turns a user's item edit into anonymized training corrections. Names,
contact details, identifiers, dates and exact prices are stripped so the
stored contribution cannot be traced back to a bid.
"""

import re
from typing import Any, Optional


COMPANY_NAMES = re.compile(
    r"\b([A-Z][a-z]+\s)+(Inc|LLC|Corp|Co|Ltd|Company|Construction|Electric|Electrical|Plumbing|"
    r"Mechanical|Contractors?|Services?|Solutions?|Industries?|Enterprises?|Group|Associates?|Partners?)\b"
)
DOLLAR_AMOUNTS = re.compile(r"\$\d[\d,]*(\.\d{2})?")
PHONE_NUMBERS = re.compile(r"(\+\d{1,2}\s?)?\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}")
EMAILS = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
ADDRESSES = re.compile(
    r"\d+\s+[A-Za-z]+\s+(St|Street|Ave|Avenue|Blvd|Boulevard|Rd|Road|Dr|Drive|Lane|Ln|Way|"
    r"Court|Ct|Place|Pl|Circle|Cir|Pkwy|Parkway)\b\.?",
    re.IGNORECASE
)
PROJECT_IDS = re.compile(
    r"\b(Project|Job|PO|RFQ|Bid|Quote|Proposal|Estimate|Contract)\s*[#:]?\s*[\w-]*\d+[\w-]*",
    re.IGNORECASE
)
SPELLED_DATES = re.compile(
    r"\b(January|February|March|April|May|June|July|August|September|October|November|December)"
    r"\s+\d{1,2},?\s+\d{4}\b",
    re.IGNORECASE
)
NUMERIC_DATES = re.compile(r"\b\d{1,2}[/-]\d{1,2}[/-]\d{2,4}\b")

PRICE_RANGES = [
    (500, "<500"),
    (1_000, "500-1K"),
    (5_000, "1K-5K"),
    (10_000, "5K-10K"),
    (25_000, "10K-25K"),
    (50_000, "25K-50K"),
    (100_000, "50K-100K"),
    (250_000, "100K-250K"),
    (500_000, "250K-500K"),
    (1_000_000, "500K-1M"),
]

# Edited field -> correction type recorded in the contribution ledger
CORRECTION_TYPES = {
    "description": "description",
    "category": "category",
    "total_price": "price",
    "unit_price": "price",
    "is_exclusion": "exclusion_flag",
    "quantity": "quantity",
    "unit": "unit",
}


def price_range(price: Optional[float]) -> Optional[str]:
    """Bucket a price into a coarse range label."""
    if price is None:
        return None
    for ceiling, label in PRICE_RANGES:
        if price < ceiling:
            return label
    return ">1M"


def anonymize_text(text: Optional[str]) -> Optional[str]:
    """Replace identifying fragments with placeholders."""
    if not text:
        return text
    text = COMPANY_NAMES.sub("[CONTRACTOR]", text)
    text = DOLLAR_AMOUNTS.sub(
        lambda m: f"$[{price_range(float(m.group(0).replace('$', '').replace(',', '')))}]",
        text
    )
    text = PHONE_NUMBERS.sub("[PHONE]", text)
    text = EMAILS.sub("[EMAIL]", text)
    text = ADDRESSES.sub("[ADDRESS]", text)
    text = PROJECT_IDS.sub("[PROJECT_ID]", text)
    text = SPELLED_DATES.sub("[DATE]", text)
    text = NUMERIC_DATES.sub("[DATE]", text)
    return text


def _anonymize_value(correction_type: str, value: Any) -> Any:
    if correction_type == "description":
        return anonymize_text(value)
    if correction_type == "price":
        return price_range(value)
    return value


def detect_corrections(before: dict, after: dict) -> list[dict]:
    """
    Anonymized corrections between two snapshots of an item's edited fields.

    Price fields collapse into a single "price" correction.

    Returns:
        List of {correction_type, original_value, corrected_value}
    """
    grouped: dict[str, dict] = {}
    for field, new_value in after.items():
        correction_type = CORRECTION_TYPES.get(field)
        if correction_type is None:
            continue
        entry = grouped.setdefault(correction_type, {"original": {}, "corrected": {}})
        entry["original"][field] = _anonymize_value(correction_type, before.get(field))
        entry["corrected"][field] = _anonymize_value(correction_type, new_value)

    return [
        {
            "correction_type": correction_type,
            "original_value": entry["original"],
            "corrected_value": entry["corrected"],
        }
        for correction_type, entry in grouped.items()
    ]
