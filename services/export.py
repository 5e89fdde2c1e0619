"""
Comparison Export

Renders a completed comparison as a CSV report: summary, recommendation,
contractor rollups, scope gaps and every contractor's line items.
"""

import csv
import io
import re
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import User, ComparisonResult
from schemas.project import ProjectStatus
from services.access import get_owned_project
from services.exceptions import ValidationError
from services.item_extractor import list_document_items
from services.text_extraction import list_project_documents


def _money(value) -> str:
    return "N/A" if value is None else f"{value:.2f}"


def _item_type(item) -> str:
    if item.is_exclusion:
        return "EXCLUSION"
    if item.is_inclusion:
        return "INCLUSION"
    return "BASE"


def _blank(value) -> str:
    return "" if value is None else str(value)


def export_filename(project_name: str) -> str:
    return f"{re.sub(r'[^a-zA-Z0-9]', '_', project_name)}_comparison.csv"


async def export_comparison_csv(db: AsyncSession, project_id, user: User) -> tuple[str, str]:
    """
    Build the CSV report for a project.

    Returns:
        (filename, csv text)

    Raises:
        ValidationError: Project not complete or without a comparison
    """
    project = await get_owned_project(db, project_id, user)
    result = (await db.execute(
        select(ComparisonResult).where(ComparisonResult.project_id == project.id)
    )).scalar_one_or_none()
    if project.status != ProjectStatus.COMPLETE.value or result is None:
        raise ValidationError("Comparison not ready for export")

    documents = await list_project_documents(db, project.id)
    names = {str(d.id): d.contractor_name for d in documents}
    items = await list_document_items(db, [d.id for d in documents])
    summary = result.summary_json or {}
    recommendation = result.recommendation_json or {}

    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")

    writer.writerow(["BidVet Comparison Report"])
    writer.writerow(["Project:", project.name])
    writer.writerow(["Trade:", project.trade_type])
    if project.location:
        writer.writerow(["Location:", project.location])
    writer.writerow(["Generated:", datetime.now(timezone.utc).isoformat()])
    writer.writerow([])

    writer.writerow(["SUMMARY"])
    writer.writerow(["Total Bids:", result.total_bids])
    writer.writerow(["Price Low:", _money(result.price_low)])
    writer.writerow(["Price High:", _money(result.price_high)])
    writer.writerow(["Price Average:", _money(result.price_average)])
    writer.writerow(["Total Scope Items:", result.total_scope_items])
    writer.writerow(["Common Items:", result.common_items])
    writer.writerow(["Scope Gaps:", result.gap_items])
    writer.writerow([])

    writer.writerow(["RECOMMENDATION"])
    writer.writerow(["Recommended Contractor:", recommendation.get("recommended_contractor_name") or ""])
    writer.writerow(["Confidence:", recommendation.get("confidence") or ""])
    writer.writerow(["Reasoning:", recommendation.get("reasoning") or ""])
    writer.writerow([])

    writer.writerow(["CONTRACTOR COMPARISON"])
    writer.writerow([
        "Contractor", "Base Bid", "Total Bid", "Item Count", "Exclusion Count",
        "Exclusions Value", "Avg Confidence", "Scope Gaps"
    ])
    for contractor in summary.get("contractors", []):
        writer.writerow([
            contractor.get("name"),
            _money(contractor.get("base_bid")),
            _money(contractor.get("total_bid")),
            contractor.get("item_count", 0),
            contractor.get("exclusion_count", 0),
            _money(contractor.get("exclusions_value") or 0.0),
            f"{(contractor.get('confidence_avg') or 0.0) * 100:.1f}%",
            contractor.get("scope_gap_count", 0),
        ])
    writer.writerow([])

    gaps = summary.get("scope_gaps") or []
    if gaps:
        writer.writerow(["SCOPE GAPS"])
        writer.writerow(["Description", "Present In", "Missing From", "Estimated Value"])
        for gap in gaps:
            writer.writerow([
                gap.get("normalized_description"),
                "; ".join(names.get(i, "Unknown") for i in gap.get("present_in", [])),
                "; ".join(names.get(i, "Unknown") for i in gap.get("missing_from", [])),
                _money(gap.get("estimated_value")),
            ])
        writer.writerow([])

    writer.writerow(["DETAILED LINE ITEMS BY CONTRACTOR"])
    by_document: dict[str, list] = {str(d.id): [] for d in documents}
    for item in items:
        by_document[str(item.bid_document_id)].append(item)

    for document in documents:
        writer.writerow([])
        writer.writerow([document.contractor_name])
        writer.writerow([
            "Description", "Category", "Quantity", "Unit", "Unit Price",
            "Total Price", "Leveled Price", "Type", "Confidence"
        ])
        for item in by_document[str(document.id)]:
            writer.writerow([
                item.description,
                item.category or "",
                _blank(item.quantity),
                item.unit or "",
                _blank(item.unit_price),
                _blank(item.total_price),
                _blank(item.leveled_price),
                _item_type(item),
                f"{(item.confidence_score or 0.0) * 100:.0f}%",
            ])

    return export_filename(project.name), buffer.getvalue()
