"""
Bid Analyzer

Runs the full comparison pipeline for one project:

1. Ensure every document has raw text
2. Extract line items per document (LLM)
3. Group items into scope buckets (matcher, or the LLM when enabled)
4. Recommend a contractor (LLM)
5. Persist the ComparisonResult and mark the project complete

The project's status is the only completion signal. Callers flip it to
processing with start_analysis() before the run is queued.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from database.models import User, Project, BidDocument, ComparisonResult
from schemas.breakdown import BreakdownStructure
from schemas.comparison import ComparisonSummary, ScopeBucket
from schemas.extraction import NormalizationResult, ContractorRecommendation
from schemas.project import ProjectStatus, DocumentStatus
from services.access import as_uuid, get_owned_project
from services.calibration import get_confidence_thresholds
from services.exceptions import (
    BidVetError, LLMError, NotFound, ConflictError, ParseError
)
from services.item_extractor import call_llm, extract_items_for_document, list_document_items
from services.matcher import (
    build_scope_buckets, buckets_from_groups, assign_breakdown_nodes, summarize
)
from services.metrics import PipelineMetrics
from services.storage import DocumentStore
from services.text_extraction import list_project_documents, extract_document

logger = logging.getLogger("bidvet.services.analyzer")


# ============================================================================
# STATUS GATE
# ============================================================================

async def start_analysis(db: AsyncSession, project_id, user: User) -> Project:
    """
    Atomically move a project into processing.

    A project left in processing for longer than the job timeout belongs to
    a run whose worker died; it is taken over.

    Raises:
        NotFound: Project missing
        Forbidden: Project belongs to someone else
        ConflictError: An analysis is already running
    """
    project = await get_owned_project(db, project_id, user)
    was_processing = project.status == ProjectStatus.PROCESSING.value
    stale_before = datetime.now(timezone.utc) - timedelta(seconds=settings.analysis_job_timeout)
    result = await db.execute(
        update(Project)
        .where(
            Project.id == project.id,
            or_(
                Project.status != ProjectStatus.PROCESSING.value,
                Project.updated_at < stale_before,
            )
        )
        .values(status=ProjectStatus.PROCESSING.value, error_message=None)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise ConflictError("Analysis already in progress for this project")
    await db.commit()
    await db.refresh(project)
    if was_processing:
        logger.warning(f"Project {project.id} was stuck in processing; restarting analysis")
    logger.info(f"Project {project.id} moved to processing")
    return project


# ============================================================================
# PIPELINE STEPS
# ============================================================================

def _contractor_payload(documents: list[BidDocument], items: list) -> list[dict]:
    by_doc: dict[str, list] = {str(d.id): [] for d in documents}
    for item in items:
        by_doc.setdefault(str(item.bid_document_id), []).append({
            "id": str(item.id),
            "description": item.description,
            "category": item.category,
            "quantity": item.quantity,
            "unit": item.unit,
            "total_price": item.total_price,
            "is_exclusion": item.is_exclusion,
        })
    return [
        {
            "contractor_id": str(d.id),
            "contractor_name": d.contractor_name,
            "items": by_doc[str(d.id)],
        }
        for d in documents
    ]


async def _normalize(
    project: Project,
    documents: list[BidDocument],
    items: list,
    llm
) -> list[ScopeBucket]:
    """Scope buckets from the LLM grouping when enabled, else the fuzzy matcher."""
    if settings.llm_normalization:
        try:
            data = await call_llm(llm.normalize, project.trade_type, _contractor_payload(documents, items))
            groups = NormalizationResult.model_validate(data).groups
            if groups:
                return buckets_from_groups(documents, items, groups)
            logger.warning(f"Normalization returned no groups for project {project.id}")
        except (LLMError, PydanticValidationError) as e:
            logger.warning(f"LLM normalization failed for project {project.id}, using matcher: {e}")
    return build_scope_buckets(documents, items)


def _apply_breakdown(project: Project, buckets: list[ScopeBucket]):
    if not project.breakdown_structure:
        return
    try:
        structure = BreakdownStructure.model_validate(project.breakdown_structure)
    except PydanticValidationError:
        logger.warning(f"Ignoring invalid breakdown structure on project {project.id}")
        return
    assign_breakdown_nodes(buckets, structure)


def _write_normalized_descriptions(items: list, buckets: list[ScopeBucket]):
    labels = {}
    for bucket in buckets:
        for item_id in bucket.item_ids:
            labels[item_id] = bucket.normalized_description
    for item in items:
        item.normalized_description = labels.get(str(item.id))


def _fallback_recommendation(summary: ComparisonSummary, reason: str) -> ContractorRecommendation:
    priced = [c for c in summary.contractors if c.base_bid > 0] or summary.contractors
    lowest = min(priced, key=lambda c: c.base_bid)
    return ContractorRecommendation(
        recommended_contractor_id=lowest.id,
        recommended_contractor_name=lowest.name,
        confidence="low",
        reasoning=reason,
    )


async def _recommend(project: Project, summary: ComparisonSummary, llm) -> ContractorRecommendation:
    data = await call_llm(llm.recommend, project.trade_type, summary.model_dump(mode="json"))
    try:
        recommendation = ContractorRecommendation.model_validate(data)
    except PydanticValidationError as e:
        raise ParseError(f"Invalid recommendation output: {e.error_count()} validation errors") from e

    known = {c.id: c for c in summary.contractors}
    if recommendation.recommended_contractor_id not in known:
        logger.warning(
            f"Recommendation named unknown contractor {recommendation.recommended_contractor_id!r}; "
            "falling back to lowest base bid"
        )
        return _fallback_recommendation(
            summary, "Recommended by lowest base bid; the AI recommendation did not match a submitted bid."
        )

    recommendation.recommended_contractor_name = known[recommendation.recommended_contractor_id].name
    return recommendation


async def _save_result(
    db: AsyncSession,
    project: Project,
    summary: ComparisonSummary,
    recommendation: ContractorRecommendation,
    buckets: list[ScopeBucket]
) -> ComparisonResult:
    result = (await db.execute(
        select(ComparisonResult).where(ComparisonResult.project_id == project.id)
    )).scalar_one_or_none()
    if result is None:
        result = ComparisonResult(project_id=project.id)
        db.add(result)

    result.total_bids = len(summary.contractors)
    result.price_low = summary.price_low
    result.price_high = summary.price_high
    result.price_average = summary.price_average
    result.total_scope_items = summary.total_scope_items
    result.common_items = summary.common_items
    result.gap_items = summary.gap_items
    result.summary_json = summary.model_dump(mode="json")
    result.recommendation_json = recommendation.model_dump(mode="json")
    result.scope_gaps = [b.model_dump(mode="json") for b in buckets if b.is_scope_gap]
    # Items were replaced, so any prior baselines point at rows that no longer exist
    result.leveling_json = None
    return result


async def _fail(
    db: AsyncSession,
    project: Project,
    message: str,
    metrics: Optional[PipelineMetrics] = None
) -> dict:
    project.status = ProjectStatus.ERROR.value
    project.error_message = message
    await db.commit()
    logger.error(f"Analysis failed for project {project.id}: {message}")
    outcome = {"project_id": str(project.id), "status": ProjectStatus.ERROR.value, "error": message}
    if metrics is not None:
        await metrics.flush(db)
    return outcome


async def _reset_after_error(db: AsyncSession, project: Project):
    await db.rollback()
    await db.refresh(project)


# ============================================================================
# ENTRY POINT
# ============================================================================

async def analyze_project(
    db: AsyncSession,
    project_id,
    llm,
    store: Optional[DocumentStore] = None
) -> dict:
    """
    Run the comparison pipeline for a project.

    Per-document text and extraction failures are recorded on the document
    and siblings continue. Any LLM failure ends the run with the project in
    error, carrying the first failure's message; items already extracted for
    other documents stay in place. A cancelled run (job timeout, worker
    shutdown) also leaves the project in error before the cancellation
    propagates.

    Each run writes one anonymized PipelineMetrics row.

    Args:
        db: Database session
        project_id: Project to analyze
        llm: Object exposing extract_items, normalize and recommend (see BidCrew)
        store: Document store for documents still lacking text

    Returns:
        Dict with project_id, status and either error or the result counts

    Raises:
        NotFound: Project missing
    """
    project = await db.get(Project, as_uuid(project_id, "Project"))
    if project is None:
        raise NotFound("Project not found")

    if project.status != ProjectStatus.PROCESSING.value:
        project.status = ProjectStatus.PROCESSING.value
        project.error_message = None
        await db.commit()

    metrics = PipelineMetrics(project.trade_type)

    try:
        documents = await list_project_documents(db, project.id)
        if not documents:
            metrics.fail("NO_DOCUMENTS")
            return await _fail(db, project, "No documents found for this project", metrics)
        metrics.describe_documents(documents)

        thresholds = await get_confidence_thresholds(db, project.trade_type)
        logger.info(
            f"Analyzing project {project.id} ({project.trade_type}): {len(documents)} documents, "
            f"thresholds low={thresholds.low} medium={thresholds.medium}"
        )

        processed: list[BidDocument] = []
        llm_failures: list[LLMError] = []
        metrics.start("extraction")

        for document in documents:
            if not document.raw_text:
                outcome = await extract_document(db, document, store)
                if outcome["status"] == "error":
                    continue

            document.upload_status = DocumentStatus.PROCESSING.value
            await db.commit()
            try:
                await extract_items_for_document(db, document, project.trade_type, llm, thresholds)
            except BidVetError as e:
                document.upload_status = DocumentStatus.ERROR.value
                document.error_message = e.message
                await db.commit()
                logger.warning(f"Item extraction failed for {document.file_name} [{e.code}]: {e.message}")
                if isinstance(e, LLMError):
                    llm_failures.append(e)
                continue
            processed.append(document)

        if llm_failures:
            metrics.fail(llm_failures[0].code)
            return await _fail(db, project, llm_failures[0].message, metrics)
        if not processed:
            metrics.fail("EXTRACTION_FAILED")
            return await _fail(db, project, "No documents could be processed", metrics)

        items = await list_document_items(db, [d.id for d in processed])
        metrics.record_items(items)
        metrics.finish()

        metrics.start("normalization")
        buckets = await _normalize(project, processed, items, llm)
        _apply_breakdown(project, buckets)
        _write_normalized_descriptions(items, buckets)
        summary = summarize(processed, items, buckets)
        metrics.record_scope(summary.total_scope_items, summary.common_items, summary.gap_items)
        metrics.finish()

        metrics.start("recommendation")
        recommendation = await _recommend(project, summary, llm)
        metrics.record_recommendation(recommendation.confidence)
        metrics.finish()

        await _save_result(db, project, summary, recommendation, buckets)
        project.status = ProjectStatus.COMPLETE.value
        project.error_message = None
        await db.commit()

    except asyncio.CancelledError:
        logger.warning(f"Analysis of project {project.id} was cancelled")
        metrics.fail("CANCELLED")
        await _reset_after_error(db, project)
        await _fail(db, project, "Analysis was interrupted before it finished; run it again", metrics)
        raise
    except BidVetError as e:
        metrics.fail(e.code)
        await _reset_after_error(db, project)
        return await _fail(db, project, e.message, metrics)
    except Exception as e:
        logger.exception(f"Unexpected error analyzing project {project.id}")
        metrics.fail("UNKNOWN_ERROR")
        await _reset_after_error(db, project)
        return await _fail(db, project, str(e) or "Analysis failed", metrics)

    logger.info(
        f"Analysis complete for project {project.id}: {len(items)} items, "
        f"{summary.total_scope_items} scope items, {summary.gap_items} gaps"
    )
    outcome = {
        "project_id": str(project.id),
        "status": ProjectStatus.COMPLETE.value,
        "documents_processed": len(processed),
        "items_extracted": len(items),
        "scope_items": summary.total_scope_items,
        "gap_items": summary.gap_items,
        "recommended_contractor_id": recommendation.recommended_contractor_id,
    }
    await metrics.flush(db)
    return outcome
