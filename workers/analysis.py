"""
Analysis Worker

Background jobs: the comparison pipeline and threshold calibration.
"""

import logging

from database.connection import get_db_context

logger = logging.getLogger("bidvet.workers.analysis")


async def run_analysis_job(ctx: dict, project_id: str):
    """
    Background job to run the comparison pipeline for one project.

    The project row carries the outcome (complete or error); the returned
    dict is only kept as the arq job result.

    Args:
        ctx: ARQ context
        project_id: Project to analyze (already marked processing)
    """
    # Import here to avoid circular imports
    from crew import BidCrew
    from services.analyzer import analyze_project

    logger.info(f"Starting analysis job {ctx.get('job_id', '-')} for project {project_id}")

    async with get_db_context() as db:
        result = await analyze_project(db, project_id, BidCrew(project_id))

    if result.get("status") == "complete":
        logger.info(
            f"Analysis of project {project_id} complete: "
            f"{result['items_extracted']} items, {result['scope_items']} scope items"
        )
    else:
        logger.warning(f"Analysis of project {project_id} failed: {result.get('error')}")
    return result


async def run_calibration_job(ctx: dict, force: bool = False):
    """
    Recalibrate per-trade review thresholds.

    Scheduled weekly by the worker; also reachable through the cron endpoint.
    """
    from services.calibration import calibrate_all

    async with get_db_context() as db:
        result = await calibrate_all(db, force=force)

    logger.info(
        f"Calibration job: {result['trades_updated']} updated, "
        f"{result['trades_skipped']} skipped"
    )
    return result
