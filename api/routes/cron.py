"""
Cron Router (v1)

Scheduled maintenance endpoints, authenticated with the shared cron secret
rather than a user token. The arq worker runs the same job on its own
schedule; this endpoint lets an external scheduler trigger it.
"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database.connection import get_db
from api.auth.dependencies import verify_cron_secret
from services.calibration import calibrate_all

logger = logging.getLogger("bidvet.api.cron")

router = APIRouter(prefix="/cron", tags=["Cron"])


@router.post("/confidence-calibration", dependencies=[Depends(verify_cron_secret)])
async def confidence_calibration(
    force: bool = Query(default=False, description="Ignore sample minimum and change threshold"),
    db: AsyncSession = Depends(get_db)
):
    """Recalibrate per-trade review thresholds from the correction ledger."""
    logger.info(f"Confidence calibration triggered (force={force})")
    return await calibrate_all(db, force=force)
