"""
Recalibrate per-trade confidence thresholds from approved corrections.

The worker runs this weekly; use the script for a one-off run after a
moderation batch.

Usage:
    python scripts/calibrate_thresholds.py [--force]
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.logging_config import setup_logging
from database.connection import get_db_context, close_db
from services.calibration import calibrate_all


async def calibrate(force: bool):
    """Run calibration and print one line per trade that moved."""
    async with get_db_context() as db:
        summary = await calibrate_all(db, force=force)

    for result in summary["results"]:
        if result["was_updated"]:
            print(
                f"  ~ {result['trade_type']}: "
                f"low {result['current_low_threshold']} -> {result['suggested_low_threshold']}, "
                f"medium {result['current_medium_threshold']} -> {result['suggested_medium_threshold']}"
            )

    print(
        f"\nUpdated {summary['trades_updated']} of {summary['total_trades']} trades "
        f"({summary['total_corrections_processed']} corrections, {summary['trades_skipped']} skipped)"
    )
    await close_db()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Recalibrate review thresholds")
    parser.add_argument("--force", action="store_true", help="Ignore sample minimum and change threshold")
    args = parser.parse_args()

    setup_logging()
    asyncio.run(calibrate(args.force))
