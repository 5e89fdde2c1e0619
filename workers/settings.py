"""
ARQ Worker Settings

Configuration for the async Redis queue worker.
"""

import logging

from arq import cron
from arq.connections import RedisSettings

from config.settings import settings
from workers.analysis import run_analysis_job, run_calibration_job

logger = logging.getLogger("bidvet.worker")


def get_redis_settings() -> RedisSettings:
    """Redis connection settings from REDIS_URL."""
    return RedisSettings.from_dsn(settings.redis_url)


class WorkerSettings:
    """
    ARQ Worker configuration.

    Usage:
        arq workers.settings.WorkerSettings
    """

    # Redis connection
    redis_settings = get_redis_settings()

    # Job functions to register
    functions = [run_analysis_job, run_calibration_job]

    # Weekly threshold calibration, Sunday 03:00 UTC
    cron_jobs = [
        cron(run_calibration_job, weekday="sun", hour=3, minute=0, run_at_startup=False)
    ]

    # Worker behavior
    max_jobs = 5
    job_timeout = settings.analysis_job_timeout  # many documents, one LLM call each
    keep_result = 3600

    # A failed analysis leaves the project in error; the user re-triggers it
    max_tries = 1

    health_check_interval = 30

    @staticmethod
    async def on_startup(ctx):
        """Called when worker starts."""
        logger.info("ARQ Worker starting...")

    @staticmethod
    async def on_shutdown(ctx):
        """Called when worker shuts down."""
        from database.connection import close_db
        await close_db()
        logger.info("ARQ Worker shutting down...")
