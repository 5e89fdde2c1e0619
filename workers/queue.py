"""
Job Queue Service

Helper functions to enqueue background jobs.
"""

import uuid
from typing import Optional

from arq import create_pool
from arq.connections import ArqRedis

from workers.settings import get_redis_settings


# Module-level connection pool
_redis_pool: Optional[ArqRedis] = None


async def get_redis_pool() -> ArqRedis:
    """Get or create Redis connection pool."""
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = await create_pool(get_redis_settings())
    return _redis_pool


async def close_redis_pool():
    """Close the Redis connection pool."""
    global _redis_pool
    if _redis_pool:
        await _redis_pool.close()
        _redis_pool = None


async def enqueue_analysis_job(project_id: str) -> str:
    """
    Enqueue the comparison pipeline for a project.

    The caller must already have moved the project to processing; the
    project status, not the job, is what clients poll.

    Args:
        project_id: Project to analyze

    Returns:
        Job ID
    """
    job_id = f"analysis:{project_id}:{uuid.uuid4().hex[:8]}"

    redis = await get_redis_pool()
    await redis.enqueue_job("run_analysis_job", project_id, _job_id=job_id)
    return job_id
