"""
Job enqueue/status functions for the arq queue.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from arq import create_pool
from arq.jobs import Job

from adapters.queue.redis import get_redis_settings
from adapters.queue.redis_client_adapter import BaseError

logger = logging.getLogger(__name__)


async def enqueue_job(
    function: str,
    *args: Any,
    job_id: Optional[str] = None,
    **kwargs: Any,
) -> dict:
    """
    Enqueue a job to Redis.

    Args:
        function: Name of the worker function to run
        job_id: Optional job ID; arq generates one if not provided.
            Enqueueing an ID that is already queued is a no-op.

    Returns:
        dict with job_id, function and whether the job was enqueued
    """
    try:
        redis = await create_pool(get_redis_settings())
        try:
            job = await redis.enqueue_job(function, *args, _job_id=job_id, **kwargs)
        finally:
            await redis.aclose()

        if job is None:
            logger.info(f"Job already queued, skipped: function={function}, job_id={job_id}")
            return {"job_id": job_id, "function": function, "enqueued": False}

        logger.info(
            f"Job enqueued: function={function}, job_id={job.job_id}, "
            f"at={datetime.now(timezone.utc).isoformat()}"
        )
        return {"job_id": job.job_id, "function": function, "enqueued": True}

    except Exception as e:
        logger.error(f"Failed to enqueue job {function}: {e}")
        raise


async def get_job_status(job_id: str) -> Optional[dict]:
    """
    Get status of a queued job.

    Returns:
        dict with job status or None if not found
    """
    try:
        redis = await create_pool(get_redis_settings())
        try:
            status = await Job(job_id, redis).status()
        finally:
            await redis.aclose()
    except (BaseError, OSError) as e:
        logger.error(f"Failed to get job status: {e}")
        return None

    if status.value == "not_found":
        return None

    return {
        "job_id": job_id,
        "status": status.value,
    }
