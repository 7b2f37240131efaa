"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable, opens the database pool and Redis client, and runs the job once.
Scheduling is owned by the external scheduler.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from cleanmatch.db.pool import db_pool
from cleanmatch.features.disputes.jobs.expiry_job import run_dispute_expiry
from cleanmatch.features.disputes.jobs.moderation_job import run_moderation_reminder
from cleanmatch.features.health.jobs.nightly_job import run_health_nightly
from cleanmatch.infrastructure.observability.logging import (
    bind_request_context,
    get_logger,
    setup_logging,
)
from cleanmatch.services.infrastructure.redis_client import redis_cache

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[None]]

JOB_REGISTRY: dict[str, JobCoroutine] = {
    "dispute_expiry": run_dispute_expiry,
    "moderation_reminder": run_moderation_reminder,
    "health_nightly": run_health_nightly,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "dispute_expiry").strip().lower()


async def run_worker(job_name: str | None = None) -> None:
    """Run the requested background job."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    bind_request_context(job=name)
    logger.info("Starting background worker", job=name)
    await db_pool.initialize()
    await redis_cache.initialize()
    try:
        await JOB_REGISTRY[name]()
    finally:
        await redis_cache.close()
        await db_pool.close()
    logger.info("Background worker finished", job=name)


def main() -> None:
    """CLI entrypoint."""
    setup_logging(log_level=os.getenv("LOG_LEVEL", "INFO"))
    job_name = _resolve_job_name()
    asyncio.run(run_worker(job_name))


if __name__ == "__main__":
    main()
