"""
Nightly health recalculation job.

Run once per night by the external scheduler:
    python -m cleanmatch.jobs.worker health_nightly
"""

from cleanmatch.features.health.services.admin_service import health_admin_service
from cleanmatch.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


async def run_health_nightly() -> None:
    result = await health_admin_service.recalculate_nightly()
    if result.failed:
        logger.warning(
            "Nightly health run finished with failures",
            processed=result.processed,
            failed=result.failed,
        )
