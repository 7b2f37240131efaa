"""
Dispute expiry sweep.

Scheduled hourly by the external scheduler:
    python -m cleanmatch.jobs.worker dispute_expiry
"""

from cleanmatch.features.disputes.services.dispute_service import dispute_service
from cleanmatch.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


async def run_dispute_expiry() -> None:
    result = await dispute_service.expire_disputes()
    if result.updated == 0:
        logger.debug("No disputes to expire or escalate")
