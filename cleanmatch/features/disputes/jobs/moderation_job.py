"""
Moderation reminder sweep.

Scheduled every six hours:
    python -m cleanmatch.jobs.worker moderation_reminder
"""

from cleanmatch.features.disputes.services.dispute_service import dispute_service


async def run_moderation_reminder() -> None:
    await dispute_service.remind_moderation()
