"""
Lead service - job creation with lead fan-out, and the pro's response.

Each lead (insert + push) is its own failure unit: units run concurrently
and one failing never cancels or fails the others.
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from cleanmatch.auth.verify import Actor, require_actor
from cleanmatch.config import settings
from cleanmatch.errors import (
    FailedPreconditionError,
    InternalError,
    NotFoundError,
    PermissionDeniedError,
    ServiceError,
)
from cleanmatch.features.matching.discovery.service import candidate_discovery_service
from cleanmatch.features.matching.domain.models import (
    JOB_OPEN,
    LEAD_ACCEPTED,
    LEAD_DECLINED,
    LEAD_PENDING,
    Job,
    Lead,
    LeadBatchResult,
    ScoredLead,
)
from cleanmatch.features.matching.scoring.service import lead_scoring_service
from cleanmatch.infrastructure.observability.logging import get_logger
from cleanmatch.repositories.chat_repository import chat_repository
from cleanmatch.services.notifications.push import push_notifier

from .repository import lead_repository

logger = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(UTC)


class LeadService:
    def __init__(
        self,
        discovery=None,
        scoring=None,
        repository=None,
        notifier=None,
        chats=None,
        clock: Callable[[], datetime] = utc_now,
        max_leads: int | None = None,
        lead_ttl: timedelta | None = None,
    ):
        self.discovery = discovery or candidate_discovery_service
        self.scoring = scoring or lead_scoring_service
        self.repository = repository or lead_repository
        self.notifier = notifier or push_notifier
        self.chats = chats or chat_repository
        self.clock = clock
        self.max_leads = max_leads or settings.LEAD_MAX_PER_JOB
        self.lead_ttl = lead_ttl or timedelta(hours=settings.LEAD_TTL_HOURS)

    # ------------------------------------------------------------------
    # Job creation and lead fan-out
    # ------------------------------------------------------------------

    async def create_job_with_leads(self, job: Job) -> LeadBatchResult:
        """
        Persist ``job`` as open, then discover, score and rank candidates and
        create a lead for each of the top ones.

        Discovery failures propagate; per-lead failures are only counted.
        """
        logger.info("Creating job with leads", job_id=job.id, services=job.services)

        job.status = JOB_OPEN
        await self.repository.insert_job(job)

        candidates = await self.discovery.find_candidates(job)
        scored = await self.scoring.score_candidates(job, candidates)
        top = self.scoring.rank(scored, limit=self.max_leads)

        created_at = self.clock()
        expires_at = created_at + self.lead_ttl

        results = await asyncio.gather(
            *(self._create_lead(job, lead, created_at, expires_at) for lead in top),
            return_exceptions=True,
        )

        failed = 0
        for lead, result in zip(top, results, strict=True):
            if isinstance(result, Exception):
                failed += 1
                logger.error(
                    "Failed to create lead",
                    job_id=job.id,
                    pro_id=lead.candidate.pro_id,
                    error=str(result),
                )

        batch = LeadBatchResult(
            job_id=job.id,
            candidates=len(candidates),
            leads_created=len(top) - failed,
            leads_failed=failed,
        )
        logger.info(
            "Job created with leads",
            job_id=job.id,
            candidates=batch.candidates,
            leads_created=batch.leads_created,
            leads_failed=batch.leads_failed,
        )
        return batch

    async def _create_lead(
        self, job: Job, scored: ScoredLead, created_at: datetime, expires_at: datetime
    ) -> str:
        lead_id = await self.repository.insert_lead(job, scored, created_at, expires_at)

        try:
            await self.notifier.send(
                scored.candidate.pro_id,
                "New job available",
                f"{job.title or 'Cleaning job'} - €{job.budget:g}",
                {"type": "new_lead", "lead_id": lead_id, "job_id": job.id},
            )
        except Exception as e:
            logger.warning(
                "Lead push notification failed",
                lead_id=lead_id,
                pro_id=scored.candidate.pro_id,
                error=str(e),
            )

        logger.info(
            "Lead created",
            lead_id=lead_id,
            job_id=job.id,
            pro_id=scored.candidate.pro_id,
            score=scored.score,
        )
        return lead_id

    # ------------------------------------------------------------------
    # Lead response
    # ------------------------------------------------------------------

    @staticmethod
    def _check_lead(lead: Lead | None, actor: Actor) -> Lead:
        if lead is None:
            raise NotFoundError("Lead not found")
        if lead.pro_id != actor.uid:
            raise PermissionDeniedError("You can only respond to your own leads")
        if lead.status != LEAD_PENDING:
            raise FailedPreconditionError("Lead is no longer pending")
        return lead

    async def accept_lead(self, actor: Actor | None, lead_id: str) -> dict[str, Any]:
        """Accept a pending lead and assign its open job to the pro."""
        actor = require_actor(actor)

        try:
            async with await self.repository.transaction() as conn:
                lead = self._check_lead(await self.repository.lock_lead(conn, lead_id), actor)

                job = await self.repository.lock_job(conn, lead.job_id)
                if job is None:
                    raise NotFoundError("Associated job not found")
                if job.status != JOB_OPEN:
                    raise FailedPreconditionError("Job is no longer open")

                await self.repository.set_lead_status(conn, lead_id, LEAD_ACCEPTED)
                await self.repository.assign_job(conn, job.id, actor.uid)
        except ServiceError:
            raise
        except Exception as e:
            logger.error("Error accepting lead", lead_id=lead_id, error=str(e))
            raise InternalError("Failed to accept lead") from e

        logger.info("Lead accepted", lead_id=lead_id, job_id=job.id, pro_id=actor.uid)

        chat_id = None
        try:
            chat_id, _ = await self.chats.ensure_chat(job.id, job.customer_id, actor.uid)
        except Exception as e:
            logger.warning("Failed to ensure job chat", job_id=job.id, error=str(e))

        return {"lead_id": lead_id, "job_id": job.id, "chat_id": chat_id}

    async def decline_lead(self, actor: Actor | None, lead_id: str) -> dict[str, Any]:
        actor = require_actor(actor)

        try:
            async with await self.repository.transaction() as conn:
                self._check_lead(await self.repository.lock_lead(conn, lead_id), actor)
                await self.repository.set_lead_status(conn, lead_id, LEAD_DECLINED)
        except ServiceError:
            raise
        except Exception as e:
            logger.error("Error declining lead", lead_id=lead_id, error=str(e))
            raise InternalError("Failed to decline lead") from e

        logger.info("Lead declined", lead_id=lead_id, pro_id=actor.uid)
        return {"lead_id": lead_id}


lead_service = LeadService()
