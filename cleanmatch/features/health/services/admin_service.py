"""
Health admin service - privileged trust operations on professionals and the
nightly recalculation batch.

Every admin mutation is written together with its ``admin_logs`` row in one
transaction.
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from cleanmatch.auth.verify import Actor, require_admin
from cleanmatch.errors import InternalError, NotFoundError, ServiceError
from cleanmatch.features.health.domain.models import NightlyRunResult, ProHealthProfile
from cleanmatch.features.health.repository import health_repository
from cleanmatch.features.health.services.scorer import health_scorer
from cleanmatch.infrastructure.audit import admin_action_log
from cleanmatch.infrastructure.observability.logging import get_logger
from cleanmatch.models.api.health_request import (
    BadgeRequest,
    RecalculateHealthRequest,
    SetFlagsRequest,
)
from cleanmatch.models.api.validation import parse_request

logger = get_logger(__name__)

NIGHTLY_BATCH_LIMIT = 100


def utc_now() -> datetime:
    return datetime.now(UTC)


class HealthAdminService:
    def __init__(
        self,
        repository=None,
        scorer=None,
        audit_log=None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository or health_repository
        self.scorer = scorer or health_scorer
        self.audit_log = audit_log or admin_action_log
        self.clock = clock

    async def _locked_profile(self, conn, pro_id: str) -> ProHealthProfile:
        profile = await self.repository.get_profile(pro_id, connection=conn, lock=True)
        if profile is None:
            raise NotFoundError("Professional not found")
        return profile

    async def set_flags(
        self, actor: Actor | None, request: SetFlagsRequest | dict[str, Any]
    ) -> dict[str, Any]:
        """Merge the provided ban flags into the profile; omitted flags stay as they are."""
        actor = require_admin(actor)
        request = parse_request(SetFlagsRequest, request)

        try:
            async with await self.repository.transaction() as conn:
                profile = await self._locked_profile(conn, request.pro_id)
                before = profile.flags()

                if request.soft_banned is not None:
                    profile.soft_banned = request.soft_banned
                if request.hard_banned is not None:
                    profile.hard_banned = request.hard_banned
                if request.notes is not None:
                    profile.flag_notes = request.notes

                await self.repository.update_flags(conn, profile)
                await self.audit_log.record(
                    actor.uid,
                    "set_flags",
                    profile.pro_id,
                    before=before,
                    after=profile.flags(),
                    notes=request.notes or "Flags updated",
                    connection=conn,
                )
        except ServiceError:
            raise
        except Exception as e:
            logger.error("Error setting flags", pro_id=request.pro_id, error=str(e))
            raise InternalError("Failed to set flags") from e

        logger.info("Flags set", pro_id=request.pro_id, **profile.flags())
        return {"success": True, "flags": profile.flags()}

    async def add_badge(
        self, actor: Actor | None, request: BadgeRequest | dict[str, Any]
    ) -> dict[str, Any]:
        return await self._change_badge(actor, request, add=True)

    async def remove_badge(
        self, actor: Actor | None, request: BadgeRequest | dict[str, Any]
    ) -> dict[str, Any]:
        return await self._change_badge(actor, request, add=False)

    async def _change_badge(
        self, actor: Actor | None, request: BadgeRequest | dict[str, Any], *, add: bool
    ) -> dict[str, Any]:
        actor = require_admin(actor)
        request = parse_request(BadgeRequest, request)
        action = "add_badge" if add else "remove_badge"

        try:
            async with await self.repository.transaction() as conn:
                profile = await self._locked_profile(conn, request.pro_id)

                if add:
                    badges = profile.badges + (
                        [] if request.badge in profile.badges else [request.badge]
                    )
                else:
                    badges = [badge for badge in profile.badges if badge != request.badge]

                await self.repository.save_badges(conn, profile.pro_id, badges)
                await self.audit_log.record(
                    actor.uid,
                    action,
                    profile.pro_id,
                    before={"badges": profile.badges},
                    after={"badges": badges},
                    notes=f"{'Added' if add else 'Removed'} badge: {request.badge}",
                    connection=conn,
                )
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Error in {action}", pro_id=request.pro_id, error=str(e))
            raise InternalError(f"Failed to {action.replace('_', ' ')}") from e

        logger.info("Badges updated", pro_id=request.pro_id, action=action, badge=request.badge)
        return {"success": True, "badges": badges}

    async def recalculate(
        self, actor: Actor | None, request: RecalculateHealthRequest | dict[str, Any]
    ) -> dict[str, Any]:
        """Recompute and persist health for one professional on admin request."""
        actor = require_admin(actor)
        request = parse_request(RecalculateHealthRequest, request)

        try:
            result = await self.scorer.calculate(request.pro_id)

            async with await self.repository.transaction() as conn:
                profile = await self._locked_profile(conn, request.pro_id)
                badges = self.scorer.merge_badges(profile.badges, result.badges)
                health = result.to_record(self.clock())

                await self.repository.save_health(
                    profile.pro_id, health, badges, connection=conn
                )
                await self.audit_log.record(
                    actor.uid,
                    "recalculate_health",
                    profile.pro_id,
                    before={"health": profile.health, "badges": profile.badges},
                    after={"health": health, "badges": badges},
                    notes=f"Health recalculated: {result.score}/100",
                    connection=conn,
                )
        except ServiceError:
            raise
        except Exception as e:
            logger.error("Error recalculating health", pro_id=request.pro_id, error=str(e))
            raise InternalError("Failed to recalculate health") from e

        return {"success": True, "score": result.score, "badges": badges}

    async def _recalculate_one(self, profile: ProHealthProfile) -> None:
        result = await self.scorer.calculate(profile.pro_id)

        # Merge against the locked row, not the batch snapshot
        async with await self.repository.transaction() as conn:
            current = await self._locked_profile(conn, profile.pro_id)
            badges = self.scorer.merge_badges(current.badges, result.badges)
            await self.repository.save_health(
                current.pro_id, result.to_record(self.clock()), badges, connection=conn
            )

    async def recalculate_nightly(self, limit: int = NIGHTLY_BATCH_LIMIT) -> NightlyRunResult:
        """
        Recalculate marked and active professionals, at most ``limit`` per run.
        Each professional is an isolated failure unit.
        """
        profiles = await self.repository.pros_for_nightly(limit)
        logger.info("Starting nightly health recalculation", batch=len(profiles))

        results = await asyncio.gather(
            *(self._recalculate_one(profile) for profile in profiles),
            return_exceptions=True,
        )

        failed = 0
        for profile, outcome in zip(profiles, results, strict=True):
            if isinstance(outcome, Exception):
                failed += 1
                logger.error(
                    "Failed to update pro health", pro_id=profile.pro_id, error=str(outcome)
                )

        run = NightlyRunResult(processed=len(profiles) - failed, failed=failed)
        logger.info(
            "Nightly health recalculation completed", processed=run.processed, failed=run.failed
        )
        return run

    async def mark_for_recalculation(self, pro_id: str, reason: str) -> bool:
        """Flag a professional for the next nightly run. Never raises."""
        try:
            await self.repository.mark_for_recalculation(pro_id, reason)
            logger.info("Marked health score for recalculation", pro_id=pro_id, reason=reason)
            return True
        except Exception as e:
            logger.warning("Failed to mark health recalculation", pro_id=pro_id, error=str(e))
            return False


health_admin_service = HealthAdminService()
