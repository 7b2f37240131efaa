"""
Dispute lifecycle service.

Operations raise named ServiceError subclasses for every precondition
violation; anything unexpected is logged and surfaced as InternalError.
Push notifications and chat messages are best-effort and run only after the
state change they describe has committed.

Resolution is a saga: the gateway refund runs first, outside any database
transaction, and the dispute, payment and refund ledger are then updated in
one transaction. A failure between the two steps leaves a refund without
bookkeeping; the idempotency key makes a retry of the whole resolution safe.
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from cleanmatch.auth.verify import Actor, require_actor, require_admin
from cleanmatch.errors import (
    AlreadyExistsError,
    DeadlineExceededError,
    FailedPreconditionError,
    InternalError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    ServiceError,
)
from cleanmatch.features.disputes.domain.models import (
    DISPUTABLE_PAYMENT_STATUSES,
    STATUS_EXPIRED,
    STATUS_OPEN,
    STATUS_UNDER_REVIEW,
    AuditEntry,
    Dispute,
    EvidenceItem,
    SweepResult,
    build_resolution_plan,
    payment_status_after_refund,
)
from cleanmatch.features.disputes.repository import dispute_repository
from cleanmatch.infrastructure.observability.logging import get_logger
from cleanmatch.models.api.dispute_request import (
    AddEvidenceRequest,
    OpenDisputeRequest,
    ResolveDisputeRequest,
)
from cleanmatch.models.api.validation import parse_request
from cleanmatch.repositories.chat_repository import chat_repository
from cleanmatch.services.notifications.push import push_notifier
from cleanmatch.services.payments.gateway import stripe_refund_gateway, to_minor_units

logger = get_logger(__name__)

DISPUTE_WINDOW = timedelta(hours=24)
PRO_RESPONSE_WINDOW = timedelta(hours=24)
DECISION_WINDOW = timedelta(hours=48)
MODERATION_WARNING_WINDOW = timedelta(hours=12)
EXPIRY_BATCH_LIMIT = 100
MODERATION_BATCH_LIMIT = 50

RESOLUTION_MESSAGES = {
    "refund_full": (
        "Your dispute was resolved with a full refund",
        "The dispute was resolved with a full refund to the customer",
    ),
    "refund_partial": (
        "Your dispute was resolved with a partial refund of €{amount:g}",
        "The dispute was resolved with a partial refund of €{amount:g}",
    ),
    "no_refund": (
        "Your dispute was resolved with no refund",
        "The dispute was resolved with no refund",
    ),
}
DEFAULT_RESOLUTION_MESSAGE = ("Your dispute has been resolved", "The dispute has been resolved")


def utc_now() -> datetime:
    return datetime.now(UTC)


def refund_idempotency_key(case_id: str) -> str:
    return f"dispute-{case_id}-refund"


class DisputeService:
    def __init__(
        self,
        repository=None,
        gateway=None,
        notifier=None,
        chats=None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository or dispute_repository
        self.gateway = gateway or stripe_refund_gateway
        self.notifier = notifier or push_notifier
        self.chats = chats or chat_repository
        self.clock = clock

    # ------------------------------------------------------------------
    # Best-effort side effects
    # ------------------------------------------------------------------

    async def _notify(self, recipient_id: str | None, title: str, body: str, data: dict) -> None:
        if not recipient_id:
            return
        try:
            await self.notifier.send(recipient_id, title, body, data)
        except Exception as e:
            logger.warning(
                "Failed to send dispute notification", recipient_id=recipient_id, error=str(e)
            )

    async def _post_chat(self, job_id: str, text: str, metadata: dict) -> None:
        try:
            await self.chats.post_system_message(job_id, text, metadata)
        except Exception as e:
            logger.warning("Failed to add dispute chat message", job_id=job_id, error=str(e))

    # ------------------------------------------------------------------
    # Open
    # ------------------------------------------------------------------

    async def open_dispute(
        self, actor: Actor | None, request: OpenDisputeRequest | dict[str, Any]
    ) -> dict[str, Any]:
        actor = require_actor(actor)
        request = parse_request(OpenDisputeRequest, request)

        try:
            logger.info(
                "Opening dispute",
                job_id=request.job_id,
                payment_id=request.payment_id,
                reason=request.reason,
            )
            now = self.clock()

            payment = await self.repository.get_payment(request.payment_id)
            if payment is None:
                raise NotFoundError("Payment not found")
            if payment.customer_id != actor.uid:
                raise PermissionDeniedError("Only the customer can open a dispute")
            if payment.job_id != request.job_id:
                raise InvalidArgumentError("Payment does not belong to this job")
            if payment.status not in DISPUTABLE_PAYMENT_STATUSES:
                raise FailedPreconditionError("Payment must be captured to open dispute")
            if payment.captured_at is None:
                raise FailedPreconditionError("Payment has no capture time")
            if now > payment.captured_at + DISPUTE_WINDOW:
                raise DeadlineExceededError(
                    "Dispute must be opened within 24 hours of payment capture"
                )

            if await self.repository.has_active_dispute(request.job_id):
                raise AlreadyExistsError("An active dispute already exists for this job")

            job = await self.repository.get_job_parties(request.job_id)
            if job is None:
                raise NotFoundError("Job not found")
            if str(job.get("customer_id")) != actor.uid:
                raise PermissionDeniedError("Only the job's customer can open a dispute")
            pro_id = job.get("pro_id") or payment.pro_id

            dispute = Dispute(
                id="",
                job_id=request.job_id,
                payment_id=request.payment_id,
                customer_id=actor.uid,
                pro_id=str(pro_id) if pro_id else None,
                status=STATUS_OPEN,
                reason=request.reason,
                description=request.description,
                requested_amount=request.requested_amount,
                opened_at=now,
                deadline_pro_response=now + PRO_RESPONSE_WINDOW,
                deadline_decision=now + DECISION_WINDOW,
                evidence=[EvidenceItem.from_path(path, now) for path in request.media_paths],
                audit=[
                    AuditEntry(
                        by="customer",
                        action="case_opened",
                        note=f"Dispute opened for {request.reason}",
                        at=now,
                    )
                ],
            )
            case_id = await self.repository.insert_dispute(dispute)
        except ServiceError:
            raise
        except Exception as e:
            logger.error("Error opening dispute", job_id=request.job_id, error=str(e))
            raise InternalError("Failed to open dispute") from e

        await self._notify(
            dispute.pro_id,
            "New Dispute Opened",
            "A customer has opened a dispute for one of your jobs",
            {"type": "dispute", "case_id": case_id, "job_id": request.job_id},
        )
        await self._post_chat(
            request.job_id, f"Dispute opened: {request.reason}", {"dispute_id": case_id}
        )

        logger.info("Dispute opened", case_id=case_id, job_id=request.job_id)
        return {"case_id": case_id}

    # ------------------------------------------------------------------
    # Evidence
    # ------------------------------------------------------------------

    async def add_evidence(
        self, actor: Actor | None, request: AddEvidenceRequest | dict[str, Any]
    ) -> dict[str, Any]:
        actor = require_actor(actor)
        request = parse_request(AddEvidenceRequest, request)
        if not request.text and not request.media_paths:
            raise InvalidArgumentError("Must provide text or media evidence")

        is_pro = request.role == "pro"

        try:
            now = self.clock()
            items: list[EvidenceItem] = []
            if request.text:
                items.append(EvidenceItem(type="text", text=request.text, created_at=now))
            items.extend(EvidenceItem.from_path(path, now) for path in request.media_paths)

            note = (
                f"Added {len(items)} evidence items"
                if request.text
                else f"Added {len(request.media_paths)} media files"
            )
            audit = [
                AuditEntry(
                    by=request.role, action=f"{request.role}_evidence_added", note=note, at=now
                )
            ]

            async with await self.repository.transaction() as conn:
                dispute = await self.repository.lock_dispute(conn, request.case_id)
                if dispute is None:
                    raise NotFoundError("Dispute not found")

                party = dispute.pro_id if is_pro else dispute.customer_id
                if party != actor.uid:
                    raise PermissionDeniedError("Access denied")
                if not dispute.is_active:
                    raise FailedPreconditionError("Cannot add evidence to resolved dispute")

                new_status = None
                if is_pro and not dispute.pro_response:
                    new_status = STATUS_UNDER_REVIEW
                    audit.append(
                        AuditEntry(
                            by="system",
                            action="status_changed",
                            note="Status changed to under_review after pro response",
                            at=now,
                        )
                    )

                await self.repository.append_evidence(
                    conn,
                    request.case_id,
                    pro=is_pro,
                    items=items,
                    audit=audit,
                    status=new_status,
                )
        except ServiceError:
            raise
        except Exception as e:
            logger.error("Error adding evidence", case_id=request.case_id, error=str(e))
            raise InternalError("Failed to add evidence") from e

        if is_pro:
            await self._notify(
                dispute.customer_id,
                "Pro Response Added",
                "The pro has responded to the dispute",
                {"type": "dispute_update", "case_id": request.case_id, "role": request.role},
            )
        else:
            await self._notify(
                dispute.pro_id,
                "New Customer Evidence",
                "The customer has added new evidence to the dispute",
                {"type": "dispute_update", "case_id": request.case_id, "role": request.role},
            )

        status = new_status or dispute.status
        logger.info("Evidence added", case_id=request.case_id, role=request.role, status=status)
        return {"success": True, "status": status}

    # ------------------------------------------------------------------
    # Resolve
    # ------------------------------------------------------------------

    async def resolve_dispute(
        self, actor: Actor | None, request: ResolveDisputeRequest | dict[str, Any]
    ) -> dict[str, Any]:
        require_admin(actor)
        request = parse_request(ResolveDisputeRequest, request)
        if request.decision == "refund_partial" and (request.amount is None or request.amount <= 0):
            raise InvalidArgumentError("Partial refund requires valid amount")

        case_id = request.case_id
        try:
            logger.info(
                "Resolving dispute", case_id=case_id, decision=request.decision, amount=request.amount
            )

            dispute = await self.repository.get_dispute(case_id)
            if dispute is None:
                raise NotFoundError("Dispute not found")
            if not dispute.is_active:
                raise FailedPreconditionError("Dispute is already resolved")

            payment = await self.repository.get_payment(dispute.payment_id)
            if payment is None:
                raise NotFoundError("Payment not found")

            plan = build_resolution_plan(request.decision, request.amount, payment)

            refund_id = None
            if plan.refund_amount > 0:
                try:
                    refund = await self.gateway.create_refund(
                        payment.payment_intent_ref,
                        to_minor_units(plan.refund_amount),
                        "requested_by_customer",
                        {"dispute_id": case_id, "payment_id": payment.id},
                        refund_idempotency_key(case_id),
                    )
                except Exception as e:
                    logger.error("Gateway refund failed", case_id=case_id, error=str(e))
                    raise InternalError("Failed to process refund") from e
                refund_id = refund.refund_id
                logger.info(
                    "Gateway refund created",
                    case_id=case_id,
                    refund_id=refund_id,
                    amount=plan.refund_amount,
                )

            now = self.clock()
            note = (
                f"Decision: {request.decision}, refund: €{plan.refund_amount:g}"
                if plan.refund_amount > 0
                else f"Decision: {request.decision}"
            )

            async with await self.repository.transaction() as conn:
                locked = await self.repository.lock_dispute(conn, case_id)
                if locked is None or not locked.is_active:
                    if refund_id:
                        logger.error(
                            "Dispute changed after refund was issued",
                            case_id=case_id,
                            refund_id=refund_id,
                        )
                    raise FailedPreconditionError("Dispute is already resolved")

                await self.repository.apply_resolution(
                    conn,
                    case_id,
                    plan.final_status,
                    plan.awarded_amount,
                    now,
                    AuditEntry(by="admin", action="decision_made", note=note, at=now),
                )
                if refund_id:
                    await self.repository.record_refund(
                        conn,
                        payment_id=payment.id,
                        dispute_id=case_id,
                        gateway_refund_id=refund_id,
                        amount=plan.refund_amount,
                        payment_status=payment_status_after_refund(
                            payment.refunded_amount + plan.refund_amount, payment.amount_gross
                        ),
                        created_at=now,
                    )
        except ServiceError:
            raise
        except Exception as e:
            logger.error("Error resolving dispute", case_id=case_id, error=str(e))
            raise InternalError("Failed to resolve dispute") from e

        customer_body, pro_body = RESOLUTION_MESSAGES.get(
            request.decision, DEFAULT_RESOLUTION_MESSAGE
        )
        data = {"type": "dispute_resolved", "case_id": case_id, "decision": request.decision}
        await asyncio.gather(
            self._notify(
                dispute.customer_id,
                "Dispute Resolved",
                customer_body.format(amount=plan.refund_amount),
                data,
            ),
            self._notify(
                dispute.pro_id,
                "Dispute Resolved",
                pro_body.format(amount=plan.refund_amount),
                data,
            ),
        )
        chat_text = (
            f"Dispute resolved: {request.decision} - Refund: €{plan.refund_amount:g}"
            if plan.refund_amount > 0
            else f"Dispute resolved: {request.decision}"
        )
        await self._post_chat(
            dispute.job_id,
            chat_text,
            {
                "dispute_id": case_id,
                "decision": request.decision,
                "refund_amount": plan.refund_amount,
            },
        )

        logger.info(
            "Dispute resolved",
            case_id=case_id,
            decision=request.decision,
            refund_amount=plan.refund_amount,
        )
        return {
            "success": True,
            "status": plan.final_status,
            "refund_amount": plan.refund_amount,
            "awarded_amount": plan.awarded_amount,
            "refund_id": refund_id,
        }

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    async def expire_disputes(self, now: datetime | None = None) -> SweepResult:
        """
        Force review of open disputes past the pro-response deadline and expire
        active disputes past the decision deadline.

        Both queries see the same ``now`` and are capped independently; all
        updates commit together. A dispute matching both ends up expired with
        both audit entries.
        """
        now = now or self.clock()
        logger.info("Running dispute expiry sweep", now=now.isoformat())

        to_review = await self.repository.open_past_pro_deadline(now, EXPIRY_BATCH_LIMIT)
        to_expire = await self.repository.active_past_decision_deadline(now, EXPIRY_BATCH_LIMIT)

        changes = [
            (
                case_id,
                STATUS_UNDER_REVIEW,
                AuditEntry(
                    by="system",
                    action="auto_status_change",
                    note="Status changed to under_review - pro response deadline passed",
                    at=now,
                ),
            )
            for case_id in to_review
        ] + [
            (
                case_id,
                STATUS_EXPIRED,
                AuditEntry(
                    by="system",
                    action="auto_expired",
                    note="Dispute expired - decision deadline passed",
                    at=now,
                ),
            )
            for case_id in to_expire
        ]

        applied = await self.repository.apply_status_changes(changes) if changes else []
        skipped = len(changes) - len(applied)
        if skipped:
            logger.info("Sweep skipped disputes changed since selection", skipped=skipped)

        applied_statuses = [status for _, status in applied]
        result = SweepResult(
            moved_to_review=applied_statuses.count(STATUS_UNDER_REVIEW),
            expired=applied_statuses.count(STATUS_EXPIRED),
        )
        logger.info(
            "Dispute expiry sweep completed",
            moved_to_review=result.moved_to_review,
            expired=result.expired,
        )
        return result

    async def remind_moderation(self, now: datetime | None = None) -> int:
        """Log under-review disputes whose decision deadline falls within 12 hours."""
        now = now or self.clock()
        urgent = await self.repository.under_review_due_between(
            now, now + MODERATION_WARNING_WINDOW, MODERATION_BATCH_LIMIT
        )

        if not urgent:
            logger.info("No disputes need moderation reminders")
            return 0

        logger.warning(
            "Urgent disputes require moderation",
            count=len(urgent),
            disputes=[
                {"case_id": case_id, "deadline": deadline.isoformat()}
                for case_id, deadline in urgent
            ],
        )
        return len(urgent)


dispute_service = DisputeService()
