"""
Dispute repository - disputes, their payments and the refund ledger.

List-valued dispute fields (evidence, pro_response, audit) are JSONB arrays
appended with ``||`` so concurrent appends under the row lock never drop
entries.
"""

from datetime import datetime

import psycopg
from psycopg.types.json import Jsonb

from cleanmatch.db.helpers import (
    DatabaseError,
    execute_query,
    execute_transaction,
    fetch_all,
    fetch_one,
    with_db_retry,
)
from cleanmatch.db.pool import get_db_transaction
from cleanmatch.errors import AlreadyExistsError

from .domain.models import (
    ACTIVE_STATUSES,
    STATUS_OPEN,
    STATUS_UNDER_REVIEW,
    AuditEntry,
    Dispute,
    EvidenceItem,
    Payment,
)

_ACTIVE = list(ACTIVE_STATUSES)


class DisputeRepository:
    @staticmethod
    async def transaction():
        return await get_db_transaction()

    # ---- reads -------------------------------------------------------

    @staticmethod
    async def get_payment(
        payment_id: str, *, connection: psycopg.AsyncConnection | None = None
    ) -> Payment | None:
        row = await fetch_one(
            "SELECT * FROM payments WHERE id = %s", (payment_id,), connection=connection
        )
        return Payment.from_row(row) if row else None

    @staticmethod
    async def get_job_parties(job_id: str) -> dict | None:
        return await fetch_one("SELECT id, customer_id, pro_id FROM jobs WHERE id = %s", (job_id,))

    @staticmethod
    async def has_active_dispute(job_id: str) -> bool:
        row = await fetch_one(
            "SELECT 1 AS found FROM disputes WHERE job_id = %s AND status = ANY(%s) LIMIT 1",
            (job_id, _ACTIVE),
        )
        return row is not None

    @staticmethod
    async def get_dispute(case_id: str) -> Dispute | None:
        row = await fetch_one("SELECT * FROM disputes WHERE id = %s", (case_id,))
        return Dispute.from_row(row) if row else None

    @staticmethod
    async def lock_dispute(conn: psycopg.AsyncConnection, case_id: str) -> Dispute | None:
        row = await fetch_one(
            "SELECT * FROM disputes WHERE id = %s FOR UPDATE", (case_id,), connection=conn
        )
        return Dispute.from_row(row) if row else None

    # ---- writes ------------------------------------------------------

    @staticmethod
    async def insert_dispute(dispute: Dispute) -> str:
        """
        Insert a new dispute. The partial unique index on active disputes per
        job turns a concurrent duplicate into AlreadyExistsError.
        """
        try:
            row = await fetch_one(
                """
                INSERT INTO disputes (
                    job_id, payment_id, customer_id, pro_id, status, reason,
                    description, requested_amount, awarded_amount, opened_at,
                    deadline_pro_response, deadline_decision, resolved_at,
                    evidence, pro_response, audit
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, NULL, %s, %s, %s, NULL, %s, %s, %s)
                RETURNING id
                """,
                (
                    dispute.job_id,
                    dispute.payment_id,
                    dispute.customer_id,
                    dispute.pro_id,
                    dispute.status,
                    dispute.reason,
                    dispute.description,
                    dispute.requested_amount,
                    dispute.opened_at,
                    dispute.deadline_pro_response,
                    dispute.deadline_decision,
                    Jsonb([item.to_json() for item in dispute.evidence]),
                    Jsonb([]),
                    Jsonb([entry.to_json() for entry in dispute.audit]),
                ),
            )
        except DatabaseError as e:
            if isinstance(e.__cause__, psycopg.errors.UniqueViolation):
                raise AlreadyExistsError("An active dispute already exists for this job") from e
            raise
        return str(row["id"])

    @staticmethod
    async def append_evidence(
        conn: psycopg.AsyncConnection,
        case_id: str,
        *,
        pro: bool,
        items: list[EvidenceItem],
        audit: list[AuditEntry],
        status: str | None = None,
    ) -> None:
        column = "pro_response" if pro else "evidence"
        await execute_query(
            f"""
            UPDATE disputes
            SET {column} = {column} || %s,
                audit = audit || %s,
                status = COALESCE(%s, status),
                updated_at = NOW()
            WHERE id = %s
            """,
            (
                Jsonb([item.to_json() for item in items]),
                Jsonb([entry.to_json() for entry in audit]),
                status,
                case_id,
            ),
            connection=conn,
        )

    @staticmethod
    async def apply_resolution(
        conn: psycopg.AsyncConnection,
        case_id: str,
        status: str,
        awarded_amount: float,
        resolved_at: datetime,
        audit: AuditEntry,
    ) -> None:
        await execute_query(
            """
            UPDATE disputes
            SET status = %s, awarded_amount = %s, resolved_at = %s,
                audit = audit || %s, updated_at = NOW()
            WHERE id = %s
            """,
            (status, awarded_amount, resolved_at, Jsonb([audit.to_json()]), case_id),
            connection=conn,
        )

    @staticmethod
    async def record_refund(
        conn: psycopg.AsyncConnection,
        *,
        payment_id: str,
        dispute_id: str,
        gateway_refund_id: str,
        amount: float,
        payment_status: str,
        created_at: datetime,
    ) -> None:
        """Bump the payment's refunded amount and append to the refund ledger."""
        await execute_query(
            """
            UPDATE payments
            SET status = %s, refunded_amount = COALESCE(refunded_amount, 0) + %s,
                updated_at = %s
            WHERE id = %s
            """,
            (payment_status, amount, created_at, payment_id),
            connection=conn,
        )
        await execute_query(
            """
            INSERT INTO refunds (
                payment_id, dispute_id, gateway_refund_id, amount, reason, status, created_at
            ) VALUES (%s, %s, %s, %s, 'dispute_resolution', 'completed', %s)
            """,
            (payment_id, dispute_id, gateway_refund_id, amount, created_at),
            connection=conn,
        )

    # ---- sweeps ------------------------------------------------------

    @staticmethod
    @with_db_retry()
    async def open_past_pro_deadline(now: datetime, limit: int) -> list[str]:
        rows = await fetch_all(
            """
            SELECT id FROM disputes
            WHERE status = 'open' AND deadline_pro_response <= %s
            ORDER BY deadline_pro_response
            LIMIT %s
            """,
            (now, limit),
        )
        return [str(row["id"]) for row in rows]

    @staticmethod
    @with_db_retry()
    async def active_past_decision_deadline(now: datetime, limit: int) -> list[str]:
        rows = await fetch_all(
            """
            SELECT id FROM disputes
            WHERE status = ANY(%s) AND deadline_decision <= %s
            ORDER BY deadline_decision
            LIMIT %s
            """,
            (_ACTIVE, now, limit),
        )
        return [str(row["id"]) for row in rows]

    @staticmethod
    async def apply_status_changes(
        changes: list[tuple[str, str, AuditEntry]],
    ) -> list[tuple[str, str]]:
        """
        Apply ``(case_id, status, audit entry)`` updates in order, in one transaction.

        Each update re-checks the current status, so a dispute resolved or
        answered since the sweep selected it is left alone. Returns the
        ``(case_id, status)`` pairs that were actually applied.
        """
        rowcounts = await execute_transaction(
            [
                (
                    """
                    UPDATE disputes
                    SET status = %s, audit = audit || %s, updated_at = NOW()
                    WHERE id = %s AND status = ANY(%s)
                    """,
                    (
                        status,
                        Jsonb([entry.to_json()]),
                        case_id,
                        [STATUS_OPEN] if status == STATUS_UNDER_REVIEW else _ACTIVE,
                    ),
                )
                for case_id, status, entry in changes
            ]
        )
        return [
            (case_id, status)
            for (case_id, status, _), updated in zip(changes, rowcounts)
            if updated
        ]

    @staticmethod
    @with_db_retry()
    async def under_review_due_between(
        start: datetime, end: datetime, limit: int
    ) -> list[tuple[str, datetime]]:
        rows = await fetch_all(
            """
            SELECT id, deadline_decision FROM disputes
            WHERE status = %s AND deadline_decision > %s AND deadline_decision <= %s
            ORDER BY deadline_decision
            LIMIT %s
            """,
            (STATUS_UNDER_REVIEW, start, end, limit),
        )
        return [(str(row["id"]), row["deadline_decision"]) for row in rows]


dispute_repository = DisputeRepository()
