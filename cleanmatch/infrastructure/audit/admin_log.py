"""
AdminActionLog - durable record of privileged operations.

Every admin mutation on a professional (ban flags, manual badges, health
recalculation) writes one row to ``admin_logs`` and one structured log line.

Usage:
    from cleanmatch.infrastructure.audit import admin_action_log

    await admin_action_log.record(
        actor_uid=actor.uid,
        action="set_flags",
        target_id=pro_id,
        before={"soft_banned": False},
        after={"soft_banned": True},
        notes="Repeated late cancellations",
    )

The row is written on the caller's connection when one is given, so the log
entry commits or rolls back together with the mutation it describes.
"""

from typing import Any

import psycopg
from psycopg.types.json import Jsonb

from cleanmatch.db.helpers import execute_query
from cleanmatch.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class AdminActionLog:
    @staticmethod
    async def record(
        actor_uid: str,
        action: str,
        target_id: str,
        *,
        target_type: str = "user",
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        notes: str | None = None,
        connection: psycopg.AsyncConnection | None = None,
    ) -> None:
        logger.info(
            "Admin action",
            admin_action=action,
            actor_uid=actor_uid,
            target_type=target_type,
            target_id=target_id,
        )

        await execute_query(
            """
            INSERT INTO admin_logs (
                actor_uid, action, target_type, target_id,
                before, after, notes, created_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, NOW())
            """,
            (
                actor_uid,
                action,
                target_type,
                target_id,
                Jsonb(before) if before is not None else None,
                Jsonb(after) if after is not None else None,
                notes,
            ),
            connection=connection,
        )


admin_action_log = AdminActionLog()
