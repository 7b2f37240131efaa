"""
Health repository - raw inputs for health scoring and the trust fields on
``pro_profiles``.
"""

import psycopg
from psycopg.types.json import Jsonb

from cleanmatch.db.helpers import execute_query, fetch_all, fetch_one, fetch_val
from cleanmatch.db.pool import get_db_transaction

from .domain.models import ChatMessage, ProHealthProfile

RECENT_CHATS_LIMIT = 50
RECENT_MESSAGES_LIMIT = 20


class HealthRepository:
    @staticmethod
    async def transaction():
        return await get_db_transaction()

    # ---- scoring inputs ----------------------------------------------

    @staticmethod
    async def abuse_event_types(pro_id: str) -> list[str]:
        rows = await fetch_all("SELECT type FROM abuse_events WHERE user_id = %s", (pro_id,))
        return [row["type"] for row in rows]

    @staticmethod
    async def review_stats(pro_id: str) -> tuple[float, int]:
        row = await fetch_one(
            """
            SELECT COALESCE(AVG(COALESCE(rating, 0)), 0) AS rating_avg,
                   COUNT(*) AS rating_count
            FROM reviews
            WHERE pro_id = %s
            """,
            (pro_id,),
        )
        return float(row["rating_avg"]), int(row["rating_count"])

    @staticmethod
    async def job_count(pro_id: str) -> int:
        count = await fetch_val("SELECT COUNT(*) FROM jobs WHERE pro_id = %s", (pro_id,))
        return int(count or 0)

    @staticmethod
    async def recent_chat_ids(pro_id: str, limit: int = RECENT_CHATS_LIMIT) -> list[str]:
        rows = await fetch_all(
            """
            SELECT id FROM chats
            WHERE %s = ANY(member_ids)
            ORDER BY last_message_at DESC NULLS LAST, created_at DESC
            LIMIT %s
            """,
            (pro_id, limit),
        )
        return [str(row["id"]) for row in rows]

    @staticmethod
    async def recent_messages(
        chat_id: str, limit: int = RECENT_MESSAGES_LIMIT
    ) -> list[ChatMessage]:
        """Most recent messages of a chat, returned oldest first."""
        rows = await fetch_all(
            """
            SELECT sender_id, created_at FROM chat_messages
            WHERE chat_id = %s
            ORDER BY created_at DESC
            LIMIT %s
            """,
            (chat_id, limit),
        )
        return [ChatMessage(str(row["sender_id"]), row["created_at"]) for row in reversed(rows)]

    # ---- profile trust fields ----------------------------------------

    @staticmethod
    async def get_profile(
        pro_id: str, *, connection: psycopg.AsyncConnection | None = None, lock: bool = False
    ) -> ProHealthProfile | None:
        query = """
            SELECT id, badges, health, soft_banned, hard_banned, flag_notes
            FROM pro_profiles WHERE id = %s
        """
        if lock:
            query += " FOR UPDATE"
        row = await fetch_one(query, (pro_id,), connection=connection)
        return ProHealthProfile.from_row(row) if row else None

    @staticmethod
    async def update_flags(conn: psycopg.AsyncConnection, profile: ProHealthProfile) -> None:
        await execute_query(
            """
            UPDATE pro_profiles
            SET soft_banned = %s, hard_banned = %s, flag_notes = %s,
                flags_updated_at = NOW(), updated_at = NOW()
            WHERE id = %s
            """,
            (profile.soft_banned, profile.hard_banned, profile.flag_notes, profile.pro_id),
            connection=conn,
        )

    @staticmethod
    async def save_badges(conn: psycopg.AsyncConnection, pro_id: str, badges: list[str]) -> None:
        await execute_query(
            "UPDATE pro_profiles SET badges = %s, updated_at = NOW() WHERE id = %s",
            (badges, pro_id),
            connection=conn,
        )

    @staticmethod
    async def save_health(
        pro_id: str,
        health: dict,
        badges: list[str],
        *,
        connection: psycopg.AsyncConnection | None = None,
    ) -> None:
        """Persist a health record and merged badges, clearing the recalculation marker."""
        await execute_query(
            """
            UPDATE pro_profiles
            SET health = %s, badges = %s,
                needs_health_recalc = false, health_recalc_reason = NULL,
                updated_at = NOW()
            WHERE id = %s
            """,
            (Jsonb(health), badges, pro_id),
            connection=connection,
        )

    @staticmethod
    async def mark_for_recalculation(pro_id: str, reason: str) -> None:
        await execute_query(
            """
            UPDATE pro_profiles
            SET needs_health_recalc = true, health_recalc_reason = %s, updated_at = NOW()
            WHERE id = %s
            """,
            (reason, pro_id),
        )

    @staticmethod
    async def pros_for_nightly(limit: int) -> list[ProHealthProfile]:
        """Marked professionals first, then active ones with the stalest health."""
        rows = await fetch_all(
            """
            SELECT id, badges, health, soft_banned, hard_banned, flag_notes
            FROM pro_profiles
            WHERE is_active = true OR needs_health_recalc = true
            ORDER BY needs_health_recalc DESC, (health ->> 'updated_at') NULLS FIRST, id
            LIMIT %s
            """,
            (limit,),
        )
        return [ProHealthProfile.from_row(row) for row in rows]


health_repository = HealthRepository()
