"""
Chat repository - job chats and system messages.
"""

from typing import Any

import psycopg
from psycopg.types.json import Jsonb

from cleanmatch.db.helpers import fetch_one
from cleanmatch.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SYSTEM_SENDER = "system"


class ChatRepository:
    @staticmethod
    async def ensure_chat(
        job_id: str,
        customer_id: str,
        pro_id: str,
        *,
        connection: psycopg.AsyncConnection | None = None,
    ) -> tuple[str, bool]:
        """
        Return ``(chat_id, existed)`` for the job chat between both parties,
        creating it when missing.
        """
        member_ids = sorted([customer_id, pro_id])

        created = await fetch_one(
            """
            INSERT INTO chats (job_id, member_ids, created_at)
            VALUES (%s, %s, NOW())
            ON CONFLICT (job_id) DO NOTHING
            RETURNING id
            """,
            (job_id, member_ids),
            connection=connection,
        )
        if created:
            logger.info("Chat created", job_id=job_id, chat_id=str(created["id"]))
            return str(created["id"]), False

        existing = await fetch_one(
            "SELECT id FROM chats WHERE job_id = %s", (job_id,), connection=connection
        )
        return str(existing["id"]), True

    @staticmethod
    async def post_system_message(
        job_id: str, text: str, metadata: dict[str, Any] | None = None
    ) -> str | None:
        """Append a system message to the job chat. Returns None when the job has no chat."""
        row = await fetch_one(
            """
            WITH chat AS (SELECT id FROM chats WHERE job_id = %s)
            INSERT INTO chat_messages (chat_id, sender_id, type, text, metadata, created_at)
            SELECT chat.id, %s, 'system', %s, %s, NOW() FROM chat
            RETURNING id
            """,
            (job_id, SYSTEM_SENDER, text, Jsonb(metadata or {})),
        )
        if row is None:
            logger.info("No chat for job, system message skipped", job_id=job_id)
            return None
        return str(row["id"])


chat_repository = ChatRepository()
