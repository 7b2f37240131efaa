"""
Lead repository - jobs and leads persistence.
"""

from datetime import datetime

import psycopg

from cleanmatch.db.helpers import execute_query, fetch_one
from cleanmatch.db.pool import get_db_transaction
from cleanmatch.features.matching.domain.models import (
    JOB_ASSIGNED,
    JOB_OPEN,
    LEAD_ACCEPTED,
    LEAD_PENDING,
    Job,
    Lead,
    ScoredLead,
)


class LeadRepository:
    @staticmethod
    async def transaction():
        return await get_db_transaction()

    @staticmethod
    async def insert_job(job: Job) -> None:
        await execute_query(
            """
            INSERT INTO jobs (
                id, customer_id, title, services, lat, lng, address,
                preferred_at, duration_hours, budget, status, created_at, updated_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, NOW(), NOW())
            """,
            (
                job.id,
                job.customer_id,
                job.title,
                job.services,
                job.location.lat,
                job.location.lng,
                job.address,
                job.preferred_at,
                job.duration_hours,
                job.budget,
                JOB_OPEN,
            ),
        )

    @staticmethod
    async def insert_lead(
        job: Job, scored: ScoredLead, created_at: datetime, expires_at: datetime
    ) -> str:
        row = await fetch_one(
            """
            INSERT INTO leads (
                job_id, pro_id, customer_id, status, score, distance_km,
                eta_minutes, reasons, created_at, expires_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id
            """,
            (
                job.id,
                scored.candidate.pro_id,
                job.customer_id,
                LEAD_PENDING,
                scored.score,
                scored.distance_km,
                scored.eta_minutes,
                scored.reasons,
                created_at,
                expires_at,
            ),
        )
        return str(row["id"])

    @staticmethod
    async def lock_lead(conn: psycopg.AsyncConnection, lead_id: str) -> Lead | None:
        row = await fetch_one(
            "SELECT * FROM leads WHERE id = %s FOR UPDATE", (lead_id,), connection=conn
        )
        return Lead.from_row(row) if row else None

    @staticmethod
    async def lock_job(conn: psycopg.AsyncConnection, job_id: str) -> Job | None:
        row = await fetch_one(
            "SELECT * FROM jobs WHERE id = %s FOR UPDATE", (job_id,), connection=conn
        )
        return Job.from_row(row) if row else None

    @staticmethod
    async def set_lead_status(conn: psycopg.AsyncConnection, lead_id: str, status: str) -> None:
        await execute_query(
            """
            UPDATE leads
            SET status = %s,
                accepted_at = CASE WHEN %s THEN NOW() ELSE accepted_at END,
                updated_at = NOW()
            WHERE id = %s
            """,
            (status, status == LEAD_ACCEPTED, lead_id),
            connection=conn,
        )

    @staticmethod
    async def assign_job(conn: psycopg.AsyncConnection, job_id: str, pro_id: str) -> None:
        await execute_query(
            "UPDATE jobs SET status = %s, pro_id = %s, updated_at = NOW() WHERE id = %s",
            (JOB_ASSIGNED, pro_id, job_id),
            connection=conn,
        )


lead_repository = LeadRepository()
