"""
PostgreSQL connection pool (psycopg_pool).

Connections come out of the pool in autocommit mode with ``dict_row``
results; ``transaction()`` wraps one in an explicit BEGIN/COMMIT so row
locks taken with ``SELECT ... FOR UPDATE`` hold until the block exits.
"""

import asyncio
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from cleanmatch.config import settings
from cleanmatch.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

STATEMENT_TIMEOUT = "60s"
CLOSE_TIMEOUT_SECONDS = 30.0


async def _configure_connection(conn: psycopg.AsyncConnection) -> None:
    conn.row_factory = dict_row
    await conn.set_autocommit(True)
    await conn.execute(
        sql.SQL("SET application_name = {}").format(
            sql.Literal(f"cleanmatch-{settings.environment}")
        )
    )
    await conn.execute("SET timezone = 'UTC'")
    await conn.execute(
        sql.SQL("SET statement_timeout = {}").format(sql.Literal(STATEMENT_TIMEOUT))
    )


class DatabasePoolManager:
    def __init__(self):
        self.pool: AsyncConnectionPool | None = None
        self._closed = False

    @property
    def initialized(self) -> bool:
        return self.pool is not None

    async def initialize(self) -> None:
        """Open the pool and verify a round trip. Called once on startup."""
        if self.initialized:
            logger.warning("Database pool already initialized")
            return
        if self._closed:
            raise RuntimeError("Cannot reinitialize closed pool")

        config = settings.get_db_pool_config()
        pool = AsyncConnectionPool(
            conninfo=settings.SUPABASE_DB_URL,
            open=False,
            check=AsyncConnectionPool.check_connection,
            configure=_configure_connection,
            **config,
        )

        try:
            await pool.open(wait=True)
            self.pool = pool
            await self._check_connection()
        except Exception as e:
            logger.error("Failed to initialize database pool", error=str(e))
            self.pool = None
            await pool.close()
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

        logger.info(
            "Database pool initialized",
            min_size=config["min_size"],
            max_size=config["max_size"],
            timeout=config["timeout"],
        )

    async def close(self) -> None:
        if not self.initialized:
            return

        pool, self.pool = self.pool, None
        self._closed = True
        try:
            await asyncio.wait_for(pool.close(), timeout=CLOSE_TIMEOUT_SECONDS)
            logger.info("Database pool closed")
        except TimeoutError:
            logger.warning("Database pool close timed out")
        except Exception as e:
            logger.error("Error closing database pool", error=str(e))

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        if self._closed:
            raise RuntimeError("Database pool is closed")
        if not self.initialized:
            raise RuntimeError("Database pool not initialized. Call initialize() first.")

        async with self.pool.connection() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Connection inside BEGIN; commits on normal exit, rolls back on exception."""
        async with self.connection() as conn:
            async with conn.transaction():
                yield conn

    async def _check_connection(self) -> float:
        """Run ``SELECT 1`` and return the round trip in milliseconds."""
        start = time.perf_counter()
        async with self.connection() as conn:
            cursor = await conn.execute("SELECT 1 AS ok")
            row = await cursor.fetchone()
        if not row or row["ok"] != 1:
            raise RuntimeError("Database check returned an unexpected result")
        return round((time.perf_counter() - start) * 1000, 2)

    async def health_check(self) -> dict[str, Any]:
        if not self.initialized:
            return {"healthy": False, "service": "database_pool", "error": "Pool not initialized"}

        try:
            connection_time_ms = await self._check_connection()
        except Exception as e:
            logger.error("Database pool health check failed", error=str(e))
            return {
                "healthy": False,
                "service": "database_pool",
                "error": str(e),
                "error_type": type(e).__name__,
            }

        stats = self.pool.get_stats()
        return {
            "healthy": True,
            "service": "database_pool",
            "connection_time_ms": connection_time_ms,
            "pool_size": stats.get("pool_size", 0),
            "pool_available": stats.get("pool_available", 0),
            "requests_waiting": stats.get("requests_waiting", 0),
        }


db_pool = DatabasePoolManager()


async def get_db_connection():
    """Pooled connection context manager."""
    return db_pool.connection()


async def get_db_transaction():
    """Pooled connection context manager inside a transaction."""
    return db_pool.transaction()


async def db_health_check() -> dict[str, Any]:
    return await db_pool.health_check()
