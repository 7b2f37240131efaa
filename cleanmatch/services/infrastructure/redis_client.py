"""
Redis cache client.

Backs the ETA cache. The cache is an optimisation only: every read or write
failure is logged and reported as a miss, never raised to callers.
"""

import asyncio
import time
from collections.abc import Callable
from urllib.parse import urlparse

import redis.asyncio as redis

from cleanmatch.config import settings
from cleanmatch.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_CONNECTIONS = 20
SOCKET_TIMEOUT_SECONDS = 5
RECONNECT_BACKOFF_SECONDS = 30


def upstash_redis_url(rest_url: str, token: str) -> str:
    """Native-protocol TLS URL for an Upstash database given its REST endpoint."""
    rest_url = rest_url.strip()
    host = urlparse(rest_url).hostname or urlparse(f"https://{rest_url}").hostname
    if not host:
        raise ValueError("UPSTASH_REDIS_REST_URL does not include a valid hostname")
    return f"rediss://default:{token}@{host}:6379"


class RedisCache:
    def __init__(self, url: str | None = None, clock: Callable[[], float] = time.monotonic):
        self._url = url
        self._clock = clock
        self._lock = asyncio.Lock()
        self._retry_after = 0.0
        self.client: redis.Redis | None = None

    @property
    def initialized(self) -> bool:
        return self.client is not None

    async def initialize(self) -> None:
        """
        Connect and ping. After a failed attempt further calls fail fast for
        ``RECONNECT_BACKOFF_SECONDS`` instead of paying the connect timeout again.
        """
        if self.initialized:
            return

        async with self._lock:
            if self.initialized:
                return
            if self._clock() < self._retry_after:
                raise RuntimeError("Redis unavailable, reconnect backoff in effect")
            await self._connect()

    async def _connect(self) -> None:
        url = self._url or upstash_redis_url(
            settings.UPSTASH_REDIS_REST_URL, settings.UPSTASH_REDIS_REST_TOKEN
        )
        client = redis.Redis.from_url(
            url,
            max_connections=MAX_CONNECTIONS,
            socket_connect_timeout=SOCKET_TIMEOUT_SECONDS,
            socket_timeout=SOCKET_TIMEOUT_SECONDS,
            retry_on_timeout=True,
            health_check_interval=30,
            decode_responses=True,
        )
        try:
            await client.ping()
        except Exception as e:
            await client.aclose()
            self._retry_after = self._clock() + RECONNECT_BACKOFF_SECONDS
            logger.error(
                "Failed to initialize Redis cache",
                error=str(e),
                retry_in_seconds=RECONNECT_BACKOFF_SECONDS,
            )
            raise RuntimeError("Redis initialization failed") from e

        self.client = client
        logger.info("Redis cache initialized", max_connections=MAX_CONNECTIONS)

    async def close(self) -> None:
        if not self.initialized:
            return
        try:
            await self.client.aclose()
            logger.info("Redis cache closed")
        except Exception as e:
            logger.error("Error closing Redis cache", error=str(e))
        finally:
            self.client = None

    async def ping(self) -> bool:
        try:
            await self.initialize()
            return bool(await self.client.ping())
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def get(self, key: str) -> str | None:
        try:
            await self.initialize()
            return await self.client.get(key) or None
        except Exception as e:
            logger.warning("Redis GET failed", key=key, error=str(e))
            return None

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        try:
            await self.initialize()
            if ttl_s:
                return bool(await self.client.setex(key, ttl_s, value))
            return bool(await self.client.set(key, value))
        except Exception as e:
            logger.warning("Redis SET failed", key=key, error=str(e))
            return False

    async def delete(self, key: str) -> bool:
        try:
            await self.initialize()
            return await self.client.delete(key) > 0
        except Exception as e:
            logger.warning("Redis DELETE failed", key=key, error=str(e))
            return False


redis_cache = RedisCache()
