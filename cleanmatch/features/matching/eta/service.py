"""
ETA resolver.

Resolves drive time in minutes between two points through the routing
provider, caching answers in Redis. Provider calls are bounded by an overall
timeout. Callers pick how a provider failure is handled: ``strict=True``
raises ``EtaUnavailableError`` so the caller can apply its own fallback,
otherwise a straight-line speed heuristic is returned.
"""

import asyncio
import math
from dataclasses import dataclass

from cleanmatch.config import settings
from cleanmatch.features.matching.domain.models import GeoPoint
from cleanmatch.features.matching.geo import haversine_km
from cleanmatch.infrastructure.observability.logging import get_logger
from cleanmatch.services.infrastructure.redis_client import redis_cache
from cleanmatch.services.routing.client import RoutingClient, RoutingProviderError

logger = get_logger(__name__)

FALLBACK_SPEED_KMH = 30.0
FALLBACK_MIN_MINUTES = 5
CACHE_PREFIX = "eta"


class EtaUnavailableError(Exception):
    """Raised in strict mode when no provider produced a route in time."""


@dataclass(slots=True)
class EtaResult:
    minutes: int
    source: str  # "cache", "mapbox", "osrm" or "heuristic"

    @property
    def from_cache(self) -> bool:
        return self.source == "cache"


def cache_key(origin: GeoPoint, destination: GeoPoint) -> str:
    # 3 decimals is roughly 100 m
    return (
        f"{CACHE_PREFIX}:{origin.lat:.3f},{origin.lng:.3f}"
        f"|{destination.lat:.3f},{destination.lng:.3f}"
    )


def heuristic_minutes(origin: GeoPoint, destination: GeoPoint) -> int:
    """Urban straight-line estimate at 30 km/h, never below 5 minutes."""
    km = haversine_km(origin, destination)
    return max(FALLBACK_MIN_MINUTES, math.ceil(km / FALLBACK_SPEED_KMH * 60))


class EtaResolver:
    def __init__(
        self,
        routing_client: RoutingClient | None = None,
        cache=None,
        timeout_seconds: float | None = None,
        cache_ttl_seconds: int | None = None,
    ):
        self._routing_client = routing_client
        self.cache = cache if cache is not None else redis_cache
        self.timeout_seconds = timeout_seconds or settings.ETA_TIMEOUT_SECONDS
        self.cache_ttl_seconds = cache_ttl_seconds or settings.ETA_CACHE_TTL_SECONDS

    @property
    def routing_client(self) -> RoutingClient:
        if self._routing_client is None:
            self._routing_client = RoutingClient()
        return self._routing_client

    async def _cached(self, key: str) -> int | None:
        raw = await self.cache.get(key)
        if raw is None:
            return None
        try:
            return int(raw)
        except (TypeError, ValueError):
            logger.warning("Discarding malformed ETA cache entry", key=key)
            return None

    async def resolve(
        self, origin: GeoPoint, destination: GeoPoint, *, strict: bool = False
    ) -> EtaResult:
        key = cache_key(origin, destination)

        cached = await self._cached(key)
        if cached is not None:
            logger.debug("ETA cache hit", key=key, minutes=cached)
            return EtaResult(minutes=cached, source="cache")

        try:
            estimate = await asyncio.wait_for(
                self.routing_client.route(origin.as_tuple(), destination.as_tuple()),
                timeout=self.timeout_seconds,
            )
        except (RoutingProviderError, TimeoutError) as e:
            logger.warning(
                "ETA provider unavailable",
                error=str(e) or type(e).__name__,
                strict=strict,
            )
            if strict:
                raise EtaUnavailableError(str(e) or "ETA provider timed out") from e
            return EtaResult(minutes=heuristic_minutes(origin, destination), source="heuristic")

        minutes = math.ceil(estimate.duration_seconds / 60)
        await self.cache.set_with_ttl(key, str(minutes), self.cache_ttl_seconds)

        logger.debug("ETA resolved", provider=estimate.provider, minutes=minutes)
        return EtaResult(minutes=minutes, source=estimate.provider)


eta_resolver = EtaResolver()
