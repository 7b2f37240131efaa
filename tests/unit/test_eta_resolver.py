import asyncio

import pytest

from cleanmatch.features.matching.domain.models import GeoPoint
from cleanmatch.features.matching.eta.service import (
    EtaResolver,
    EtaUnavailableError,
    cache_key,
    heuristic_minutes,
)
from cleanmatch.services.routing.client import RouteEstimate, RoutingProviderError

ORIGIN = GeoPoint(52.0, 13.4)
DESTINATION = GeoPoint(53.0, 13.4)


class StubRoutingClient:
    def __init__(self, duration_seconds=601.0, error=None, delay=0.0):
        self.duration_seconds = duration_seconds
        self.error = error
        self.delay = delay
        self.calls = 0

    async def route(self, origin, destination):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return RouteEstimate(
            duration_seconds=self.duration_seconds, distance_meters=1200.0, provider="osrm"
        )


def test_cache_key_rounds_to_three_decimals():
    key = cache_key(GeoPoint(52.12345, 13.98765), GeoPoint(52.5, 13.4))
    assert key == "eta:52.123,13.988|52.500,13.400"


def test_heuristic_has_a_floor():
    assert heuristic_minutes(ORIGIN, ORIGIN) == 5
    assert heuristic_minutes(ORIGIN, DESTINATION) == 223


@pytest.mark.asyncio
async def test_provider_result_is_cached(fake_redis):
    routing = StubRoutingClient(duration_seconds=601.0)
    resolver = EtaResolver(routing_client=routing, cache=fake_redis, cache_ttl_seconds=600)

    first = await resolver.resolve(ORIGIN, DESTINATION)
    second = await resolver.resolve(ORIGIN, DESTINATION)

    assert first.minutes == 11
    assert first.source == "osrm"
    assert second.minutes == 11
    assert second.from_cache
    assert routing.calls == 1
    assert fake_redis.ttls[cache_key(ORIGIN, DESTINATION)] == 600


@pytest.mark.asyncio
async def test_provider_failure_falls_back_to_heuristic(fake_redis):
    routing = StubRoutingClient(error=RoutingProviderError("down", provider="osrm"))
    resolver = EtaResolver(routing_client=routing, cache=fake_redis)

    result = await resolver.resolve(ORIGIN, DESTINATION)

    assert result.source == "heuristic"
    assert result.minutes == 223
    assert fake_redis.store == {}


@pytest.mark.asyncio
async def test_strict_mode_raises_on_provider_failure(fake_redis):
    routing = StubRoutingClient(error=RoutingProviderError("down", provider="osrm"))
    resolver = EtaResolver(routing_client=routing, cache=fake_redis)

    with pytest.raises(EtaUnavailableError):
        await resolver.resolve(ORIGIN, DESTINATION, strict=True)


@pytest.mark.asyncio
async def test_slow_provider_times_out(fake_redis):
    routing = StubRoutingClient(delay=1.0)
    resolver = EtaResolver(routing_client=routing, cache=fake_redis, timeout_seconds=0.01)

    result = await resolver.resolve(ORIGIN, DESTINATION)

    assert result.source == "heuristic"


@pytest.mark.asyncio
async def test_malformed_cache_entry_is_ignored(fake_redis):
    await fake_redis.set_with_ttl(cache_key(ORIGIN, DESTINATION), "not-a-number", 600)
    routing = StubRoutingClient(duration_seconds=120.0)
    resolver = EtaResolver(routing_client=routing, cache=fake_redis)

    result = await resolver.resolve(ORIGIN, DESTINATION)

    assert result.minutes == 2
    assert routing.calls == 1
