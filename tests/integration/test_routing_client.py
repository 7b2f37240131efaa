import re

import httpx
import pytest

from cleanmatch.services.routing.client import RoutingClient, RoutingProviderError

MAPBOX = "https://mapbox.test/directions/v5/mapbox/driving"
OSRM = "https://osrm.test/route/v1/driving"
ORIGIN = (52.5, 13.4)
DESTINATION = (52.6, 13.5)


def _client(token="pk.test"):
    return RoutingClient(
        mapbox_token=token,
        mapbox_base_url=MAPBOX,
        osrm_base_url=OSRM,
        timeout_seconds=2,
        client=httpx.AsyncClient(),
    )


@pytest.mark.asyncio
async def test_mapbox_is_preferred_when_configured(httpx_mock):
    httpx_mock.add_response(
        url=re.compile(re.escape(MAPBOX) + r"/.*"),
        json={"routes": [{"duration": 754.2, "distance": 9100.0}]},
    )

    estimate = await _client().route(ORIGIN, DESTINATION)

    assert estimate.provider == "mapbox"
    assert estimate.duration_seconds == 754.2
    request = httpx_mock.get_requests()[0]
    assert request.url.path.endswith("/13.4,52.5;13.5,52.6")
    assert request.url.params["access_token"] == "pk.test"


@pytest.mark.asyncio
async def test_mapbox_failure_falls_back_to_osrm(httpx_mock):
    httpx_mock.add_response(url=re.compile(re.escape(MAPBOX) + r"/.*"), status_code=500)
    httpx_mock.add_response(
        url=re.compile(re.escape(OSRM) + r"/.*"),
        json={"code": "Ok", "routes": [{"duration": 600, "distance": 5000}]},
    )

    estimate = await _client().route(ORIGIN, DESTINATION)

    assert estimate.provider == "osrm"
    assert estimate.duration_seconds == 600


@pytest.mark.asyncio
async def test_osrm_only_without_token(httpx_mock):
    httpx_mock.add_response(
        url=re.compile(re.escape(OSRM) + r"/.*"),
        json={"code": "Ok", "routes": [{"duration": 120, "distance": 800}]},
    )

    estimate = await _client(token="").route(ORIGIN, DESTINATION)

    assert estimate.provider == "osrm"
    assert len(httpx_mock.get_requests()) == 1


@pytest.mark.asyncio
async def test_osrm_no_route_is_a_provider_error(httpx_mock):
    httpx_mock.add_response(
        url=re.compile(re.escape(OSRM) + r"/.*"),
        json={"code": "NoRoute", "message": "Impossible route"},
    )

    with pytest.raises(RoutingProviderError) as exc_info:
        await _client(token="").route(ORIGIN, DESTINATION)

    assert exc_info.value.provider == "osrm"


@pytest.mark.asyncio
async def test_transport_error_is_wrapped(httpx_mock):
    httpx_mock.add_exception(httpx.ConnectError("refused"), url=re.compile(re.escape(OSRM) + r"/.*"))

    with pytest.raises(RoutingProviderError):
        await _client(token="").route(ORIGIN, DESTINATION)
