"""
Routing provider client for drive-time estimates.
Queries Mapbox Directions when a token is configured and the public OSRM
router otherwise (or when Mapbox yields no usable route).
"""

from dataclasses import dataclass

import httpx

from cleanmatch.config import settings
from cleanmatch.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class RoutingProviderError(Exception):
    """Raised when no routing provider returns a usable route."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.response_data = response_data or {}


@dataclass(slots=True)
class RouteEstimate:
    duration_seconds: float
    distance_meters: float | None
    provider: str


class RoutingClient:
    """
    Thin async client over Mapbox Directions and OSRM.

    No retries here: the ETA resolver owns the overall time budget and the
    fallback heuristic, so a failed provider call is reported immediately.
    """

    def __init__(
        self,
        mapbox_token: str | None = None,
        mapbox_base_url: str | None = None,
        osrm_base_url: str | None = None,
        timeout_seconds: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.mapbox_token = mapbox_token if mapbox_token is not None else settings.MAPBOX_TOKEN
        self.mapbox_base_url = (mapbox_base_url or settings.MAPBOX_BASE_URL).rstrip("/")
        self.osrm_base_url = (osrm_base_url or settings.OSRM_BASE_URL).rstrip("/")
        timeout = timeout_seconds or settings.ETA_TIMEOUT_SECONDS
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
        )

    async def close(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _coordinates(origin: tuple[float, float], destination: tuple[float, float]) -> str:
        # Both providers take lng,lat pairs separated by ';'
        return f"{origin[1]},{origin[0]};{destination[1]},{destination[0]}"

    async def route(
        self, origin: tuple[float, float], destination: tuple[float, float]
    ) -> RouteEstimate:
        """
        Return a driving route estimate between two (lat, lng) points.

        Raises:
            RoutingProviderError: if every configured provider fails
        """
        if self.mapbox_token:
            try:
                return await self._mapbox_route(origin, destination)
            except (RoutingProviderError, httpx.HTTPError) as e:
                logger.warning("Mapbox routing failed, falling back to OSRM", error=str(e))

        try:
            return await self._osrm_route(origin, destination)
        except httpx.HTTPError as e:
            raise RoutingProviderError(f"OSRM request failed: {e}", provider="osrm") from e

    async def _mapbox_route(
        self, origin: tuple[float, float], destination: tuple[float, float]
    ) -> RouteEstimate:
        url = f"{self.mapbox_base_url}/{self._coordinates(origin, destination)}"
        response = await self._client.get(
            url,
            params={
                "alternatives": "false",
                "overview": "false",
                "access_token": self.mapbox_token,
            },
        )
        data = self._parse(response, "mapbox")
        route = self._first_route(data, "mapbox")
        return RouteEstimate(
            duration_seconds=float(route["duration"]),
            distance_meters=route.get("distance"),
            provider="mapbox",
        )

    async def _osrm_route(
        self, origin: tuple[float, float], destination: tuple[float, float]
    ) -> RouteEstimate:
        url = f"{self.osrm_base_url}/{self._coordinates(origin, destination)}"
        response = await self._client.get(url, params={"overview": "false"})
        data = self._parse(response, "osrm")
        if data.get("code") != "Ok":
            raise RoutingProviderError(
                f"OSRM routing failed: {data.get('message') or data.get('code')}",
                provider="osrm",
                response_data=data,
            )
        route = self._first_route(data, "osrm")
        return RouteEstimate(
            duration_seconds=float(route["duration"]),
            distance_meters=route.get("distance"),
            provider="osrm",
        )

    @staticmethod
    def _parse(response: httpx.Response, provider: str) -> dict:
        if not response.is_success:
            logger.warning(
                "Routing provider returned error status",
                provider=provider,
                status_code=response.status_code,
            )
            raise RoutingProviderError(
                f"{provider} API error (HTTP {response.status_code})",
                provider=provider,
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise RoutingProviderError(f"Invalid {provider} response: {e}", provider=provider) from e

    @staticmethod
    def _first_route(data: dict, provider: str) -> dict:
        routes = data.get("routes") or []
        if not routes or not isinstance(routes[0].get("duration"), int | float):
            raise RoutingProviderError(
                f"{provider} returned no usable route: {data.get('message', 'no routes')}",
                provider=provider,
                response_data=data,
            )
        return routes[0]
