"""
Directions provider client.

Talks to a Google Directions-compatible JSON API. Every failure mode
(missing key, transport error, non-OK status, open circuit) surfaces as
`RoutingUnavailableError` so the ETA engine can degrade softly.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import httpx

from triptrack.app.core.config import settings
from triptrack.app.core.exceptions import RoutingUnavailableError
from triptrack.app.core.reliability import CircuitBreaker, CircuitOpenError, directions_circuit_breaker

logger = logging.getLogger("triptrack.directions")

LatLng = Tuple[float, float]


@dataclass
class Leg:
    duration_seconds: int
    distance_meters: int


@dataclass
class DirectionsResult:
    legs: List[Leg] = field(default_factory=list)
    renderable_path: Optional[str] = None  # Encoded overview polyline


def format_point(point: LatLng) -> str:
    return f"{point[0]},{point[1]}"


class DirectionsClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        breaker: CircuitBreaker = directions_circuit_breaker,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url or settings.directions_base_url
        self.api_key = api_key if api_key is not None else settings.directions_api_key
        self.timeout = timeout or settings.directions_timeout_seconds
        self.breaker = breaker
        self._transport = transport

    async def route(self, origin: LatLng, destination: LatLng, waypoints: Sequence[LatLng] = ()) -> DirectionsResult:
        """
        Driving route from origin to destination through the waypoints in order.

        Raises:
            RoutingUnavailableError: on any provider failure
        """
        if not self.api_key:
            raise RoutingUnavailableError("Directions API key is not configured")

        try:
            return await self.breaker.call(self._fetch, origin, destination, waypoints)
        except CircuitOpenError as exc:
            raise RoutingUnavailableError(str(exc)) from exc
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Directions request failed: %s", exc)
            raise RoutingUnavailableError(f"Directions request failed: {exc}") from exc

    async def _fetch(self, origin: LatLng, destination: LatLng, waypoints: Sequence[LatLng]) -> DirectionsResult:
        params = {
            "origin": format_point(origin),
            "destination": format_point(destination),
            "mode": "driving",
            "key": self.api_key,
        }
        if waypoints:
            params["waypoints"] = "|".join(format_point(point) for point in waypoints)

        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport) as client:
            response = await client.get("/directions/json", params=params)
            response.raise_for_status()
            payload = response.json()

        status = payload.get("status")
        if status != "OK" or not payload.get("routes"):
            raise RoutingUnavailableError(f"Directions status {status}")

        route = payload["routes"][0]
        legs = [
            Leg(
                duration_seconds=int(leg["duration"]["value"]),
                distance_meters=int(leg["distance"]["value"]),
            )
            for leg in route["legs"]
        ]
        return DirectionsResult(
            legs=legs,
            renderable_path=(route.get("overview_polyline") or {}).get("points"),
        )
