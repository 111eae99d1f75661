"""
ETA engine.

Turns (origin, destination, via) into an ETA by asking the directions
provider, and never raises: a failure comes back as `EtaUnavailable`.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple, Union

from triptrack.app.core.clock import utcnow
from triptrack.app.core.config import settings
from triptrack.app.core.exceptions import RoutingUnavailableError
from triptrack.app.services.directions import DirectionsClient, Leg, LatLng
from triptrack.app.services.geo import distance_meters

logger = logging.getLogger("triptrack.eta")

REASON_NO_POSITION = "no_position"
REASON_TRIP_FINISHED = "trip_finished"
REASON_ROUTING_UNAVAILABLE = "routing_unavailable"


def duration_text(seconds: int) -> str:
    return f"{max(0, round(seconds / 60))} min"


def distance_text(meters: int) -> str:
    return f"{meters / 1000:.1f} km"


@dataclass
class EtaResult:
    duration_seconds: int
    distance_meters: int
    computed_at: datetime
    approximate: bool = False
    renderable_path: Optional[str] = None

    @property
    def duration_text(self) -> str:
        return duration_text(self.duration_seconds)

    @property
    def distance_text(self) -> str:
        return distance_text(self.distance_meters)


@dataclass
class EtaUnavailable:
    reason: str


EtaOutcome = Union[EtaResult, EtaUnavailable]


def truncate_waypoints(via: Sequence[LatLng], cap: int) -> Tuple[List[LatLng], bool]:
    """Keep the first `cap` waypoints in order; report whether any were dropped."""
    via = list(via)
    if len(via) <= cap:
        return via, False
    return via[:cap], True


def aggregate_legs(legs: Sequence[Leg]) -> Tuple[int, int]:
    """Total (duration_seconds, distance_meters) over all legs."""
    return (
        sum(leg.duration_seconds for leg in legs),
        sum(leg.distance_meters for leg in legs),
    )


def progress_percent(start: LatLng, end: LatLng, current: Optional[LatLng]) -> Optional[float]:
    """Share of the straight start-to-end distance already covered, 0-100."""
    if current is None:
        return None
    total = distance_meters(start, end)
    if total <= 0:
        return None
    remaining = distance_meters(current, end)
    percent = (1 - remaining / total) * 100
    return round(min(100.0, max(0.0, percent)), 1)


class EtaThrottle:
    """At most one ETA computation per `interval` seconds."""

    def __init__(self, interval: float):
        self.interval = interval
        self.last_computed_at: Optional[float] = None

    def allows(self, now: float) -> bool:
        return self.last_computed_at is None or now - self.last_computed_at >= self.interval

    def mark(self, now: float) -> None:
        self.last_computed_at = now

    def remaining(self, now: float) -> float:
        """Seconds until `allows` turns true."""
        if self.last_computed_at is None:
            return 0.0
        return max(0.0, self.interval - (now - self.last_computed_at))


class EtaEngine:
    def __init__(
        self,
        client: Optional[DirectionsClient] = None,
        waypoint_cap: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.client = client or DirectionsClient()
        self.waypoint_cap = waypoint_cap or settings.directions_waypoint_cap
        self.clock = clock

    async def compute_eta(
        self,
        origin: Optional[LatLng],
        destination: LatLng,
        via: Sequence[LatLng] = (),
        terminal: bool = False
    ) -> EtaOutcome:
        """
        Compute an ETA from origin to destination through `via`.

        No provider call is made when there is no origin or the trip is
        finished. Waypoints beyond the provider cap are dropped and the
        result is flagged approximate.
        """
        if terminal:
            return EtaUnavailable(REASON_TRIP_FINISHED)
        if origin is None:
            return EtaUnavailable(REASON_NO_POSITION)

        waypoints, truncated = truncate_waypoints(via, self.waypoint_cap)
        if truncated:
            logger.debug("Truncated %d waypoints to %d", len(via), self.waypoint_cap)

        try:
            directions = await self.client.route(origin, destination, waypoints)
        except RoutingUnavailableError as exc:
            logger.warning("ETA unavailable: %s", exc)
            return EtaUnavailable(REASON_ROUTING_UNAVAILABLE)

        duration, distance = aggregate_legs(directions.legs)
        return EtaResult(
            duration_seconds=duration,
            distance_meters=distance,
            computed_at=self.clock(),
            approximate=truncated,
            renderable_path=directions.renderable_path,
        )


_engine: Optional[EtaEngine] = None


def get_eta_engine() -> EtaEngine:
    """FastAPI dependency returning the process-wide engine."""
    global _engine
    if _engine is None:
        _engine = EtaEngine()
    return _engine
