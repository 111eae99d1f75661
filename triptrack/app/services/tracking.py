"""
Tracking view assembly.

Loads everything a booking's tracking view needs (trip, effective stops,
destination, current position) and renders it, with or without an ETA.
Used by the HTTP snapshot, the driver manifest and tracking sessions.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from triptrack.app.core.clock import utcnow
from triptrack.app.core.config import settings
from triptrack.app.models.booking import Booking
from triptrack.app.models.stop import Stop
from triptrack.app.models.trip import Trip
from triptrack.app.models.trip_enums import TripType, TERMINAL_BOOKING_STATUSES, TERMINAL_TRIP_STATUSES
from triptrack.app.schemas.route import StopResponse
from triptrack.app.schemas.tracking import (
    EtaResponse,
    PassengerEta,
    PassengerManifest,
    PointResponse,
    PositionResponse,
    TrackingMessage,
    TrackingView,
)
from triptrack.app.services.booking_ledger import get_booking, list_trip_bookings
from triptrack.app.services.cache import CacheService
from triptrack.app.services.directions import LatLng
from triptrack.app.services.eta_engine import EtaEngine, EtaOutcome, EtaResult, EtaUnavailable, progress_percent
from triptrack.app.services.geo import distance_meters
from triptrack.app.services.location_ingestion import Position, resolve_current_position
from triptrack.app.services.realtime import request_topic, route_topic, trip_topic
from triptrack.app.services.topology import load_effective_stops
from triptrack.app.services.trip_scheduler import get_trip


@dataclass(frozen=True)
class Point:
    name: Optional[str]
    lat: float
    lng: float

    @property
    def coordinates(self) -> LatLng:
        return (self.lat, self.lng)


@dataclass
class TrackingContext:
    booking: Booking
    trip: Trip
    stops: List[Stop]
    destination: Point
    via: List[LatLng]
    position: Optional[Position]

    @property
    def terminal(self) -> bool:
        return (
            self.booking.status in TERMINAL_BOOKING_STATUSES
            or self.trip.status in TERMINAL_TRIP_STATUSES
        )

    @property
    def origin(self) -> Optional[LatLng]:
        return self.position.coordinates if self.position else None

    @property
    def route_signature(self):
        """Changes whenever the destination or the via list changes."""
        return (self.destination.coordinates, tuple(self.via))

    @property
    def topics(self) -> Tuple[str, ...]:
        topics = [request_topic(self.booking.request_id), trip_topic(self.trip.id)]
        if self.trip.route_id:
            topics.append(route_topic(self.trip.route_id))
        return tuple(topics)


def trip_start(trip: Trip) -> Point:
    return Point(trip.start_name, trip.start_lat, trip.start_lng)


def trip_end(trip: Trip) -> Point:
    return Point(trip.end_name, trip.end_lat, trip.end_lng)


def resolve_destination(trip: Trip, booking: Booking, stops: List[Stop]) -> Tuple[Point, List[LatLng]]:
    """
    Where this passenger's ETA points to, and the stops driven through first.

    Arrival trips head for the chosen dropoff stop, departure trips for the
    chosen pickup stop. Without a choice (or with a stop the trip no longer
    serves) arrival trips use the end anchor through every stop, departure
    trips the start anchor directly.
    """
    if trip.trip_type == TripType.ARRIVAL:
        chosen_id = booking.selected_dropoff_stop_id
    else:
        chosen_id = booking.selected_pickup_stop_id

    chosen = next((stop for stop in stops if stop.id == chosen_id), None) if chosen_id else None
    if chosen is not None:
        via = [(stop.lat, stop.lng) for stop in stops if stop.order_index < chosen.order_index]
        return Point(chosen.name, chosen.lat, chosen.lng), via

    if trip.trip_type == TripType.ARRIVAL:
        return trip_end(trip), [(stop.lat, stop.lng) for stop in stops]
    return trip_start(trip), []


async def load_tracking_context(
    db: AsyncSession,
    request_id: int,
    now: Optional[datetime] = None
) -> TrackingContext:
    """
    Re-fetch everything for a request's view.

    Raises:
        ResourceNotFoundError: no booking for the request
    """
    booking = await get_booking(db, request_id)
    trip = await get_trip(db, booking.trip_id)
    stops = await load_effective_stops(db, trip)
    destination, via = resolve_destination(trip, booking, stops)
    position = await resolve_current_position(db, trip.id, now)
    return TrackingContext(
        booking=booking,
        trip=trip,
        stops=stops,
        destination=destination,
        via=via,
        position=position,
    )


def point_response(point: Point) -> PointResponse:
    return PointResponse(name=point.name, lat=point.lat, lng=point.lng)


def position_response(position: Optional[Position]) -> Optional[PositionResponse]:
    if position is None:
        return None
    return PositionResponse(
        lat=position.lat,
        lng=position.lng,
        source=position.source.kind,
        driver_id=getattr(position.source, "driver_id", None),
        request_id=getattr(position.source, "request_id", None),
        updated_at=position.updated_at,
    )


def eta_response(result: Optional[EtaResult]) -> Optional[EtaResponse]:
    if result is None:
        return None
    return EtaResponse(
        duration_seconds=result.duration_seconds,
        distance_meters=result.distance_meters,
        duration_text=result.duration_text,
        distance_text=result.distance_text,
        approximate=result.approximate,
        computed_at=result.computed_at,
        renderable_path=result.renderable_path,
    )


def build_view(
    context: TrackingContext,
    eta: Optional[EtaResult] = None,
    eta_stale: bool = False,
    unavailable_reason: Optional[str] = None,
    now: Optional[datetime] = None
) -> TrackingView:
    """Render a context into the view every client shows."""
    if context.terminal:
        message = TrackingMessage.TRIP_FINISHED
        eta = None
    elif context.position is None:
        message = TrackingMessage.NOT_TRACKING
    elif eta is None:
        message = TrackingMessage.ETA_UNAVAILABLE
    else:
        message = TrackingMessage.TRACKING

    trip = context.trip
    return TrackingView(
        request_id=context.booking.request_id,
        trip_id=trip.id,
        trip_type=trip.trip_type,
        trip_status=trip.status,
        booking_status=context.booking.status,
        message=message,
        start=point_response(trip_start(trip)),
        end=point_response(trip_end(trip)),
        destination=point_response(context.destination),
        stops=[StopResponse.model_validate(stop) for stop in context.stops],
        position=position_response(context.position),
        eta=eta_response(eta),
        eta_stale=eta_stale and eta is not None,
        eta_unavailable_reason=unavailable_reason if eta is None else None,
        progress_percent=progress_percent(
            trip_start(trip).coordinates, trip_end(trip).coordinates, context.origin
        ),
        generated_at=now or utcnow(),
    )


def eta_cache_key(request_id: int) -> str:
    return f"eta:request:{request_id}"


async def cached_eta(
    request_id: int,
    origin: Optional[LatLng],
    destination: LatLng,
    via: List[LatLng],
    terminal: bool,
    engine: EtaEngine
) -> EtaOutcome:
    """
    ETA for stateless callers, reused for one throttle interval.

    A cached result is reused only while the origin stays within
    `position_epsilon_meters` and the destination/via are unchanged.
    """
    if terminal or origin is None:
        return await engine.compute_eta(origin, destination, via, terminal=terminal)

    key = eta_cache_key(request_id)
    signature = (destination, tuple(via))
    cached = await CacheService.get(key)
    if (
        cached
        and cached["signature"] == signature
        and distance_meters(cached["origin"], origin) <= settings.position_epsilon_meters
    ):
        return cached["outcome"]

    outcome = await engine.compute_eta(origin, destination, via)
    if isinstance(outcome, EtaResult):
        await CacheService.set(
            key,
            {"origin": origin, "signature": signature, "outcome": outcome},
            ttl_seconds=settings.eta_throttle_seconds
        )
    return outcome


async def compute_snapshot(db: AsyncSession, request_id: int, engine: EtaEngine) -> TrackingView:
    """One-shot tracking view for plain HTTP clients."""
    context = await load_tracking_context(db, request_id)
    outcome = await cached_eta(
        request_id,
        context.origin,
        context.destination.coordinates,
        context.via,
        context.terminal,
        engine
    )
    if isinstance(outcome, EtaUnavailable):
        return build_view(context, unavailable_reason=outcome.reason)
    return build_view(context, eta=outcome)


async def build_manifest(db: AsyncSession, trip_id: int, engine: EtaEngine) -> PassengerManifest:
    """Driver's passenger list with an ETA to each passenger's stop."""
    trip = await get_trip(db, trip_id)
    stops = await load_effective_stops(db, trip)
    position = await resolve_current_position(db, trip.id)
    origin = position.coordinates if position else None
    trip_terminal = trip.status in TERMINAL_TRIP_STATUSES

    passengers = []
    for booking in await list_trip_bookings(db, trip_id):
        destination, via = resolve_destination(trip, booking, stops)
        terminal = trip_terminal or booking.status in TERMINAL_BOOKING_STATUSES
        outcome = await cached_eta(booking.request_id, origin, destination.coordinates, via, terminal, engine)
        passengers.append(PassengerEta(
            request_id=booking.request_id,
            passenger_user_id=booking.passenger_user_id,
            booking_status=booking.status,
            stop=point_response(destination),
            eta=eta_response(outcome) if isinstance(outcome, EtaResult) else None,
            eta_unavailable_reason=outcome.reason if isinstance(outcome, EtaUnavailable) else None,
        ))

    return PassengerManifest(
        trip_id=trip.id,
        trip_status=trip.status,
        position=position_response(position),
        passengers=passengers,
    )
