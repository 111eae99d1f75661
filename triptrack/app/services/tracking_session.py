"""
Per-viewer tracking session.

A session keeps one booking's tracking view current: it subscribes to the
booking's change topics, reconciles on every change by re-fetching state,
and recomputes the ETA only when the change matters and the throttle
allows.

States:
    IDLE -> SUBSCRIBING -> SUBSCRIBED <-> RECONCILING -> CLOSED

All reconciliation goes through `reconcile()`, serialized by a lock. A
closed session holds no subscription and no running task.
"""

import enum
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from triptrack.app.core.config import settings
from triptrack.app.core.exceptions import ResourceNotFoundError
from triptrack.app.schemas.tracking import TrackingView
from triptrack.app.services.eta_engine import EtaEngine, EtaResult, EtaThrottle, EtaUnavailable
from triptrack.app.services.geo import distance_meters
from triptrack.app.services.realtime import FeedDisconnected
from triptrack.app.services.tracking import TrackingContext, build_view, load_tracking_context

logger = logging.getLogger("triptrack.tracking")


class SessionState(str, enum.Enum):
    IDLE = "IDLE"
    SUBSCRIBING = "SUBSCRIBING"
    SUBSCRIBED = "SUBSCRIBED"
    RECONCILING = "RECONCILING"
    CLOSED = "CLOSED"


class ReconcileTrigger(str, enum.Enum):
    START = "start"
    EVENT = "event"
    TIMER = "timer"
    MANUAL = "manual"
    RESUBSCRIBE = "resubscribe"


class TrackingSession:
    """
    Live tracking view of one request.

    Usage:
        async with TrackingSession(request_id, session_factory, feed, on_update=push) as session:
            await session.wait_closed()
    """

    def __init__(
        self,
        request_id: int,
        session_factory,
        feed,
        engine: Optional[EtaEngine] = None,
        on_update: Optional[Callable[[TrackingView], Awaitable[None]]] = None,
        throttle_seconds: Optional[float] = None,
        epsilon_meters: Optional[float] = None,
        backoff_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.request_id = request_id
        self.state = SessionState.IDLE
        self.last_view: Optional[TrackingView] = None
        self.eta_computations = 0

        self._session_factory = session_factory
        self._feed = feed
        self._engine = engine or EtaEngine()
        self._on_update = on_update
        self._throttle = EtaThrottle(throttle_seconds or settings.eta_throttle_seconds)
        self._epsilon = epsilon_meters if epsilon_meters is not None else settings.position_epsilon_meters
        self._backoff = backoff_seconds if backoff_seconds is not None else settings.feed_resubscribe_backoff_seconds
        self._clock = clock

        self._lock = asyncio.Lock()
        self._closed = asyncio.Event()
        self._subscription = None
        self._topics: tuple = ()
        self._listener: Optional[asyncio.Task] = None
        self._ticker: Optional[asyncio.Task] = None
        self._eta_task: Optional[asyncio.Task] = None
        self._generation = 0

        # Last good ETA and what it was computed for
        self._last_eta: Optional[EtaResult] = None
        self._eta_origin = None
        self._eta_signature = None
        self._eta_failed = False
        self._unavailable_reason: Optional[str] = None
        self._pending_recompute = False

    async def __aenter__(self) -> "TrackingSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def topics(self) -> tuple:
        return self._topics

    async def start(self) -> Optional[TrackingView]:
        """Subscribe, start the listener and timer, and emit the first view."""
        if self.state != SessionState.IDLE:
            raise RuntimeError(f"Session already started ({self.state.value})")

        self.state = SessionState.SUBSCRIBING
        async with self._session_factory() as db:
            context = await load_tracking_context(db, self.request_id)
        await self._subscribe(context.topics)
        self.state = SessionState.SUBSCRIBED

        self._listener = asyncio.create_task(self._listen())
        self._ticker = asyncio.create_task(self._tick())
        try:
            return await self.reconcile(ReconcileTrigger.START)
        except BaseException:
            await self.close()
            raise

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def reconcile(self, trigger: ReconcileTrigger = ReconcileTrigger.MANUAL) -> Optional[TrackingView]:
        """
        Re-derive the whole view from fresh state.

        Safe to call any number of times; calls are serialized. Returns the
        emitted view, or None when the session closed meanwhile.
        """
        if self.state == SessionState.CLOSED:
            return None

        async with self._lock:
            if self.state == SessionState.CLOSED:
                return None
            previous = self.state
            self.state = SessionState.RECONCILING
            try:
                context = await self._load_context()
                view = await self._refresh(context, trigger)
            finally:
                if self.state == SessionState.RECONCILING:
                    self.state = previous

        if view is None:
            return None
        await self._emit(view)
        if context.terminal:
            logger.info("Request %s finished, closing tracking session", self.request_id)
            await self.close()
        return view

    async def close(self) -> None:
        """Release the subscription and cancel every task the session owns."""
        if self.state == SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        self._generation += 1

        current = asyncio.current_task()
        tasks = [
            task for task in (self._listener, self._ticker, self._eta_task)
            if task is not None and task is not current and not task.done()
        ]
        for task in tasks:
            task.cancel()

        if self._subscription is not None:
            await self._subscription.close()
            self._subscription = None

        await asyncio.gather(*tasks, return_exceptions=True)
        self._closed.set()
        logger.debug("Tracking session for request %s closed", self.request_id)

    async def _load_context(self) -> TrackingContext:
        async with self._session_factory() as db:
            context = await load_tracking_context(db, self.request_id)
        if context.topics != self._topics:
            # Booking moved to another trip (or route)
            logger.info("Request %s moved, re-subscribing to %s", self.request_id, context.topics)
            await self._subscribe(context.topics)
            async with self._session_factory() as db:
                context = await load_tracking_context(db, self.request_id)
        return context

    async def _subscribe(self, topics: tuple) -> None:
        old = self._subscription
        self._subscription = await self._feed.subscribe(topics)
        self._topics = tuple(topics)
        self._generation += 1
        if old is not None:
            await old.close()

    def _is_material(self, origin, signature) -> bool:
        if self._last_eta is None or self._eta_failed:
            return True
        if signature != self._eta_signature:
            return True
        return distance_meters(self._eta_origin, origin) > self._epsilon

    async def _refresh(self, context: TrackingContext, trigger: ReconcileTrigger) -> Optional[TrackingView]:
        origin = context.origin
        signature = context.route_signature

        if context.terminal or origin is None:
            self._pending_recompute = False
            outcome = await self._engine.compute_eta(origin, context.destination.coordinates, context.via, context.terminal)
            self._unavailable_reason = outcome.reason
            return build_view(context, eta=None, unavailable_reason=outcome.reason)

        if self._is_material(origin, signature):
            now = self._clock()
            if self._throttle.allows(now):
                self._throttle.mark(now)
                self._pending_recompute = False
                accepted = await self._recompute(context, origin, signature)
                if accepted is None:
                    return None
            else:
                logger.debug("ETA for request %s throttled (%s)", self.request_id, trigger.value)
                self._pending_recompute = True

        stale = self._last_eta is not None and (self._eta_failed or self._pending_recompute)
        return build_view(
            context,
            eta=self._last_eta,
            eta_stale=stale,
            unavailable_reason=self._unavailable_reason,
        )

    async def _recompute(self, context: TrackingContext, origin, signature) -> Optional[bool]:
        """
        Run one ETA computation. Returns True if its result was applied,
        False if it was discarded as stale, None if the session closed.
        """
        generation = self._generation
        self.eta_computations += 1
        self._eta_task = asyncio.create_task(
            self._engine.compute_eta(origin, context.destination.coordinates, context.via)
        )
        try:
            outcome = await self._eta_task
        except asyncio.CancelledError:
            if self.state == SessionState.CLOSED and not asyncio.current_task().cancelling():
                return None
            raise
        finally:
            self._eta_task = None

        return self._apply_eta(generation, outcome, origin, signature)

    def _apply_eta(self, generation: int, outcome, origin, signature) -> bool:
        if generation != self._generation:
            logger.debug("Discarding ETA from generation %d (now %d)", generation, self._generation)
            return False
        if isinstance(outcome, EtaUnavailable):
            # Keep the last good ETA, shown as stale
            self._eta_failed = True
            self._unavailable_reason = outcome.reason
            return True
        self._last_eta = outcome
        self._eta_origin = origin
        self._eta_signature = signature
        self._eta_failed = False
        self._unavailable_reason = None
        return True

    async def _emit(self, view: TrackingView) -> None:
        self.last_view = view
        if self._on_update is not None:
            await self._on_update(view)

    async def _listen(self) -> None:
        try:
            while self.state != SessionState.CLOSED:
                subscription = self._subscription
                try:
                    async for _event in subscription:
                        await self._reconcile_safely(ReconcileTrigger.EVENT)
                        if subscription is not self._subscription:
                            break
                except FeedDisconnected as exc:
                    logger.warning("Change feed lost for request %s: %s", self.request_id, exc)
                    await self._recover()
        except Exception:
            logger.exception("Change listener for request %s failed, closing tracking session", self.request_id)
            await self.close()

    async def _recover(self) -> None:
        """Re-subscribe with backoff, then do a full reconcile."""
        if self.state == SessionState.CLOSED:
            return
        self.state = SessionState.SUBSCRIBING
        attempt = 0
        while self.state != SessionState.CLOSED:
            await asyncio.sleep(self._backoff * min(2 ** attempt, 8))
            try:
                await self._subscribe(self._topics)
            except FeedDisconnected as exc:
                attempt += 1
                logger.warning("Re-subscribe attempt %d for request %s failed: %s", attempt, self.request_id, exc)
                continue
            self.state = SessionState.SUBSCRIBED
            await self._reconcile_safely(ReconcileTrigger.RESUBSCRIBE)
            return

    async def _tick(self) -> None:
        """Retry throttled ETA recomputes once the throttle allows."""
        try:
            while self.state != SessionState.CLOSED:
                if self._pending_recompute:
                    delay = self._throttle.remaining(self._clock())
                else:
                    delay = self._throttle.interval
                await asyncio.sleep(max(delay, 0.05))
                if self._pending_recompute and self.state in (SessionState.SUBSCRIBED, SessionState.RECONCILING):
                    await self._reconcile_safely(ReconcileTrigger.TIMER)
        except Exception:
            logger.exception("ETA retry loop for request %s failed, closing tracking session", self.request_id)
            await self.close()

    async def _reconcile_safely(self, trigger: ReconcileTrigger) -> None:
        try:
            await self.reconcile(trigger)
        except ResourceNotFoundError:
            logger.info("Booking for request %s is gone, closing tracking session", self.request_id)
            await self.close()
        except SQLAlchemyError:
            logger.exception("Reconcile failed for request %s; will retry on next change", self.request_id)
