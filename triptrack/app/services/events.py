"""
In-process domain event bus.

Handlers are awaited in registration order before `emit` returns, so a
caller that emits after commit knows every handler has run.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Awaitable, Callable, Dict, List, Optional, Type

logger = logging.getLogger("triptrack.events")


@dataclass(frozen=True)
class TripCreated:
    trip_id: int
    trip_date: date
    trip_type: str
    route_id: Optional[int] = None


Handler = Callable[[object], Awaitable[None]]


class DomainEventBus:
    def __init__(self):
        self._handlers: Dict[Type, List[Handler]] = defaultdict(list)

    def subscribe(self, event_type: Type, handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: Type, handler: Handler) -> None:
        if handler in self._handlers[event_type]:
            self._handlers[event_type].remove(handler)

    async def emit(self, event) -> None:
        """
        Deliver an event to its handlers.

        A failing handler is logged and does not stop the others: the state
        change the event describes is already committed.
        """
        for handler in list(self._handlers[type(event)]):
            try:
                await handler(event)
            except Exception:
                logger.exception("Handler %s failed for %s", getattr(handler, "__name__", handler), event)


async def log_trip_created(event: TripCreated) -> None:
    logger.info(
        "Trip %s scheduled on %s (%s, route %s)",
        event.trip_id, event.trip_date, event.trip_type, event.route_id
    )


# Global instance
domain_events = DomainEventBus()
domain_events.subscribe(TripCreated, log_trip_created)
