"""
Driver-side location reporter.

Runs on the driver's device (or a gateway acting for it): reads the
geolocation provider and pushes live status to the API, no more often than
`location_push_min_interval_seconds`.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

import httpx

from triptrack.app.core.config import settings
from triptrack.app.services.geolocation import (
    GeolocationDenied,
    GeolocationError,
    GeolocationProvider,
    LocationShare,
    acquire_position,
    compose_location_share,
)

logger = logging.getLogger("triptrack.reporter")

LIVE_STATUS_PATH = "/v1/driver/live-status"


class DriverLocationReporter:
    """
    Usage:
        async with httpx.AsyncClient(base_url=api, headers={"Authorization": f"Bearer {token}"}) as client:
            reporter = DriverLocationReporter(client, provider)
            await reporter.run()
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        provider: GeolocationProvider,
        min_interval: Optional[float] = None,
        timeout_ms: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.client = client
        self.provider = provider
        self.min_interval = min_interval or settings.location_push_min_interval_seconds
        self.timeout_ms = timeout_ms or settings.geolocation_timeout_ms
        self._clock = clock
        self._sleep = sleep
        self._last_push: Optional[float] = None
        self._running = False
        self.pushes = 0

    @property
    def running(self) -> bool:
        return self._running

    async def report(self, force: bool = False) -> bool:
        """
        Push the current position once.

        Returns False when skipped because the last push is too recent.

        Raises:
            GeolocationError: the position could not be acquired
            httpx.HTTPError: the API rejected the push or was unreachable
        """
        now = self._clock()
        if not force and self._last_push is not None and now - self._last_push < self.min_interval:
            return False

        lat, lng = await acquire_position(self.provider, self.timeout_ms)
        response = await self.client.put(
            LIVE_STATUS_PATH,
            json={"is_available": True, "lat": lat, "lng": lng}
        )
        response.raise_for_status()
        self._last_push = now
        self.pushes += 1
        return True

    async def share_location(self, share_url: str) -> LocationShare:
        """Maps link to where the driver is now, or `share_url` when no position is available."""
        return await compose_location_share(self.provider, share_url, self.timeout_ms)

    async def run(self) -> None:
        """
        Report until `stop()` is called or location permission is denied.

        Transient geolocation and network failures are logged and retried on
        the next interval.
        """
        self._running = True
        try:
            while self._running:
                try:
                    await self.report()
                except GeolocationDenied:
                    logger.warning("Location permission denied, going unavailable")
                    await self.stop()
                    return
                except GeolocationError as exc:
                    logger.warning("No position this round: %s", exc)
                except httpx.HTTPError as exc:
                    logger.warning("Live status push failed: %s", exc)
                if self._running:
                    await self._sleep(self.min_interval)
        except asyncio.CancelledError:
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop reporting and tell the API the driver is no longer available."""
        was_running = self._running
        self._running = False
        try:
            response = await self.client.put(LIVE_STATUS_PATH, json={"is_available": False})
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Failed to mark driver unavailable: %s", exc)
        if was_running:
            logger.info("Driver location reporting stopped")
