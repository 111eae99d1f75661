"""
Device geolocation capability.

The provider is whatever the device exposes (browser bridge, GPS daemon,
a test double); this module only bounds it in time and classifies its
failures.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Tuple

from triptrack.app.core.config import settings

logger = logging.getLogger("triptrack.geolocation")


class GeolocationError(Exception):
    """Base class; always a soft failure."""


class GeolocationDenied(GeolocationError):
    """The user refused location permission."""


class GeolocationUnavailable(GeolocationError):
    """No fix could be obtained (no signal, service off)."""


class GeolocationTimeout(GeolocationError):
    """No fix within the allotted time."""


class GeolocationProvider(Protocol):
    async def request_position(self) -> Tuple[float, float]:
        ...


async def acquire_position(provider: GeolocationProvider, timeout_ms: Optional[int] = None) -> Tuple[float, float]:
    """
    Ask the provider for one fix.

    Raises:
        GeolocationDenied, GeolocationUnavailable, GeolocationTimeout
    """
    timeout_ms = timeout_ms or settings.geolocation_timeout_ms
    try:
        return await asyncio.wait_for(provider.request_position(), timeout=timeout_ms / 1000)
    except asyncio.TimeoutError as exc:
        raise GeolocationTimeout(f"No position within {timeout_ms} ms") from exc
    except PermissionError as exc:
        raise GeolocationDenied(str(exc)) from exc
    except OSError as exc:
        raise GeolocationUnavailable(str(exc)) from exc


@dataclass
class LocationShare:
    url: str
    used_fallback: bool = False


def maps_link(lat: float, lng: float) -> str:
    return f"https://www.google.com/maps?q={lat},{lng}"


async def compose_location_share(
    provider: GeolocationProvider,
    share_url: str,
    timeout_ms: Optional[int] = None
) -> LocationShare:
    """
    "Share my location": a maps link to the current position,
    or the tracking share link when no position can be had.
    """
    try:
        lat, lng = await acquire_position(provider, timeout_ms)
    except GeolocationError as exc:
        logger.warning("Geolocation failed (%s), sharing tracking link instead", type(exc).__name__)
        return LocationShare(url=share_url, used_fallback=True)
    return LocationShare(url=maps_link(lat, lng))
