"""Device geolocation seam.

The client never talks to a device directly. Platforms supply a
GeolocationProvider; errors surface as GeolocationError (DeviceUnavailable)
and abort only the location operation that hit them.
"""

from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol

from donateconnect.errors import ApiError, ApiErrorCode


class GeolocationFailure(str, Enum):
    permission_denied = "permission_denied"
    unavailable = "unavailable"
    timeout = "timeout"


USER_MESSAGES = {
    GeolocationFailure.permission_denied: "Location permission was denied",
    GeolocationFailure.unavailable: "Location is unavailable",
    GeolocationFailure.timeout: "Timed out getting your location",
}


class GeolocationError(ApiError):
    """A position could not be acquired."""

    def __init__(self, reason: GeolocationFailure, message: str | None = None):
        self.reason = reason
        super().__init__(ApiErrorCode.E_DEVICE_UNAVAILABLE, message or USER_MESSAGES[reason])


@dataclass(frozen=True)
class Position:
    latitude: float
    longitude: float
    accuracy: float | None
    timestamp: datetime


class GeolocationProvider(Protocol):
    """One-shot and continuous position acquisition."""

    async def current_position(self) -> Position:
        """Return one fix or raise GeolocationError."""
        ...

    def watch_position(self) -> AsyncIterator[Position]:
        """Yield fixes until the iterator is closed; may raise GeolocationError."""
        ...
