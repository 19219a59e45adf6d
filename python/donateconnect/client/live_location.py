"""Live Location Session, client side.

LiveLocationSharer drives this user's session:
    NotSharing -> Sharing     start(duration): one fix, seed write, then a watch task
    Sharing    -> Sharing     each fix updates latitude/longitude only
    Sharing    -> NotSharing  stop(), a fix observed at/after expires_at,
                              or a watch failure

The watch task is the resource to guard: stop() cancels it before anything
else, so a failing stop write can never leave the device transmitting.

PeerLocation renders the other participant's session, live only while
is_sharing AND expires_at > now.
"""

import asyncio
import contextlib
from collections.abc import Callable
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

import httpx

from donateconnect.client.geolocation import GeolocationError, GeolocationProvider
from donateconnect.db.types import utcnow
from donateconnect.errors import ApiError, ApiErrorCode
from donateconnect.logging import get_logger
from donateconnect.schemas.realtime import LiveLocationOut

logger = get_logger(__name__)


class LiveLocationApi(Protocol):
    async def start_live_location(
        self,
        conversation_id: UUID,
        latitude: float,
        longitude: float,
        duration_minutes: int | None = None,
    ) -> LiveLocationOut: ...

    async def update_live_location(
        self, conversation_id: UUID, latitude: float, longitude: float
    ) -> LiveLocationOut: ...

    async def stop_live_location(self, conversation_id: UUID) -> bool: ...


class LiveLocationSharer:
    """This user's live location in one conversation."""

    def __init__(
        self,
        api: LiveLocationApi,
        conversation_id: UUID,
        geolocation: GeolocationProvider,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.api = api
        self.conversation_id = conversation_id
        self.geolocation = geolocation
        self.clock = clock
        self.expires_at: datetime | None = None
        self.last_error: ApiError | None = None
        self._task: asyncio.Task | None = None
        self._sharing = False

    @property
    def is_sharing(self) -> bool:
        return (
            self._sharing and self.expires_at is not None and self.clock() < self.expires_at
        )

    async def start(self, duration_minutes: int | None = None) -> bool:
        """Start sharing. Returns False (toggle stays off) if it did not start.

        Restarting while already sharing ends the running session first.
        """
        if self._sharing:
            await self.stop()
        else:
            await self._cancel_watch()
        self.last_error = None

        try:
            fix = await self.geolocation.current_position()
        except GeolocationError as e:
            logger.info("live_location_fix_failed", reason=e.reason.value)
            self.last_error = e
            self._sharing = False
            return False

        try:
            session = await self.api.start_live_location(
                self.conversation_id, fix.latitude, fix.longitude, duration_minutes
            )
        except (ApiError, httpx.HTTPError) as e:
            logger.warning("live_location_start_failed", error=str(e))
            self.last_error = e if isinstance(e, ApiError) else None
            self._sharing = False
            return False

        self.expires_at = session.expires_at
        self._sharing = True
        self._task = asyncio.create_task(self._watch())
        return True

    async def _watch(self) -> None:
        watch = self.geolocation.watch_position()
        try:
            async for fix in watch:
                if self.clock() >= self.expires_at:
                    logger.info("live_location_expired")
                    break
                try:
                    await self.api.update_live_location(
                        self.conversation_id, fix.latitude, fix.longitude
                    )
                except ApiError as e:
                    if e.code == ApiErrorCode.E_SESSION_NOT_FOUND:
                        # Stopped or expired server-side
                        logger.info("live_location_session_gone")
                        break
                    logger.warning("live_location_update_failed", error=e.message)
                except httpx.HTTPError as e:
                    logger.warning("live_location_update_failed", error=str(e))
        except GeolocationError as e:
            logger.info("live_location_watch_failed", reason=e.reason.value)
            self.last_error = e
        finally:
            aclose = getattr(watch, "aclose", None)
            if aclose is not None:
                await aclose()

        # Ended on its own: release the session without cancelling ourselves
        self._task = None
        await self._write_stop()

    async def _cancel_watch(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _write_stop(self) -> None:
        was_sharing, self._sharing = self._sharing, False
        if not was_sharing:
            return
        try:
            await self.api.stop_live_location(self.conversation_id)
        except (ApiError, httpx.HTTPError) as e:
            logger.warning("live_location_stop_failed", error=str(e))

    async def stop(self) -> bool:
        """Stop sharing. Idempotent; returns False when nothing was shared."""
        was_sharing = self._sharing
        try:
            await self._cancel_watch()
        finally:
            await self._write_stop()
        return was_sharing

    async def aclose(self) -> None:
        await self.stop()


class PeerLocation:
    """The other participant's live location as seen by this user."""

    def __init__(self, self_id: UUID, conversation_id: UUID):
        self.self_id = self_id
        self.conversation_id = conversation_id
        self._row: dict[str, Any] | None = None

    def load(self, sessions: list[LiveLocationOut]) -> None:
        """Replace the view with a fetched list; no peer session clears it."""
        self._row = None
        for session in sessions:
            if session.user_id != self.self_id:
                self._row = {
                    "latitude": session.latitude,
                    "longitude": session.longitude,
                    "is_sharing": session.is_sharing,
                    "expires_at": session.expires_at,
                }

    def apply(self, event: dict[str, Any]) -> bool:
        """Apply a live_locations change. Returns True if it concerned the peer."""
        if event.get("table") != "live_locations":
            return False
        row = event.get("new") or event.get("old") or {}
        if str(row.get("request_id")) != str(self.conversation_id):
            return False
        if str(row.get("user_id")) == str(self.self_id):
            return False

        if event.get("type") == "DELETE" or not row.get("is_sharing"):
            self._row = None
            return True

        self._row = {
            "latitude": row["latitude"],
            "longitude": row["longitude"],
            "is_sharing": True,
            "expires_at": datetime.fromisoformat(row["expires_at"]),
        }
        return True

    def current(self, now: datetime | None = None) -> tuple[float, float] | None:
        """(latitude, longitude) while the peer is live, else None."""
        if self._row is None:
            return None
        now = now or utcnow()
        if not self._row["is_sharing"] or self._row["expires_at"] <= now:
            return None
        return self._row["latitude"], self._row["longitude"]
