"""Presence Tracker, client side.

PresenceTracker reports this user's transitions:
    Offline -> Online   opened() / became_visible()
    Online  -> Offline  became_hidden() / closed()
Every transition writes; a failed write is logged and left for the next
transition (or heartbeat) to correct.

PeerPresence reconciles the other participant's state from pushed
chat_presence rows and applies the staleness timeout on read, so a peer
whose tab died without reporting offline reads as offline once last_seen
is old enough.
"""

from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import httpx

from donateconnect.db.types import utcnow
from donateconnect.errors import ApiError
from donateconnect.logging import get_logger
from donateconnect.schemas.realtime import PresenceView

logger = get_logger(__name__)

PresenceWriter = Callable[[bool], Awaitable[Any]]


class PresenceTracker:
    """This user's presence in one conversation."""

    def __init__(self, writer: PresenceWriter):
        self._writer = writer
        self.is_online = False

    async def _transition(self, is_online: bool) -> bool:
        self.is_online = is_online
        try:
            await self._writer(is_online)
        except (ApiError, httpx.HTTPError) as e:
            logger.warning("presence_write_failed", is_online=is_online, error=str(e))
            return False
        return True

    async def opened(self) -> bool:
        return await self._transition(True)

    async def became_visible(self) -> bool:
        return await self._transition(True)

    async def became_hidden(self) -> bool:
        return await self._transition(False)

    async def closed(self) -> bool:
        return await self._transition(False)

    async def heartbeat(self) -> bool:
        """Refresh last_seen while online. No-op while offline."""
        if not self.is_online:
            return False
        return await self._transition(True)


class PeerPresence:
    """The other participant's presence as seen by this user."""

    def __init__(self, self_id: UUID, conversation_id: UUID, stale_after: timedelta):
        self.self_id = self_id
        self.conversation_id = conversation_id
        self.stale_after = stale_after
        self._user_id: UUID | None = None
        self._is_online = False
        self._last_seen: datetime | None = None

    def load(self, view: PresenceView | None) -> None:
        """Seed from a fetched record. None clears what was known."""
        if view is None:
            self._user_id = None
            self._is_online = False
            self._last_seen = None
            return
        self._user_id = view.user_id
        self._is_online = view.stored_online
        self._last_seen = view.last_seen

    def apply(self, event: dict[str, Any]) -> bool:
        """Apply a chat_presence change. Returns True if it concerned the peer."""
        if event.get("table") != "chat_presence":
            return False
        row = event.get("new") or event.get("old") or {}
        if str(row.get("request_id")) != str(self.conversation_id):
            return False
        if str(row.get("user_id")) == str(self.self_id):
            return False

        if event.get("type") == "DELETE":
            self._is_online = False
            return True

        last_seen = datetime.fromisoformat(row["last_seen"])
        # Last writer wins; ignore an older row arriving late
        if self._last_seen is not None and last_seen < self._last_seen:
            return False
        self._user_id = UUID(str(row["user_id"]))
        self._is_online = bool(row["is_online"])
        self._last_seen = last_seen
        return True

    def view(self, now: datetime | None = None) -> PresenceView | None:
        if self._user_id is None or self._last_seen is None:
            return None
        now = now or utcnow()
        stale = now - self._last_seen >= self.stale_after
        return PresenceView(
            user_id=self._user_id,
            conversation_id=self.conversation_id,
            is_online=self._is_online and not stale,
            stored_online=self._is_online,
            stale=stale,
            last_seen=self._last_seen,
        )

    def is_online(self, now: datetime | None = None) -> bool:
        view = self.view(now)
        return view is not None and view.is_online
