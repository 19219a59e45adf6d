"""Conversation session: every per-conversation resource under one scope.

    async with ConversationSession(client, conversation_id, user_id, geo) as session:
        await session.send("hi")
        ...

Entering opens the event stream, waits for it to be ready, then fetches
the message list (subscribe first, fetch second, so nothing sent in
between is lost; the timeline de-duplicates the overlap). It also reports
presence online and starts a heartbeat.

Leaving releases everything, in order, each step attempted even if an
earlier one fails: live-location watch and session, heartbeat, stream,
then presence offline.
"""

import asyncio
import contextlib
from datetime import timedelta
from typing import Any
from uuid import UUID

import httpx

from donateconnect.client.api import MESSAGE_PAGE_SIZE, DonateConnectClient, ServerSentEvent
from donateconnect.client.geolocation import GeolocationProvider
from donateconnect.client.live_location import LiveLocationSharer, PeerLocation
from donateconnect.client.presence import PeerPresence, PresenceTracker
from donateconnect.client.timeline import MessageTimeline
from donateconnect.errors import ApiError
from donateconnect.logging import get_logger
from donateconnect.schemas.messages import MessageOut

logger = get_logger(__name__)

DEFAULT_HEARTBEAT_SECONDS = 30.0
DEFAULT_STALE_SECONDS = 90
DEFAULT_RECONNECT_SECONDS = 2.0
READY_TIMEOUT_SECONDS = 10.0


class ConversationSession:
    """One user's live view of one conversation."""

    def __init__(
        self,
        client: DonateConnectClient,
        conversation_id: UUID,
        user_id: UUID,
        geolocation: GeolocationProvider | None = None,
        heartbeat_seconds: float = DEFAULT_HEARTBEAT_SECONDS,
        stale_after: timedelta = timedelta(seconds=DEFAULT_STALE_SECONDS),
        reconnect_seconds: float = DEFAULT_RECONNECT_SECONDS,
    ):
        self.client = client
        self.conversation_id = conversation_id
        self.user_id = user_id
        self.heartbeat_seconds = heartbeat_seconds
        self.reconnect_seconds = reconnect_seconds

        self.timeline = MessageTimeline(conversation_id)
        self.presence = PresenceTracker(
            lambda is_online: client.set_presence(conversation_id, is_online)
        )
        self.peer_presence = PeerPresence(user_id, conversation_id, stale_after)
        self.peer_location = PeerLocation(user_id, conversation_id)
        self.sharer = (
            LiveLocationSharer(client, conversation_id, geolocation) if geolocation else None
        )

        self._ready = asyncio.Event()
        self._stream_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._closed = False
        self.stream_error: ApiError | None = None

    async def __aenter__(self) -> "ConversationSession":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def open(self) -> None:
        self._stream_task = asyncio.create_task(self._run_stream())
        try:
            await asyncio.wait_for(self._ready.wait(), READY_TIMEOUT_SECONDS)
        except TimeoutError:
            logger.warning(
                "conversation_stream_not_ready", conversation_id=str(self.conversation_id)
            )

        try:
            await self.refresh()
            await self.presence.opened()
            self._heartbeat_task = asyncio.create_task(self._run_heartbeat())
        except BaseException:
            await self.aclose()
            raise

    async def refresh(self) -> None:
        """Catch up: re-fetch messages, peer presence and live locations.

        Messages are fetched page by page until a short page comes back.
        """
        after_seq = None
        while True:
            page = await self.client.list_messages(
                self.conversation_id, after_seq=after_seq, limit=MESSAGE_PAGE_SIZE
            )
            self.timeline.merge(page)
            if len(page) < MESSAGE_PAGE_SIZE:
                break
            after_seq = page[-1].seq
        self.peer_presence.load(await self.client.get_peer_presence(self.conversation_id))
        self.peer_location.load(await self.client.list_live_locations(self.conversation_id))

    # =========================================================================
    # Actions
    # =========================================================================

    async def send(self, content: str | None = None, **payload: Any) -> MessageOut:
        """Send a message. Failures raise; nothing is retried."""
        message = await self.client.send_message(self.conversation_id, content=content, **payload)
        self.timeline.merge([message])
        return message

    async def mark_read(self) -> int:
        return await self.client.mark_read(self.conversation_id)

    async def share_location(self, duration_minutes: int | None = None) -> bool:
        if self.sharer is None:
            return False
        return await self.sharer.start(duration_minutes)

    async def stop_sharing(self) -> bool:
        if self.sharer is None:
            return False
        return await self.sharer.stop()

    async def became_visible(self) -> None:
        await self.presence.became_visible()

    async def became_hidden(self) -> None:
        await self.presence.became_hidden()

    # =========================================================================
    # Background work
    # =========================================================================

    def handle_event(self, event: ServerSentEvent) -> None:
        if event.event == "ready":
            self._ready.set()
            return
        if event.event != "change" or not isinstance(event.data, dict):
            return
        for view in (self.timeline, self.peer_presence, self.peer_location):
            if view.apply(event.data):
                break

    async def _run_stream(self) -> None:
        first = True
        while not self._closed:
            try:
                async for event in self.client.iter_conversation_events(self.conversation_id):
                    if event.event == "ready" and not first:
                        # Reconnected: anything sent while away is only in the store
                        await self.refresh()
                    if event.event == "resync":
                        await self.refresh()
                    self.handle_event(event)
                    if event.event == "ready":
                        first = False
            except ApiError as e:
                if e.status_code < 500:
                    # Not transient (forbidden, not found): stop and let open() proceed
                    self.stream_error = e
                    self._ready.set()
                    logger.warning("conversation_stream_rejected", code=e.code.value)
                    return
                logger.warning("conversation_stream_dropped", error=e.message)
            except httpx.HTTPError as e:
                logger.warning(
                    "conversation_stream_dropped",
                    conversation_id=str(self.conversation_id),
                    error=str(e),
                )
            if not self._closed:
                await asyncio.sleep(self.reconnect_seconds)

    async def _run_heartbeat(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.heartbeat_seconds)
            await self.presence.heartbeat()

    async def aclose(self) -> None:
        """Release every resource. Idempotent."""
        if self._closed:
            return
        self._closed = True
        try:
            if self.sharer is not None:
                await self.sharer.aclose()
        finally:
            try:
                for task in (self._heartbeat_task, self._stream_task):
                    if task is not None and not task.done():
                        task.cancel()
                        with contextlib.suppress(asyncio.CancelledError):
                            await task
            finally:
                await self.presence.closed()
