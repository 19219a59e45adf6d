"""In-process row-change feed.

Services publish a ChangeEvent after each committed write to messages,
chat_presence, live_locations or notifications. Subscribers receive only
events matching their equality filters (table + column == value), so a
stream for one conversation never sees another conversation's traffic.

Subscriptions are explicit handles: whoever subscribes must close the
handle (directly, or by using it as a context manager). Nothing is released
by garbage collection.

publish() may be called from any thread (sync route handlers run in a
worker thread pool); delivery to async consumers is marshalled onto the
consumer's event loop.

A subscription buffers at most maxsize events. On overflow the buffer is
dropped and the handle is marked lagged; the next read raises
SubscriptionLagged so the consumer re-fetches state instead of silently
missing rows.

ChangeFeed delivers within one process. With Redis configured the app uses
RedisChangeFeed (realtime.redis_feed), which publishes through Redis pub/sub
so streams held by other workers receive the event too.
"""

import asyncio
import threading
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from donateconnect.db.types import utcnow
from donateconnect.logging import get_logger

logger = get_logger(__name__)

ChangeType = Literal["INSERT", "UPDATE", "DELETE"]

DEFAULT_QUEUE_SIZE = 256


class SubscriptionLagged(Exception):
    """Events were dropped for a slow consumer; re-fetch before continuing."""


class SubscriptionClosed(Exception):
    """The subscription handle was closed."""


@dataclass(frozen=True)
class ChangeEvent:
    """One row change, shaped like a store change notification."""

    table: str
    type: ChangeType
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None
    commit_timestamp: datetime = field(default_factory=utcnow)

    @property
    def row(self) -> dict[str, Any]:
        """The row image used for filtering: new for INSERT/UPDATE, old for DELETE."""
        return self.new if self.new is not None else (self.old or {})

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "type": self.type,
            "new": self.new,
            "old": self.old,
            "commit_timestamp": self.commit_timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChangeEvent":
        """Rebuild an event from to_dict() output.

        Raises:
            KeyError, ValueError: Malformed input.
        """
        if data["type"] not in ("INSERT", "UPDATE", "DELETE"):
            raise ValueError(f"unknown change type: {data['type']}")
        return cls(
            table=data["table"],
            type=data["type"],
            new=data.get("new"),
            old=data.get("old"),
            commit_timestamp=datetime.fromisoformat(data["commit_timestamp"]),
        )


@dataclass(frozen=True)
class ChangeFilter:
    """Equality filter on a table, optionally narrowed to column == value."""

    table: str
    column: str | None = None
    value: Any = None

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table:
            return False
        if self.column is None:
            return True
        return str(event.row.get(self.column)) == str(self.value)


class Subscription:
    """Handle for a filtered slice of the change feed.

    Usage:
        with feed.subscribe(ChangeFilter("messages", "request_id", cid)) as sub:
            event = await sub.get(timeout=15)
    """

    def __init__(
        self,
        feed: "ChangeFeed",
        filters: tuple[ChangeFilter, ...],
        maxsize: int,
    ):
        self._feed = feed
        self.filters = filters
        self._maxsize = maxsize
        self._buffer: deque[ChangeEvent] = deque()
        self._lock = threading.Lock()
        self._lagged = False
        self._closed = False
        self._waiter = asyncio.Event()
        try:
            self._loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def lagged(self) -> bool:
        return self._lagged

    def matches(self, event: ChangeEvent) -> bool:
        return any(f.matches(event) for f in self.filters)

    def _offer(self, event: ChangeEvent) -> None:
        with self._lock:
            if self._closed:
                return
            if len(self._buffer) >= self._maxsize:
                self._buffer.clear()
                if not self._lagged:
                    logger.warning("subscription_lagged", maxsize=self._maxsize)
                self._lagged = True
            else:
                self._buffer.append(event)
        self._wake()

    def _mark_lagged(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._buffer.clear()
            self._lagged = True
        self._wake()

    def _wake(self) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._waiter.set)
        except RuntimeError:
            # Loop shut down between the check and the call
            pass

    def get_nowait(self) -> ChangeEvent | None:
        """Pop the next buffered event, or None if the buffer is empty.

        Raises:
            SubscriptionLagged: Events were dropped since the last read.
        """
        with self._lock:
            if self._lagged:
                self._lagged = False
                raise SubscriptionLagged()
            if self._buffer:
                return self._buffer.popleft()
            return None

    async def get(self, timeout: float | None = None) -> ChangeEvent | None:
        """Wait for the next event; return None if timeout elapses first.

        Raises:
            SubscriptionLagged: Events were dropped since the last read.
            SubscriptionClosed: The handle was closed.
        """
        if self._loop is None:
            self._loop = asyncio.get_running_loop()

        loop = self._loop
        deadline = None if timeout is None else loop.time() + timeout
        while True:
            event = self.get_nowait()
            if event is not None:
                return event
            if self._closed:
                raise SubscriptionClosed()

            self._waiter.clear()
            # Re-check: an offer may have landed between the pop and the clear
            event = self.get_nowait()
            if event is not None:
                return event

            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return None
            try:
                await asyncio.wait_for(self._waiter.wait(), remaining)
            except asyncio.TimeoutError:
                return None

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        try:
            event = await self.get()
        except SubscriptionClosed:
            raise StopAsyncIteration from None
        assert event is not None
        return event

    def close(self) -> None:
        """Release the handle. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._buffer.clear()
        self._feed._remove(self)
        self._wake()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


class ChangeFeed:
    """Fan-out hub for row-change events.

    Thread-safe. One instance per API process (app.state.change_feed).
    """

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE):
        self.maxsize = maxsize
        self._subscriptions: set[Subscription] = set()
        self._lock = threading.Lock()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def subscribe(self, *filters: ChangeFilter, maxsize: int | None = None) -> Subscription:
        """Open a subscription matching any of the given filters."""
        if not filters:
            raise ValueError("subscribe() requires at least one filter")
        subscription = Subscription(self, tuple(filters), maxsize or self.maxsize)
        with self._lock:
            self._subscriptions.add(subscription)
        return subscription

    def publish(self, event: ChangeEvent) -> int:
        """Publish an event. In-process, that is delivering it right away.

        Returns:
            Number of subscriptions the event was offered to.
        """
        return self.deliver(event)

    def deliver(self, event: ChangeEvent) -> int:
        """Offer an event to every matching subscription in this process."""
        with self._lock:
            targets = [s for s in self._subscriptions if s.matches(event)]
        for subscription in targets:
            subscription._offer(event)
        return len(targets)

    def publish_all(self, events: Iterable[ChangeEvent]) -> int:
        return sum(self.publish(event) for event in events)

    def mark_lagged(self) -> None:
        """Mark every open subscription lagged; each consumer re-fetches on its next read."""
        with self._lock:
            targets = list(self._subscriptions)
        for subscription in targets:
            subscription._mark_lagged()

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscriptions.discard(subscription)


def publish_change(
    feed: ChangeFeed | None,
    table: str,
    type: ChangeType,
    new: dict[str, Any] | None = None,
    old: dict[str, Any] | None = None,
) -> None:
    """Publish a change if a feed is wired; never raises into the caller's write path."""
    if feed is None:
        return
    try:
        feed.publish(ChangeEvent(table=table, type=type, new=new, old=old))
    except Exception as e:
        logger.warning("change_publish_failed", table=table, type=type, error=str(e))


def row_image(instance: Any) -> dict[str, Any]:
    """Serialize an ORM row to a JSON-safe dict keyed by column name."""
    row: dict[str, Any] = {}
    for column in instance.__table__.columns:
        value = getattr(instance, column.key)
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, UUID):
            value = str(value)
        row[column.name] = value
    return row
