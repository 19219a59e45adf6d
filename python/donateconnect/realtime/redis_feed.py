"""Cross-process change fan-out over Redis pub/sub.

With REDIS_URL set, every API process (uvicorn worker or replica) shares one
logical feed. RedisChangeFeed.publish sends each event to a Redis channel
instead of delivering it in-process; a ChangeRelay task in every process
listens on all change channels and delivers what arrives to that process's
own subscriptions, including events the process published itself.

Channels are keyed by table and by the row's scope value:
    donateconnect:changes:messages:<request_id>
    donateconnect:changes:notifications:<user_id>

Without Redis the plain in-process ChangeFeed is used.
"""

import asyncio
import contextlib
import json

import redis
import redis.asyncio

from donateconnect.logging import get_logger
from donateconnect.realtime.feed import DEFAULT_QUEUE_SIZE, ChangeEvent, ChangeFeed

logger = get_logger(__name__)

CHANNEL_PREFIX = "donateconnect:changes"
CHANNEL_PATTERN = f"{CHANNEL_PREFIX}:*"

# Column each table's streams filter on
SCOPE_COLUMNS = {
    "messages": "request_id",
    "chat_presence": "request_id",
    "live_locations": "request_id",
    "notifications": "user_id",
}

DEFAULT_RECONNECT_SECONDS = 1.0


def channel_for(event: ChangeEvent) -> str:
    """Redis channel an event is published on."""
    column = SCOPE_COLUMNS.get(event.table)
    scope = event.row.get(column) if column else None
    return f"{CHANNEL_PREFIX}:{event.table}:{scope or 'all'}"


class RedisChangeFeed(ChangeFeed):
    """ChangeFeed whose publish goes through Redis so every process receives it.

    Subscriptions stay local. Events come back into this process through the
    ChangeRelay started next to it.
    """

    def __init__(self, redis_client: redis.Redis, maxsize: int = DEFAULT_QUEUE_SIZE):
        super().__init__(maxsize)
        self.redis_client = redis_client

    def publish(self, event: ChangeEvent) -> int:
        """Publish to Redis. Falls back to local delivery when Redis is unreachable.

        Returns:
            Number of listening processes, or local subscriptions on fallback.
        """
        try:
            return self.redis_client.publish(channel_for(event), json.dumps(event.to_dict()))
        except redis.RedisError as e:
            logger.warning("change_relay_publish_failed", table=event.table, error=str(e))
            return self.deliver(event)


class ChangeRelay:
    """Delivers events arriving on the change channels into a local feed.

    Reconnects after a dropped connection. Events published while
    disconnected are lost, so every local subscription is marked lagged on
    reconnect and its consumer re-fetches.
    """

    def __init__(
        self,
        feed: ChangeFeed,
        redis_client: redis.asyncio.Redis,
        reconnect_seconds: float = DEFAULT_RECONNECT_SECONDS,
    ):
        self.feed = feed
        self.redis_client = redis_client
        self.reconnect_seconds = reconnect_seconds
        self.subscribed = asyncio.Event()
        self._task: asyncio.Task | None = None

    def handle(self, message: dict) -> bool:
        """Deliver one pub/sub message. Returns False if it was not a change event."""
        if message.get("type") not in ("message", "pmessage"):
            return False
        try:
            event = ChangeEvent.from_dict(json.loads(message["data"]))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("change_relay_bad_message", channel=message.get("channel"), error=str(e))
            return False
        self.feed.deliver(event)
        return True

    async def run(self) -> None:
        """Listen until cancelled."""
        connected_before = False
        while True:
            pubsub = self.redis_client.pubsub(ignore_subscribe_messages=True)
            try:
                await pubsub.psubscribe(CHANNEL_PATTERN)
                if connected_before:
                    self.feed.mark_lagged()
                connected_before = True
                self.subscribed.set()
                logger.info("change_relay_subscribed", pattern=CHANNEL_PATTERN)

                async for message in pubsub.listen():
                    self.handle(message)
            except (redis.RedisError, OSError) as e:
                logger.warning("change_relay_disconnected", error=str(e))
            finally:
                self.subscribed.clear()
                await pubsub.aclose()
            await asyncio.sleep(self.reconnect_seconds)

    def start(self) -> asyncio.Task:
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
