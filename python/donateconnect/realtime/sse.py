"""Server-Sent Events framing for change-feed subscriptions.

Event names on the wire:
    ready   - subscription is live; clients should (re-)fetch state now
    change  - one ChangeEvent (data = ChangeEvent.to_dict())
    resync  - events were dropped; re-fetch state, then keep reading
A comment line (": keepalive") is sent when idle so proxies keep the
connection open.
"""

import json
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from donateconnect.logging import get_logger
from donateconnect.realtime.feed import Subscription, SubscriptionClosed, SubscriptionLagged

logger = get_logger(__name__)

SSE_MEDIA_TYPE = "text/event-stream; charset=utf-8"
SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "X-Accel-Buffering": "no",
}
KEEPALIVE = ": keepalive\n\n"


def format_sse(event: str, data: Any, event_id: str | None = None) -> str:
    """Frame one SSE message."""
    lines = []
    if event_id is not None:
        lines.append(f"id: {event_id}")
    lines.append(f"event: {event}")
    payload = json.dumps(data, separators=(",", ":"), default=str)
    for line in payload.splitlines() or [""]:
        lines.append(f"data: {line}")
    return "\n".join(lines) + "\n\n"


async def stream_subscription(
    subscription: Subscription,
    is_disconnected: Callable[[], Awaitable[bool]],
    keepalive_seconds: float,
    ready_data: dict[str, Any] | None = None,
) -> AsyncIterator[str]:
    """Yield SSE frames for a subscription until the client goes away.

    The subscription is always closed when the generator finishes,
    including on client disconnect and on cancellation.
    """
    sent = 0
    try:
        yield format_sse("ready", ready_data or {})
        while True:
            if await is_disconnected():
                break
            try:
                event = await subscription.get(timeout=keepalive_seconds)
            except SubscriptionLagged:
                yield format_sse("resync", {"reason": "lagged"})
                continue
            except SubscriptionClosed:
                break

            if event is None:
                yield KEEPALIVE
                continue

            sent += 1
            yield format_sse("change", event.to_dict())
    finally:
        subscription.close()
        logger.info("stream_closed", events_sent=sent)
