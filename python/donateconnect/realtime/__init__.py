"""Realtime change feed and SSE streaming."""

from donateconnect.realtime.feed import (
    ChangeEvent,
    ChangeFeed,
    ChangeFilter,
    Subscription,
    SubscriptionClosed,
    SubscriptionLagged,
    publish_change,
    row_image,
)

__all__ = [
    "ChangeEvent",
    "ChangeFeed",
    "ChangeFilter",
    "Subscription",
    "SubscriptionClosed",
    "SubscriptionLagged",
    "publish_change",
    "row_image",
]
