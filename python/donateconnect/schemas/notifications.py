"""Notification, preference and push schemas."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

# Valid notification types - must match DB constraint
NOTIFICATION_TYPES = Literal[
    "request_received",
    "request_accepted",
    "request_declined",
    "new_item",
    "new_message",
]

# Valid listing categories - must match DB constraint
LISTING_CATEGORIES = Literal["clothing", "school_supplies", "electronics", "other"]


# =============================================================================
# Notifications
# =============================================================================


class NotificationOut(BaseModel):
    """Response schema for an in-app notification."""

    id: UUID
    user_id: UUID
    title: str
    message: str
    type: str
    is_read: bool
    related_listing_id: UUID | None = None
    related_request_id: UUID | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UnreadCountOut(BaseModel):
    unread: int


# =============================================================================
# Preferences
# =============================================================================


class NotificationPreferencesOut(BaseModel):
    """Per-user notification preferences (defaults when never saved)."""

    new_requests: bool = True
    request_updates: bool = True
    new_items: bool = True
    preferred_categories: list[str]

    model_config = ConfigDict(from_attributes=True)


class UpdatePreferencesRequest(BaseModel):
    """Partial update; omitted fields keep their current value."""

    new_requests: bool | None = None
    request_updates: bool | None = None
    new_items: bool | None = None
    preferred_categories: list[LISTING_CATEGORIES] | None = None


# =============================================================================
# Push
# =============================================================================


class SendPushRequest(BaseModel):
    """Push delivery request.

    Bounds are enforced by the push service so every caller (HTTP and
    in-process) gets the same InvalidInput behavior.
    """

    user_ids: list[str]
    title: str
    body: str
    url: str | None = None


class PushResultOut(BaseModel):
    """Counts reported by a push delivery call."""

    success: bool
    sent: int
    failed: int
    authorized: int
    total: int
    message: str


class PushSubscriptionKeys(BaseModel):
    p256dh: str = Field(min_length=1)
    auth: str = Field(min_length=1)


class SubscribePushRequest(BaseModel):
    """Browser PushSubscription.toJSON() shape."""

    endpoint: str = Field(min_length=1, max_length=2048)
    keys: PushSubscriptionKeys


class UnsubscribePushRequest(BaseModel):
    endpoint: str = Field(min_length=1, max_length=2048)


class PushSubscriptionOut(BaseModel):
    id: UUID
    endpoint: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
