"""Pydantic schemas for request/response models.

All schemas are re-exported here for convenient imports.
"""

from donateconnect.schemas.messages import (
    ImagePayload,
    LiveLocationPayload,
    LocationPayload,
    MarkReadResponse,
    MessageLocation,
    MessageOut,
    MessagePayload,
    SendMessageRequest,
    TextPayload,
    parse_message_payload,
)
from donateconnect.schemas.notifications import (
    NotificationOut,
    NotificationPreferencesOut,
    PushResultOut,
    PushSubscriptionOut,
    SendPushRequest,
    SubscribePushRequest,
    UnreadCountOut,
    UnsubscribePushRequest,
    UpdatePreferencesRequest,
)
from donateconnect.schemas.realtime import (
    LiveLocationOut,
    PresenceOut,
    PresenceView,
    SetPresenceRequest,
    StartLiveLocationRequest,
    StopSharingResponse,
    UpdatePositionRequest,
)
from donateconnect.schemas.requests import CreateDonationRequest, DonationRequestOut

__all__ = [
    # Message schemas
    "TextPayload",
    "ImagePayload",
    "LocationPayload",
    "LiveLocationPayload",
    "MessagePayload",
    "parse_message_payload",
    "SendMessageRequest",
    "MessageLocation",
    "MessageOut",
    "MarkReadResponse",
    # Presence / live location schemas
    "SetPresenceRequest",
    "PresenceOut",
    "PresenceView",
    "StartLiveLocationRequest",
    "UpdatePositionRequest",
    "LiveLocationOut",
    "StopSharingResponse",
    # Notification / push schemas
    "NotificationOut",
    "UnreadCountOut",
    "NotificationPreferencesOut",
    "UpdatePreferencesRequest",
    "SendPushRequest",
    "PushResultOut",
    "SubscribePushRequest",
    "UnsubscribePushRequest",
    "PushSubscriptionOut",
    # Request schemas
    "CreateDonationRequest",
    "DonationRequestOut",
]
