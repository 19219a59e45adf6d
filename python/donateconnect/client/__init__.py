"""Async client SDK for DonateConnect conversations.

The client half of the realtime subsystem: an HTTP/SSE API client, the
message timeline merge, presence reporting and interpretation, and live
location sharing driven by a device geolocation provider.
"""

from donateconnect.client.api import DonateConnectClient, ServerSentEvent, parse_sse
from donateconnect.client.geolocation import (
    GeolocationError,
    GeolocationFailure,
    GeolocationProvider,
    Position,
)
from donateconnect.client.live_location import LiveLocationSharer, PeerLocation
from donateconnect.client.presence import PeerPresence, PresenceTracker
from donateconnect.client.session import ConversationSession
from donateconnect.client.timeline import MessageTimeline, message_from_row

__all__ = [
    "DonateConnectClient",
    "ServerSentEvent",
    "parse_sse",
    "GeolocationError",
    "GeolocationFailure",
    "GeolocationProvider",
    "Position",
    "LiveLocationSharer",
    "PeerLocation",
    "PresenceTracker",
    "PeerPresence",
    "ConversationSession",
    "MessageTimeline",
    "message_from_row",
]
