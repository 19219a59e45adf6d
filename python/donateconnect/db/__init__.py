"""Database module for DonateConnect.

Provides engine creation, session management, transaction helpers, and ORM models.
"""

from donateconnect.db.engine import create_db_engine, get_engine
from donateconnect.db.models import (
    Base,
    ChatPresence,
    DonationRequest,
    Listing,
    ListingCategory,
    LiveLocation,
    Message,
    MessageType,
    Notification,
    NotificationPreferences,
    NotificationType,
    Profile,
    PushSubscription,
    RequestStatus,
)
from donateconnect.db.session import get_db, transaction

__all__ = [
    # Engine and session
    "create_db_engine",
    "get_engine",
    "get_db",
    "transaction",
    # Base
    "Base",
    # Enums
    "ListingCategory",
    "RequestStatus",
    "MessageType",
    "NotificationType",
    # Models
    "Profile",
    "Listing",
    "DonationRequest",
    "Message",
    "ChatPresence",
    "LiveLocation",
    "Notification",
    "PushSubscription",
    "NotificationPreferences",
]
