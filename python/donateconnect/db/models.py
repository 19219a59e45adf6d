"""SQLAlchemy ORM models for DonateConnect.

Defines all database tables using SQLAlchemy 2.x declarative patterns.
Enum-like columns are plain text guarded by CHECK constraints; the Python
enums below are the source of truth for their values.

Column types are portable (Uuid, UTCDateTime, JSON with a JSONB variant) so
the same metadata runs on PostgreSQL in deployment and SQLite in tests.
"""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from donateconnect.db.types import JSONType, UTCDateTime, utcnow


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# Enums
# =============================================================================


class ListingCategory(str, PyEnum):
    """Donation listing categories."""

    clothing = "clothing"
    school_supplies = "school_supplies"
    electronics = "electronics"
    other = "other"


class RequestStatus(str, PyEnum):
    """Donation request lifecycle.

    States:
        pending: Created by the requester, awaiting the donor
        accepted: Donor accepted; the conversation is open for chat
        declined: Donor declined (terminal)
        completed: Hand-off done (terminal)
    """

    pending = "pending"
    accepted = "accepted"
    declined = "declined"
    completed = "completed"


class MessageType(str, PyEnum):
    """Kinds of chat message."""

    text = "text"
    image = "image"
    location = "location"
    live_location = "live_location"


class NotificationType(str, PyEnum):
    """Notification type tags."""

    request_received = "request_received"
    request_accepted = "request_accepted"
    request_declined = "request_declined"
    new_item = "new_item"
    new_message = "new_message"


DEFAULT_PREFERRED_CATEGORIES = [c.value for c in ListingCategory]


def _in_list(column: str, enum_cls: type[PyEnum]) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"


# =============================================================================
# Users and listings
# =============================================================================


class Profile(Base):
    """Profile model - one row per authenticated user."""

    __tablename__ = "profiles"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class Listing(Base):
    """Listing model - a donated item posted by its owner (the donor)."""

    __tablename__ = "listings"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(
        Text, nullable=False, default=ListingCategory.other.value
    )
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(_in_list("category", ListingCategory), name="ck_listings_category"),
        Index("ix_listings_owner_id", "owner_id"),
    )

    requests: Mapped[list["DonationRequest"]] = relationship(
        "DonationRequest", back_populates="listing", cascade="all, delete-orphan"
    )


class DonationRequest(Base):
    """Request model - a requester asking for a listing.

    Each request is also the conversation between its requester and the
    listing owner. next_message_seq is the per-conversation message counter.
    """

    __tablename__ = "requests"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    listing_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("listings.id", ondelete="CASCADE"),
        nullable=False,
    )
    requester_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default=RequestStatus.pending.value
    )
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_message_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(_in_list("status", RequestStatus), name="ck_requests_status"),
        CheckConstraint("next_message_seq >= 1", name="ck_requests_next_message_seq_positive"),
        Index("ix_requests_listing_id", "listing_id"),
        Index("ix_requests_requester_id", "requester_id"),
    )

    listing: Mapped["Listing"] = relationship("Listing", back_populates="requests")
    messages: Mapped[list["Message"]] = relationship(
        "Message", back_populates="request", cascade="all, delete-orphan"
    )


# =============================================================================
# Realtime state
# =============================================================================


class Message(Base):
    """Message model - one chat message in a request's conversation."""

    __tablename__ = "messages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    request_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    sender_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    message_type: Mapped[str] = mapped_column(
        Text, nullable=False, default=MessageType.text.value
    )
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    media_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    location_data: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("seq >= 1", name="ck_messages_seq_positive"),
        CheckConstraint(_in_list("message_type", MessageType), name="ck_messages_type"),
        CheckConstraint(
            "(message_type != 'text' OR content IS NOT NULL)",
            name="ck_messages_text_has_content",
        ),
        CheckConstraint(
            "(message_type != 'image' OR media_url IS NOT NULL)",
            name="ck_messages_image_has_media",
        ),
        CheckConstraint(
            "(message_type NOT IN ('location', 'live_location') OR location_data IS NOT NULL)",
            name="ck_messages_location_has_data",
        ),
        UniqueConstraint("request_id", "seq", name="uix_messages_request_seq"),
    )

    request: Mapped["DonationRequest"] = relationship(
        "DonationRequest", back_populates="messages"
    )


class ChatPresence(Base):
    """Presence record - one row per (user, conversation)."""

    __tablename__ = "chat_presence"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    request_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    is_online: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_seen: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "request_id", name="uix_chat_presence_user_request"),
    )


class LiveLocation(Base):
    """Live location session - one row per (user, conversation).

    A row is live only while is_sharing is true and expires_at is in the
    future; readers must check both.
    """

    __tablename__ = "live_locations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    request_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    is_sharing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "request_id", name="uix_live_locations_user_request"),
        CheckConstraint("latitude >= -90 AND latitude <= 90", name="ck_live_locations_latitude"),
        CheckConstraint(
            "longitude >= -180 AND longitude <= 180", name="ck_live_locations_longitude"
        ),
    )


# =============================================================================
# Notifications
# =============================================================================


class Notification(Base):
    """Durable in-app notification record."""

    __tablename__ = "notifications"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    related_listing_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("listings.id", ondelete="SET NULL"),
        nullable=True,
    )
    related_request_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("requests.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(_in_list("type", NotificationType), name="ck_notifications_type"),
        Index("ix_notifications_user_created", "user_id", "created_at"),
    )


class PushSubscription(Base):
    """Web Push registration for one browser of one user."""

    __tablename__ = "push_subscriptions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    endpoint: Mapped[str] = mapped_column(Text, nullable=False)
    p256dh: Mapped[str] = mapped_column(Text, nullable=False)
    auth: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "endpoint", name="uix_push_subscriptions_user_endpoint"),
    )


class NotificationPreferences(Base):
    """Per-user notification preferences."""

    __tablename__ = "notification_preferences"

    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("profiles.id", ondelete="CASCADE"),
        primary_key=True,
    )
    new_requests: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    request_updates: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    new_items: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    preferred_categories: Mapped[list[str]] = mapped_column(
        JSONType, nullable=False, default=lambda: list(DEFAULT_PREFERRED_CATEGORIES)
    )
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
