"""Notification Dispatcher.

notify() is the single entry point for user-facing notifications:

1. Create the durable in-app notification. Best effort: a failed insert is
   logged and reported as notification_id=None, never raised, because the
   triggering business action (accepting a request, sending a message) has
   already committed and must not fail on a secondary effect.
2. Publish the insert on the change feed (per-recipient realtime toast).
3. If send_push and the recipient's preferences allow this type, hand the
   notification to the push service. Push errors, including validation and
   authorization failures, are logged and reported on the result.

Preferences gate push only. The in-app record is always created.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from donateconnect.db.models import (
    DEFAULT_PREFERRED_CATEGORIES,
    DonationRequest,
    Listing,
    Notification,
    NotificationPreferences,
    NotificationType,
    Profile,
)
from donateconnect.db.types import utcnow
from donateconnect.db.upsert import upsert
from donateconnect.errors import ApiError, ApiErrorCode, NotFoundError
from donateconnect.logging import get_logger
from donateconnect.realtime.feed import ChangeFeed, publish_change, row_image
from donateconnect.schemas.notifications import (
    NotificationOut,
    NotificationPreferencesOut,
    UpdatePreferencesRequest,
)
from donateconnect.services.push import PushResult, PushService

logger = get_logger(__name__)

DEFAULT_LIMIT = 50
MAX_LIMIT = 100
MESSAGE_PREVIEW_LENGTH = 100

# Notification type -> preference flag that gates its push delivery.
# Types not listed (new_message) are never suppressed.
TYPE_TO_PREFERENCE: dict[str, str] = {
    NotificationType.request_received.value: "new_requests",
    NotificationType.request_accepted.value: "request_updates",
    NotificationType.request_declined.value: "request_updates",
    NotificationType.new_item.value: "new_items",
}


@dataclass
class DispatchResult:
    """What notify() managed to do."""

    notification_id: UUID | None = None
    push: PushResult | None = None
    push_skipped_reason: str | None = None
    push_error: str | None = None


def push_url_for(related_listing_id: UUID | None, related_request_id: UUID | None) -> str:
    """Path a push click should open."""
    if related_listing_id is not None:
        return f"/item/{related_listing_id}"
    if related_request_id is not None:
        return "/requests"
    return "/notifications"


# =============================================================================
# Dispatch
# =============================================================================


def create_notification(
    db: Session,
    recipient_id: UUID,
    title: str,
    body: str,
    type: str,
    related_listing_id: UUID | None = None,
    related_request_id: UUID | None = None,
    feed: ChangeFeed | None = None,
) -> Notification | None:
    """Insert an in-app notification. Returns None (and logs) on failure."""
    notification = Notification(
        user_id=recipient_id,
        title=title,
        message=body,
        type=type,
        related_listing_id=related_listing_id,
        related_request_id=related_request_id,
    )
    try:
        db.add(notification)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(
            "notification_create_failed",
            recipient_id=str(recipient_id),
            type=type,
            error=str(e),
        )
        return None

    publish_change(feed, "notifications", "INSERT", new=row_image(notification))
    return notification


def push_allowed(
    db: Session, recipient_id: UUID, type: str, category: str | None = None
) -> bool:
    """Whether the recipient's preferences allow a push of this type."""
    flag = TYPE_TO_PREFERENCE.get(type)
    if flag is None:
        return True

    prefs = db.get(NotificationPreferences, recipient_id)
    if prefs is None:
        return True
    if not getattr(prefs, flag):
        return False
    if type == NotificationType.new_item.value and category is not None:
        return category in (prefs.preferred_categories or [])
    return True


def notify(
    db: Session,
    actor_id: UUID,
    recipient_id: UUID,
    title: str,
    body: str,
    type: str,
    related_listing_id: UUID | None = None,
    related_conversation_id: UUID | None = None,
    send_push: bool = True,
    category: str | None = None,
    feed: ChangeFeed | None = None,
    push_service: PushService | None = None,
) -> DispatchResult:
    """Create an in-app notification and optionally push it.

    Never raises for notification or push failures; inspect the result.

    Args:
        db: Database session.
        actor_id: User whose action triggered the notification. Push
            delivery is authorized as this user.
        recipient_id: User being notified.
        title: Notification title.
        body: Notification body.
        type: One of NotificationType.
        related_listing_id: Listing the notification is about.
        related_conversation_id: Request/conversation it is about.
        send_push: Also deliver through Web Push.
        category: Listing category, checked against preferred categories
            for new_item notifications.
        feed: Change feed for the realtime insert event.
        push_service: Push delivery collaborator.
    """
    result = DispatchResult()

    notification = create_notification(
        db,
        recipient_id,
        title,
        body,
        type,
        related_listing_id=related_listing_id,
        related_request_id=related_conversation_id,
        feed=feed,
    )
    if notification is not None:
        result.notification_id = notification.id

    if not send_push:
        result.push_skipped_reason = "push_disabled"
        return result

    try:
        allowed = push_allowed(db, recipient_id, type, category=category)
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning("notification_preferences_lookup_failed", error=str(e))
        allowed = True
    if not allowed:
        result.push_skipped_reason = "preference_disabled"
        return result

    push_service = push_service or PushService()
    try:
        result.push = push_service.send(
            db,
            actor_id,
            [recipient_id],
            title,
            body,
            url=push_url_for(related_listing_id, related_conversation_id),
        )
    except ApiError as e:
        result.push_error = e.code.value
        logger.warning(
            "notification_push_failed",
            recipient_id=str(recipient_id),
            type=type,
            code=e.code.value,
            error=e.message,
        )
    except SQLAlchemyError as e:
        db.rollback()
        result.push_error = ApiErrorCode.E_UPSTREAM_FAILURE.value
        logger.warning("notification_push_failed", recipient_id=str(recipient_id), error=str(e))

    return result


# =============================================================================
# Triggers
# =============================================================================


def _display_name(db: Session, user_id: UUID, fallback: str) -> str:
    name = db.execute(select(Profile.display_name).where(Profile.id == user_id)).scalar()
    return name or fallback


def notify_new_request(
    db: Session,
    request: DonationRequest,
    listing: Listing,
    feed: ChangeFeed | None = None,
    push_service: PushService | None = None,
) -> DispatchResult:
    """Tell the listing owner someone asked for their item."""
    requester_name = _display_name(db, request.requester_id, "Someone")
    return notify(
        db,
        actor_id=request.requester_id,
        recipient_id=listing.owner_id,
        title="New Request Received",
        body=f'{requester_name} wants to receive your "{listing.name}"',
        type=NotificationType.request_received.value,
        related_listing_id=listing.id,
        related_conversation_id=request.id,
        feed=feed,
        push_service=push_service,
    )


def notify_request_accepted(
    db: Session,
    request: DonationRequest,
    listing: Listing,
    feed: ChangeFeed | None = None,
    push_service: PushService | None = None,
) -> DispatchResult:
    """Tell the requester the owner accepted."""
    owner_name = _display_name(db, listing.owner_id, "The donor")
    return notify(
        db,
        actor_id=listing.owner_id,
        recipient_id=request.requester_id,
        title="Request Accepted!",
        body=f'{owner_name} accepted your request for "{listing.name}"',
        type=NotificationType.request_accepted.value,
        related_listing_id=listing.id,
        related_conversation_id=request.id,
        feed=feed,
        push_service=push_service,
    )


def notify_request_declined(
    db: Session,
    request: DonationRequest,
    listing: Listing,
    feed: ChangeFeed | None = None,
    push_service: PushService | None = None,
) -> DispatchResult:
    """Tell the requester the owner declined."""
    return notify(
        db,
        actor_id=listing.owner_id,
        recipient_id=request.requester_id,
        title="Request Declined",
        body=f'Your request for "{listing.name}" was declined',
        type=NotificationType.request_declined.value,
        related_listing_id=listing.id,
        related_conversation_id=request.id,
        feed=feed,
        push_service=push_service,
    )


def notify_new_item(
    db: Session,
    actor_id: UUID,
    recipient_id: UUID,
    listing: Listing,
    feed: ChangeFeed | None = None,
    push_service: PushService | None = None,
) -> DispatchResult:
    """Announce a new listing; push respects new_items and preferred categories."""
    category_label = listing.category.replace("_", " ")
    return notify(
        db,
        actor_id=actor_id,
        recipient_id=recipient_id,
        title="New Donation Available",
        body=f'A new {category_label} item "{listing.name}" was just posted',
        type=NotificationType.new_item.value,
        related_listing_id=listing.id,
        category=listing.category,
        feed=feed,
        push_service=push_service,
    )


def message_preview(content: str | None, message_type: str) -> str:
    """Body text for a new_message notification."""
    if not content:
        return {
            "image": "Sent a photo",
            "location": "Shared a location",
            "live_location": "Started sharing live location",
        }.get(message_type, "")
    if len(content) > MESSAGE_PREVIEW_LENGTH:
        return content[:MESSAGE_PREVIEW_LENGTH] + "..."
    return content


def notify_new_message(
    db: Session,
    sender_id: UUID,
    recipient_id: UUID,
    conversation_id: UUID,
    listing_id: UUID,
    content: str | None,
    message_type: str,
    feed: ChangeFeed | None = None,
) -> DispatchResult:
    """In-app notice to the peer about a new chat message. No push."""
    sender_name = _display_name(db, sender_id, "User")
    return notify(
        db,
        actor_id=sender_id,
        recipient_id=recipient_id,
        title=f"New Message from {sender_name}",
        body=message_preview(content, message_type),
        type=NotificationType.new_message.value,
        related_listing_id=listing_id,
        related_conversation_id=conversation_id,
        send_push=False,
        feed=feed,
    )


# =============================================================================
# Read surface
# =============================================================================


def list_notifications(
    db: Session, user_id: UUID, limit: int = DEFAULT_LIMIT, unread_only: bool = False
) -> list[NotificationOut]:
    """Newest first."""
    limit = min(max(limit, 1), MAX_LIMIT)
    query = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    rows = db.execute(
        query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
    ).scalars()
    return [NotificationOut.model_validate(n) for n in rows]


def mark_notification_read(
    db: Session, user_id: UUID, notification_id: UUID, feed: ChangeFeed | None = None
) -> NotificationOut:
    """Flip one notification to read.

    Raises:
        NotFoundError(E_NOTIFICATION_NOT_FOUND): Missing or owned by someone else.
    """
    notification = db.get(Notification, notification_id)
    if notification is None or notification.user_id != user_id:
        raise NotFoundError(ApiErrorCode.E_NOTIFICATION_NOT_FOUND, "Notification not found")

    if not notification.is_read:
        notification.is_read = True
        db.commit()
        publish_change(feed, "notifications", "UPDATE", new=row_image(notification))
    return NotificationOut.model_validate(notification)


def mark_all_read(db: Session, user_id: UUID, feed: ChangeFeed | None = None) -> int:
    """Mark every unread notification of the user read. Returns rows changed.

    Each flipped row is published as an UPDATE, as mark_notification_read does.
    """
    unread = list(
        db.execute(
            select(Notification).where(
                Notification.user_id == user_id, Notification.is_read.is_(False)
            )
        ).scalars()
    )
    if not unread:
        return 0

    for notification in unread:
        notification.is_read = True
    db.commit()

    for notification in unread:
        publish_change(feed, "notifications", "UPDATE", new=row_image(notification))
    return len(unread)


def unread_count(db: Session, user_id: UUID) -> int:
    return db.execute(
        select(func.count())
        .select_from(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
    ).scalar_one()


# =============================================================================
# Preferences
# =============================================================================


def get_preferences(db: Session, user_id: UUID) -> NotificationPreferencesOut:
    """Stored preferences, or the defaults when the user never saved any."""
    prefs = db.get(NotificationPreferences, user_id)
    if prefs is None:
        return NotificationPreferencesOut(preferred_categories=list(DEFAULT_PREFERRED_CATEGORIES))
    return NotificationPreferencesOut.model_validate(prefs)


def update_preferences(
    db: Session, user_id: UUID, request: UpdatePreferencesRequest
) -> NotificationPreferencesOut:
    """Partial update; omitted fields keep their stored (or default) value."""
    current = get_preferences(db, user_id)
    merged = current.model_copy(update=request.model_dump(exclude_none=True))

    values = {
        "user_id": user_id,
        "new_requests": merged.new_requests,
        "request_updates": merged.request_updates,
        "new_items": merged.new_items,
        "preferred_categories": list(merged.preferred_categories),
        "updated_at": utcnow(),
    }
    upsert(
        db,
        NotificationPreferences,
        values,
        conflict_columns=["user_id"],
        update_columns=[k for k in values if k != "user_id"],
    )
    db.commit()
    db.expire_all()

    logger.info("notification_preferences_updated", user_id=str(user_id))
    return get_preferences(db, user_id)
