"""Message Channel service layer.

All operations go through the chat gate: the caller must be the listing
owner or the requester of the conversation's request, and the request must
be accepted. Listing history additionally admits completed conversations.

Ordering: each message gets a per-conversation seq under a row lock on the
request, so seq order and created_at order agree. list_messages and the
live subscription both order by seq; clients de-duplicate by message id
where the initial fetch and the live stream overlap.

A failed send raises to the caller and is never retried here.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from donateconnect.auth.permissions import require_chat_participant
from donateconnect.db.models import Message
from donateconnect.errors import ApiErrorCode, UpstreamError
from donateconnect.logging import get_logger
from donateconnect.realtime.feed import ChangeFeed, publish_change, row_image
from donateconnect.schemas.messages import (
    ImagePayload,
    LiveLocationPayload,
    LocationPayload,
    MessageLocation,
    MessageOut,
    MessagePayload,
)
from donateconnect.services.notifications import notify_new_message
from donateconnect.services.seq import assign_next_message_seq

logger = get_logger(__name__)

DEFAULT_LIMIT = 200
MAX_LIMIT = 500


def message_to_out(message: Message) -> MessageOut:
    location = None
    if message.location_data:
        location = MessageLocation(
            latitude=message.location_data["latitude"],
            longitude=message.location_data["longitude"],
            address=message.location_data.get("address"),
        )
    return MessageOut(
        id=message.id,
        conversation_id=message.request_id,
        sender_id=message.sender_id,
        seq=message.seq,
        type=message.message_type,
        content=message.content,
        media_url=message.media_url,
        location=location,
        is_read=message.is_read,
        created_at=message.created_at,
    )


def _location_data(payload: MessagePayload) -> dict | None:
    if isinstance(payload, LocationPayload):
        data = {"latitude": payload.latitude, "longitude": payload.longitude}
        if payload.address:
            data["address"] = payload.address
        return data
    if isinstance(payload, LiveLocationPayload):
        return {"latitude": payload.latitude, "longitude": payload.longitude}
    return None


def send_message(
    db: Session,
    sender_id: UUID,
    conversation_id: UUID,
    payload: MessagePayload,
    feed: ChangeFeed | None = None,
) -> MessageOut:
    """Append a message to a conversation.

    After the message commits, the peer gets a best-effort new_message
    in-app notification.

    Raises:
        NotFoundError(E_CONVERSATION_NOT_FOUND): No such conversation.
        ForbiddenError: Sender is not a participant, or the request is not accepted.
        UpstreamError: The write failed.
    """
    participants = require_chat_participant(db, sender_id, conversation_id)

    try:
        seq = assign_next_message_seq(db, conversation_id)
        message = Message(
            request_id=conversation_id,
            sender_id=sender_id,
            seq=seq,
            message_type=payload.type,
            content=payload.content,
            media_url=payload.media_url if isinstance(payload, ImagePayload) else None,
            location_data=_location_data(payload),
        )
        db.add(message)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            "message_send_failed",
            conversation_id=str(conversation_id),
            error=str(e),
        )
        raise UpstreamError(ApiErrorCode.E_UPSTREAM_FAILURE, "Failed to send message") from e

    out = message_to_out(message)
    publish_change(feed, "messages", "INSERT", new=row_image(message))
    logger.info(
        "message_sent",
        conversation_id=str(conversation_id),
        seq=seq,
        type=payload.type,
    )

    try:
        notify_new_message(
            db,
            sender_id=sender_id,
            recipient_id=participants.peer_of(sender_id),
            conversation_id=conversation_id,
            listing_id=participants.listing_id,
            content=payload.content,
            message_type=payload.type,
            feed=feed,
        )
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(
            "message_notification_failed",
            conversation_id=str(conversation_id),
            error=str(e),
        )

    return out


def list_messages(
    db: Session,
    viewer_id: UUID,
    conversation_id: UUID,
    after_seq: int | None = None,
    limit: int | None = None,
) -> list[MessageOut]:
    """Messages of a conversation in seq order.

    Re-fetchable: repeated calls return the same rows in the same order.
    after_seq returns only messages newer than a seq the caller already has.
    """
    require_chat_participant(db, viewer_id, conversation_id, allow_closed=True)

    limit = min(max(limit or DEFAULT_LIMIT, 1), MAX_LIMIT)
    query = select(Message).where(Message.request_id == conversation_id)
    if after_seq is not None:
        query = query.where(Message.seq > after_seq)
    rows = db.execute(query.order_by(Message.seq.asc()).limit(limit)).scalars()
    return [message_to_out(m) for m in rows]


def mark_read(
    db: Session,
    reader_id: UUID,
    conversation_id: UUID,
    feed: ChangeFeed | None = None,
) -> int:
    """Mark every unread message not sent by the reader as read.

    Idempotent: a second call finds nothing to flip and returns 0.

    Returns:
        Number of messages flipped.
    """
    require_chat_participant(db, reader_id, conversation_id, allow_closed=True)

    unread = list(
        db.execute(
            select(Message).where(
                Message.request_id == conversation_id,
                Message.sender_id != reader_id,
                Message.is_read.is_(False),
            )
        ).scalars()
    )
    if not unread:
        return 0

    for message in unread:
        message.is_read = True
    db.commit()

    for message in unread:
        publish_change(feed, "messages", "UPDATE", new=row_image(message))

    logger.info("messages_marked_read", conversation_id=str(conversation_id), count=len(unread))
    return len(unread)
