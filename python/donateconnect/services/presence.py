"""Presence Tracker, server side.

Presence is advisory: one row per (user, conversation), written with
last-writer-wins upserts. A stored is_online=true is only believed while
last_seen is fresh, so a tab that died without reporting offline reads as
offline once the staleness window passes. Nothing here runs on a timer.
"""

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from donateconnect.auth.permissions import require_chat_participant
from donateconnect.config import get_settings
from donateconnect.db.models import ChatPresence
from donateconnect.db.types import utcnow
from donateconnect.db.upsert import upsert
from donateconnect.logging import get_logger
from donateconnect.realtime.feed import ChangeFeed, publish_change, row_image
from donateconnect.schemas.realtime import PresenceOut, PresenceView

logger = get_logger(__name__)


def _get_record(db: Session, user_id: UUID, conversation_id: UUID) -> ChatPresence | None:
    return db.execute(
        select(ChatPresence).where(
            ChatPresence.user_id == user_id,
            ChatPresence.request_id == conversation_id,
        )
    ).scalar_one_or_none()


def set_presence(
    db: Session,
    user_id: UUID,
    conversation_id: UUID,
    is_online: bool,
    now: datetime | None = None,
    feed: ChangeFeed | None = None,
) -> PresenceOut:
    """Record a presence transition for the caller."""
    require_chat_participant(db, user_id, conversation_id)
    now = now or utcnow()
    existed = _get_record(db, user_id, conversation_id) is not None

    upsert(
        db,
        ChatPresence,
        {
            "user_id": user_id,
            "request_id": conversation_id,
            "is_online": is_online,
            "last_seen": now,
        },
        conflict_columns=["user_id", "request_id"],
        update_columns=["is_online", "last_seen"],
    )
    db.commit()

    record = _get_record(db, user_id, conversation_id)
    db.refresh(record)
    publish_change(
        feed, "chat_presence", "UPDATE" if existed else "INSERT", new=row_image(record)
    )

    logger.debug(
        "presence_updated",
        conversation_id=str(conversation_id),
        is_online=is_online,
    )
    return PresenceOut(
        user_id=record.user_id,
        conversation_id=record.request_id,
        is_online=record.is_online,
        last_seen=record.last_seen,
    )


def interpret_presence(
    record: ChatPresence, now: datetime, stale_after: timedelta
) -> PresenceView:
    """Presence as an observer should render it at `now`."""
    stale = now - record.last_seen >= stale_after
    return PresenceView(
        user_id=record.user_id,
        conversation_id=record.request_id,
        is_online=record.is_online and not stale,
        stored_online=record.is_online,
        stale=stale,
        last_seen=record.last_seen,
    )


def get_peer_presence(
    db: Session,
    viewer_id: UUID,
    conversation_id: UUID,
    now: datetime | None = None,
) -> PresenceView | None:
    """The other participant's presence, or None if they never reported any."""
    participants = require_chat_participant(db, viewer_id, conversation_id)
    record = _get_record(db, participants.peer_of(viewer_id), conversation_id)
    if record is None:
        return None

    stale_after = timedelta(seconds=get_settings().presence_stale_seconds)
    return interpret_presence(record, now or utcnow(), stale_after)
