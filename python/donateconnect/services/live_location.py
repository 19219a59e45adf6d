"""Live Location Session, server side.

One session per (user, conversation). Starting a session upserts the row,
so a new start replaces whatever was there. expires_at is fixed at start;
position updates never extend it, and a session past expires_at must be
re-started explicitly.

A row is live only while is_sharing AND expires_at > now. Expired rows may
linger with is_sharing=true; every reader applies is_live() itself.
"""

from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from donateconnect.auth.permissions import require_chat_participant
from donateconnect.config import get_settings
from donateconnect.db.models import LiveLocation
from donateconnect.db.types import utcnow
from donateconnect.db.upsert import upsert
from donateconnect.errors import ApiErrorCode, InvalidRequestError, NotFoundError
from donateconnect.logging import get_logger
from donateconnect.realtime.feed import ChangeFeed, publish_change, row_image
from donateconnect.schemas.realtime import LiveLocationOut

logger = get_logger(__name__)


def is_live(row: Any, now: datetime) -> bool:
    """Observer predicate for a live-location row (ORM row or schema)."""
    return bool(row.is_sharing) and row.expires_at > now


def to_out(row: LiveLocation, now: datetime) -> LiveLocationOut:
    return LiveLocationOut(
        user_id=row.user_id,
        conversation_id=row.request_id,
        latitude=row.latitude,
        longitude=row.longitude,
        is_sharing=row.is_sharing,
        expires_at=row.expires_at,
        updated_at=row.updated_at,
        is_live=is_live(row, now),
    )


def _validate_coordinates(latitude: float, longitude: float) -> None:
    if not -90 <= latitude <= 90 or not -180 <= longitude <= 180:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_LOCATION,
            "latitude must be within [-90, 90] and longitude within [-180, 180]",
        )


def _get_row(db: Session, user_id: UUID, conversation_id: UUID) -> LiveLocation | None:
    return db.execute(
        select(LiveLocation)
        .where(
            LiveLocation.user_id == user_id,
            LiveLocation.request_id == conversation_id,
        )
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def start_sharing(
    db: Session,
    user_id: UUID,
    conversation_id: UUID,
    latitude: float,
    longitude: float,
    duration_minutes: int | None = None,
    now: datetime | None = None,
    feed: ChangeFeed | None = None,
) -> LiveLocationOut:
    """Start (or restart) sharing with a seed position.

    Raises:
        InvalidRequestError(E_INVALID_LOCATION): Bad coordinates or duration.
    """
    require_chat_participant(db, user_id, conversation_id)
    _validate_coordinates(latitude, longitude)

    settings = get_settings()
    if duration_minutes is None:
        duration_minutes = settings.live_location_default_minutes
    if not 1 <= duration_minutes <= settings.live_location_max_minutes:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_LOCATION,
            f"duration_minutes must be between 1 and {settings.live_location_max_minutes}",
        )

    now = now or utcnow()
    existed = _get_row(db, user_id, conversation_id) is not None
    upsert(
        db,
        LiveLocation,
        {
            "user_id": user_id,
            "request_id": conversation_id,
            "latitude": latitude,
            "longitude": longitude,
            "is_sharing": True,
            "expires_at": now + timedelta(minutes=duration_minutes),
            "updated_at": now,
        },
        conflict_columns=["user_id", "request_id"],
        update_columns=["latitude", "longitude", "is_sharing", "expires_at", "updated_at"],
    )
    db.commit()

    row = _get_row(db, user_id, conversation_id)
    publish_change(feed, "live_locations", "UPDATE" if existed else "INSERT", new=row_image(row))
    logger.info(
        "live_location_started",
        conversation_id=str(conversation_id),
        duration_minutes=duration_minutes,
    )
    return to_out(row, now)


def update_position(
    db: Session,
    user_id: UUID,
    conversation_id: UUID,
    latitude: float,
    longitude: float,
    now: datetime | None = None,
    feed: ChangeFeed | None = None,
) -> LiveLocationOut:
    """Move the caller's live session. expires_at is left untouched.

    Raises:
        NotFoundError(E_SESSION_NOT_FOUND): No live session (absent, stopped or expired).
    """
    require_chat_participant(db, user_id, conversation_id)
    _validate_coordinates(latitude, longitude)
    now = now or utcnow()

    row = _get_row(db, user_id, conversation_id)
    if row is None or not is_live(row, now):
        raise NotFoundError(ApiErrorCode.E_SESSION_NOT_FOUND, "No live location session")

    row.latitude = latitude
    row.longitude = longitude
    row.updated_at = now
    db.commit()

    publish_change(feed, "live_locations", "UPDATE", new=row_image(row))
    return to_out(row, now)


def stop_sharing(
    db: Session,
    user_id: UUID,
    conversation_id: UUID,
    now: datetime | None = None,
    feed: ChangeFeed | None = None,
) -> bool:
    """Stop sharing. Idempotent.

    Closed conversations are admitted so a session can always be stopped.

    Returns:
        True if a live session was stopped, False if there was nothing live.
    """
    require_chat_participant(db, user_id, conversation_id, allow_closed=True)
    now = now or utcnow()

    row = _get_row(db, user_id, conversation_id)
    if row is None or not row.is_sharing:
        return False

    was_live = is_live(row, now)
    row.is_sharing = False
    row.updated_at = now
    db.commit()

    publish_change(feed, "live_locations", "UPDATE", new=row_image(row))
    logger.info("live_location_stopped", conversation_id=str(conversation_id))
    return was_live


def list_live_locations(
    db: Session,
    viewer_id: UUID,
    conversation_id: UUID,
    now: datetime | None = None,
) -> list[LiveLocationOut]:
    """Live sessions in the conversation (both participants, caller included)."""
    require_chat_participant(db, viewer_id, conversation_id)
    now = now or utcnow()

    rows = db.execute(
        select(LiveLocation)
        .where(
            LiveLocation.request_id == conversation_id,
            LiveLocation.is_sharing.is_(True),
            LiveLocation.expires_at > now,
        )
        .order_by(LiveLocation.updated_at.asc())
    ).scalars()
    return [to_out(row, now) for row in rows]
