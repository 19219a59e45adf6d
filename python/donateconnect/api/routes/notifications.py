"""Notification and notification preference API routes."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from donateconnect.api.deps import get_change_feed, get_db
from donateconnect.auth.middleware import Viewer, get_viewer
from donateconnect.realtime.feed import ChangeFeed
from donateconnect.responses import success_response
from donateconnect.schemas.notifications import UnreadCountOut, UpdatePreferencesRequest
from donateconnect.services import notifications as notifications_service

router = APIRouter(tags=["notifications"])


@router.get("/notifications")
def list_notifications(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    limit: int = Query(default=50, ge=1, le=100, description="Maximum results (1-100)"),
    unread_only: bool = Query(default=False),
) -> dict:
    """The viewer's notifications, newest first."""
    result = notifications_service.list_notifications(
        db=db,
        user_id=viewer.user_id,
        limit=limit,
        unread_only=unread_only,
    )
    return success_response([n.model_dump(mode="json") for n in result])


@router.get("/notifications/unread-count")
def get_unread_count(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    count = notifications_service.unread_count(db=db, user_id=viewer.user_id)
    return success_response(UnreadCountOut(unread=count).model_dump(mode="json"))


@router.post("/notifications/read-all")
def mark_all_read(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    feed: Annotated[ChangeFeed, Depends(get_change_feed)],
) -> dict:
    """Mark every notification read. Returns how many changed."""
    updated = notifications_service.mark_all_read(db=db, user_id=viewer.user_id, feed=feed)
    return success_response({"updated": updated})


@router.post("/notifications/{notification_id}/read")
def mark_notification_read(
    notification_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    feed: Annotated[ChangeFeed, Depends(get_change_feed)],
) -> dict:
    """Mark one notification read.

    Errors:
        E_NOTIFICATION_NOT_FOUND (404): Missing or not the viewer's.
    """
    result = notifications_service.mark_notification_read(
        db=db,
        user_id=viewer.user_id,
        notification_id=notification_id,
        feed=feed,
    )
    return success_response(result.model_dump(mode="json"))


@router.get("/notification-preferences")
def get_preferences(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    result = notifications_service.get_preferences(db=db, user_id=viewer.user_id)
    return success_response(result.model_dump(mode="json"))


@router.put("/notification-preferences")
def update_preferences(
    body: UpdatePreferencesRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Partial update of push preferences."""
    result = notifications_service.update_preferences(
        db=db,
        user_id=viewer.user_id,
        request=body,
    )
    return success_response(result.model_dump(mode="json"))
