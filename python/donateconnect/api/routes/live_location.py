"""Live location API routes.

POST starts (or restarts) a session, PATCH moves it, DELETE stops it.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from donateconnect.api.deps import get_change_feed, get_db
from donateconnect.auth.middleware import Viewer, get_viewer
from donateconnect.realtime.feed import ChangeFeed
from donateconnect.responses import success_response
from donateconnect.schemas.realtime import (
    StartLiveLocationRequest,
    StopSharingResponse,
    UpdatePositionRequest,
)
from donateconnect.services import live_location as live_location_service

router = APIRouter(tags=["live-location"])


@router.post("/conversations/{conversation_id}/live-location", status_code=201)
def start_sharing(
    conversation_id: UUID,
    body: StartLiveLocationRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    feed: Annotated[ChangeFeed, Depends(get_change_feed)],
) -> dict:
    """Start sharing with a seed fix.

    Errors:
        E_INVALID_LOCATION (400): duration_minutes above the configured maximum.
    """
    result = live_location_service.start_sharing(
        db=db,
        user_id=viewer.user_id,
        conversation_id=conversation_id,
        latitude=body.latitude,
        longitude=body.longitude,
        duration_minutes=body.duration_minutes,
        feed=feed,
    )
    return success_response(result.model_dump(mode="json"))


@router.patch("/conversations/{conversation_id}/live-location")
def update_position(
    conversation_id: UUID,
    body: UpdatePositionRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    feed: Annotated[ChangeFeed, Depends(get_change_feed)],
) -> dict:
    """Push a new position.

    Errors:
        E_SESSION_NOT_FOUND (404): No live session (never started, stopped or expired).
    """
    result = live_location_service.update_position(
        db=db,
        user_id=viewer.user_id,
        conversation_id=conversation_id,
        latitude=body.latitude,
        longitude=body.longitude,
        feed=feed,
    )
    return success_response(result.model_dump(mode="json"))


@router.delete("/conversations/{conversation_id}/live-location")
def stop_sharing(
    conversation_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    feed: Annotated[ChangeFeed, Depends(get_change_feed)],
) -> dict:
    """Stop sharing. Calling it again is a no-op that reports stopped=false."""
    stopped = live_location_service.stop_sharing(
        db=db,
        user_id=viewer.user_id,
        conversation_id=conversation_id,
        feed=feed,
    )
    return success_response(StopSharingResponse(stopped=stopped).model_dump(mode="json"))


@router.get("/conversations/{conversation_id}/live-locations")
def list_live_locations(
    conversation_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Sessions that are live right now."""
    result = live_location_service.list_live_locations(
        db=db,
        viewer_id=viewer.user_id,
        conversation_id=conversation_id,
    )
    return success_response([r.model_dump(mode="json") for r in result])
