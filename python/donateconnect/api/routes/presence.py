"""Presence API routes."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from donateconnect.api.deps import get_change_feed, get_db
from donateconnect.auth.middleware import Viewer, get_viewer
from donateconnect.realtime.feed import ChangeFeed
from donateconnect.responses import success_response
from donateconnect.schemas.realtime import SetPresenceRequest
from donateconnect.services import presence as presence_service

router = APIRouter(tags=["presence"])


@router.put("/conversations/{conversation_id}/presence")
def set_presence(
    conversation_id: UUID,
    body: SetPresenceRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    feed: Annotated[ChangeFeed, Depends(get_change_feed)],
) -> dict:
    """Report the viewer online or offline in a conversation."""
    result = presence_service.set_presence(
        db=db,
        user_id=viewer.user_id,
        conversation_id=conversation_id,
        is_online=body.is_online,
        feed=feed,
    )
    return success_response(result.model_dump(mode="json"))


@router.get("/conversations/{conversation_id}/presence")
def get_peer_presence(
    conversation_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """The peer's presence with staleness applied; data is null if never reported."""
    result = presence_service.get_peer_presence(
        db=db,
        viewer_id=viewer.user_id,
        conversation_id=conversation_id,
    )
    return success_response(result.model_dump(mode="json") if result else None)
