"""Message Channel API routes.

Routes are transport-only: each calls exactly one service function.

All routes require authentication. The conversation id is the request id.
Response envelope: {"data": ...}
Error envelope: {"error": {"code": "...", "message": "...", "request_id": "..."}}
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from donateconnect.api.deps import get_change_feed, get_db
from donateconnect.auth.middleware import Viewer, get_viewer
from donateconnect.realtime.feed import ChangeFeed
from donateconnect.responses import success_response
from donateconnect.schemas.messages import MarkReadResponse, SendMessageRequest
from donateconnect.services import messages as messages_service

router = APIRouter(tags=["messages"])


@router.post("/conversations/{conversation_id}/messages", status_code=201)
def send_message(
    conversation_id: UUID,
    body: SendMessageRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    feed: Annotated[ChangeFeed, Depends(get_change_feed)],
) -> dict:
    """Send a message.

    Errors:
        E_INVALID_MESSAGE (400): Payload does not match its type.
        E_NOT_CONVERSATION_PARTICIPANT (403): Viewer is not a participant.
        E_CONVERSATION_NOT_ACTIVE (403): Request is not accepted.
        E_CONVERSATION_NOT_FOUND (404): No such conversation.
    """
    result = messages_service.send_message(
        db=db,
        sender_id=viewer.user_id,
        conversation_id=conversation_id,
        payload=body.to_payload(),
        feed=feed,
    )
    return success_response(result.model_dump(mode="json"))


@router.get("/conversations/{conversation_id}/messages")
def list_messages(
    conversation_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    after_seq: int | None = Query(default=None, ge=0, description="Only messages after this seq"),
    limit: int = Query(default=200, ge=1, le=500, description="Maximum results (1-500)"),
) -> dict:
    """List messages in seq order. Completed conversations stay readable."""
    result = messages_service.list_messages(
        db=db,
        viewer_id=viewer.user_id,
        conversation_id=conversation_id,
        after_seq=after_seq,
        limit=limit,
    )
    return success_response([m.model_dump(mode="json") for m in result])


@router.post("/conversations/{conversation_id}/read")
def mark_read(
    conversation_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    feed: Annotated[ChangeFeed, Depends(get_change_feed)],
) -> dict:
    """Mark the peer's messages read. Idempotent."""
    updated = messages_service.mark_read(
        db=db,
        reader_id=viewer.user_id,
        conversation_id=conversation_id,
        feed=feed,
    )
    return success_response(MarkReadResponse(updated=updated).model_dump(mode="json"))
