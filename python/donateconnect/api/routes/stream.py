"""Streaming API routes under /stream/*.

- GET /stream/conversations/{id}/events: messages, presence and live-location
  changes of one conversation
- GET /stream/notifications: the viewer's notification inserts
- Auth: stream token as "Authorization: Bearer <token>" or, for EventSource,
  the access_token query parameter (not the supabase session token)

Auth middleware skips /stream/* paths; authentication is handled by the
get_stream_viewer dependency. Each stream holds one change-feed
subscription, released when the client disconnects.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from donateconnect.api.deps import get_change_feed, get_session_factory
from donateconnect.auth.middleware import AUTHORIZATION_HEADER, extract_bearer_token
from donateconnect.auth.permissions import require_chat_participant
from donateconnect.auth.stream_token import verify_stream_token
from donateconnect.config import get_settings
from donateconnect.errors import ApiErrorCode
from donateconnect.logging import get_logger, set_conversation_id, set_stream_jti
from donateconnect.realtime.feed import ChangeFeed, ChangeFilter
from donateconnect.realtime.sse import SSE_HEADERS, SSE_MEDIA_TYPE, stream_subscription

logger = get_logger(__name__)

router = APIRouter(prefix="/stream", tags=["streaming"])

# Tables carried on a conversation stream, all keyed by request_id
CONVERSATION_TABLES = ("messages", "chat_presence", "live_locations")


def get_stream_viewer(
    request: Request,
    access_token: str | None = Query(default=None),
) -> UUID:
    """Dependency: verify stream token and return user_id.

    Also sets stream_jti in logging context for correlation.
    """
    if request.headers.get(AUTHORIZATION_HEADER) or not access_token:
        token = extract_bearer_token(request, ApiErrorCode.E_STREAM_TOKEN_INVALID)
    else:
        token = access_token

    # May be None in tests
    redis_client = getattr(request.app.state, "redis_client", None)

    user_id, jti = verify_stream_token(token, redis_client=redis_client)
    if jti:
        set_stream_jti(jti)
    return user_id


def require_stream_participant(
    conversation_id: UUID,
    viewer_id: Annotated[UUID, Depends(get_stream_viewer)],
) -> UUID:
    """Dependency: run the chat gate and return user_id.

    Sync, so it runs in the threadpool. The session is closed before the
    stream starts and is not held for its lifetime.
    """
    with get_session_factory()() as db:
        require_chat_participant(db, viewer_id, conversation_id)
    return viewer_id


@router.get("/conversations/{conversation_id}/events")
async def stream_conversation_events(
    conversation_id: UUID,
    request: Request,
    viewer_id: Annotated[UUID, Depends(require_stream_participant)],
    feed: Annotated[ChangeFeed, Depends(get_change_feed)],
) -> StreamingResponse:
    """Server-sent change events for one conversation.

    Event types: ready (first), change, resync (events were dropped; re-fetch),
    plus keepalive comments.
    """
    set_conversation_id(str(conversation_id))

    subscription = feed.subscribe(
        *(ChangeFilter(table, "request_id", conversation_id) for table in CONVERSATION_TABLES)
    )
    logger.info("conversation_stream_opened")

    return StreamingResponse(
        stream_subscription(
            subscription,
            request.is_disconnected,
            keepalive_seconds=get_settings().stream_keepalive_seconds,
            ready_data={"conversation_id": str(conversation_id)},
        ),
        media_type=SSE_MEDIA_TYPE,
        headers=SSE_HEADERS,
    )


@router.get("/notifications")
async def stream_notifications(
    request: Request,
    viewer_id: Annotated[UUID, Depends(get_stream_viewer)],
    feed: Annotated[ChangeFeed, Depends(get_change_feed)],
) -> StreamingResponse:
    """Server-sent notification inserts for the viewer."""
    subscription = feed.subscribe(ChangeFilter("notifications", "user_id", viewer_id))
    logger.info("notification_stream_opened")

    return StreamingResponse(
        stream_subscription(
            subscription,
            request.is_disconnected,
            keepalive_seconds=get_settings().stream_keepalive_seconds,
            ready_data={"user_id": str(viewer_id)},
        ),
        media_type=SSE_MEDIA_TYPE,
        headers=SSE_HEADERS,
    )
