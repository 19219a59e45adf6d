"""Donation request API routes.

Creating and moving requests through their lifecycle. Accepting a request
opens its conversation for chat.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from donateconnect.api.deps import get_change_feed, get_db, get_push_service
from donateconnect.auth.middleware import Viewer, get_viewer
from donateconnect.realtime.feed import ChangeFeed
from donateconnect.responses import success_response
from donateconnect.schemas.requests import CreateDonationRequest
from donateconnect.services import requests as requests_service
from donateconnect.services.push import PushService

router = APIRouter(tags=["requests"])


@router.post("/requests", status_code=201)
def create_request(
    body: CreateDonationRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    feed: Annotated[ChangeFeed, Depends(get_change_feed)],
    push_service: Annotated[PushService, Depends(get_push_service)],
) -> dict:
    """Request a listing.

    Errors:
        E_LISTING_NOT_FOUND (404): No such listing.
        E_INVALID_REQUEST (400): Own listing or listing unavailable.
        E_DUPLICATE_REQUEST (409): Viewer already has an open request on it.
    """
    result = requests_service.create_request(
        db=db,
        requester_id=viewer.user_id,
        listing_id=body.listing_id,
        note=body.note,
        feed=feed,
        push_service=push_service,
    )
    return success_response(result.model_dump(mode="json"))


@router.post("/requests/{request_id}/accept")
def accept_request(
    request_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    feed: Annotated[ChangeFeed, Depends(get_change_feed)],
    push_service: Annotated[PushService, Depends(get_push_service)],
) -> dict:
    """Listing owner accepts a pending request."""
    result = requests_service.accept_request(
        db=db,
        actor_id=viewer.user_id,
        request_id=request_id,
        feed=feed,
        push_service=push_service,
    )
    return success_response(result.model_dump(mode="json"))


@router.post("/requests/{request_id}/decline")
def decline_request(
    request_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    feed: Annotated[ChangeFeed, Depends(get_change_feed)],
    push_service: Annotated[PushService, Depends(get_push_service)],
) -> dict:
    """Listing owner declines a pending request."""
    result = requests_service.decline_request(
        db=db,
        actor_id=viewer.user_id,
        request_id=request_id,
        feed=feed,
        push_service=push_service,
    )
    return success_response(result.model_dump(mode="json"))


@router.post("/requests/{request_id}/complete")
def complete_request(
    request_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Either participant marks an accepted request completed."""
    result = requests_service.complete_request(
        db=db,
        actor_id=viewer.user_id,
        request_id=request_id,
    )
    return success_response(result.model_dump(mode="json"))
