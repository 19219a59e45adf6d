"""Donation request lifecycle.

A request is also its conversation: the request id is the conversation id,
and chat opens when the listing owner accepts.

Transitions:
    pending  -> accepted | declined   (listing owner only)
    accepted -> completed             (either participant)

The transition commits before any notification is attempted, so a failed
notification can never undo a transition.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from donateconnect.db.models import DonationRequest, Listing, RequestStatus
from donateconnect.db.types import utcnow
from donateconnect.errors import (
    ApiError,
    ApiErrorCode,
    ForbiddenError,
    InvalidRequestError,
    NotFoundError,
)
from donateconnect.logging import get_logger
from donateconnect.realtime.feed import ChangeFeed
from donateconnect.schemas.requests import DonationRequestOut
from donateconnect.services.notifications import (
    notify_new_request,
    notify_request_accepted,
    notify_request_declined,
)
from donateconnect.services.push import PushService

logger = get_logger(__name__)

OPEN_STATUSES = (RequestStatus.pending.value, RequestStatus.accepted.value)


def create_request(
    db: Session,
    requester_id: UUID,
    listing_id: UUID,
    note: str | None = None,
    feed: ChangeFeed | None = None,
    push_service: PushService | None = None,
) -> DonationRequestOut:
    """Ask for a listing and notify its owner.

    Raises:
        NotFoundError(E_LISTING_NOT_FOUND): No such listing.
        InvalidRequestError: Own listing, or listing no longer available.
        ApiError(E_DUPLICATE_REQUEST): Caller already has an open request on it.
    """
    listing = db.get(Listing, listing_id)
    if listing is None:
        raise NotFoundError(ApiErrorCode.E_LISTING_NOT_FOUND, "Listing not found")
    if listing.owner_id == requester_id:
        raise InvalidRequestError(message="Cannot request your own listing")
    if not listing.is_available:
        raise InvalidRequestError(message="Listing is no longer available")

    existing = db.execute(
        select(DonationRequest.id).where(
            DonationRequest.listing_id == listing_id,
            DonationRequest.requester_id == requester_id,
            DonationRequest.status.in_(OPEN_STATUSES),
        )
    ).first()
    if existing is not None:
        raise ApiError(ApiErrorCode.E_DUPLICATE_REQUEST, "You already requested this listing")

    request = DonationRequest(listing_id=listing_id, requester_id=requester_id, note=note)
    db.add(request)
    db.commit()
    logger.info("request_created", request_id=str(request.id), listing_id=str(listing_id))

    notify_new_request(db, request, listing, feed=feed, push_service=push_service)
    return DonationRequestOut.model_validate(request)


def _load(db: Session, request_id: UUID) -> tuple[DonationRequest, Listing]:
    request = db.get(DonationRequest, request_id)
    if request is None:
        raise NotFoundError(ApiErrorCode.E_REQUEST_NOT_FOUND, "Request not found")
    return request, request.listing


def _transition(
    db: Session,
    actor_id: UUID,
    request_id: UUID,
    from_status: str,
    to_status: str,
    owner_only: bool,
) -> tuple[DonationRequest, Listing]:
    request, listing = _load(db, request_id)

    if owner_only:
        allowed = actor_id == listing.owner_id
    else:
        allowed = actor_id in (listing.owner_id, request.requester_id)
    if not allowed:
        # Strangers cannot tell an existing request from a missing one
        if actor_id not in (listing.owner_id, request.requester_id):
            raise NotFoundError(ApiErrorCode.E_REQUEST_NOT_FOUND, "Request not found")
        raise ForbiddenError(message="Only the listing owner can do this")

    if request.status != from_status:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_TRANSITION,
            f"Cannot move a {request.status} request to {to_status}",
        )

    request.status = to_status
    request.updated_at = utcnow()
    if to_status == RequestStatus.completed.value:
        listing.is_available = False
    db.commit()

    logger.info(
        "request_transitioned",
        request_id=str(request_id),
        from_status=from_status,
        to_status=to_status,
    )
    return request, listing


def accept_request(
    db: Session,
    actor_id: UUID,
    request_id: UUID,
    feed: ChangeFeed | None = None,
    push_service: PushService | None = None,
) -> DonationRequestOut:
    """Owner accepts; the conversation opens for chat."""
    request, listing = _transition(
        db,
        actor_id,
        request_id,
        RequestStatus.pending.value,
        RequestStatus.accepted.value,
        owner_only=True,
    )
    notify_request_accepted(db, request, listing, feed=feed, push_service=push_service)
    return DonationRequestOut.model_validate(request)


def decline_request(
    db: Session,
    actor_id: UUID,
    request_id: UUID,
    feed: ChangeFeed | None = None,
    push_service: PushService | None = None,
) -> DonationRequestOut:
    """Owner declines."""
    request, listing = _transition(
        db,
        actor_id,
        request_id,
        RequestStatus.pending.value,
        RequestStatus.declined.value,
        owner_only=True,
    )
    notify_request_declined(db, request, listing, feed=feed, push_service=push_service)
    return DonationRequestOut.model_validate(request)


def complete_request(db: Session, actor_id: UUID, request_id: UUID) -> DonationRequestOut:
    """Either participant marks the hand-off done. The listing becomes unavailable."""
    request, _ = _transition(
        db,
        actor_id,
        request_id,
        RequestStatus.accepted.value,
        RequestStatus.completed.value,
        owner_only=False,
    )
    return DonationRequestOut.model_validate(request)
