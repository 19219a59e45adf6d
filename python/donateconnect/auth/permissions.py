"""Conversation Gate: who may contact whom.

These predicates are the single source of truth for relationship-based
authorization. Routes and services never re-derive the relationship rule
in their own queries.

Relationship fact (derived, never stored):
    A and B are connected iff A == B, OR A owns a listing B has requested,
    OR B owns a listing A has requested. Request status does not matter.

Two variants, kept distinct:
- Notify gate (authorized_notify_targets / require_notify_targets):
  any request status is sufficient. Used for push delivery.
- Chat gate (can_chat / require_chat_participant): the caller must be one of
  the two participants of that specific conversation AND its request must be
  accepted. Used by messaging, presence and live location.

All queries read requests and listings directly; neither variant depends on
another authorization predicate.
"""

import re
from collections.abc import Sequence
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select, union_all
from sqlalchemy.orm import Session

from donateconnect.db.models import DonationRequest, Listing, RequestStatus
from donateconnect.db.types import utcnow
from donateconnect.errors import (
    ApiErrorCode,
    ForbiddenError,
    InvalidRequestError,
    NotFoundError,
)
from donateconnect.logging import get_audit_logger, get_logger

MAX_TARGETS = 50

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)

logger = get_logger(__name__)
audit_logger = get_audit_logger()


@dataclass(frozen=True)
class ConversationParticipants:
    """The two parties of a conversation and its request state."""

    conversation_id: UUID
    listing_id: UUID
    owner_id: UUID
    requester_id: UUID
    status: str

    def includes(self, user_id: UUID) -> bool:
        return user_id in (self.owner_id, self.requester_id)

    def peer_of(self, user_id: UUID) -> UUID:
        """Return the other participant."""
        return self.requester_id if user_id == self.owner_id else self.owner_id


# =============================================================================
# Notify gate
# =============================================================================


def parse_target_ids(target_ids: Sequence[UUID | str] | None) -> list[UUID]:
    """Validate a target id list and collapse duplicates, keeping order.

    Raises:
        InvalidRequestError: Empty list, more than MAX_TARGETS ids, or a
            token that is not a well-formed UUID.
    """
    if not target_ids or isinstance(target_ids, (str, bytes)):
        raise InvalidRequestError(message="user_ids must be a non-empty array")
    if len(target_ids) > MAX_TARGETS:
        raise InvalidRequestError(message=f"Maximum {MAX_TARGETS} user_ids per request")

    parsed: list[UUID] = []
    seen: set[UUID] = set()
    for raw in target_ids:
        if isinstance(raw, UUID):
            value = raw
        elif isinstance(raw, str) and UUID_PATTERN.match(raw):
            value = UUID(raw)
        else:
            raise InvalidRequestError(message="Invalid user_id format")
        if value not in seen:
            seen.add(value)
            parsed.append(value)
    return parsed


def authorized_notify_targets(
    session: Session,
    caller_id: UUID,
    target_ids: Sequence[UUID | str],
) -> list[UUID]:
    """Return the subset of targets the caller may notify.

    A target passes if it is the caller, or a request links the two users
    in either direction (caller owns a listing the target requested, or the
    target owns a listing the caller requested), in any status.

    Implementation constraint: executes at most ONE SELECT for the whole
    batch. Records an audit entry for every decision.

    Raises:
        InvalidRequestError: If target_ids is malformed (see parse_target_ids).
    """
    targets = parse_target_ids(target_ids)
    others = [t for t in targets if t != caller_id]

    connected: set[UUID] = set()
    if others:
        # Caller is the donor, target is the requester
        as_owner = (
            select(DonationRequest.requester_id.label("user_id"))
            .join(Listing, DonationRequest.listing_id == Listing.id)
            .where(
                Listing.owner_id == caller_id,
                DonationRequest.requester_id.in_(others),
            )
        )
        # Caller is the requester, target is the donor
        as_requester = (
            select(Listing.owner_id.label("user_id"))
            .join(DonationRequest, DonationRequest.listing_id == Listing.id)
            .where(
                DonationRequest.requester_id == caller_id,
                Listing.owner_id.in_(others),
            )
        )
        combined = union_all(as_owner, as_requester).subquery()
        connected = set(session.execute(select(combined.c.user_id).distinct()).scalars())

    authorized = [t for t in targets if t == caller_id or t in connected]
    _record_decision(caller_id, requested=len(targets), authorized=len(authorized))
    return authorized


def require_notify_targets(
    session: Session,
    caller_id: UUID,
    target_ids: Sequence[UUID | str],
) -> list[UUID]:
    """Like authorized_notify_targets, but an empty result is an error.

    Raises:
        InvalidRequestError: If target_ids is malformed.
        ForbiddenError: If no target survives the gate.
    """
    authorized = authorized_notify_targets(session, caller_id, target_ids)
    if not authorized:
        raise ForbiddenError(message="Not authorized to notify the requested users")
    return authorized


def _record_decision(caller_id: UUID, requested: int, authorized: int) -> None:
    try:
        audit_logger.info(
            "notify_gate_decision",
            caller_id=str(caller_id),
            requested=requested,
            authorized=authorized,
            decided_at=utcnow().isoformat(),
        )
    except Exception as e:
        logger.warning("audit_write_failed", caller_id=str(caller_id), error=str(e))


# =============================================================================
# Chat gate
# =============================================================================


def get_conversation_participants(
    session: Session, conversation_id: UUID
) -> ConversationParticipants | None:
    """Load the participants of a conversation, or None if it does not exist."""
    row = session.execute(
        select(
            DonationRequest.id,
            DonationRequest.listing_id,
            Listing.owner_id,
            DonationRequest.requester_id,
            DonationRequest.status,
        )
        .join(Listing, DonationRequest.listing_id == Listing.id)
        .where(DonationRequest.id == conversation_id)
    ).one_or_none()

    if row is None:
        return None
    return ConversationParticipants(
        conversation_id=row[0],
        listing_id=row[1],
        owner_id=row[2],
        requester_id=row[3],
        status=row[4],
    )


def can_chat(session: Session, user_id: UUID, conversation_id: UUID) -> bool:
    """Check if user may chat in the conversation.

    True iff the user is the listing owner or the requester AND the request
    is accepted. Returns False for non-existent conversations.
    """
    participants = get_conversation_participants(session, conversation_id)
    return (
        participants is not None
        and participants.includes(user_id)
        and participants.status == RequestStatus.accepted.value
    )


def require_chat_participant(
    session: Session,
    user_id: UUID,
    conversation_id: UUID,
    allow_closed: bool = False,
) -> ConversationParticipants:
    """Resolve a conversation for a participant or raise.

    Args:
        allow_closed: Also admit conversations whose request is completed
            (read-only history).

    Raises:
        NotFoundError(E_CONVERSATION_NOT_FOUND): No such request.
        ForbiddenError(E_NOT_CONVERSATION_PARTICIPANT): User is not a party.
        ForbiddenError(E_CONVERSATION_NOT_ACTIVE): Request is not accepted.
    """
    participants = get_conversation_participants(session, conversation_id)
    if participants is None:
        raise NotFoundError(ApiErrorCode.E_CONVERSATION_NOT_FOUND, "Conversation not found")

    if not participants.includes(user_id):
        raise ForbiddenError(
            ApiErrorCode.E_NOT_CONVERSATION_PARTICIPANT,
            "Not a participant of this conversation",
        )

    allowed = {RequestStatus.accepted.value}
    if allow_closed:
        allowed.add(RequestStatus.completed.value)
    if participants.status not in allowed:
        raise ForbiddenError(
            ApiErrorCode.E_CONVERSATION_NOT_ACTIVE,
            "Conversation is not open for chat",
        )

    return participants
