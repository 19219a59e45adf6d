"""Sequence assignment helper for message ordering.

Provides atomic sequence number assignment for messages within a conversation
using row-level locking (SELECT ... FOR UPDATE) on the request row, so
concurrent senders in the same conversation are serialized.

- Each request has a `next_message_seq` counter (starts at 1)
- Seq assignment locks the request row, reads the counter, increments it
- The returned seq is the one to use for the new message
- Must be called within an existing transaction context
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from donateconnect.db.models import DonationRequest
from donateconnect.logging import get_logger

logger = get_logger(__name__)


def assign_next_message_seq(db: Session, conversation_id: UUID) -> int:
    """Atomically assign the next message sequence number for a conversation.

    This function MUST be called within an existing transaction context.
    It does NOT open or commit its own transaction.

    Args:
        db: Database session (must be in a transaction)
        conversation_id: Request id of the conversation

    Returns:
        The sequence number to use for the new message

    Raises:
        ValueError: If the conversation does not exist
    """
    current_seq = db.execute(
        select(DonationRequest.next_message_seq)
        .where(DonationRequest.id == conversation_id)
        .with_for_update()
    ).scalar_one_or_none()

    if current_seq is None:
        raise ValueError(f"Conversation {conversation_id} not found")

    db.execute(
        update(DonationRequest)
        .where(DonationRequest.id == conversation_id)
        .values(next_message_seq=DonationRequest.next_message_seq + 1)
        .execution_options(synchronize_session=False)
    )

    logger.debug(
        "assigned_message_seq",
        conversation_id=str(conversation_id),
        seq=current_seq,
    )

    return current_seq
