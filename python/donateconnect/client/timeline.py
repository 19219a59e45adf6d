"""Catch-up plus live merge of a conversation's messages.

The live stream may connect after messages were already sent, and a
re-fetch may overlap events already applied. The timeline therefore keys
messages by id and keeps them in seq order, so any mix of fetched lists
and INSERT/UPDATE events converges on the same sequence.
"""

from typing import Any
from uuid import UUID

from donateconnect.schemas.messages import MessageLocation, MessageOut


def message_from_row(row: dict[str, Any]) -> MessageOut:
    """Convert a messages change-event row to the API message shape."""
    location = row.get("location_data")
    return MessageOut(
        id=row["id"],
        conversation_id=row["request_id"],
        sender_id=row["sender_id"],
        seq=row["seq"],
        type=row["message_type"],
        content=row.get("content"),
        media_url=row.get("media_url"),
        location=MessageLocation.model_validate(location) if location else None,
        is_read=row["is_read"],
        created_at=row["created_at"],
    )


class MessageTimeline:
    """Ordered, de-duplicated view of one conversation."""

    def __init__(self, conversation_id: UUID):
        self.conversation_id = conversation_id
        self._by_id: dict[UUID, MessageOut] = {}

    def __len__(self) -> int:
        return len(self._by_id)

    @property
    def messages(self) -> list[MessageOut]:
        return sorted(self._by_id.values(), key=lambda m: m.seq)

    @property
    def last_seq(self) -> int | None:
        return max((m.seq for m in self._by_id.values()), default=None)

    def merge(self, messages: list[MessageOut]) -> int:
        """Fold a fetched list in. Returns how many messages were new."""
        added = 0
        for message in messages:
            if message.conversation_id != self.conversation_id:
                continue
            if message.id not in self._by_id:
                added += 1
            self._by_id[message.id] = message
        return added

    def apply(self, event: dict[str, Any]) -> bool:
        """Apply a change event. Returns True if the timeline changed.

        INSERTs of an already-known id and events for other tables or
        conversations are ignored.
        """
        if event.get("table") != "messages" or event.get("type") not in ("INSERT", "UPDATE"):
            return False
        row = event.get("new") or {}
        if str(row.get("request_id")) != str(self.conversation_id):
            return False

        message = message_from_row(row)
        existing = self._by_id.get(message.id)
        if existing is not None and (event["type"] == "INSERT" or existing == message):
            return False
        self._by_id[message.id] = message
        return True
