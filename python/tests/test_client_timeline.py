"""Tests for the client message timeline.

Tests cover:
- Fetched lists and live events converge on one seq-ordered sequence
- Overlap between a fetch and already-applied events is de-duplicated
- UPDATE events (read receipts) replace the stored message
- Events for other tables or conversations are ignored
"""

from uuid import uuid4

from donateconnect.client.timeline import MessageTimeline, message_from_row
from donateconnect.schemas.messages import MessageOut
from tests.support.client_fakes import message_json, message_row


def _insert(row: dict) -> dict:
    return {"table": "messages", "type": "INSERT", "new": row, "old": None}


def _update(row: dict) -> dict:
    return {"table": "messages", "type": "UPDATE", "new": row, "old": None}


def _fetched(*rows: dict) -> list[MessageOut]:
    return [MessageOut.model_validate(message_json(r)) for r in rows]


class TestMessageFromRow:
    def test_maps_row_columns(self):
        conversation_id = uuid4()
        row = message_row(conversation_id, 3, content="hey")
        row["location_data"] = {"latitude": 1.5, "longitude": 2.5, "address": "Main St"}

        message = message_from_row(row)

        assert message.conversation_id == conversation_id
        assert message.seq == 3
        assert message.type == "text"
        assert message.location.address == "Main St"


class TestMessageTimeline:
    def test_events_arriving_out_of_order_are_sorted_by_seq(self):
        conversation_id = uuid4()
        timeline = MessageTimeline(conversation_id)
        rows = [message_row(conversation_id, seq) for seq in (1, 2, 3)]

        for row in (rows[2], rows[0], rows[1]):
            assert timeline.apply(_insert(row)) is True

        assert [m.seq for m in timeline.messages] == [1, 2, 3]
        assert timeline.last_seq == 3

    def test_fetch_overlapping_live_events_is_deduplicated(self):
        conversation_id = uuid4()
        timeline = MessageTimeline(conversation_id)
        rows = [message_row(conversation_id, seq) for seq in (1, 2, 3)]
        timeline.apply(_insert(rows[2]))

        added = timeline.merge(_fetched(*rows))

        assert added == 2
        assert len(timeline) == 3
        assert [m.seq for m in timeline.messages] == [1, 2, 3]

    def test_duplicate_insert_is_ignored(self):
        conversation_id = uuid4()
        timeline = MessageTimeline(conversation_id)
        row = message_row(conversation_id, 1)
        timeline.merge(_fetched(row))

        assert timeline.apply(_insert(row)) is False
        assert len(timeline) == 1

    def test_update_marks_message_read(self):
        conversation_id = uuid4()
        timeline = MessageTimeline(conversation_id)
        row = message_row(conversation_id, 1)
        timeline.apply(_insert(row))

        assert timeline.apply(_update({**row, "is_read": True})) is True
        assert timeline.messages[0].is_read is True

    def test_identical_update_is_not_a_change(self):
        conversation_id = uuid4()
        timeline = MessageTimeline(conversation_id)
        row = message_row(conversation_id, 1)
        timeline.apply(_insert(row))

        assert timeline.apply(_update(row)) is False

    def test_other_conversation_is_ignored(self):
        timeline = MessageTimeline(uuid4())
        other = message_row(uuid4(), 1)

        assert timeline.apply(_insert(other)) is False
        assert timeline.merge(_fetched(other)) == 0
        assert timeline.last_seq is None

    def test_other_tables_and_deletes_are_ignored(self):
        conversation_id = uuid4()
        timeline = MessageTimeline(conversation_id)
        row = message_row(conversation_id, 1)

        assert timeline.apply({"table": "chat_presence", "type": "INSERT", "new": row}) is False
        assert timeline.apply({"table": "messages", "type": "DELETE", "old": row}) is False
        assert len(timeline) == 0
