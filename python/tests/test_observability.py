"""Tests for logging context and the authorization audit trail.

Covers:
- Request ContextVars (request_id, path, method, conversation_id, stream_jti)
  injected into every log event and cleared at the end of a request
- Celery task context
- Every notify-gate decision is written to the audit logger
- A failing audit write never changes the decision
"""

import pytest
from sqlalchemy.orm import Session

from donateconnect.auth import permissions
from donateconnect.auth.permissions import authorized_notify_targets
from donateconnect.errors import InvalidRequestError
from donateconnect.logging import (
    add_request_context,
    clear_request_context,
    clear_task_context,
    configure_task_logging,
    set_conversation_id,
    set_request_context,
    set_stream_jti,
)
from tests.factories import create_test_conversation, create_test_profile


class TestContextVars:
    def setup_method(self):
        clear_request_context()
        clear_task_context()

    def teardown_method(self):
        clear_request_context()
        clear_task_context()

    def test_path_and_method_injected(self):
        set_request_context("req-1", user_id="user-1", path="/push/send", method="POST")

        event_dict = add_request_context(None, "info", {})

        assert event_dict["request_id"] == "req-1"
        assert event_dict["user_id"] == "user-1"
        assert event_dict["path"] == "/push/send"
        assert event_dict["method"] == "POST"

    def test_conversation_and_stream_jti_injected(self):
        set_request_context("req-1")
        set_conversation_id("convo-1")
        set_stream_jti("jti-xyz-789")

        event_dict = add_request_context(None, "info", {})

        assert event_dict["conversation_id"] == "convo-1"
        assert event_dict["stream_jti"] == "jti-xyz-789"

    def test_explicit_field_wins(self):
        set_request_context("req-1")
        set_conversation_id("convo-1")

        event_dict = add_request_context(None, "info", {"conversation_id": "convo-2"})

        assert event_dict["conversation_id"] == "convo-2"

    def test_clear_clears_all(self):
        set_request_context("req-1", path="/test", method="GET")
        set_conversation_id("convo-1")
        set_stream_jti("jti-1")

        clear_request_context()
        event_dict = add_request_context(None, "info", {})

        assert event_dict == {}

    def test_none_values_not_injected(self):
        set_request_context("req-1")

        event_dict = add_request_context(None, "info", {})

        assert event_dict == {"request_id": "req-1"}

    def test_task_context(self):
        configure_task_logging(request_id="req-9", task_name="sweep", task_id="task-1")

        event_dict = add_request_context(None, "info", {})
        assert event_dict == {"request_id": "req-9", "task_name": "sweep", "task_id": "task-1"}

        clear_task_context()
        assert add_request_context(None, "info", {}) == {}


# =============================================================================
# Audit trail
# =============================================================================


class RecordingAudit:
    def __init__(self, error: Exception | None = None):
        self.events: list[tuple[str, dict]] = []
        self.error = error

    def info(self, event: str, **kw):
        if self.error is not None:
            raise self.error
        self.events.append((event, kw))


class TestAuditTrail:
    def test_decision_is_recorded(self, db_session: Session, monkeypatch):
        audit = RecordingAudit()
        monkeypatch.setattr(permissions, "audit_logger", audit)
        convo = create_test_conversation(db_session, status="pending")
        stranger = create_test_profile(db_session)

        authorized_notify_targets(db_session, convo.owner_id, [convo.requester_id, stranger])

        [(event, fields)] = audit.events
        assert event == "notify_gate_decision"
        assert fields["caller_id"] == str(convo.owner_id)
        assert fields["requested"] == 2
        assert fields["authorized"] == 1
        assert "decided_at" in fields

    def test_failed_audit_write_does_not_change_decision(
        self, db_session: Session, monkeypatch
    ):
        monkeypatch.setattr(permissions, "audit_logger", RecordingAudit(RuntimeError("disk full")))
        convo = create_test_conversation(db_session)

        authorized = authorized_notify_targets(db_session, convo.owner_id, [convo.requester_id])

        assert authorized == [convo.requester_id]

    @pytest.mark.parametrize("targets", [[], ["not-a-uuid"]])
    def test_rejected_input_is_not_audited(self, db_session: Session, monkeypatch, targets):
        audit = RecordingAudit()
        monkeypatch.setattr(permissions, "audit_logger", audit)

        with pytest.raises(InvalidRequestError):
            authorized_notify_targets(db_session, create_test_profile(db_session), targets)

        assert audit.events == []
