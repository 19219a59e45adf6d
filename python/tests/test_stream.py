"""Tests for server-sent event streams.

Tests cover:
- format_sse framing
- stream_subscription: ready first, change frames, resync on lag,
  keepalive on idle, subscription closed on exit
- Stream token minting and verification
- /stream/* auth and conversation gate (checked before streaming)
- The gate session is closed before streaming starts
- Path-scoped CORS for browser EventSource
"""

import inspect
import json
import time
from uuid import uuid4

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from donateconnect.api.routes import stream as stream_routes
from donateconnect.app import create_app
from donateconnect.auth.stream_token import (
    STREAM_TOKEN_AUDIENCE,
    STREAM_TOKEN_ISSUER,
    _get_signing_key_bytes,
    mint_stream_token,
    verify_stream_token,
)
from donateconnect.config import clear_settings_cache
from donateconnect.errors import ApiErrorCode, UnauthorizedError
from donateconnect.realtime.feed import ChangeEvent, ChangeFeed, ChangeFilter
from donateconnect.realtime.sse import KEEPALIVE, format_sse, stream_subscription
from tests.factories import create_test_conversation, create_test_profile
from tests.helpers import auth_headers, mint_test_token, stream_headers
from tests.support.mock_verifier import MockJwtVerifier


def _parse_frame(frame: str) -> tuple[str, dict]:
    lines = frame.strip().split("\n")
    event = next(line[len("event: ") :] for line in lines if line.startswith("event: "))
    data = "".join(line[len("data: ") :] for line in lines if line.startswith("data: "))
    return event, json.loads(data)


async def _never_disconnected() -> bool:
    return False


# =============================================================================
# Framing
# =============================================================================


class TestFormatSse:
    def test_event_and_data(self):
        assert format_sse("ready", {"a": 1}) == 'event: ready\ndata: {"a":1}\n\n'

    def test_with_id(self):
        frame = format_sse("change", {}, event_id="7")

        assert frame.startswith("id: 7\nevent: change\n")


class TestStreamSubscription:
    """Tests for the SSE generator."""

    @pytest.mark.asyncio
    async def test_ready_then_change(self):
        feed = ChangeFeed()
        cid = uuid4()
        subscription = feed.subscribe(ChangeFilter("messages", "request_id", cid))
        stream = stream_subscription(
            subscription, _never_disconnected, 5.0, ready_data={"conversation_id": str(cid)}
        )

        assert _parse_frame(await anext(stream)) == ("ready", {"conversation_id": str(cid)})

        feed.publish(ChangeEvent(table="messages", type="INSERT", new={"request_id": str(cid)}))
        event, data = _parse_frame(await anext(stream))

        assert event == "change"
        assert data["table"] == "messages"
        assert data["type"] == "INSERT"
        await stream.aclose()
        assert subscription.closed

    @pytest.mark.asyncio
    async def test_keepalive_when_idle(self):
        feed = ChangeFeed()
        subscription = feed.subscribe(ChangeFilter("messages"))
        stream = stream_subscription(subscription, _never_disconnected, 0.01)

        await anext(stream)

        assert await anext(stream) == KEEPALIVE
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_resync_after_overflow(self):
        feed = ChangeFeed()
        subscription = feed.subscribe(ChangeFilter("messages"), maxsize=1)
        stream = stream_subscription(subscription, _never_disconnected, 5.0)
        await anext(stream)

        for _ in range(2):
            feed.publish(ChangeEvent(table="messages", type="INSERT", new={}))

        event, data = _parse_frame(await anext(stream))
        assert event == "resync"
        assert data == {"reason": "lagged"}
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_disconnect_ends_stream_and_closes(self):
        feed = ChangeFeed()
        subscription = feed.subscribe(ChangeFilter("messages"))

        async def disconnected() -> bool:
            return True

        frames = [frame async for frame in stream_subscription(subscription, disconnected, 5.0)]

        assert len(frames) == 1
        assert subscription.closed
        assert feed.subscriber_count == 0


# =============================================================================
# Stream tokens
# =============================================================================


class TestStreamTokens:
    """Tests for minting and verifying stream tokens."""

    def test_roundtrip(self):
        user_id = uuid4()

        minted = mint_stream_token(user_id)
        verified, jti = verify_stream_token(minted["token"])

        assert verified == user_id
        assert jti

    def test_expired(self):
        now = int(time.time())
        token = jwt.encode(
            {
                "iss": STREAM_TOKEN_ISSUER,
                "aud": STREAM_TOKEN_AUDIENCE,
                "sub": str(uuid4()),
                "exp": now - 120,
                "iat": now - 180,
                "jti": str(uuid4()),
                "scope": "stream",
            },
            _get_signing_key_bytes(),
            algorithm="HS256",
        )

        with pytest.raises(UnauthorizedError) as exc:
            verify_stream_token(token)
        assert exc.value.code == ApiErrorCode.E_STREAM_TOKEN_EXPIRED

    def test_session_token_rejected(self):
        """A Supabase access token is not a stream token."""
        with pytest.raises(UnauthorizedError) as exc:
            verify_stream_token(mint_test_token(uuid4()))
        assert exc.value.code == ApiErrorCode.E_STREAM_TOKEN_INVALID

    def test_replay_blocked(self):
        class FakeRedis:
            def __init__(self):
                self.keys = set()

            def set(self, key, value, nx=False, ex=None):
                if key in self.keys:
                    return None
                self.keys.add(key)
                return True

        redis_client = FakeRedis()
        token = mint_stream_token(uuid4())["token"]

        verify_stream_token(token, redis_client=redis_client)
        with pytest.raises(UnauthorizedError) as exc:
            verify_stream_token(token, redis_client=redis_client)
        assert exc.value.code == ApiErrorCode.E_STREAM_TOKEN_REPLAYED

    def test_mint_route(self, client: TestClient, db_session: Session):
        user = create_test_profile(db_session)

        response = client.post("/stream-tokens", headers=auth_headers(user))

        assert response.status_code == 200
        data = response.json()["data"]
        assert set(data) == {"token", "stream_base_url", "expires_at"}
        assert verify_stream_token(data["token"])[0] == user


# =============================================================================
# Stream routes (auth and gate only; open streams are covered above)
# =============================================================================


class TestStreamRoutes:
    def test_missing_token_is_401(self, client: TestClient, db_session: Session):
        convo = create_test_conversation(db_session)

        response = client.get(f"/stream/conversations/{convo.conversation_id}/events")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "E_STREAM_TOKEN_INVALID"

    def test_session_bearer_is_401(self, client: TestClient, db_session: Session):
        convo = create_test_conversation(db_session)

        response = client.get(
            f"/stream/conversations/{convo.conversation_id}/events",
            headers=auth_headers(convo.owner_id),
        )

        assert response.status_code == 401

    def test_outsider_is_403_before_streaming(self, client: TestClient, db_session: Session):
        convo = create_test_conversation(db_session)
        outsider = create_test_profile(db_session)

        response = client.get(
            f"/stream/conversations/{convo.conversation_id}/events",
            headers=stream_headers(outsider),
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "E_NOT_CONVERSATION_PARTICIPANT"

    def test_query_param_token_is_checked(self, client: TestClient, db_session: Session):
        convo = create_test_conversation(db_session)
        outsider = create_test_profile(db_session)
        token = mint_stream_token(outsider)["token"]

        response = client.get(
            f"/stream/conversations/{convo.conversation_id}/events",
            params={"access_token": token},
        )

        assert response.status_code == 403

    def test_unknown_conversation_is_404(self, client: TestClient, db_session: Session):
        user = create_test_profile(db_session)

        response = client.get(
            f"/stream/conversations/{uuid4()}/events", headers=stream_headers(user)
        )

        assert response.status_code == 404


class TestConversationGateSession:
    """The gate runs in its own session, closed before any event is streamed."""

    @pytest.fixture
    def opened(self, session_factory, monkeypatch) -> list[Session]:
        opened: list[Session] = []

        def factory() -> Session:
            session = session_factory()
            opened.append(session)
            return session

        monkeypatch.setattr(stream_routes, "get_session_factory", lambda: factory)
        return opened

    def test_participant_gate_session_closed(self, db_session: Session, opened):
        convo = create_test_conversation(db_session)

        viewer = stream_routes.require_stream_participant(convo.conversation_id, convo.owner_id)

        assert viewer == convo.owner_id
        assert len(opened) == 1
        assert opened[0].in_transaction() is False

    def test_rejected_gate_session_closed(
        self, client: TestClient, db_session: Session, opened
    ):
        convo = create_test_conversation(db_session)
        outsider = create_test_profile(db_session)

        response = client.get(
            f"/stream/conversations/{convo.conversation_id}/events",
            headers=stream_headers(outsider),
        )

        assert response.status_code == 403
        assert len(opened) == 1
        assert opened[0].in_transaction() is False

    def test_route_takes_no_request_session(self):
        params = inspect.signature(stream_routes.stream_conversation_events).parameters

        assert "db" not in params


class TestStreamCors:
    """Path-scoped CORS for EventSource."""

    @pytest.fixture
    def cors_client(self, monkeypatch, session_factory, change_feed, push_service):
        monkeypatch.setenv("STREAM_CORS_ORIGINS", "https://app.donateconnect.example")
        clear_settings_cache()
        app = create_app(
            token_verifier=MockJwtVerifier(),
            change_feed=change_feed,
            push_service=push_service,
        )
        with TestClient(app) as client:
            yield client

    def test_preflight_allowed_origin(self, cors_client: TestClient):
        response = cors_client.options(
            "/stream/notifications",
            headers={"Origin": "https://app.donateconnect.example"},
        )

        assert response.status_code == 204
        assert (
            response.headers["access-control-allow-origin"]
            == "https://app.donateconnect.example"
        )

    def test_unknown_origin_rejected(self, cors_client: TestClient):
        response = cors_client.get(
            "/stream/notifications", headers={"Origin": "https://evil.example"}
        )

        assert response.status_code == 403

    def test_error_response_carries_cors_header(self, cors_client: TestClient):
        response = cors_client.get(
            "/stream/notifications", headers={"Origin": "https://app.donateconnect.example"}
        )

        assert response.status_code == 401
        assert "access-control-allow-origin" in response.headers
