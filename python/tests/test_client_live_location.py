"""Tests for client live location sharing.

Tests cover:
- start: one fix, seed write, watch running; failures leave the toggle off
- A restart ends the running session, even when the new start fails
- Each fix while sharing writes an update
- The watch ends on expiry, on a server-side stop, or on a device error,
  and the session is released
- stop() cancels the watch first, even when the stop write fails
- Peer location rendering with the liveness rule
"""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest

from donateconnect.client.geolocation import GeolocationError, GeolocationFailure
from donateconnect.client.live_location import LiveLocationSharer, PeerLocation
from donateconnect.db.types import utcnow
from donateconnect.errors import ApiError, ApiErrorCode, NotFoundError
from donateconnect.schemas.realtime import LiveLocationOut
from tests.support.client_fakes import (
    FakeGeolocation,
    FakeLiveLocationApi,
    MutableClock,
    position,
)


@pytest.fixture
def clock():
    return MutableClock()


@pytest.fixture
def api(clock):
    return FakeLiveLocationApi(clock)


async def _start(api, clock, geolocation=None) -> tuple[LiveLocationSharer, FakeGeolocation]:
    geolocation = geolocation or FakeGeolocation(fix=position(10.0, 20.0))
    sharer = LiveLocationSharer(api, uuid4(), geolocation, clock=clock)
    assert await sharer.start(duration_minutes=60) is True
    # Let the watch task subscribe to the device
    await asyncio.sleep(0)
    return sharer, geolocation


# =============================================================================
# Starting
# =============================================================================


class TestStart:
    @pytest.mark.asyncio
    async def test_start_seeds_session_and_watches(self, api, clock):
        sharer, geolocation = await _start(api, clock)

        assert api.calls == [("start", 10.0, 20.0, 60)]
        assert sharer.is_sharing is True
        assert sharer.expires_at == clock.now + timedelta(minutes=60)

        await geolocation.push(position(11.0, 21.0))
        assert api.calls[-1] == ("update", 11.0, 21.0)

        await sharer.stop()

    @pytest.mark.asyncio
    async def test_permission_denied_leaves_toggle_off(self, api, clock):
        geolocation = FakeGeolocation(error=GeolocationError(GeolocationFailure.permission_denied))
        sharer = LiveLocationSharer(api, uuid4(), geolocation, clock=clock)

        assert await sharer.start() is False

        assert sharer.is_sharing is False
        assert sharer.last_error.code == ApiErrorCode.E_DEVICE_UNAVAILABLE
        assert sharer.last_error.reason == GeolocationFailure.permission_denied
        assert api.calls == []

    @pytest.mark.asyncio
    async def test_rejected_start_leaves_toggle_off(self, api, clock):
        api.start_error = ApiError(ApiErrorCode.E_CONVERSATION_NOT_ACTIVE, "Not active")
        sharer = LiveLocationSharer(api, uuid4(), FakeGeolocation(), clock=clock)

        assert await sharer.start() is False

        assert sharer.is_sharing is False
        assert sharer.last_error.code == ApiErrorCode.E_CONVERSATION_NOT_ACTIVE
        assert sharer._task is None

    @pytest.mark.asyncio
    async def test_restart_replaces_running_watch(self, api, clock):
        sharer, first = await _start(api, clock)
        first_task = sharer._task

        assert await sharer.start() is True

        assert first_task.cancelled()
        assert first.watch_closed is True
        assert sharer._task is not first_task
        assert api.names() == ["start", "stop", "start"]
        await sharer.stop()

    @pytest.mark.asyncio
    async def test_failed_restart_still_stops_server_session(self, api, clock):
        """A restart that cannot get a fix leaves nothing live on the server."""
        sharer, geolocation = await _start(api, clock)
        geolocation.error = GeolocationError(GeolocationFailure.timeout)

        assert await sharer.start() is False

        assert api.names() == ["start", "stop"]
        assert sharer.is_sharing is False
        assert geolocation.watch_closed is True
        assert await sharer.stop() is False
        assert api.names() == ["start", "stop"]


# =============================================================================
# The watch ending on its own
# =============================================================================


class TestWatchEnds:
    @pytest.mark.asyncio
    async def test_fix_after_expiry_stops_sharing(self, api, clock):
        sharer, geolocation = await _start(api, clock)
        task = sharer._task

        clock.advance(timedelta(minutes=61))
        await geolocation.push(position(11.0, 21.0))
        await asyncio.wait_for(task, 1)

        assert api.names() == ["start", "stop"]
        assert sharer.is_sharing is False
        assert geolocation.watch_closed is True

    @pytest.mark.asyncio
    async def test_session_gone_server_side_stops_sharing(self, api, clock):
        sharer, geolocation = await _start(api, clock)
        task = sharer._task
        api.update_error = NotFoundError(
            ApiErrorCode.E_SESSION_NOT_FOUND, "No live location session"
        )

        await geolocation.push(position(11.0, 21.0))
        await asyncio.wait_for(task, 1)

        assert api.names() == ["start", "update", "stop"]
        assert sharer.is_sharing is False

    @pytest.mark.asyncio
    async def test_transient_update_failure_keeps_watching(self, api, clock):
        sharer, geolocation = await _start(api, clock)
        api.update_error = ApiError(ApiErrorCode.E_UPSTREAM_FAILURE, "down")

        await geolocation.push(position(11.0, 21.0))
        api.update_error = None
        await geolocation.push(position(12.0, 22.0))

        assert api.calls[-1] == ("update", 12.0, 22.0)
        assert sharer.is_sharing is True
        await sharer.stop()

    @pytest.mark.asyncio
    async def test_device_error_during_watch_stops_sharing(self, api, clock):
        sharer, geolocation = await _start(api, clock)
        task = sharer._task

        await geolocation.push(GeolocationError(GeolocationFailure.unavailable))
        await asyncio.wait_for(task, 1)

        assert sharer.last_error.reason == GeolocationFailure.unavailable
        assert api.names() == ["start", "stop"]
        assert sharer.is_sharing is False

    @pytest.mark.asyncio
    async def test_watch_ending_stops_sharing(self, api, clock):
        sharer, geolocation = await _start(api, clock)
        task = sharer._task

        await geolocation.push(None)
        await asyncio.wait_for(task, 1)

        assert api.names() == ["start", "stop"]


# =============================================================================
# Stopping
# =============================================================================


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, api, clock):
        sharer, geolocation = await _start(api, clock)

        assert await sharer.stop() is True
        assert await sharer.stop() is False

        assert api.names() == ["start", "stop"]
        assert geolocation.watch_closed is True

    @pytest.mark.asyncio
    async def test_failed_stop_write_still_ends_watch(self, api, clock):
        sharer, geolocation = await _start(api, clock)
        task = sharer._task
        api.stop_error = ApiError(ApiErrorCode.E_UPSTREAM_FAILURE, "down")

        assert await sharer.stop() is True

        assert task.cancelled()
        assert geolocation.watch_closed is True
        assert sharer.is_sharing is False

    @pytest.mark.asyncio
    async def test_no_fix_is_sent_after_stop(self, api, clock):
        sharer, geolocation = await _start(api, clock)
        await sharer.stop()

        await geolocation.fixes.put(position(11.0, 21.0))
        await asyncio.sleep(0)

        assert "update" not in api.names()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, api, clock):
        sharer = LiveLocationSharer(api, uuid4(), FakeGeolocation(), clock=clock)

        assert await sharer.stop() is False
        assert api.calls == []


# =============================================================================
# Peer location
# =============================================================================


def _location_event(conversation_id, user_id, is_sharing=True, expires_in=timedelta(minutes=30)):
    row = {
        "request_id": str(conversation_id),
        "user_id": str(user_id),
        "latitude": 1.0,
        "longitude": 2.0,
        "is_sharing": is_sharing,
        "expires_at": (utcnow() + expires_in).isoformat(),
        "updated_at": utcnow().isoformat(),
    }
    return {"table": "live_locations", "type": "UPDATE", "new": row, "old": None}


class TestPeerLocation:
    def test_load_ignores_own_session(self):
        self_id, conversation_id, peer_id = uuid4(), uuid4(), uuid4()
        now = utcnow()
        sessions = [
            LiveLocationOut(
                user_id=user_id,
                conversation_id=conversation_id,
                latitude=lat,
                longitude=lat,
                is_sharing=True,
                expires_at=now + timedelta(minutes=10),
                updated_at=now,
                is_live=True,
            )
            for user_id, lat in ((self_id, 1.0), (peer_id, 5.0))
        ]
        peer = PeerLocation(self_id, conversation_id)

        peer.load(sessions)

        assert peer.current(now) == (5.0, 5.0)

    def test_reload_without_peer_session_clears_position(self):
        """A peer who stopped while the stream was down is gone after catch-up."""
        conversation_id, peer_id = uuid4(), uuid4()
        peer = PeerLocation(uuid4(), conversation_id)
        peer.apply(_location_event(conversation_id, peer_id))
        assert peer.current() == (1.0, 2.0)

        peer.load([])

        assert peer.current() is None

    def test_pushed_position_is_live_until_expiry(self):
        conversation_id, peer_id = uuid4(), uuid4()
        peer = PeerLocation(uuid4(), conversation_id)

        assert peer.apply(_location_event(conversation_id, peer_id)) is True

        assert peer.current() == (1.0, 2.0)
        assert peer.current(utcnow() + timedelta(minutes=31)) is None

    def test_stop_clears_position(self):
        conversation_id, peer_id = uuid4(), uuid4()
        peer = PeerLocation(uuid4(), conversation_id)
        peer.apply(_location_event(conversation_id, peer_id))

        assert peer.apply(_location_event(conversation_id, peer_id, is_sharing=False)) is True
        assert peer.current() is None

    def test_own_and_foreign_rows_are_ignored(self):
        self_id, conversation_id = uuid4(), uuid4()
        peer = PeerLocation(self_id, conversation_id)

        assert peer.apply(_location_event(conversation_id, self_id)) is False
        assert peer.apply(_location_event(uuid4(), uuid4())) is False
        assert peer.current() is None
