"""Presence and live-location schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from donateconnect.schemas.messages import Latitude, Longitude

# =============================================================================
# Presence
# =============================================================================


class SetPresenceRequest(BaseModel):
    """Presence transition reported by a client."""

    is_online: bool


class PresenceOut(BaseModel):
    """Stored presence record."""

    user_id: UUID
    conversation_id: UUID
    is_online: bool
    last_seen: datetime


class PresenceView(BaseModel):
    """Presence as an observer should render it.

    is_online is true only when the stored flag is set AND last_seen is
    within the staleness window.
    """

    user_id: UUID
    conversation_id: UUID
    is_online: bool
    stored_online: bool
    stale: bool
    last_seen: datetime


# =============================================================================
# Live location
# =============================================================================


class StartLiveLocationRequest(BaseModel):
    """Seed fix plus requested duration (server default when omitted)."""

    latitude: Latitude
    longitude: Longitude
    duration_minutes: int | None = Field(default=None, ge=1)


class UpdatePositionRequest(BaseModel):
    """A subsequent position fix."""

    latitude: Latitude
    longitude: Longitude


class LiveLocationOut(BaseModel):
    """Live location session row plus the observer's liveness verdict."""

    user_id: UUID
    conversation_id: UUID
    latitude: float
    longitude: float
    is_sharing: bool
    expires_at: datetime
    updated_at: datetime
    is_live: bool


class StopSharingResponse(BaseModel):
    """stopped is False when there was no live session to stop."""

    stopped: bool
