"""Donation request schemas."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

# Valid request statuses - must match DB constraint
REQUEST_STATUSES = Literal["pending", "accepted", "declined", "completed"]


class CreateDonationRequest(BaseModel):
    """Ask the owner of a listing for it."""

    listing_id: UUID
    note: str | None = Field(default=None, max_length=1000)


class DonationRequestOut(BaseModel):
    """Response schema for a request (the conversation id is the request id)."""

    id: UUID
    listing_id: UUID
    requester_id: UUID
    status: str
    note: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
