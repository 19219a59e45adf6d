"""Chat message schemas.

Message payloads are a tagged union validated at the Message Channel
boundary:
    text          {content}
    image         {media_url, content?}
    location      {latitude, longitude, address?, content?}
    live_location {latitude, longitude, content?}
"""

from datetime import datetime
from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from donateconnect.errors import ApiErrorCode, InvalidRequestError

MAX_CONTENT_LENGTH = 4000
MAX_MEDIA_URL_LENGTH = 2048
MAX_ADDRESS_LENGTH = 500

Latitude = Annotated[float, Field(ge=-90, le=90)]
Longitude = Annotated[float, Field(ge=-180, le=180)]
OptionalContent = Annotated[str | None, Field(default=None, max_length=MAX_CONTENT_LENGTH)]


# =============================================================================
# Payload union
# =============================================================================


class TextPayload(BaseModel):
    """Plain text. Content is required and may not be blank."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["text"]
    content: str = Field(max_length=MAX_CONTENT_LENGTH)

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("text messages require content")
        return v


class ImagePayload(BaseModel):
    """Image by reference; the upload itself happens elsewhere."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["image"]
    media_url: str = Field(min_length=1, max_length=MAX_MEDIA_URL_LENGTH)
    content: OptionalContent


class LocationPayload(BaseModel):
    """A single pinned location."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["location"]
    latitude: Latitude
    longitude: Longitude
    address: str | None = Field(default=None, max_length=MAX_ADDRESS_LENGTH)
    content: OptionalContent


class LiveLocationPayload(BaseModel):
    """Announcement that a live location session started."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["live_location"]
    latitude: Latitude
    longitude: Longitude
    content: OptionalContent


MessagePayload = Annotated[
    TextPayload | ImagePayload | LocationPayload | LiveLocationPayload,
    Field(discriminator="type"),
]

_payload_adapter: TypeAdapter = TypeAdapter(MessagePayload)


def parse_message_payload(data: dict[str, Any]) -> MessagePayload:
    """Validate a raw payload dict into the tagged union.

    Raises:
        InvalidRequestError(E_INVALID_MESSAGE): Unknown type or bad fields.
    """
    try:
        return _payload_adapter.validate_python(data)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        loc = ".".join(str(part) for part in first.get("loc", ()))
        detail = first.get("msg", "invalid payload")
        message = f"Invalid message: {loc}: {detail}" if loc else f"Invalid message: {detail}"
        raise InvalidRequestError(ApiErrorCode.E_INVALID_MESSAGE, message) from e


# =============================================================================
# Request / Response Schemas
# =============================================================================


class SendMessageRequest(BaseModel):
    """Wire shape for sending a message.

    Fields are flat; to_payload() narrows them to the tagged union.
    """

    type: str = "text"
    content: str | None = None
    media_url: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    address: str | None = None

    def to_payload(self) -> MessagePayload:
        return parse_message_payload(self.model_dump(exclude_none=True))


class MessageLocation(BaseModel):
    """Structured location attached to location messages."""

    latitude: float
    longitude: float
    address: str | None = None


class MessageOut(BaseModel):
    """Response schema for a message.

    Messages are ordered by seq within a conversation; seq order and
    created_at order agree.
    """

    id: UUID
    conversation_id: UUID
    sender_id: UUID
    seq: int
    type: str
    content: str | None = None
    media_url: str | None = None
    location: MessageLocation | None = None
    is_read: bool
    created_at: datetime


class MarkReadResponse(BaseModel):
    """Result of marking a conversation read."""

    updated: int
