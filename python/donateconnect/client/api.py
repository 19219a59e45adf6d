"""Async HTTP client for the DonateConnect realtime API.

Wraps the exposed surface (messages, presence, live location, notifications,
push registration, streams) over a shared httpx.AsyncClient. Error
envelopes are raised as ApiError with the server's code; transport
failures are raised as UpstreamError. Nothing is retried here; callers
decide whether to resubmit.
"""

import json
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any
from uuid import UUID

import httpx

from donateconnect.errors import ApiError, ApiErrorCode, UpstreamError
from donateconnect.logging import get_logger
from donateconnect.schemas.messages import MessageOut
from donateconnect.schemas.notifications import (
    NotificationOut,
    PushResultOut,
    PushSubscriptionOut,
)
from donateconnect.schemas.realtime import LiveLocationOut, PresenceOut, PresenceView

logger = get_logger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(15.0, connect=5.0)
# Streams idle between keepalives; only connecting is bounded
STREAM_TIMEOUT = httpx.Timeout(None, connect=10.0)
# Server default page size for message listing
MESSAGE_PAGE_SIZE = 200


@dataclass(frozen=True)
class ServerSentEvent:
    event: str
    data: Any
    id: str | None = None


async def parse_sse(lines: AsyncIterator[str]) -> AsyncIterator[ServerSentEvent]:
    """Parse SSE lines into events. Comment lines (keepalives) are skipped."""
    event = "message"
    data_lines: list[str] = []
    event_id = None

    async for line in lines:
        if not line:
            if data_lines:
                raw = "\n".join(data_lines)
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    data = raw
                yield ServerSentEvent(event=event, data=data, id=event_id)
            event, data_lines, event_id = "message", [], None
            continue
        if line.startswith(":"):
            continue

        field, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if field == "event":
            event = value
        elif field == "data":
            data_lines.append(value)
        elif field == "id":
            event_id = value


def _raise_for_envelope(response: httpx.Response) -> None:
    if response.is_success:
        return
    try:
        error = response.json()["error"]
        code = ApiErrorCode(error["code"])
        message = error["message"]
    except (ValueError, KeyError, TypeError):
        raise UpstreamError(message=f"Unexpected response ({response.status_code})") from None
    raise ApiError(code, message)


class DonateConnectClient:
    """Authenticated API client for one user.

    Args:
        base_url: API origin, e.g. "https://api.donateconnect.app".
        token: Supabase access token sent as the bearer credential.
        http_client: Shared client; created (and owned) when omitted.
        stream_base_url: Origin for /stream/*, when it differs from base_url.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        http_client: httpx.AsyncClient | None = None,
        stream_base_url: str | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.stream_base_url = (stream_base_url or base_url).rstrip("/")
        self._token = token
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)

    async def __aenter__(self) -> "DonateConnectClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(
                method,
                f"{self.base_url}{path}",
                headers={"Authorization": f"Bearer {self._token}"},
                **kwargs,
            )
        except httpx.HTTPError as e:
            logger.warning("api_transport_error", method=method, path=path, error=str(e))
            raise UpstreamError(message=f"Request failed: {e}") from e
        _raise_for_envelope(response)
        return response.json()["data"]

    # =========================================================================
    # Messages
    # =========================================================================

    async def send_message(
        self,
        conversation_id: UUID,
        type: str = "text",
        content: str | None = None,
        media_url: str | None = None,
        latitude: float | None = None,
        longitude: float | None = None,
        address: str | None = None,
    ) -> MessageOut:
        body = {
            "type": type,
            "content": content,
            "media_url": media_url,
            "latitude": latitude,
            "longitude": longitude,
            "address": address,
        }
        data = await self._request(
            "POST",
            f"/conversations/{conversation_id}/messages",
            json={k: v for k, v in body.items() if v is not None},
        )
        return MessageOut.model_validate(data)

    async def list_messages(
        self,
        conversation_id: UUID,
        after_seq: int | None = None,
        limit: int = MESSAGE_PAGE_SIZE,
    ) -> list[MessageOut]:
        params: dict[str, int] = {"limit": limit}
        if after_seq is not None:
            params["after_seq"] = after_seq
        data = await self._request(
            "GET", f"/conversations/{conversation_id}/messages", params=params
        )
        return [MessageOut.model_validate(m) for m in data]

    async def mark_read(self, conversation_id: UUID) -> int:
        data = await self._request("POST", f"/conversations/{conversation_id}/read")
        return data["updated"]

    # =========================================================================
    # Presence
    # =========================================================================

    async def set_presence(self, conversation_id: UUID, is_online: bool) -> PresenceOut:
        data = await self._request(
            "PUT",
            f"/conversations/{conversation_id}/presence",
            json={"is_online": is_online},
        )
        return PresenceOut.model_validate(data)

    async def get_peer_presence(self, conversation_id: UUID) -> PresenceView | None:
        data = await self._request("GET", f"/conversations/{conversation_id}/presence")
        return PresenceView.model_validate(data) if data else None

    # =========================================================================
    # Live location
    # =========================================================================

    async def start_live_location(
        self,
        conversation_id: UUID,
        latitude: float,
        longitude: float,
        duration_minutes: int | None = None,
    ) -> LiveLocationOut:
        body: dict[str, Any] = {"latitude": latitude, "longitude": longitude}
        if duration_minutes is not None:
            body["duration_minutes"] = duration_minutes
        data = await self._request(
            "POST", f"/conversations/{conversation_id}/live-location", json=body
        )
        return LiveLocationOut.model_validate(data)

    async def update_live_location(
        self, conversation_id: UUID, latitude: float, longitude: float
    ) -> LiveLocationOut:
        data = await self._request(
            "PATCH",
            f"/conversations/{conversation_id}/live-location",
            json={"latitude": latitude, "longitude": longitude},
        )
        return LiveLocationOut.model_validate(data)

    async def stop_live_location(self, conversation_id: UUID) -> bool:
        data = await self._request("DELETE", f"/conversations/{conversation_id}/live-location")
        return data["stopped"]

    async def list_live_locations(self, conversation_id: UUID) -> list[LiveLocationOut]:
        data = await self._request("GET", f"/conversations/{conversation_id}/live-locations")
        return [LiveLocationOut.model_validate(r) for r in data]

    # =========================================================================
    # Notifications and push
    # =========================================================================

    async def list_notifications(self, unread_only: bool = False) -> list[NotificationOut]:
        data = await self._request(
            "GET", "/notifications", params={"unread_only": str(unread_only).lower()}
        )
        return [NotificationOut.model_validate(n) for n in data]

    async def mark_notification_read(self, notification_id: UUID) -> NotificationOut:
        data = await self._request("POST", f"/notifications/{notification_id}/read")
        return NotificationOut.model_validate(data)

    async def mark_all_notifications_read(self) -> int:
        data = await self._request("POST", "/notifications/read-all")
        return data["updated"]

    async def send_push(
        self, user_ids: list[UUID | str], title: str, body: str, url: str | None = None
    ) -> PushResultOut:
        payload: dict[str, Any] = {
            "user_ids": [str(u) for u in user_ids],
            "title": title,
            "body": body,
        }
        if url is not None:
            payload["url"] = url
        data = await self._request("POST", "/push/send", json=payload)
        return PushResultOut.model_validate(data)

    async def subscribe_push(self, endpoint: str, p256dh: str, auth: str) -> PushSubscriptionOut:
        data = await self._request(
            "POST",
            "/push/subscriptions",
            json={"endpoint": endpoint, "keys": {"p256dh": p256dh, "auth": auth}},
        )
        return PushSubscriptionOut.model_validate(data)

    async def unsubscribe_push(self, endpoint: str) -> bool:
        data = await self._request("DELETE", "/push/subscriptions", json={"endpoint": endpoint})
        return data["removed"]

    # =========================================================================
    # Streams
    # =========================================================================

    async def create_stream_token(self) -> dict:
        return await self._request("POST", "/stream-tokens")

    async def _iter_stream(self, path: str) -> AsyncIterator[ServerSentEvent]:
        token = (await self.create_stream_token())["token"]
        try:
            async with self._client.stream(
                "GET",
                f"{self.stream_base_url}{path}",
                headers={"Authorization": f"Bearer {token}", "Accept": "text/event-stream"},
                timeout=STREAM_TIMEOUT,
            ) as response:
                if not response.is_success:
                    await response.aread()
                    _raise_for_envelope(response)
                async for event in parse_sse(response.aiter_lines()):
                    yield event
        except httpx.HTTPError as e:
            logger.warning("stream_transport_error", path=path, error=str(e))
            raise UpstreamError(message=f"Stream failed: {e}") from e

    def iter_conversation_events(self, conversation_id: UUID) -> AsyncIterator[ServerSentEvent]:
        """Open the conversation stream. Each call mints a fresh stream token."""
        return self._iter_stream(f"/stream/conversations/{conversation_id}/events")

    def iter_notification_events(self) -> AsyncIterator[ServerSentEvent]:
        return self._iter_stream("/stream/notifications")
