"""Web Push delivery.

The push-delivery collaborator of the Notification Dispatcher. A call is
all-or-nothing at the authorization layer and best-effort per device:

1. Validate title (1..100), body (1..500) and recipients (1..50 UUIDs).
2. Run the notify gate; zero authorized recipients is Forbidden.
3. Require VAPID keys.
4. Deliver to every stored registration of the authorized recipients.
   A 404/410 from the push endpoint deletes that registration. A failure
   on one device never aborts delivery to the rest.

Results report counts (sent/failed/authorized/total), never a bare boolean.
total is the number of requested recipient ids as given, duplicates included.
"""

import base64
import json
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass
from typing import Any
from uuid import UUID

import requests
from pywebpush import WebPushException, webpush
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from donateconnect.auth.permissions import require_notify_targets
from donateconnect.config import Settings, get_settings
from donateconnect.db.models import PushSubscription
from donateconnect.db.upsert import upsert
from donateconnect.errors import ApiErrorCode, InvalidRequestError, UpstreamError
from donateconnect.logging import get_audit_logger, get_logger
from donateconnect.schemas.notifications import PushResultOut, PushSubscriptionOut

logger = get_logger(__name__)
audit_logger = get_audit_logger()

MAX_TITLE_LENGTH = 100
MAX_BODY_LENGTH = 500
PUSH_ICON = "/favicon.ico"
PUSH_TIMEOUT_SECONDS = 10

# Push service status codes meaning "this registration is dead"
GONE_STATUS_CODES = (404, 410)

P256DH_LENGTH = 65
AUTH_SECRET_LENGTH = 16

Sender = Callable[..., Any]


@dataclass
class PushResult:
    """Outcome of one push delivery call."""

    success: bool
    sent: int
    failed: int
    authorized: int
    total: int
    message: str

    def to_out(self) -> PushResultOut:
        return PushResultOut(**asdict(self))


def validate_push_content(title: str, body: str) -> None:
    """Check payload bounds before anything else runs.

    Raises:
        InvalidRequestError: Missing or oversized title/body.
    """
    if not title or not title.strip():
        raise InvalidRequestError(message="Invalid input: title is required")
    if not body or not body.strip():
        raise InvalidRequestError(message="Invalid input: body is required")
    if len(title) > MAX_TITLE_LENGTH:
        raise InvalidRequestError(
            message=f"Invalid input: title exceeds {MAX_TITLE_LENGTH} characters"
        )
    if len(body) > MAX_BODY_LENGTH:
        raise InvalidRequestError(
            message=f"Invalid input: body exceeds {MAX_BODY_LENGTH} characters"
        )


def send_push(
    db: Session,
    caller_id: UUID,
    recipient_ids: Sequence[UUID | str],
    title: str,
    body: str,
    url: str | None = None,
    sender: Sender | None = None,
    settings: Settings | None = None,
) -> PushResult:
    """Deliver a push notification to every device of the authorized recipients.

    Args:
        db: Database session.
        caller_id: Authenticated caller (never client-supplied).
        recipient_ids: Requested recipients.
        title: Notification title (1..100 chars).
        body: Notification body (1..500 chars).
        url: Path opened when the notification is clicked. Defaults to "/".
        sender: Replacement for pywebpush.webpush.
        settings: Settings override.

    Raises:
        InvalidRequestError: Bad title, body or recipient list.
        ForbiddenError: No recipient passes the notify gate.
        UpstreamError(E_PUSH_NOT_CONFIGURED): VAPID keys are missing.
    """
    settings = settings or get_settings()
    send = sender or webpush

    validate_push_content(title, body)
    authorized = require_notify_targets(db, caller_id, recipient_ids)
    total = len(recipient_ids)

    if not settings.push_configured:
        logger.error("push_not_configured")
        raise UpstreamError(ApiErrorCode.E_PUSH_NOT_CONFIGURED, "VAPID keys not configured")

    subscriptions = list(
        db.execute(
            select(PushSubscription).where(PushSubscription.user_id.in_(authorized))
        ).scalars()
    )
    if not subscriptions:
        logger.info("push_no_subscriptions", caller_id=str(caller_id), authorized=len(authorized))
        return PushResult(
            success=True,
            sent=0,
            failed=0,
            authorized=len(authorized),
            total=total,
            message="No subscriptions found",
        )

    data = json.dumps({"title": title, "body": body, "url": url or "/", "icon": PUSH_ICON})

    sent = 0
    failed = 0
    for subscription in subscriptions:
        try:
            send(
                subscription_info={
                    "endpoint": subscription.endpoint,
                    "keys": {"p256dh": subscription.p256dh, "auth": subscription.auth},
                },
                data=data,
                vapid_private_key=settings.vapid_private_key,
                # pywebpush adds aud/exp to the claims dict in place
                vapid_claims={"sub": f"mailto:{settings.vapid_contact_email}"},
                ttl=settings.push_ttl_seconds,
                timeout=PUSH_TIMEOUT_SECONDS,
            )
            sent += 1
        except WebPushException as e:
            failed += 1
            status_code = getattr(e.response, "status_code", None)
            logger.warning(
                "push_delivery_failed",
                user_id=str(subscription.user_id),
                status_code=status_code,
                error=str(e),
            )
            if status_code in GONE_STATUS_CODES:
                _remove_dead_subscription(db, subscription)
        except requests.RequestException as e:
            failed += 1
            logger.warning(
                "push_delivery_failed",
                user_id=str(subscription.user_id),
                error=str(e),
            )
        except Exception as e:
            # Unusable stored keys surface here as ValueError from the encryptor
            failed += 1
            logger.warning(
                "push_delivery_failed",
                user_id=str(subscription.user_id),
                error_type=type(e).__name__,
                error=str(e),
            )

    audit_logger.info(
        "push_delivery",
        caller_id=str(caller_id),
        sent=sent,
        failed=failed,
        subscriptions=len(subscriptions),
        authorized=len(authorized),
        total=total,
    )

    return PushResult(
        success=True,
        sent=sent,
        failed=failed,
        authorized=len(authorized),
        total=total,
        message=f"{sent} notifications sent successfully",
    )


def _remove_dead_subscription(db: Session, subscription: PushSubscription) -> None:
    """Delete a registration the push service reported as gone. Best effort."""
    try:
        db.execute(delete(PushSubscription).where(PushSubscription.id == subscription.id))
        db.commit()
        logger.info("push_subscription_removed", user_id=str(subscription.user_id))
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(
            "push_subscription_remove_failed",
            user_id=str(subscription.user_id),
            error=str(e),
        )


class PushService:
    """send_push bound to settings and a sender, for injection into the dispatcher."""

    def __init__(self, settings: Settings | None = None, sender: Sender | None = None):
        self.settings = settings
        self.sender = sender

    def send(
        self,
        db: Session,
        caller_id: UUID,
        recipient_ids: Sequence[UUID | str],
        title: str,
        body: str,
        url: str | None = None,
    ) -> PushResult:
        return send_push(
            db,
            caller_id,
            recipient_ids,
            title,
            body,
            url=url,
            sender=self.sender,
            settings=self.settings,
        )


# =============================================================================
# Registrations
# =============================================================================


def _urlsafe_b64decode(value: str) -> bytes:
    try:
        return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))
    except ValueError:
        return b""


def validate_subscription_keys(p256dh: str, auth: str) -> None:
    """Reject keys the encryptor could never use.

    p256dh must be an uncompressed P-256 point (65 bytes, leading 0x04) and
    auth a 16 byte secret, both base64url encoded.

    Raises:
        InvalidRequestError: Either key is malformed.
    """
    point = _urlsafe_b64decode(p256dh)
    if len(point) != P256DH_LENGTH or point[0] != 0x04:
        raise InvalidRequestError(message="Invalid input: keys.p256dh is not a valid P-256 key")
    if len(_urlsafe_b64decode(auth)) != AUTH_SECRET_LENGTH:
        raise InvalidRequestError(message="Invalid input: keys.auth is not a valid auth secret")


def register_subscription(
    db: Session, user_id: UUID, endpoint: str, p256dh: str, auth: str
) -> PushSubscriptionOut:
    """Store a browser registration; re-registering an endpoint refreshes its keys.

    Raises:
        InvalidRequestError: p256dh or auth is not a usable key.
    """
    validate_subscription_keys(p256dh, auth)
    upsert(
        db,
        PushSubscription,
        {"user_id": user_id, "endpoint": endpoint, "p256dh": p256dh, "auth": auth},
        conflict_columns=["user_id", "endpoint"],
        update_columns=["p256dh", "auth"],
    )
    db.commit()

    row = db.execute(
        select(PushSubscription).where(
            PushSubscription.user_id == user_id,
            PushSubscription.endpoint == endpoint,
        )
    ).scalar_one()
    logger.info("push_subscription_registered", user_id=str(user_id))
    return PushSubscriptionOut.model_validate(row)


def unregister_subscription(db: Session, user_id: UUID, endpoint: str) -> bool:
    """Remove the caller's registration for an endpoint. Idempotent."""
    result = db.execute(
        delete(PushSubscription).where(
            PushSubscription.user_id == user_id,
            PushSubscription.endpoint == endpoint,
        )
    )
    db.commit()
    return result.rowcount > 0


def vapid_public_key(settings: Settings | None = None) -> str:
    """Return the public VAPID key browsers subscribe with.

    Raises:
        UpstreamError(E_PUSH_NOT_CONFIGURED): Key is not set.
    """
    settings = settings or get_settings()
    if not settings.vapid_public_key:
        raise UpstreamError(ApiErrorCode.E_PUSH_NOT_CONFIGURED, "VAPID keys not configured")
    return settings.vapid_public_key
