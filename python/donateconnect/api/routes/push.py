"""Web Push API routes.

- POST /push/send delivers to users the viewer is connected to
- POST/DELETE /push/subscriptions manage the viewer's browser registrations
- GET /push/vapid-public-key for PushManager.subscribe()
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from donateconnect.api.deps import get_db, get_push_service
from donateconnect.auth.middleware import Viewer, get_viewer
from donateconnect.responses import success_response
from donateconnect.schemas.notifications import (
    SendPushRequest,
    SubscribePushRequest,
    UnsubscribePushRequest,
)
from donateconnect.services import push as push_service_module
from donateconnect.services.push import PushService

router = APIRouter(prefix="/push", tags=["push"])


@router.post("/send")
def send_push(
    body: SendPushRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    push_service: Annotated[PushService, Depends(get_push_service)],
) -> dict:
    """Send a push notification.

    Errors:
        E_INVALID_REQUEST (400): Bad title, body or user_ids.
        E_FORBIDDEN (403): None of the user_ids are connected to the viewer.
        E_PUSH_NOT_CONFIGURED (500): VAPID keys missing.
    """
    result = push_service.send(
        db,
        viewer.user_id,
        body.user_ids,
        body.title,
        body.body,
        url=body.url,
    )
    return success_response(result.to_out().model_dump(mode="json"))


@router.post("/subscriptions", status_code=201)
def subscribe(
    body: SubscribePushRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Register (or refresh) the viewer's browser push subscription."""
    result = push_service_module.register_subscription(
        db=db,
        user_id=viewer.user_id,
        endpoint=body.endpoint,
        p256dh=body.keys.p256dh,
        auth=body.keys.auth,
    )
    return success_response(result.model_dump(mode="json"))


@router.delete("/subscriptions")
def unsubscribe(
    body: UnsubscribePushRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    removed = push_service_module.unregister_subscription(
        db=db, user_id=viewer.user_id, endpoint=body.endpoint
    )
    return success_response({"removed": removed})


@router.get("/vapid-public-key")
def get_vapid_public_key(
    push_service: Annotated[PushService, Depends(get_push_service)],
) -> dict:
    key = push_service_module.vapid_public_key(push_service.settings)
    return success_response({"public_key": key})
