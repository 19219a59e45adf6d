"""Business logic services.

This module contains service-layer functions that implement business logic.
Services are called by route handlers and orchestrate database operations.
"""

from donateconnect.services.bootstrap import ensure_profile
from donateconnect.services.notifications import DispatchResult, notify
from donateconnect.services.push import PushResult, PushService, send_push

__all__ = [
    "ensure_profile",
    "notify",
    "DispatchResult",
    "send_push",
    "PushService",
    "PushResult",
]
