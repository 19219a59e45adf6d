"""API route definitions.

Uses a factory pattern to avoid import-time settings loading.
This allows tests to import modules without requiring all environment
variables to be configured upfront.
"""

from fastapi import APIRouter

from donateconnect.api.routes.health import router as health_router
from donateconnect.api.routes.live_location import router as live_location_router
from donateconnect.api.routes.messages import router as messages_router
from donateconnect.api.routes.notifications import router as notifications_router
from donateconnect.api.routes.presence import router as presence_router
from donateconnect.api.routes.push import router as push_router
from donateconnect.api.routes.requests import router as requests_router
from donateconnect.api.routes.stream import router as stream_router
from donateconnect.api.routes.stream_tokens import router as stream_tokens_router


def create_api_router() -> APIRouter:
    """Create and configure the API router.

    Returns:
        Configured APIRouter with all routes registered.
    """
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(requests_router)
    api_router.include_router(messages_router)
    api_router.include_router(presence_router)
    api_router.include_router(live_location_router)
    api_router.include_router(notifications_router)
    api_router.include_router(push_router)
    api_router.include_router(stream_tokens_router)
    api_router.include_router(stream_router)
    return api_router


__all__ = ["create_api_router"]
