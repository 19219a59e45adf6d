"""FastAPI dependencies for route handlers.

Common dependencies like database sessions, the change feed and push delivery.
"""

from fastapi import Request

from donateconnect.db.session import get_db, get_session_factory
from donateconnect.realtime.feed import ChangeFeed
from donateconnect.services.push import PushService

__all__ = ["get_change_feed", "get_db", "get_push_service", "get_session_factory"]


def get_change_feed(request: Request) -> ChangeFeed:
    """Get the process-wide change feed from app state.

    Created in the app lifespan; every write route publishes into it and
    every stream route subscribes to it.
    """
    return request.app.state.change_feed


def get_push_service(request: Request) -> PushService:
    """Get the push delivery service from app state."""
    return request.app.state.push_service
