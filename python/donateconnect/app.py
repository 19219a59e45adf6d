"""FastAPI application creation and configuration.

This module creates and configures the FastAPI application instance.
It registers exception handlers, auth middleware, request-id middleware, and routes.

Token Verification:
- All environments use SupabaseJwksVerifier
- Tests pass their own verifier through create_app(token_verifier=...)

Middleware Ordering (Critical):
- Middleware runs in reverse order of registration
- RequestIDMiddleware is added LAST so it runs FIRST (outermost)
- This ensures all requests (including auth failures) get X-Request-ID

Actual execution order per request:
1. RequestIDMiddleware (sets request_id, starts timer)
2. StreamCORSMiddleware (/stream/* only, when origins are configured)
3. AuthMiddleware (verifies auth, sets viewer; skips /stream/*)
4. Route handler

Shared state (app.state), created in the lifespan:
- change_feed: the ChangeFeed every write publishes into and every stream
  subscribes to. In-process by default; with Redis available it becomes a
  RedisChangeFeed and a ChangeRelay task delivers events from every process
- push_service: Web Push delivery
- redis_client: optional, used for stream token replay protection and
  change fan-out across processes
- httpx_client: shared outbound HTTP client
"""

import json
from contextlib import asynccontextmanager
from uuid import UUID

import httpx
import redis
import redis.asyncio
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from donateconnect.api.routes import create_api_router
from donateconnect.auth.middleware import AuthMiddleware
from donateconnect.auth.verifier import SupabaseJwksVerifier
from donateconnect.config import get_settings
from donateconnect.db.session import get_session_factory
from donateconnect.errors import ApiError, ApiErrorCode
from donateconnect.logging import configure_logging, get_logger
from donateconnect.middleware.request_id import RequestIDMiddleware
from donateconnect.middleware.stream_cors import StreamCORSMiddleware
from donateconnect.realtime.feed import ChangeFeed
from donateconnect.realtime.redis_feed import ChangeRelay, RedisChangeFeed
from donateconnect.responses import (
    api_error_handler,
    error_response,
    http_exception_handler,
    unhandled_exception_handler,
)
from donateconnect.services.bootstrap import ensure_profile
from donateconnect.services.push import PushService

# Configure structured logging at import time
configure_logging()

logger = get_logger(__name__)


def create_bootstrap_callback():
    """Create a bootstrap callback that creates its own database session.

    The callback is called by the auth middleware for each authenticated request.
    It creates a fresh database session, ensures the profile row, and closes it.
    """
    session_factory = get_session_factory()

    def bootstrap(user_id: UUID) -> None:
        db = session_factory()
        try:
            ensure_profile(db, user_id)
        finally:
            db.close()

    return bootstrap


def create_token_verifier():
    """Create the token verifier using Supabase JWKS."""
    settings = get_settings()

    return SupabaseJwksVerifier(
        jwks_url=settings.supabase_jwks_url,  # type: ignore
        issuer=settings.normalized_issuer,  # type: ignore
        audiences=settings.audience_list,
    )


def create_redis_client():
    """Connect to Redis if configured. Returns None when absent or unreachable."""
    settings = get_settings()
    if not settings.redis_url:
        return None
    try:
        client = redis.Redis.from_url(settings.redis_url, decode_responses=True, socket_timeout=5)
        client.ping()
    except redis.RedisError as e:
        logger.warning("redis_client_init_failed", error=str(e))
        return None
    logger.info("redis_client_initialized")
    return client


def start_change_relay(app: FastAPI) -> ChangeRelay | None:
    """Route the change feed through Redis pub/sub when Redis is available.

    Replaces the in-process feed with a RedisChangeFeed and starts the relay
    that delivers every process's events to this process's streams. A feed
    passed to create_app is kept as is.
    """
    if app.state.redis_client is None or not app.state.owns_change_feed:
        return None

    settings = get_settings()
    app.state.change_feed = RedisChangeFeed(
        app.state.redis_client, maxsize=settings.realtime_queue_size
    )
    relay = ChangeRelay(
        app.state.change_feed,
        redis.asyncio.Redis.from_url(settings.redis_url, decode_responses=True),
    )
    relay.start()
    logger.info("change_relay_started")
    return relay


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle resources."""
    app.state.httpx_client = httpx.AsyncClient(
        timeout=httpx.Timeout(30.0, connect=10.0),
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
    )
    app.state.redis_client = create_redis_client()
    relay = start_change_relay(app)

    yield

    if relay is not None:
        await relay.stop()
        await relay.redis_client.aclose()
    await app.state.httpx_client.aclose()
    if app.state.redis_client is not None:
        try:
            app.state.redis_client.close()
        except redis.RedisError as e:
            logger.warning("redis_client_close_failed", error=str(e))
    logger.info("app_shutdown", subscribers=app.state.change_feed.subscriber_count)


def create_app(
    skip_auth_middleware: bool = False,
    token_verifier=None,
    change_feed: ChangeFeed | None = None,
    push_service: PushService | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        skip_auth_middleware: If True, skip adding auth middleware (for testing).
        token_verifier: Optional custom token verifier (for testing).
        change_feed: Optional change feed (tests share one with their subscriptions).
        push_service: Optional push service (tests inject a fake sender).

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="DonateConnect API",
        description="Realtime messaging, presence, live location and notifications for DonateConnect",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Available before the lifespan runs, so TestClient without a context works
    app.state.change_feed = change_feed or ChangeFeed(maxsize=settings.realtime_queue_size)
    app.state.owns_change_feed = change_feed is None
    app.state.push_service = push_service or PushService(settings)
    app.state.redis_client = None

    # Register exception handlers
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle request validation errors (including malformed JSON)."""
        return JSONResponse(
            status_code=400,
            content=error_response(ApiErrorCode.E_INVALID_REQUEST, "Invalid request body"),
        )

    @app.middleware("http")
    async def catch_json_decode_errors(request: Request, call_next):
        """Catch JSON decode errors before they reach route handlers."""
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            content_type = request.headers.get("content-type", "")
            if "application/json" in content_type:
                body = await request.body()
                if body:
                    try:
                        json.loads(body)
                    except json.JSONDecodeError:
                        return JSONResponse(
                            status_code=400,
                            content=error_response(
                                ApiErrorCode.E_INVALID_REQUEST, "Malformed JSON body"
                            ),
                        )
        return await call_next(request)

    # Use router factory to avoid import-time settings loading
    app.include_router(create_api_router())

    if not skip_auth_middleware:
        verifier = token_verifier or create_token_verifier()

        app.add_middleware(
            AuthMiddleware,
            verifier=verifier,
            requires_internal_header=settings.requires_internal_header,
            internal_secret=settings.dc_internal_secret,
            bootstrap_callback=create_bootstrap_callback(),
        )

        logger.info(
            "auth_middleware_enabled",
            env=settings.dc_env.value,
            internal_header_required=settings.requires_internal_header,
        )

    # Added after auth so it runs before it
    cors_origins = settings.stream_cors_origin_list
    if cors_origins:
        app.add_middleware(StreamCORSMiddleware, allowed_origins=cors_origins)
        logger.info("stream_cors_middleware_enabled", origins=cors_origins)

    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Add request-id middleware to the app.

    This should be called AFTER all other middleware is added, so it runs FIRST.
    This ensures every response includes X-Request-ID, including auth failures.

    Args:
        app: The FastAPI application.
        log_requests: Whether to log access entries for each request.
    """
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
    logger.info("request_id_middleware_enabled")
