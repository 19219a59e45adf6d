"""Authentication middleware for FastAPI.

Provides:
- AuthMiddleware: Global middleware for bearer token + internal header verification
- get_viewer: Dependency for accessing authenticated viewer identity

The caller identity for every protected operation is taken from the verified
bearer credential here. Request bodies never carry the actor.
"""

import hmac
import logging
from collections.abc import Callable
from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from donateconnect.auth.verifier import TokenVerifier
from donateconnect.errors import ApiError, ApiErrorCode, UnauthorizedError
from donateconnect.responses import error_response

logger = logging.getLogger(__name__)

# Header names
AUTHORIZATION_HEADER = "authorization"
INTERNAL_HEADER = "x-donateconnect-internal"

# Paths that don't require authentication
PUBLIC_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

# Browser-callable streams authenticate with stream tokens instead
STREAM_PATH_PREFIX = "/stream/"


@dataclass
class Viewer:
    """Authenticated viewer identity.

    Attributes:
        user_id: The viewer's user ID (from JWT sub claim).
    """

    user_id: UUID


class AuthMiddleware(BaseHTTPMiddleware):
    """Authentication middleware for FastAPI.

    Order of checks:
    1. Skip if public path or /stream/*
    2. Verify internal header (if required)
    3. Extract and parse bearer token
    4. Verify token via TokenVerifier
    5. Call bootstrap callback to ensure the profile row exists
    6. Attach Viewer to request state
    """

    def __init__(
        self,
        app: ASGIApp,
        verifier: TokenVerifier,
        requires_internal_header: bool = False,
        internal_secret: str | None = None,
        bootstrap_callback: Callable[[UUID], None] | None = None,
    ):
        """Initialize the auth middleware.

        Args:
            app: The ASGI application.
            verifier: TokenVerifier implementation for JWT verification.
            requires_internal_header: Whether to enforce the internal header.
            internal_secret: The expected internal secret value.
            bootstrap_callback: Function(user_id) called after successful auth.
        """
        super().__init__(app)
        self.verifier = verifier
        self.requires_internal_header = requires_internal_header
        self.internal_secret = internal_secret
        self.bootstrap_callback = bootstrap_callback

    async def dispatch(self, request: Request, call_next) -> JSONResponse:
        """Process the request through auth checks."""
        path = request.url.path
        if path in PUBLIC_PATHS or path.startswith(STREAM_PATH_PREFIX):
            return await call_next(request)

        if self.requires_internal_header:
            error_response_obj = self._verify_internal_header(request)
            if error_response_obj:
                return error_response_obj

        token, error_response_obj = self._extract_bearer_token(request)
        if error_response_obj:
            return error_response_obj

        try:
            payload = self.verifier.verify(token)
        except ApiError as e:
            return self._error_json_response(e.code, e.message, e.status_code)

        user_id = UUID(payload["sub"])

        if self.bootstrap_callback:
            try:
                self.bootstrap_callback(user_id)
            except Exception as e:
                logger.exception("Bootstrap failed for user %s: %s", user_id, e)
                return self._error_json_response(
                    ApiErrorCode.E_INTERNAL,
                    "Internal server error",
                    500,
                )

        request.state.viewer = Viewer(user_id=user_id)

        return await call_next(request)

    def _verify_internal_header(self, request: Request) -> JSONResponse | None:
        """Verify the internal header using constant-time comparison.

        Returns:
            JSONResponse if verification fails, None if successful.
        """
        header_value = request.headers.get(INTERNAL_HEADER)

        if header_value is None:
            logger.warning(
                "auth_failure",
                extra={
                    "reason": "internal_header_missing",
                    "request_path": request.url.path,
                },
            )
            return self._error_json_response(
                ApiErrorCode.E_INTERNAL_ONLY,
                "Internal API access required",
                403,
            )

        if not self.internal_secret:
            logger.error("Internal secret not configured but header required")
            return self._error_json_response(
                ApiErrorCode.E_INTERNAL,
                "Internal server error",
                500,
            )

        if not hmac.compare_digest(header_value.encode(), self.internal_secret.encode()):
            logger.warning(
                "auth_failure",
                extra={
                    "reason": "internal_header_mismatch",
                    "request_path": request.url.path,
                },
            )
            return self._error_json_response(
                ApiErrorCode.E_INTERNAL_ONLY,
                "Internal API access required",
                403,
            )

        return None

    def _extract_bearer_token(self, request: Request) -> tuple[str, JSONResponse | None]:
        """Extract bearer token from Authorization header.

        Returns:
            Tuple of (token, error_response). Token is empty string if error.
        """
        try:
            return extract_bearer_token(request), None
        except UnauthorizedError as e:
            logger.warning(
                "auth_failure",
                extra={
                    "reason": e.message,
                    "request_path": request.url.path,
                },
            )
            return "", self._error_json_response(e.code, e.message, e.status_code)

    def _error_json_response(
        self, code: ApiErrorCode, message: str, status_code: int
    ) -> JSONResponse:
        """Create a JSON error response."""
        return JSONResponse(
            status_code=status_code,
            content=error_response(code, message),
        )


def extract_bearer_token(
    request: Request, code: ApiErrorCode = ApiErrorCode.E_UNAUTHENTICATED
) -> str:
    """Return the bearer token from the Authorization header.

    Raises:
        UnauthorizedError: Header missing, not a Bearer scheme, or empty.
    """
    auth_header = request.headers.get(AUTHORIZATION_HEADER)
    if not auth_header:
        raise UnauthorizedError(code, "Authentication required")

    # Bearer prefix is case-insensitive
    if not auth_header.lower().startswith("bearer "):
        raise UnauthorizedError(code, "Invalid authorization header format")

    token = auth_header[7:].strip()
    if not token:
        raise UnauthorizedError(code, "Invalid authorization header format")
    return token


def get_viewer(request: Request) -> Viewer:
    """FastAPI dependency to get the authenticated viewer.

    Raises:
        UnauthorizedError: If viewer is not set (middleware didn't run or path is public).
    """
    viewer = getattr(request.state, "viewer", None)
    if viewer is None:
        raise UnauthorizedError()
    return viewer


# Type alias for dependency injection
ViewerDep = Depends(get_viewer)
