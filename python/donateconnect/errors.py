"""API error definitions.

All API errors are defined here with their corresponding HTTP status codes.
"""

from enum import Enum


class ApiErrorCode(str, Enum):
    """Standardized error codes for the API.

    Format: E_CATEGORY_NAME
    """

    # Authentication errors (401)
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"
    E_STREAM_TOKEN_INVALID = "E_STREAM_TOKEN_INVALID"
    E_STREAM_TOKEN_EXPIRED = "E_STREAM_TOKEN_EXPIRED"
    E_STREAM_TOKEN_REPLAYED = "E_STREAM_TOKEN_REPLAYED"

    # Authorization errors (403)
    E_FORBIDDEN = "E_FORBIDDEN"
    E_INTERNAL_ONLY = "E_INTERNAL_ONLY"
    E_NOT_CONVERSATION_PARTICIPANT = "E_NOT_CONVERSATION_PARTICIPANT"
    E_CONVERSATION_NOT_ACTIVE = "E_CONVERSATION_NOT_ACTIVE"

    # Not found errors (404)
    E_NOT_FOUND = "E_NOT_FOUND"
    E_CONVERSATION_NOT_FOUND = "E_CONVERSATION_NOT_FOUND"
    E_SESSION_NOT_FOUND = "E_SESSION_NOT_FOUND"
    E_REQUEST_NOT_FOUND = "E_REQUEST_NOT_FOUND"
    E_LISTING_NOT_FOUND = "E_LISTING_NOT_FOUND"
    E_NOTIFICATION_NOT_FOUND = "E_NOTIFICATION_NOT_FOUND"

    # Validation errors (400)
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_INVALID_MESSAGE = "E_INVALID_MESSAGE"
    E_INVALID_LOCATION = "E_INVALID_LOCATION"
    E_INVALID_TRANSITION = "E_INVALID_TRANSITION"

    # Conflict errors (409)
    E_DUPLICATE_REQUEST = "E_DUPLICATE_REQUEST"

    # Server / upstream errors
    E_UPSTREAM_FAILURE = "E_UPSTREAM_FAILURE"  # 502
    E_PUSH_NOT_CONFIGURED = "E_PUSH_NOT_CONFIGURED"  # 500
    E_AUTH_UNAVAILABLE = "E_AUTH_UNAVAILABLE"  # 503
    E_INTERNAL = "E_INTERNAL"  # 500

    # Client device errors (never sent over HTTP)
    E_DEVICE_UNAVAILABLE = "E_DEVICE_UNAVAILABLE"


# Error code to HTTP status mapping
ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.E_UNAUTHENTICATED: 401,
    ApiErrorCode.E_STREAM_TOKEN_INVALID: 401,
    ApiErrorCode.E_STREAM_TOKEN_EXPIRED: 401,
    ApiErrorCode.E_STREAM_TOKEN_REPLAYED: 401,
    ApiErrorCode.E_FORBIDDEN: 403,
    ApiErrorCode.E_INTERNAL_ONLY: 403,
    ApiErrorCode.E_NOT_CONVERSATION_PARTICIPANT: 403,
    ApiErrorCode.E_CONVERSATION_NOT_ACTIVE: 403,
    ApiErrorCode.E_NOT_FOUND: 404,
    ApiErrorCode.E_CONVERSATION_NOT_FOUND: 404,
    ApiErrorCode.E_SESSION_NOT_FOUND: 404,
    ApiErrorCode.E_REQUEST_NOT_FOUND: 404,
    ApiErrorCode.E_LISTING_NOT_FOUND: 404,
    ApiErrorCode.E_NOTIFICATION_NOT_FOUND: 404,
    ApiErrorCode.E_INVALID_REQUEST: 400,
    ApiErrorCode.E_INVALID_MESSAGE: 400,
    ApiErrorCode.E_INVALID_LOCATION: 400,
    ApiErrorCode.E_INVALID_TRANSITION: 400,
    ApiErrorCode.E_DUPLICATE_REQUEST: 409,
    ApiErrorCode.E_UPSTREAM_FAILURE: 502,
    ApiErrorCode.E_PUSH_NOT_CONFIGURED: 500,
    ApiErrorCode.E_AUTH_UNAVAILABLE: 503,
    ApiErrorCode.E_INTERNAL: 500,
}


class ApiError(Exception):
    """Base exception for API errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
        status_code: HTTP status code (derived from code)
    """

    def __init__(self, code: ApiErrorCode, message: str):
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        super().__init__(message)


class UnauthorizedError(ApiError):
    """Missing or invalid caller credential."""

    def __init__(
        self,
        code: ApiErrorCode = ApiErrorCode.E_UNAUTHENTICATED,
        message: str = "Authentication required",
    ):
        super().__init__(code, message)


class NotFoundError(ApiError):
    """Resource not found error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class ForbiddenError(ApiError):
    """Authorization failure error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_FORBIDDEN, message: str = "Forbidden"):
        super().__init__(code, message)


class InvalidRequestError(ApiError):
    """Invalid request error."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)


class UpstreamError(ApiError):
    """A collaborator (push service, store) failed or is not configured."""

    def __init__(
        self,
        code: ApiErrorCode = ApiErrorCode.E_UPSTREAM_FAILURE,
        message: str = "Upstream service failure",
    ):
        super().__init__(code, message)
