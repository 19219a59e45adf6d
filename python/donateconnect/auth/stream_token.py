"""Stream token auth: mint and verify short-lived JWTs for /stream/* endpoints.

Browsers subscribe with EventSource, which cannot attach the session
bearer, so an authenticated call first mints a stream token:
- HS256 signed with STREAM_TOKEN_SIGNING_KEY (never leaves the API)
- Claims: iss=donateconnect-stream, aud=donateconnect-api, sub=user_id,
  exp=now+60s, jti=uuid, scope=stream
- jti replay protection via Redis SET NX with TTL (skipped without Redis)
- iss/aud prevent accidental acceptance of Supabase tokens on stream routes
"""

import base64
import binascii
import time
from datetime import UTC, datetime
from uuid import UUID, uuid4

import jwt

from donateconnect.config import get_settings
from donateconnect.errors import ApiErrorCode, UnauthorizedError
from donateconnect.logging import get_logger

logger = get_logger(__name__)

STREAM_TOKEN_ISSUER = "donateconnect-stream"
STREAM_TOKEN_AUDIENCE = "donateconnect-api"
STREAM_TOKEN_SCOPE = "stream"
STREAM_TOKEN_TTL_SECONDS = 60


def _get_signing_key_bytes() -> bytes:
    """Decode the base64-encoded signing key to raw bytes."""
    settings = get_settings()
    key_b64 = settings.effective_stream_token_signing_key
    try:
        key_bytes = base64.b64decode(key_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"STREAM_TOKEN_SIGNING_KEY is not valid base64: {e}") from e
    if len(key_bytes) < 32:
        raise ValueError(
            f"STREAM_TOKEN_SIGNING_KEY must be at least 32 bytes, got {len(key_bytes)}"
        )
    return key_bytes


def mint_stream_token(user_id: UUID) -> dict:
    """Mint a short-lived stream token JWT.

    Returns:
        Dict with token, stream_base_url, expires_at.
    """
    settings = get_settings()
    now = int(time.time())

    payload = {
        "iss": STREAM_TOKEN_ISSUER,
        "aud": STREAM_TOKEN_AUDIENCE,
        "sub": str(user_id),
        "exp": now + STREAM_TOKEN_TTL_SECONDS,
        "iat": now,
        "jti": str(uuid4()),
        "scope": STREAM_TOKEN_SCOPE,
    }

    token = jwt.encode(payload, _get_signing_key_bytes(), algorithm="HS256")
    expires_at = datetime.fromtimestamp(now + STREAM_TOKEN_TTL_SECONDS, tz=UTC).isoformat()

    return {
        "token": token,
        "stream_base_url": settings.effective_stream_base_url,
        "expires_at": expires_at,
    }


def verify_stream_token(token: str, redis_client=None) -> tuple[UUID, str]:
    """Verify a stream token and return the user_id and jti.

    Args:
        token: The JWT string (Authorization header or access_token query param).
        redis_client: Redis client for jti replay check. If None, skip replay check.

    Raises:
        UnauthorizedError: On any verification failure.
    """
    try:
        payload = jwt.decode(
            token,
            _get_signing_key_bytes(),
            algorithms=["HS256"],
            issuer=STREAM_TOKEN_ISSUER,
            audience=STREAM_TOKEN_AUDIENCE,
            options={"require": ["exp", "iss", "aud", "sub", "jti", "scope"]},
        )
    except jwt.ExpiredSignatureError as err:
        raise UnauthorizedError(
            ApiErrorCode.E_STREAM_TOKEN_EXPIRED,
            "Stream token has expired",
        ) from err
    except jwt.InvalidTokenError as e:
        logger.warning("stream_token_invalid", error=str(e))
        raise UnauthorizedError(
            ApiErrorCode.E_STREAM_TOKEN_INVALID,
            "Invalid stream token",
        ) from e

    if payload.get("scope") != STREAM_TOKEN_SCOPE:
        raise UnauthorizedError(
            ApiErrorCode.E_STREAM_TOKEN_INVALID,
            "Invalid stream token scope",
        )

    try:
        user_id = UUID(payload["sub"])
    except (ValueError, TypeError) as e:
        raise UnauthorizedError(
            ApiErrorCode.E_STREAM_TOKEN_INVALID,
            "Invalid stream token subject",
        ) from e

    jti = payload["jti"]
    if redis_client is not None:
        try:
            ttl = max(1, payload["exp"] - int(time.time()))
            was_set = redis_client.set(f"jti:{jti}", "1", nx=True, ex=ttl)
        except Exception as e:
            # Fail open: the token is still valid by signature
            logger.warning("stream_token_jti_check_failed", error=str(e))
        else:
            if not was_set:
                logger.warning("stream.jti_replay_blocked", jti=jti)
                raise UnauthorizedError(
                    ApiErrorCode.E_STREAM_TOKEN_REPLAYED,
                    "Stream token has already been used",
                )

    return user_id, jti
