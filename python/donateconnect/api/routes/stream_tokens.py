"""Stream token minting endpoint.

- POST /stream-tokens mints a stream token JWT for the bearer-authenticated viewer
- Browsers open /stream/* with it, since EventSource cannot send the session bearer
- Signing key never leaves the API process
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from donateconnect.auth.middleware import Viewer, get_viewer
from donateconnect.auth.stream_token import mint_stream_token
from donateconnect.responses import success_response

router = APIRouter(tags=["stream-tokens"])


@router.post("/stream-tokens")
def create_stream_token(
    viewer: Annotated[Viewer, Depends(get_viewer)],
) -> dict:
    """Mint a short-lived, single-use stream token.

    Response:
        {
            "token": "<jwt>",
            "stream_base_url": "https://api.donateconnect.example.com",
            "expires_at": "2026-02-08T21:01:00+00:00"
        }
    """
    return success_response(mint_stream_token(viewer.user_id))
