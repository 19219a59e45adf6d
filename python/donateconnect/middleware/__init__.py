"""Middleware modules for the DonateConnect API."""

from donateconnect.middleware.request_id import REQUEST_ID_HEADER, RequestIDMiddleware
from donateconnect.middleware.stream_cors import StreamCORSMiddleware

__all__ = ["RequestIDMiddleware", "REQUEST_ID_HEADER", "StreamCORSMiddleware"]
