"""Authentication and authorization module.

This module provides:
- Token verification (Supabase JWKS verifier)
- Auth middleware for FastAPI
- The Conversation Gate (relationship-based authorization)

Note: Test-only verifiers are in tests/support/test_verifier.py
"""

from donateconnect.auth.middleware import AuthMiddleware, Viewer, get_viewer
from donateconnect.auth.verifier import SupabaseJwksVerifier, TokenVerifier

__all__ = [
    "AuthMiddleware",
    "Viewer",
    "get_viewer",
    "SupabaseJwksVerifier",
    "TokenVerifier",
]
