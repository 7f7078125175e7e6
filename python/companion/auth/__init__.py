"""Authentication and authorization module.

This module provides:
- Token verification (Supabase JWKS verifier) for end users
- Auth middleware for FastAPI
- Profile API key authentication for webhook endpoints

Note: Test-only verifiers are in tests/support/jwt_verifier.py
"""

from companion.auth.api_key import ProfileCaller, get_profile_caller
from companion.auth.middleware import AuthMiddleware, Viewer, get_viewer
from companion.auth.verifier import SupabaseJwksVerifier, TokenVerifier

__all__ = [
    "AuthMiddleware",
    "ProfileCaller",
    "SupabaseJwksVerifier",
    "TokenVerifier",
    "Viewer",
    "get_profile_caller",
    "get_viewer",
]
