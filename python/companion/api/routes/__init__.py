"""API route definitions.

Uses a factory pattern to avoid import-time settings loading.
This allows tests to import modules without requiring all environment
variables to be configured upfront.
"""

from fastapi import APIRouter

from companion.api.routes.chats import router as chats_router
from companion.api.routes.functions import router as functions_router
from companion.api.routes.health import router as health_router
from companion.api.routes.stream import router as stream_router


def create_api_router() -> APIRouter:
    """Create and configure the API router.

    Returns:
        Configured APIRouter with all routes registered.
    """
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(chats_router, tags=["chats"])
    api_router.include_router(functions_router, tags=["functions"])
    api_router.include_router(stream_router, tags=["streaming"])
    return api_router


__all__ = ["create_api_router"]
