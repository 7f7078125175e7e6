"""FastAPI dependencies for route handlers.

Shared resources live on app.state and are created by the app lifespan:
- broker: realtime broker (in-process or Redis)
- storage_client: audio object storage
- dispatcher: best-effort background dispatcher
- httpx_client: shared AsyncClient for the outbound webhook relay
"""

import httpx
from fastapi import Request

from companion.db.session import get_db, session_factory_for
from companion.realtime import Broker
from companion.services.dispatch import BestEffortDispatcher
from companion.storage import StorageClientBase

__all__ = [
    "get_broker",
    "get_db",
    "get_dispatcher",
    "get_http_client",
    "get_storage",
    "session_factory_for",
]


def get_broker(request: Request) -> Broker:
    return request.app.state.broker


def get_storage(request: Request) -> StorageClientBase:
    return request.app.state.storage_client


def get_dispatcher(request: Request) -> BestEffortDispatcher:
    return request.app.state.dispatcher


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Get the shared HTTP client used for webhook relays."""
    return request.app.state.httpx_client
