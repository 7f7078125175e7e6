"""FastAPI application creation and configuration.

This module creates and configures the FastAPI application instance.
It registers exception handlers, auth middleware, request-id middleware, and routes.

Middleware Ordering (Critical):
- Middleware runs in reverse order of registration
- RequestIDMiddleware is added LAST so it runs FIRST (outermost)
- FunctionsCORSMiddleware wraps auth so webhook preflights never need a key

Actual execution order per request:
1. RequestIDMiddleware (sets request_id, starts timer)
2. FunctionsCORSMiddleware (answers /functions/* preflights, adds CORS headers)
3. AuthMiddleware (verifies bearer token, skips /functions/* and public paths)
4. Route handler

Shared resources (created in lifespan, stored on app.state):
- httpx_client: AsyncClient for the outbound webhook relay
- broker: realtime broker (Redis when REDIS_URL is set)
- dispatcher: best-effort background dispatcher bound to the app loop
- storage_client: audio object storage
"""

import asyncio
import json
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException

from companion.api.routes import create_api_router
from companion.auth.middleware import AuthMiddleware
from companion.auth.verifier import SupabaseJwksVerifier
from companion.config import get_settings
from companion.db.session import get_session_factory
from companion.errors import ApiError, ApiErrorCode
from companion.logging import configure_logging, get_logger
from companion.middleware.functions_cors import FunctionsCORSMiddleware
from companion.middleware.request_id import RequestIDMiddleware
from companion.realtime import create_broker
from companion.responses import (
    api_error_handler,
    error_response,
    http_exception_handler,
    unhandled_exception_handler,
)
from companion.services.bootstrap import create_bootstrap_callback
from companion.services.dispatch import BestEffortDispatcher
from companion.storage import get_storage_client

# Configure structured logging at import time
configure_logging()

logger = get_logger(__name__)

# Seconds granted to in-flight webhook relays at shutdown
DISPATCH_DRAIN_TIMEOUT_S = 10.0


def create_token_verifier():
    """Create the token verifier using Supabase JWKS.

    All environments use the same verifier; only the configuration values
    (JWKS URL, issuer, audiences) change.
    """
    settings = get_settings()

    return SupabaseJwksVerifier(
        jwks_url=settings.supabase_jwks_url,  # type: ignore
        issuer=settings.normalized_issuer,  # type: ignore
        audiences=settings.audience_list,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle resources."""
    settings = get_settings()

    app.state.httpx_client = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.webhook_timeout_s, connect=10.0),
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
    )

    if getattr(app.state, "broker", None) is None:
        app.state.broker = create_broker(settings.redis_url)
    if getattr(app.state, "storage_client", None) is None:
        app.state.storage_client = get_storage_client(settings)

    app.state.dispatcher = BestEffortDispatcher(asyncio.get_running_loop())

    yield

    # Shutdown: let relays finish, then release connections
    await app.state.dispatcher.drain(DISPATCH_DRAIN_TIMEOUT_S)
    await app.state.httpx_client.aclose()
    await app.state.broker.close()
    logger.info("app_shutdown_complete")


def create_app(
    skip_auth_middleware: bool = False,
    token_verifier=None,
    session_factory: sessionmaker[Session] | None = None,
    broker=None,
    storage_client=None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        skip_auth_middleware: If True, skip adding auth middleware (for testing).
        token_verifier: Optional custom token verifier (for testing).
        session_factory: Optional session factory (tests bind one per database).
        broker: Optional realtime broker; created from settings when omitted.
        storage_client: Optional storage client; created from settings when omitted.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Companion API",
        description="Backend API for subscription-gated companion chat",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.session_factory = session_factory
    app.state.broker = broker
    app.state.storage_client = storage_client

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
        """Reject malformed JSON bodies before they reach route handlers."""
        if request.method in ("POST", "PUT", "PATCH"):
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

    app.include_router(create_api_router())

    if not skip_auth_middleware:
        verifier = token_verifier or create_token_verifier()
        bootstrap_callback = create_bootstrap_callback(session_factory or get_session_factory())

        app.add_middleware(
            AuthMiddleware,
            verifier=verifier,
            bootstrap_callback=bootstrap_callback,
        )
        logger.info("auth_middleware_enabled", env=settings.companion_env.value)

    # Added after auth so it runs before it
    app.add_middleware(FunctionsCORSMiddleware, allowed_origins=settings.cors_origin_list)

    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Add request-id middleware to the app.

    Call AFTER all other middleware is added, so it runs FIRST.
    """
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
    logger.info("request_id_middleware_enabled")

