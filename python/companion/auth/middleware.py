"""Authentication middleware for FastAPI.

Provides:
- AuthMiddleware: Global middleware for bearer token verification
- get_viewer: Dependency for accessing authenticated viewer identity

Webhook endpoints under /functions/ are skipped here; they authenticate the
calling profile by API key (see companion.auth.api_key).
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from companion.auth.verifier import TokenVerifier
from companion.errors import ERROR_CODE_TO_STATUS, ApiError, ApiErrorCode
from companion.logging import user_id_var
from companion.responses import error_response

logger = logging.getLogger(__name__)

AUTHORIZATION_HEADER = "authorization"

# Paths that don't require bearer authentication
PUBLIC_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}
PUBLIC_PREFIXES = ("/functions/",)


def is_public_path(path: str) -> bool:
    return path in PUBLIC_PATHS or path.startswith(PUBLIC_PREFIXES)


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
    1. Skip if public path (or CORS preflight)
    2. Extract and parse bearer token
    3. Verify token via TokenVerifier
    4. Call bootstrap callback to ensure the user row exists
    5. Attach Viewer to request state
    """

    def __init__(
        self,
        app: ASGIApp,
        verifier: TokenVerifier,
        bootstrap_callback: Callable[[UUID], UUID] | None = None,
    ):
        super().__init__(app)
        self.verifier = verifier
        self.bootstrap_callback = bootstrap_callback

    async def dispatch(self, request: Request, call_next) -> JSONResponse:
        if request.method == "OPTIONS" or is_public_path(request.url.path):
            return await call_next(request)

        token = self._extract_bearer_token(request)
        if token is None:
            return self._error_json_response(
                ApiErrorCode.E_UNAUTHENTICATED, "Authentication required"
            )

        try:
            payload = self.verifier.verify(token)
        except ApiError as e:
            return self._error_json_response(e.code, e.message)

        user_id = UUID(payload["sub"])

        if self.bootstrap_callback:
            try:
                self.bootstrap_callback(user_id)
            except Exception as e:
                logger.exception("Bootstrap failed for user %s: %s", user_id, e)
                return self._error_json_response(ApiErrorCode.E_INTERNAL, "Internal server error")

        request.state.viewer = Viewer(user_id=user_id)
        user_id_var.set(str(user_id))

        return await call_next(request)

    def _extract_bearer_token(self, request: Request) -> str | None:
        """Return the bearer token, or None if the header is missing or malformed."""
        auth_header = request.headers.get(AUTHORIZATION_HEADER)

        if not auth_header:
            reason = "missing_header"
        elif not auth_header.lower().startswith("bearer ") or not auth_header[7:].strip():
            reason = "invalid_header_format"
        else:
            return auth_header[7:].strip()

        logger.warning(
            "auth_failure", extra={"reason": reason, "request_path": request.url.path}
        )
        return None

    def _error_json_response(self, code: ApiErrorCode, message: str) -> JSONResponse:
        return JSONResponse(
            status_code=ERROR_CODE_TO_STATUS.get(code, 500),
            content=error_response(code, message),
        )


def get_viewer(request: Request) -> Viewer:
    """FastAPI dependency to get the authenticated viewer.

    Raises:
        ApiError: If viewer is not set (middleware didn't run or path is public).
    """
    viewer = getattr(request.state, "viewer", None)
    if viewer is None:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Authentication required")
    return viewer


# Type alias for dependency injection
ViewerDep = Depends(get_viewer)
