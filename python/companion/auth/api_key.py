"""Profile API key authentication for the /functions/* webhook endpoints.

The AI backend identifies itself with an `x-api-key` header. A missing key
and an unknown or deactivated key are both 401s with distinct codes.
"""

from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from companion.db.session import get_db
from companion.errors import ApiError, ApiErrorCode
from companion.logging import get_logger, set_profile_id
from companion.services.profile_keys import resolve_api_key

logger = get_logger(__name__)

API_KEY_HEADER = "x-api-key"


@dataclass
class ProfileCaller:
    """The profile on whose behalf a webhook call is made."""

    profile_id: UUID
    key_id: UUID


def get_profile_caller(request: Request, db: Session = Depends(get_db)) -> ProfileCaller:
    """FastAPI dependency resolving the x-api-key header to a profile.

    Raises:
        ApiError(E_API_KEY_MISSING): Header absent or blank.
        ApiError(E_API_KEY_INVALID): Key unknown or inactive.
    """
    api_key = request.headers.get(API_KEY_HEADER, "").strip()
    if not api_key:
        logger.warning("api_key_failure", reason="missing_header")
        raise ApiError(ApiErrorCode.E_API_KEY_MISSING, "API key required")

    key = resolve_api_key(db, api_key)
    if key is None:
        logger.warning("api_key_failure", reason="invalid_key", key_prefix=api_key[:8])
        raise ApiError(ApiErrorCode.E_API_KEY_INVALID, "Invalid API key")

    set_profile_id(str(key.profile_id))
    return ProfileCaller(profile_id=key.profile_id, key_id=key.id)


# Type alias for dependency injection
ProfileCallerDep = Depends(get_profile_caller)
