"""Profile API key service layer.

Profile API keys authenticate the AI backend when it calls the inbound
webhook endpoints on behalf of a profile.

Security invariants:
- Only the SHA-256 digest of a key is stored; lookup is by digest
- The plaintext is returned exactly once, on creation
- A profile has at most one active key; creating a key deactivates the others
- Never log plaintext keys (key_prefix is safe to log)
"""

import secrets
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from companion.db.models import Profile, ProfileApiKey, utcnow
from companion.db.session import transaction
from companion.errors import ApiErrorCode, NotFoundError
from companion.logging import get_logger
from companion.services.redact import hash_text

logger = get_logger(__name__)

KEY_PREFIX = "ck_"
DISPLAY_PREFIX_CHARS = 8


def generate_api_key() -> str:
    return KEY_PREFIX + secrets.token_urlsafe(32)


def create_profile_api_key(db: Session, profile_id: UUID) -> tuple[ProfileApiKey, str]:
    """Issue a new API key for a profile.

    Returns:
        Tuple of (key row, plaintext key). The plaintext is not recoverable later.

    Raises:
        NotFoundError(E_PROFILE_NOT_FOUND): If the profile doesn't exist.
    """
    if db.get(Profile, profile_id) is None:
        raise NotFoundError(ApiErrorCode.E_PROFILE_NOT_FOUND, "Profile not found")

    plaintext = generate_api_key()
    with transaction(db):
        db.execute(
            update(ProfileApiKey)
            .where(ProfileApiKey.profile_id == profile_id, ProfileApiKey.active.is_(True))
            .values(active=False)
            .execution_options(synchronize_session=False)
        )
        key = ProfileApiKey(
            profile_id=profile_id,
            api_key_hash=hash_text(plaintext),
            key_prefix=plaintext[:DISPLAY_PREFIX_CHARS],
            active=True,
        )
        db.add(key)

    logger.info(
        "profile_api_key_created",
        profile_id=str(profile_id),
        key_id=str(key.id),
        key_prefix=key.key_prefix,
    )
    return key, plaintext


def revoke_profile_api_key(db: Session, key_id: UUID) -> ProfileApiKey:
    """Deactivate a key. Idempotent.

    Raises:
        NotFoundError(E_API_KEY_NOT_FOUND): If the key doesn't exist.
    """
    key = db.get(ProfileApiKey, key_id)
    if key is None:
        raise NotFoundError(ApiErrorCode.E_API_KEY_NOT_FOUND, "API key not found")

    if key.active:
        with transaction(db):
            key.active = False
        logger.info("profile_api_key_revoked", key_id=str(key_id), profile_id=str(key.profile_id))

    return key


def resolve_api_key(db: Session, plaintext: str) -> ProfileApiKey | None:
    """Look up an active key by its plaintext and stamp last_used_at.

    Returns:
        The key row, or None if the key is unknown or inactive.
    """
    key = db.scalar(
        select(ProfileApiKey).where(
            ProfileApiKey.api_key_hash == hash_text(plaintext),
            ProfileApiKey.active.is_(True),
        )
    )
    if key is None:
        return None

    with transaction(db):
        key.last_used_at = utcnow()

    return key
