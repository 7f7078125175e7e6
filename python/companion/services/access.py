"""Access grant evaluation.

A user may chat with a profile when they hold either:
- an active subscription whose expires_at is NULL or in the future, or
- an active free-access window for the profile covering "now", opened either
  to everyone (user_id NULL) or to that user specifically.

Grants are evaluated on every call. Nothing is cached, so a subscription
that lapses or a window that closes takes effect on the next check.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import exists, or_, select
from sqlalchemy.orm import Session

from companion.db.models import FreeAccessPeriod, Profile, Subscription, utcnow
from companion.errors import ApiErrorCode, ForbiddenError, NotFoundError
from companion.logging import get_logger
from companion.schemas.chat import AccessOut

logger = get_logger(__name__)


def has_subscription(
    db: Session, user_id: UUID, profile_id: UUID, now: datetime | None = None
) -> bool:
    """Return True if the user holds a live subscription to the profile."""
    now = now or utcnow()
    stmt = select(
        exists().where(
            Subscription.user_id == user_id,
            Subscription.profile_id == profile_id,
            Subscription.active.is_(True),
            or_(Subscription.expires_at.is_(None), Subscription.expires_at > now),
        )
    )
    return bool(db.scalar(stmt))


def has_free_access(
    db: Session, user_id: UUID, profile_id: UUID, now: datetime | None = None
) -> bool:
    """Return True if a free-access window for the profile is open to the user."""
    now = now or utcnow()
    stmt = select(
        exists().where(
            FreeAccessPeriod.profile_id == profile_id,
            FreeAccessPeriod.active.is_(True),
            FreeAccessPeriod.start_time <= now,
            FreeAccessPeriod.end_time > now,
            or_(FreeAccessPeriod.user_id.is_(None), FreeAccessPeriod.user_id == user_id),
        )
    )
    return bool(db.scalar(stmt))


def has_access(db: Session, user_id: UUID, profile_id: UUID) -> bool:
    """Subscription OR free access, evaluated at the same instant."""
    now = utcnow()
    return has_subscription(db, user_id, profile_id, now) or has_free_access(
        db, user_id, profile_id, now
    )


def require_access(db: Session, user_id: UUID, profile_id: UUID) -> None:
    """Raise ForbiddenError(E_ACCESS_DENIED) unless the user may chat with the profile."""
    if not has_access(db, user_id, profile_id):
        logger.info("access_denied", profile_id=str(profile_id))
        raise ForbiddenError(
            ApiErrorCode.E_ACCESS_DENIED,
            "An active subscription or free access period is required",
        )


def get_access(db: Session, viewer_id: UUID, profile_id: UUID) -> AccessOut:
    """Report the viewer's grants for a profile.

    Raises:
        NotFoundError(E_PROFILE_NOT_FOUND): If the profile does not exist.
    """
    if db.get(Profile, profile_id) is None:
        raise NotFoundError(ApiErrorCode.E_PROFILE_NOT_FOUND, "Profile not found")

    now = utcnow()
    subscription = has_subscription(db, viewer_id, profile_id, now)
    free_access = has_free_access(db, viewer_id, profile_id, now)
    return AccessOut(
        profile_id=profile_id,
        has_access=subscription or free_access,
        has_subscription=subscription,
        has_free_access=free_access,
    )
