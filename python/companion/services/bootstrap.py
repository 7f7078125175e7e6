"""User bootstrap service.

Provides race-safe user row creation on first authenticated request.
"""

import logging
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from companion.db.models import User
from companion.db.session import transaction

logger = logging.getLogger(__name__)


def ensure_user(db: Session, user_id: UUID) -> UUID:
    """Ensure a users row exists for the authenticated subject.

    Idempotent: concurrent first requests for the same user converge, the
    loser of the insert race simply finds the row already present.

    Args:
        db: Database session.
        user_id: The user's ID (from JWT sub claim).

    Returns:
        The user ID.
    """
    if db.get(User, user_id) is not None:
        return user_id

    try:
        with transaction(db):
            db.add(User(id=user_id))
        logger.info("Created user %s", user_id)
    except IntegrityError:
        # Lost race: another request inserted the row
        if db.get(User, user_id) is None:
            logger.error("Failed to find user after race recovery for %s", user_id)
            raise RuntimeError(f"Failed to bootstrap user {user_id}") from None

    return user_id


def create_bootstrap_callback(session_factory):
    """Create the bootstrap callback used by the auth middleware.

    Each call opens its own short-lived session from the given factory.

    Args:
        session_factory: Callable returning a new database session.

    Returns:
        A callback function that takes user_id and returns it once the row exists.
    """

    def callback(user_id: UUID) -> UUID:
        db = session_factory()
        try:
            return ensure_user(db, user_id)
        finally:
            db.close()

    return callback
