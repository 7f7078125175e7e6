"""Database smoke tests.

Verifies connectivity, timestamp handling, per-chat sequence assignment
and user bootstrap.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import select, text
from sqlalchemy.orm import Session

from companion.db.models import Chat, Message, User
from companion.db.session import transaction
from companion.services.bootstrap import create_bootstrap_callback, ensure_user
from companion.services.seq import assign_next_message_seq
from tests.factories import create_chat_ready_pair, create_test_message


class TestDatabaseConnectivity:
    def test_session_opens_and_executes_query(self, db_session: Session):
        assert db_session.execute(text("SELECT 1 AS value")).scalar() == 1


class TestTimestamps:
    def test_round_trip_as_aware_utc(self, db_session: Session):
        """Timestamps written in another offset come back as the same instant in UTC."""
        _, _, chat_id = create_chat_ready_pair(db_session)
        local = datetime(2026, 3, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        message_id = create_test_message(db_session, chat_id, created_at=local)
        db_session.expire_all()

        stored = db_session.get(Message, message_id).created_at

        assert stored.tzinfo is not None
        assert stored == local
        assert stored.utcoffset() == timedelta(0)
        assert stored.hour == 10


class TestSequenceAssignment:
    def test_increments_per_chat(self, db_session: Session):
        _, _, chat_id = create_chat_ready_pair(db_session)

        with transaction(db_session):
            first = assign_next_message_seq(db_session, chat_id)
            second = assign_next_message_seq(db_session, chat_id)

        assert (first, second) == (1, 2)
        db_session.expire_all()
        assert db_session.get(Chat, chat_id).next_seq == 3

    def test_chats_count_independently(self, db_session: Session):
        _, _, chat_a = create_chat_ready_pair(db_session)
        _, _, chat_b = create_chat_ready_pair(db_session)

        with transaction(db_session):
            assign_next_message_seq(db_session, chat_a)
            assert assign_next_message_seq(db_session, chat_b) == 1

    def test_missing_chat(self, db_session: Session):
        with pytest.raises(ValueError, match="not found"):
            assign_next_message_seq(db_session, uuid4())


class TestUserBootstrap:
    def test_creates_once(self, db_session: Session):
        user_id = uuid4()

        assert ensure_user(db_session, user_id) == user_id
        assert ensure_user(db_session, user_id) == user_id

        rows = db_session.scalars(select(User).where(User.id == user_id)).all()
        assert len(rows) == 1
        assert rows[0].created_at.utcoffset() == timedelta(0)

    def test_callback_uses_own_session(self, session_factory, db_session: Session):
        user_id = uuid4()

        create_bootstrap_callback(session_factory)(user_id)

        assert db_session.get(User, user_id) is not None
