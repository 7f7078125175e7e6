"""Pytest configuration and fixtures for Companion tests.

Test isolation strategy:
- Each test gets a fresh database: an in-memory SQLite database built from
  the ORM metadata, or the schema in DATABASE_URL (PostgreSQL) when that
  variable points at one, in which case all tables are emptied afterwards
- Apps are built with create_app() and injected test doubles: the RSA test
  verifier, an in-memory broker and a fake storage client
- Auth tests mint tokens with tests.helpers.auth_headers()
"""

import os
import sys
from collections.abc import Generator
from pathlib import Path

# Add repo root to sys.path for importing top-level packages (e.g., apps)
_repo_root = Path(__file__).parent.parent.parent
if str(_repo_root) not in sys.path:
    sys.path.insert(0, str(_repo_root))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from companion.app import create_app
from companion.config import clear_settings_cache
from companion.db.engine import create_db_engine
from companion.db.models import Base
from companion.db.session import create_session_factory
from companion.storage import FakeStorageClient
from tests.support.jwt_verifier import MockJwtVerifier
from tests.support.recording_broker import RecordingBroker

SQLITE_URL = "sqlite+pysqlite:///:memory:"

TEST_ENV = {
    "COMPANION_ENV": "test",
    "SUPABASE_JWKS_URL": "https://auth.test/.well-known/jwks.json",
    "SUPABASE_ISSUER": "test-issuer",
    "SUPABASE_AUDIENCES": "test-audience",
    "STREAM_KEEPALIVE_S": "0.05",
    "WEBHOOK_TIMEOUT_S": "2",
}


def _external_database_url() -> str | None:
    url = os.environ.get("DATABASE_URL", "")
    return url if url.startswith("postgresql") else None


@pytest.fixture(autouse=True)
def test_settings(monkeypatch) -> Generator[None, None, None]:
    """Point settings at the test environment for every test."""
    for key, value in TEST_ENV.items():
        monkeypatch.setenv(key, value)
    if _external_database_url() is None:
        monkeypatch.setenv("DATABASE_URL", SQLITE_URL)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def engine(test_settings) -> Generator[Engine, None, None]:
    url = _external_database_url()
    engine = create_db_engine(url or SQLITE_URL)
    if url is None:
        Base.metadata.create_all(engine)
    yield engine
    if url is not None:
        with engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                conn.execute(table.delete())
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return create_session_factory(engine)


@pytest.fixture
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def broker() -> RecordingBroker:
    return RecordingBroker()


@pytest.fixture
def storage() -> FakeStorageClient:
    return FakeStorageClient()


@pytest.fixture
def test_verifier() -> MockJwtVerifier:
    return MockJwtVerifier()


@pytest.fixture
def app(session_factory, broker, storage, test_verifier):
    """App with auth middleware, bound to the test database and fakes."""
    return create_app(
        token_verifier=test_verifier,
        session_factory=session_factory,
        broker=broker,
        storage_client=storage,
    )


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as client:
        yield client
