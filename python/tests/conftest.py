"""Pytest configuration and fixtures for DonateConnect tests.

Test isolation strategy:
- Each test gets a fresh schema: created from the ORM metadata on an
  in-memory SQLite database, or on the PostgreSQL database named by
  DATABASE_URL when one is set, and dropped afterwards
- The app under test shares the test session factory, change feed and a
  push service whose sender records calls instead of contacting browsers
- Auth tests use MockJwtVerifier tokens from tests.helpers.auth_headers
"""

import os
from collections.abc import Generator

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("DC_ENV", "test")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from donateconnect.app import create_app
from donateconnect.config import Settings, clear_settings_cache
from donateconnect.db.engine import create_db_engine
from donateconnect.db.models import Base
from donateconnect.db.session import create_session_factory, set_session_factory
from donateconnect.realtime.feed import ChangeFeed
from donateconnect.services.push import PushService
from tests.support.mock_verifier import MockJwtVerifier


class RecordingSender:
    """Stand-in for pywebpush.webpush.

    Records every call. An endpoint listed in `failures` raises the mapped
    exception instead of succeeding.
    """

    def __init__(self):
        self.calls: list[dict] = []
        self.failures: dict[str, Exception] = {}

    def __call__(self, subscription_info: dict, **kwargs):
        self.calls.append({"subscription_info": subscription_info, **kwargs})
        error = self.failures.get(subscription_info["endpoint"])
        if error is not None:
            raise error

    @property
    def endpoints(self) -> list[str]:
        return [c["subscription_info"]["endpoint"] for c in self.calls]


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset the settings cache before each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """A database engine with a freshly created schema."""
    engine = create_db_engine(os.environ["DATABASE_URL"])
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> Generator[sessionmaker[Session], None, None]:
    """Session factory installed as the process default (used by get_db)."""
    factory = create_session_factory(engine)
    set_session_factory(factory)
    yield factory
    set_session_factory(None)


@pytest.fixture
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """A database session for arranging and inspecting rows."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def change_feed() -> ChangeFeed:
    return ChangeFeed(maxsize=16)


@pytest.fixture
def push_settings() -> Settings:
    """Settings with VAPID keys configured."""
    return Settings(
        DATABASE_URL=os.environ["DATABASE_URL"],
        DC_ENV="test",
        VAPID_PUBLIC_KEY="test-vapid-public-key",
        VAPID_PRIVATE_KEY="test-vapid-private-key",
        VAPID_CONTACT_EMAIL="push@example.com",
    )


@pytest.fixture
def push_sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def push_service(push_settings: Settings, push_sender: RecordingSender) -> PushService:
    return PushService(settings=push_settings, sender=push_sender)


@pytest.fixture
def app(session_factory, change_feed: ChangeFeed, push_service: PushService):
    """A FastAPI app with auth middleware wired to the test verifier."""
    return create_app(
        token_verifier=MockJwtVerifier(),
        change_feed=change_feed,
        push_service=push_service,
    )


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """Authenticated-capable test client. Use auth_headers() per request."""
    with TestClient(app) as client:
        yield client
