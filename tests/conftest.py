from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from coctelera.core.config import Settings
from coctelera.db.base import Base
from coctelera.db.session import Database, register_engine_events
from coctelera.services.access import AccessValidator
from coctelera.services.workflow import RequestWorkflow


# In-memory SQLite for tests
TEST_DATABASE_URL = "sqlite://"
ADMIN_KEY = "test-admin-key"
EXPLANATION = "I want to list cocktails on my bar's website"


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class MemoryNotifier:
    def __init__(self):
        self.events = []

    def send(self, event) -> None:
        self.events.append(event)

    def of_kind(self, kind):
        return [e for e in self.events if e.kind == kind]


@pytest.fixture()
def settings():
    return Settings(
        DATABASE_URL=TEST_DATABASE_URL,
        JWT_SECRET_KEY="test-secret",
        ADMIN_API_KEY=ADMIN_KEY,
        ADMIN_EMAIL="admin@coctelera.org",
        BASE_URL="http://testserver",
        TOKEN_VALIDITY_DAYS=30,
        SMTP_HOST="",
    )


@pytest.fixture()
def database():
    """Per-test SQLite in-memory store with foreign keys enforced."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    register_engine_events(engine)
    database = Database(engine)
    database.create_all()
    try:
        yield database
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(database):
    session = database.session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def clock():
    return FrozenClock(datetime(2025, 6, 15, 10, 0, 0))


@pytest.fixture()
def notifier():
    return MemoryNotifier()


@pytest.fixture()
def workflow(db_session, settings, notifier, clock):
    return RequestWorkflow.from_session(db_session, settings, notifier, clock=clock)


@pytest.fixture()
def validator(db_session, clock):
    return AccessValidator(db_session, clock=clock)


@pytest.fixture()
def enabled_account(workflow):
    """An account walked through the whole workflow. Returns (account_id, token)."""
    account_id = workflow.submit_request("Jane", "janedoe@mail.com", EXPLANATION)
    workflow.confirm(account_id)
    result = workflow.enable(account_id)
    return account_id, result.token


@pytest.fixture()
def client(database, settings, notifier):
    """TestClient bound to the per-test store."""
    from coctelera.main import create_app

    app = create_app(database=database, settings=settings, notifier=notifier)
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture()
def admin_headers():
    return {"X-Admin-Key": ADMIN_KEY}
