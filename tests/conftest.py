"""
Shared fixtures: per-test SQLite database, application and HTTP client.
"""
from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from authguard.app.db import init_models
from authguard.app.db.base import build_sessionmaker, create_engine_for
from authguard.app.main import create_app
from authguard.app.schemas.security import SessionRecord, utcnow
from authguard.app.security.jwt import create_access_token

CSRF_TOKEN = "test-csrf-token"

# Session tokens registered for user-1 before each API test
KNOWN_SESSIONS = ("session-1", "session-2")


@pytest.fixture
async def engine(tmp_path):
    # A file database: every session gets its own connection, so background
    # audit writes cannot share a transaction with request handlers
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'authguard.db'}")
    await init_models(engine, drop_existing=True)
    yield engine
    await engine.dispose()


@pytest.fixture
def sessionmaker(engine):
    return build_sessionmaker(engine)


@pytest.fixture
async def app(engine, sessionmaker):
    app = create_app(engine=engine, sessionmaker=sessionmaker)
    yield app
    await app.state.services.flush_audit()


@pytest.fixture
def services(app):
    return app.state.services


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="https://testserver") as client:
        yield client


@pytest.fixture
async def auth_headers(services):
    """
    Build request headers for an authenticated caller.

    Includes a matching CSRF cookie/header pair so mutating requests pass
    the double-submit check. The default session ids are registered as
    live sessions of user-1.
    """
    now = utcnow()
    for token in KNOWN_SESSIONS:
        await services.sessions.store.create(
            SessionRecord(
                account_id="user-1",
                session_token=token,
                created_at=now,
                last_activity_at=now,
                expires_at=now + timedelta(hours=24),
            )
        )

    def _build(account_id="user-1", session_id="session-1", email="user@example.com", csrf=True):
        token = create_access_token({"sub": account_id, "sid": session_id, "email": email})
        headers = {"Authorization": f"Bearer {token}"}
        if csrf:
            headers["X-CSRF-Token"] = CSRF_TOKEN
            headers["Cookie"] = f"csrf_token={CSRF_TOKEN}"
        return headers

    return _build


class FakeClock:
    """Settable replacement for utcnow()."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingAudit:
    def __init__(self, fail=False):
        self.events = []
        self.fail = fail

    async def log_event(self, event):
        if self.fail:
            raise ConnectionError("audit sink down")
        self.events.append(event)

    @property
    def types(self):
        return [event.event_type for event in self.events]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def audit():
    return RecordingAudit()


@pytest.fixture
def failing_audit():
    return RecordingAudit(fail=True)
