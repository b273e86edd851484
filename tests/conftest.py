"""Pytest fixtures for legal chat tests."""

import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.pool import StaticPool

from legal_chat.db import crud, database
from legal_chat.services.llm import Completion
from legal_chat.services.metrics import metrics


class FakeRedis:
    """In-memory stand-in for the handful of Redis commands the services use."""

    def __init__(self):
        self.hashes: dict[str, dict[str, str]] = {}
        self.values: dict[str, str] = {}
        self.counters: dict[str, tuple[int, float]] = {}
        self.calls: list[str] = []

    # hashes
    def hgetall(self, key):
        self.calls.append("hgetall")
        return dict(self.hashes.get(key, {}))

    def hset(self, key, field=None, value=None, mapping=None):
        self.calls.append("hset")
        entry = self.hashes.setdefault(key, {})
        if mapping:
            entry.update({k: str(v) for k, v in mapping.items()})
        if field is not None:
            entry[field] = str(value)
        return 1

    def hsetnx(self, key, field, value):
        entry = self.hashes.setdefault(key, {})
        if field in entry:
            return 0
        entry[field] = str(value)
        return 1

    def hincrby(self, key, field, amount=1):
        entry = self.hashes.setdefault(key, {})
        entry[field] = str(int(entry.get(field, 0)) + amount)
        return int(entry[field])

    # strings
    def set(self, key, value, nx=False, ex=None):
        self.calls.append("set")
        if nx and key in self.values:
            return None
        self.values[key] = str(value)
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            removed += int(self.values.pop(key, None) is not None)
            removed += int(self.hashes.pop(key, None) is not None)
        return removed

    # rate-limit script: INCR with a TTL set on first increment
    def eval(self, script, numkeys, key, window_ms):
        self.calls.append("eval")
        now = time.time()
        count, expires_at = self.counters.get(key, (0, 0.0))
        if expires_at <= now:
            count, expires_at = 0, now + int(window_ms) / 1000
        count += 1
        self.counters[key] = (count, expires_at)
        return [count, int((expires_at - now) * 1000)]

    def ping(self):
        return True

    def close(self):
        pass


@pytest.fixture(autouse=True)
def fresh_state():
    """Reset module-level metrics and circuit breakers between tests."""
    from legal_chat.routes import all_circuits

    metrics.reset()
    for breaker in all_circuits():
        breaker.reset()
    yield


@pytest.fixture
def fake_redis():
    """Shared Redis double wired into every Redis-backed service."""
    from legal_chat.main import connect_stores, disconnect_stores

    fake = FakeRedis()
    connect_stores(fake)
    yield fake
    disconnect_stores()


@pytest.fixture
async def db():
    """In-memory SQLite database with all tables created."""
    database.init_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await database.create_tables()
    yield database
    await database.dispose_engine()


@pytest.fixture
async def registered_user(db):
    async with database.session_scope() as session:
        return await crud.create_user(session, "claire@example.com")


@pytest.fixture
def mock_answer():
    return "Le divorce par consentement mutuel se fait par acte d'avocats."


@pytest.fixture
def mock_llm_service(mock_answer):
    """Provider double so no real API call is made."""
    mock = MagicMock()
    mock.is_configured = True
    mock.complete = AsyncMock(return_value=Completion(answer=mock_answer, tokens_used=42))
    with patch("legal_chat.services.chat.llm_service", mock):
        yield mock


@pytest.fixture
async def client(fake_redis, db, mock_llm_service):
    """Async HTTP client against the FastAPI app."""
    from legal_chat.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def cookie_header(**cookies: str) -> dict[str, str]:
    return {"Cookie": "; ".join(f"{k}={v}" for k, v in cookies.items())}


async def post_chat(client: AsyncClient, message: str, cookies: dict | None = None, **body):
    """POST /api/chat with exactly the given cookies."""
    client.cookies.clear()
    headers = cookie_header(**cookies) if cookies else {}
    return await client.post("/api/chat", json={"message": message, **body}, headers=headers)
