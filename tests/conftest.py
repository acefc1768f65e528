"""
Test configuration and fixtures.
Uses a SQLite file database per test (engines open their own sessions, so
an in-memory single-connection database would share transactions between
them). Redis is always mocked.
"""
import hashlib
import hmac
import time
import pytest
from unittest.mock import AsyncMock, patch
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB

import hookgate.models  # noqa: F401 - registers tables on Base.metadata
from hookgate.config import Settings
from hookgate.database import Base
from hookgate.models.provider import Provider
from hookgate.services.container import build_services


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@pytest.fixture(autouse=True)
def mock_redis():
    """Mock for async Redis - every get_redis() caller receives this object."""
    redis_mock = AsyncMock()
    redis_mock.set = AsyncMock(return_value=True)
    redis_mock.ping = AsyncMock(return_value=True)
    redis_mock.lpush = AsyncMock(return_value=1)
    redis_mock.brpop = AsyncMock(return_value=None)
    redis_mock.rpop = AsyncMock(return_value=None)
    with patch("hookgate.utils.redis_client._redis_client", redis_mock):
        yield redis_mock


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'hookgate.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite://",
        webhook_base_url="https://hooks.example.com",
        workers_enabled=False,
        alert_webhook_url="",
    )


@pytest.fixture
def services(settings, session_factory):
    return build_services(settings, session_factory=session_factory)


@pytest.fixture
def make_provider(db):
    """Create and commit a Provider row."""
    async def _make(
        name: str = "stripe",
        token: str = "tok_live_abc123",
        signing_secret: str = "whsec_test",
        verifier: str = "stripe",
        **overrides,
    ) -> Provider:
        provider = Provider(
            name=name,
            token=token,
            signing_secret=signing_secret,
            verifier=verifier,
            **overrides,
        )
        db.add(provider)
        await db.commit()
        return provider

    return _make


@pytest.fixture
def stripe_header():
    """Build a Stripe-Signature header for a raw body."""
    def _sign(secret: str, body: bytes, timestamp: int | None = None) -> str:
        ts = int(time.time()) if timestamp is None else timestamp
        signed = f"{ts}.".encode() + body
        digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
        return f"t={ts},v1={digest}"

    return _sign
