"""
Test configuration and fixtures.
Uses a file-backed SQLite database per test (so concurrent sessions really are
separate connections). Redis and remote handlers are never contacted.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import uuid

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB

from src.config import Settings
from src.database import Base
import src.models  # noqa: F401
from src.models.webhook import WebhookConfig
from src.models.event_handler import RemoteHandlerConfig
from src.services.event_queue import EventQueue


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    """Session for arranging and inspecting rows directly."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def queue(session_factory):
    """Queue with zero backoff so retries are immediately claimable."""
    return EventQueue(session_factory, retry_backoff_seconds=0, notify=False)


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        app_env="test",
        log_level="WARNING",
        retry_backoff_seconds=0,
        dispatcher_batch_size=10,
    )


@pytest.fixture
def make_webhook(session_factory):
    """Insert a WebhookConfig row and return it."""
    async def _make(**overrides) -> WebhookConfig:
        values = {
            "id": uuid.uuid4(),
            "name": "github-push",
            "provider": "github",
            "secret_key": "s3cret",
            "signature_header": "X-Hub-Signature-256",
            "signature_algorithm": "sha256",
            "handler_name": "github-push",
            "event_type_prefix": "webhook:github",
            "is_active": True,
            "received_count": 0,
            "failed_count": 0,
        }
        values.update(overrides)
        config = WebhookConfig(**values)
        async with session_factory() as session:
            session.add(config)
            await session.commit()
        return config
    return _make


@pytest.fixture
def make_remote_handler(session_factory):
    """Insert a RemoteHandlerConfig row and return it."""
    async def _make(**overrides) -> RemoteHandlerConfig:
        values = {
            "id": uuid.uuid4(),
            "event_type": "image.generated",
            "handler_function": "https://handlers.test/on-image",
            "is_active": True,
            "priority": 0,
            "max_retries": 3,
            "timeout_seconds": 5,
        }
        values.update(overrides)
        config = RemoteHandlerConfig(**values)
        async with session_factory() as session:
            session.add(config)
            await session.commit()
        return config
    return _make
