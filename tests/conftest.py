"""
Shared pytest fixtures for the automation engine tests.

Store tests run against a file-based SQLite database per test (aiosqlite),
so concurrent sessions see the same data the way they would on Postgres.
Outbound HTTP goes through httpx.MockTransport.
"""
import os

# Keep the app's own engine and background loops off real infrastructure
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./pytest-app.db"
os.environ["RETRY_SWEEPER_ENABLED"] = "false"
os.environ["EVENT_QUEUE_ENABLED"] = "false"
os.environ["SENTRY_DSN"] = ""

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from pyra_engine.models.base import Base
from pyra_engine.models.automation import AutomationLog, AutomationRule  # noqa: F401
from pyra_engine.models.webhook import Webhook, WebhookDelivery  # noqa: F401
from pyra_engine.services.engine import build_engine
from fakes import FakeClock, RecordingCollaborators, RecordingReceiver


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def collaborators():
    return RecordingCollaborators()


@pytest.fixture
def receiver():
    return RecordingReceiver(200)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Fresh SQLite database with all tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'engine.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def http_client(receiver):
    async with httpx.AsyncClient(transport=httpx.MockTransport(receiver)) as client:
        yield client


@pytest_asyncio.fixture
async def engine(session_factory, http_client, collaborators, clock):
    """Fully wired engine over SQLite, fake collaborators and a mock receiver."""
    return build_engine(session_factory, http_client, collaborators=collaborators, clock=clock)
