"""
Pytest configuration and fixtures
"""

import os
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from models.base import Base
from models.aircraft import Aircraft, AircraftEnrichment, AircraftImage  # noqa: F401
from models.sync_run import SyncRun  # noqa: F401
from ingestion.auth_manager import AuthManager, ProviderCredentials
from ingestion.client import ProviderClient
from ingestion.extractors.bulk_fetcher import BulkFetcher
from ingestion.enrichment.orchestrator import EnrichmentOrchestrator
from ingestion.runner import SyncRunner
from tests.fakes import FakeProvider, PROVIDER_URL

# In-memory SQLite by default; point at PostgreSQL with TEST_DATABASE_URL
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine"""
    if TEST_DATABASE_URL.startswith("sqlite"):
        engine = create_async_engine(
            TEST_DATABASE_URL,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,  # one shared connection keeps the in-memory DB alive
        )
    else:
        engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables after test
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def credentials() -> ProviderCredentials:
    return ProviderCredentials(email="sync@example.com", password="secret")


@pytest_asyncio.fixture
async def http_client(fake_provider) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=fake_provider.transport) as client:
        yield client


@pytest.fixture
def auth_manager(http_client, credentials) -> AuthManager:
    return AuthManager(http_client, credentials, base_url=PROVIDER_URL)


@pytest.fixture
def provider_client(http_client, auth_manager) -> ProviderClient:
    return ProviderClient(
        http_client,
        auth_manager,
        base_url=PROVIDER_URL,
        max_retries=2,
        retry_delay=0,
    )


@pytest.fixture
def bulk_fetcher(provider_client) -> BulkFetcher:
    return BulkFetcher(provider_client, page_size=2000, max_pages=500, page_delay=0)


@pytest.fixture
def enricher(provider_client) -> EnrichmentOrchestrator:
    return EnrichmentOrchestrator(provider_client, batch_size=5, batch_delay=0)


@pytest.fixture
def make_runner(db_session, provider_client):
    """Build a SyncRunner against the fake provider with small pages and no delays"""
    def build(registry=None, page_size=2, batch_size=2):
        return SyncRunner(
            db_session,
            provider_client,
            registry=registry,
            fetcher=BulkFetcher(provider_client, page_size=page_size, page_delay=0),
            enricher=EnrichmentOrchestrator(provider_client, batch_size=batch_size, batch_delay=0),
        )
    return build
