"""Pytest configuration and shared fixtures.

This module provides:
- A throwaway SQLite database per test (file-backed, so every session gets
  its own connection like a real pool)
- Async session fixtures for repository/service tests
- A fake render driver so exports run without Chromium
- FastAPI test client for route integration tests
"""

# Set environment variables BEFORE any imports that trigger Settings validation
import os

os.environ["DEBUG"] = "true"
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CERTIFICATE_SIGNING_KEY", "test-signing-key")
os.environ.setdefault("VERIFICATION_BASE_URL", "https://certs.example.com")

from collections.abc import AsyncGenerator, Generator
from pathlib import Path

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from core.cache import clear_all_caches
from core.config import clear_settings_cache
from core.database import Base
from core.ratelimit import limiter
from models import CertificateTemplate
from services.certificates_service import CertificateResolver
from services.export_service import CertificateExporter
from tests.factories import CertificateTemplateFactory, create_async
from tests.fakes import FakeRenderDriver

# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine]:
    """Fresh SQLite database with all tables created."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        poolclass=NullPool,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def stored_template(
    session_maker: async_sessionmaker[AsyncSession],
) -> CertificateTemplate:
    """A committed template row using the default test definition."""
    async with session_maker() as db:
        template = await create_async(CertificateTemplateFactory, db)
        await db.commit()
    return template


# =============================================================================
# Render Pipeline Fixtures
# =============================================================================


@pytest.fixture
def render_driver() -> FakeRenderDriver:
    return FakeRenderDriver()


@pytest.fixture
def resolver(session_maker: async_sessionmaker[AsyncSession]) -> CertificateResolver:
    return CertificateResolver(session_maker)


@pytest.fixture
def exporter(
    render_driver: FakeRenderDriver, resolver: CertificateResolver
) -> CertificateExporter:
    return CertificateExporter(render_driver, resolver, timeout=5.0)


# =============================================================================
# FastAPI Test Client Fixtures
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def app(
    test_engine: AsyncEngine,
    session_maker: async_sessionmaker[AsyncSession],
    render_driver: FakeRenderDriver,
    resolver: CertificateResolver,
    exporter: CertificateExporter,
) -> AsyncGenerator[FastAPI]:
    """FastAPI app wired to the test database and the fake driver.

    ASGITransport does not run the lifespan, so state is set here directly.
    """
    # Import here to avoid circular imports and ensure fresh app state
    from main import app as fastapi_app

    fastapi_app.state.engine = test_engine
    fastapi_app.state.session_maker = session_maker
    fastapi_app.state.render_driver = render_driver
    fastapi_app.state.resolver = resolver
    fastapi_app.state.exporter = exporter
    fastapi_app.state.asset_publisher = None

    yield fastapi_app


@pytest_asyncio.fixture(scope="function")
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create async HTTP client for testing routes."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# =============================================================================
# Utility Fixtures
# =============================================================================


@pytest.fixture
def anyio_backend() -> str:
    """Use asyncio backend for anyio (required by httpx)."""
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None]:
    """Reset settings cache before each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture(autouse=True)
def _clear_render_cache() -> Generator[None]:
    clear_all_caches()
    yield
    clear_all_caches()


@pytest.fixture(autouse=True)
def _disable_rate_limiter() -> Generator[None]:
    """Disable slowapi rate limiting; limits are exercised separately."""
    limiter.enabled = False
    yield
    limiter.enabled = True
