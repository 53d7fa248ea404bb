"""Shared test fixtures for intervals-sync."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from backend.config import Settings
from backend.database import create_engine
from backend.main import create_app, init_storage
from backend.models.base import Base
from backend.services.auth_service import SessionAuthority
from backend.services.record_store import RecordStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from fastapi import FastAPI
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

TEST_PASSWORD = "correct horse battery staple"


def make_settings(tmp_path: Path, **overrides: object) -> Settings:
    """Settings pointing at a throwaway SQLite file, with a generous auth rate limit."""
    values: dict[str, object] = {
        "sqlite_path": tmp_path / "intervals.db",
        "debug": False,
        "auth_rate_limit_capacity": 1000.0,
        "auth_rate_limit_refill_per_second": 1000.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)  # type: ignore[arg-type]


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    engine, _ = create_engine(test_settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session_factory(
    test_settings: Settings,
) -> AsyncGenerator[async_sessionmaker[AsyncSession]]:
    engine, factory = create_engine(test_settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield factory
    await engine.dispose()


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession]) -> RecordStore:
    return RecordStore(session_factory)


@pytest.fixture
def authority(store: RecordStore) -> SessionAuthority:
    return SessionAuthority(store)


@asynccontextmanager
async def create_test_app(settings: Settings) -> AsyncGenerator[FastAPI]:
    """Create an app with storage initialized.

    ASGITransport does not run the lifespan, so the storage setup is done here.
    """
    app = create_app(settings)
    await init_storage(app)
    try:
        yield app
    finally:
        await app.state.engine.dispose()


@asynccontextmanager
async def create_test_client(settings: Settings) -> AsyncGenerator[AsyncClient]:
    async with create_test_app(settings) as app:
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
        ) as ac:
            yield ac


@pytest.fixture
async def client(test_settings: Settings) -> AsyncGenerator[AsyncClient]:
    """HTTP client for an open backend (no password)."""
    async with create_test_client(test_settings) as ac:
        yield ac


@pytest.fixture
async def app(test_settings: Settings) -> AsyncGenerator[FastAPI]:
    async with create_test_app(test_settings) as application:
        yield application


@pytest.fixture
def asgi_transport(app: FastAPI) -> httpx.AsyncBaseTransport:
    """Transport that routes sync-client requests into the in-process backend."""
    return ASGITransport(app=app)
