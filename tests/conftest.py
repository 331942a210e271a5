"""Shared fixtures: in-memory SQLite databases and an HTTP client for the API."""

import os

# Settings are read at import time; point them at SQLite before anything imports schoolpay
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_JSON", "false")

from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx
import pytest
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from schoolpay.core.database import Base, get_session
from schoolpay.modules.billing import models  # noqa: F401  (registers tables)


@asynccontextmanager
async def memory_database() -> AsyncIterator[async_sessionmaker]:
    """Fresh in-memory database with all billing tables, shared by every session."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await engine.dispose()


@asynccontextmanager
async def memory_session() -> AsyncIterator[AsyncSession]:
    """Single session on a fresh in-memory database."""
    async with memory_database() as session_maker:
        async with session_maker() as session:
            yield session


@pytest.fixture
def fresh_session():
    """Factory for per-example databases in property tests."""
    return memory_session


@pytest.fixture
async def session_maker() -> AsyncIterator[async_sessionmaker]:
    async with memory_database() as maker:
        yield maker


@pytest.fixture
async def session(session_maker: async_sessionmaker) -> AsyncIterator[AsyncSession]:
    async with session_maker() as session:
        yield session


@pytest.fixture
async def client(session_maker: async_sessionmaker) -> AsyncIterator[httpx.AsyncClient]:
    """API client whose requests each get their own session on the test database."""
    from schoolpay.main import app

    async def override_get_session() -> AsyncIterator[AsyncSession]:
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
    app.dependency_overrides.clear()
