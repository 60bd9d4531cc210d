"""Pytest configuration and fixtures for flowengine.

Integration tests run against an in-memory SQLite database (aiosqlite) with
foreign keys enabled; every test gets a fresh schema.
"""

from collections.abc import AsyncIterator
from dataclasses import dataclass

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import flowengine.infrastructure.persistence.models  # noqa: F401 (registers tables)
from flowengine.application.services.task_registry import get_task_registry
from flowengine.core.config import get_settings
from flowengine.infrastructure.persistence.database import Base


@dataclass(frozen=True)
class Order:
    """Minimal subject used across the tests."""

    subject_id: str
    subject_type: str = "order"
    subject_scope: str | None = None
    customer_id: str | None = None


@pytest.fixture(autouse=True)
def _fresh_process_state():
    """Settings and the driver registry are process-wide; reset them per test."""
    get_settings.cache_clear()
    get_task_registry.cache_clear()
    yield
    get_settings.cache_clear()
    get_task_registry.cache_clear()


@pytest.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Session for repository/integration tests. Rolled back after each test."""
    factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def order() -> Order:
    return Order(subject_id="ord-1", customer_id="cust-1")


@pytest.fixture
def make_order():
    """Factory for Order subjects with custom attributes."""

    def _make(subject_id: str = "ord-1", **attrs) -> Order:
        return Order(subject_id=subject_id, **attrs)

    return _make
