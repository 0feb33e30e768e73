"""Shared pytest fixtures for test suite."""

import os
from collections.abc import AsyncGenerator
from typing import Any

# Set test environment variables BEFORE any repokit imports
os.environ["ENVIRONMENT"] = "testing"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["OTEL_ENABLED"] = "false"

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from repokit.core.database import create_session_factory
from repokit.core.logging import configure_logging
from repokit.models.base import Base
from repokit.repositories.base import EntityRepository
from repokit.repositories.query import QueryFacade
from tests.factories import Author, Book, Tag

configure_logging()


# ===== Database Fixtures =====


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with fresh tables for each test.

    StaticPool keeps the single in-memory connection shared by every session
    the repositories open.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory the repositories open their own sessions from."""
    return create_session_factory(test_engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Caller-owned session with an open transaction, rolled back after the test."""
    async with session_factory() as session:
        transaction = await session.begin()
        try:
            yield session
        finally:
            await transaction.rollback()


# ===== Repository Fixtures =====


@pytest.fixture
def author_repo(session_factory: async_sessionmaker[AsyncSession]) -> EntityRepository[Author]:
    """Authors filtered by tombstone by default."""
    return EntityRepository(
        session_factory, Author, tombstone_field="is_deleted", tombstone_filter=True
    )


@pytest.fixture
def tag_repo(session_factory: async_sessionmaker[AsyncSession]) -> EntityRepository[Tag]:
    """Tags without tombstone support."""
    return EntityRepository(session_factory, Tag)


@pytest.fixture
def book_repo(session_factory: async_sessionmaker[AsyncSession]) -> EntityRepository[Book]:
    return EntityRepository(session_factory, Book)


@pytest.fixture
def author_facade(author_repo: EntityRepository[Author]) -> QueryFacade[Author]:
    return QueryFacade(author_repo)

