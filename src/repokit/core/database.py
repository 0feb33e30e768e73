"""Database connection management with async SQLAlchemy."""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from repokit.core.config import Settings, settings as default_settings
from repokit.core.logging import get_logger

logger = get_logger(__name__)


class DBErrorMessage:
    """Standardized database error messages."""
    CREATE_ENGINE_NO_URL = "Database URL is not configured"
    CREATE_ENGINE_MIN_DB_POOL_SIZE = "DATABASE_POOL_SIZE must be at least 1"
    CREATE_ENGINE_NEGATIVE_MAX_OVERFLOW = "DATABASE_MAX_OVERFLOW must be non-negative"
    CREATE_ENGINE_FAILED = "Failed to create database engine"

    CLOSE_DATABASE_FAILED = "Failed to close database connections"


def create_engine(settings: Settings | None = None) -> AsyncEngine:
    """Create AsyncEngine with connection pooling configuration.

    SQLite URLs skip the pool sizing arguments, which its pool classes
    do not accept.

    Args:
        settings: Settings to read from; the module-level settings when None

    Returns:
        AsyncEngine: Configured async SQLAlchemy engine

    Raises:
        ValueError: If database URL is invalid or settings are misconfigured
    """
    settings = settings or default_settings
    try:
        if not settings.database_url:
            raise ValueError(DBErrorMessage.CREATE_ENGINE_NO_URL)

        if settings.database_pool_size < 1:
            raise ValueError(DBErrorMessage.CREATE_ENGINE_MIN_DB_POOL_SIZE)

        if settings.database_max_overflow < 0:
            raise ValueError(DBErrorMessage.CREATE_ENGINE_NEGATIVE_MAX_OVERFLOW)

        logger.info(
            "Creating async database engine",
            url=settings.database_url.split("@")[1] if "@" in settings.database_url else "***",
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
        )

        if settings.database_url.startswith("sqlite"):
            return create_async_engine(
                settings.database_url,
                echo=settings.database_echo,
                connect_args={"check_same_thread": False},
            )

        return create_async_engine(
            settings.database_url,
            echo=settings.database_echo,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,
            pool_recycle=3600,
        )
    except ValueError:
        raise
    except Exception as e:
        logger.error("Failed to create database engine", error=str(e))
        raise ValueError(DBErrorMessage.CREATE_ENGINE_FAILED) from e


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build the session factory repositories open their own sessions from.

    expire_on_commit is off so records stay readable after a repository
    commits its own unit of work.
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def check_database_connection(engine: AsyncEngine) -> bool:
    """Check if database connection is available.

    Returns:
        bool: True if connection successful, False otherwise
    """
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.debug("Database connection check passed")
        return True
    except Exception as e:
        logger.error("Database connection check failed", error=str(e))
        return False


async def close_database(engine: AsyncEngine) -> None:
    """Close all database connections.

    Raises:
        RuntimeError: If the engine cannot be disposed
    """
    try:
        logger.info("Closing database connections")
        await engine.dispose()
    except Exception as e:
        logger.error("Error closing database connections", error=str(e))
        raise RuntimeError(DBErrorMessage.CLOSE_DATABASE_FAILED) from e
