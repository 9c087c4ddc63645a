import os
import sys
from datetime import datetime, timezone

from loguru import logger
from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from glimpse.core.config import get_settings

# Check if we're in production
IS_PRODUCTION = os.environ.get("RAILWAY_ENVIRONMENT") == "production"

SQLITE_FALLBACK_URL = "sqlite+aiosqlite:///./glimpse.db"


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def process_database_url(url: str | None) -> str:
    """Normalise a database URL for the async drivers."""
    if not url:
        # In production, never fall back to SQLite
        if IS_PRODUCTION:
            logger.error("No database URL provided in production environment!")
            sys.exit(1)
        logger.warning("No database URL provided, falling back to SQLite")
        return SQLITE_FALLBACK_URL

    logger.debug(f"Processing database URL (starts with): {url[:15]}...")

    if url.startswith("sqlite"):
        if IS_PRODUCTION:
            logger.error("SQLite database not allowed in production environment!")
            sys.exit(1)
        if "aiosqlite" not in url:
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url

    # Handle Railway's postgres:// format; asyncpg needs postgresql+asyncpg://
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)

    logger.warning(f"Unrecognized database URL format: {url[:10]}...")
    return url


# Naming convention for constraints
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=convention)


class Base(DeclarativeBase):
    """Base class for all models."""
    metadata = metadata


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with driver-specific connection arguments."""
    url = process_database_url(url)
    if url.startswith("postgresql"):
        return create_async_engine(
            url,
            echo=echo,
            pool_pre_ping=True,               # Verify connections before using them
            pool_recycle=60,
            pool_timeout=120,
            pool_size=5,
            max_overflow=10,
            pool_use_lifo=True,
            connect_args={
                "timeout": 60,
                "command_timeout": 60,
                "server_settings": {"application_name": "glimpse"},
                "statement_cache_size": 0,
            },
        )
    # aiosqlite: wait on the writer lock instead of failing immediately
    return create_async_engine(url, echo=echo, connect_args={"timeout": 30})


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Get the process-wide SQLAlchemy engine, creating it on first use."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = build_engine(os.getenv("DATABASE_URL", settings.db_url), echo=settings.debug)
        logger.info(f"Using database driver: {_engine.url.drivername}")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(get_engine())
    return _session_factory


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
