from datetime import datetime, timezone
from typing import Optional

from loguru import logger
from sqlalchemy import MetaData, inspect
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from randomcall.core.config import get_settings

DEFAULT_SQLITE_URL = "sqlite+aiosqlite:///./randomcall.db"


def process_database_url(url: Optional[str]) -> str:
    """Normalize a database URL to an async driver."""
    if not url:
        logger.warning("No database URL provided, falling back to SQLite")
        return DEFAULT_SQLITE_URL

    logger.info(f"Processing database URL (starts with): {url[:15]}...")

    if url.startswith("sqlite"):
        if "aiosqlite" not in url:
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        logger.info("Using SQLite database")
        return url

    # Hosted Postgres hands out postgres:// URLs, asyncpg needs postgresql+asyncpg://
    if url.startswith("postgres://") or url.startswith("postgresql://"):
        if "asyncpg" not in url:
            if url.startswith("postgres://"):
                url = url.replace("postgres://", "postgresql+asyncpg://", 1)
            else:
                url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        logger.info(f"Processed database URL (starts with): {url[:15]}...")
        return url

    logger.warning(f"Unrecognized database URL format: {url[:10]}...")
    return url


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


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


def create_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> AsyncEngine:
    """Create the SQLAlchemy async engine, by default from the configured DATABASE_URL."""
    settings = get_settings()
    url = process_database_url(database_url or settings.DB_URL)
    if echo is None:
        echo = settings.DEBUG

    logger.info(f"Using database driver: {url.split('://')[0]}")

    if url.startswith("sqlite"):
        if ":memory:" in url or url.endswith("://"):
            # A single shared connection, otherwise every checkout sees an empty database
            return create_async_engine(
                url,
                echo=echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        return create_async_engine(url, echo=echo)

    return create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,               # Verify connections before using them
        pool_recycle=300,                 # Recycle connections every 5 minutes
        pool_timeout=30,
        pool_size=5,
        max_overflow=10,
        connect_args={
            "timeout": 10,
            "server_settings": {"application_name": "randomcall"},
        },
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to the engine."""
    return async_sessionmaker(
        engine,
        expire_on_commit=False,
        class_=AsyncSession,
    )


async def init_models(engine: AsyncEngine) -> None:
    """Create the matchmaking tables if they do not exist yet."""
    # Register the mapped classes on Base.metadata
    from randomcall.db import models  # noqa: F401

    logger.info("Initializing database models...")
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
            logger.info(f"Database tables ready: {tables}")
    except Exception as e:
        logger.error(f"Error initializing database models: {e}")
        raise
