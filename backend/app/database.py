"""Async database engine, session management and shared column types."""

from collections.abc import AsyncGenerator
from functools import lru_cache

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.config import get_settings

# JSONB on PostgreSQL, plain JSON on SQLite (tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for all models."""


@lru_cache
def get_engine() -> AsyncEngine:
    """Create the process-wide async engine."""
    settings = get_settings()
    options: dict = {"pool_pre_ping": True, "echo": settings.app_debug}
    if not settings.database_url.startswith("sqlite"):
        options["pool_size"] = settings.database_pool_size
    return create_async_engine(settings.database_url, **options)


@lru_cache
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory shared by request handlers and background jobs."""
    return async_sessionmaker(
        get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that yields a DB session and closes it when done."""
    async with get_session_factory()() as session:
        yield session


async def init_db() -> None:
    """Create tables that do not exist yet."""
    import app.models  # noqa: F401  register mappers

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
