"""
Database engine, session factory, and declarative base.

Uses async SQLAlchemy 2.0 (asyncpg in production, aiosqlite in dev/tests).
The engine is built once at process start and passed around explicitly.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from crisiscomm.config import Settings

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for crisis communication models."""

    pass


def create_engine(settings: Settings) -> AsyncEngine:
    """Create the async database engine."""
    url = settings.async_database_url
    kwargs: dict = {"echo": settings.debug}
    if not url.startswith("sqlite"):
        kwargs["pool_recycle"] = settings.db_pool_recycle
        kwargs["pool_pre_ping"] = True
    engine = create_async_engine(url, **kwargs)
    logger.info("database_engine_created", dialect=engine.dialect.name)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Provide an async database session with automatic commit/rollback."""
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(engine: AsyncEngine, settings: Settings) -> None:
    """Create tables if needed.

    In development/testing, auto-creates all tables from ORM models.
    In production, expects tables to be managed via Alembic migrations.
    """
    # Import all models so Base.metadata is populated
    import crisiscomm.db.models  # noqa: F401

    if settings.environment.lower() in ("development", "testing"):
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("tables_created", mode=settings.environment)
    else:
        logger.info("skipping_auto_create", reason="production uses alembic")

    logger.info("database_initialized")


async def close_db(engine: AsyncEngine) -> None:
    """Dispose the engine (call at shutdown)."""
    await engine.dispose()
    logger.info("database_closed")
