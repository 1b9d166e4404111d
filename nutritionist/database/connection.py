"""
Database Connection Management

One async engine per process, created in the application lifespan. Request
handlers get a session through `get_db_dependency`; scripts use `get_db`.
A session commits when its block exits cleanly and rolls back otherwise.
"""

import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from nutritionist.config import Settings, get_settings
from nutritionist.database.models import Base

logger = structlog.get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_sessions: Optional[async_sessionmaker[AsyncSession]] = None


def _engine_options(url: str, echo: bool) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": echo, "pool_pre_ping": True}
    if url.startswith("postgresql"):
        options["poolclass"] = NullPool
    return options


async def init_database(settings: Optional[Settings] = None, create_tables: bool = True) -> AsyncEngine:
    """
    Create the engine, check connectivity and create missing tables.

    Calling it twice returns the existing engine.
    """
    global _engine, _sessions

    if _engine is not None:
        return _engine

    settings = settings or get_settings()
    url = settings.database.async_url
    engine = create_async_engine(url, **_engine_options(url, settings.database.echo))

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            if create_tables:
                await conn.run_sync(Base.metadata.create_all)
    except (SQLAlchemyError, OSError) as e:
        logger.error("Database unreachable", error=str(e))
        await engine.dispose()
        raise

    _engine = engine
    _sessions = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    logger.info("Database ready", host=settings.database.host, database=settings.database.db)
    return _engine


async def close_database() -> None:
    global _engine, _sessions

    if _engine is None:
        return
    await _engine.dispose()
    _engine, _sessions = None, None
    logger.info("Database engine disposed")


@asynccontextmanager
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Session scope for scripts and background work.

    Example:
        async with get_db() as db:
            await AnalyticsEventService(db).create_event("plan_generated", session_id)

    Raises:
        RuntimeError: If `init_database` has not run
    """
    if _sessions is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    async with _sessions() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.error("Rolling back database session", error_type=type(e).__name__, error=str(e))
            await session.rollback()
            raise


async def get_db_dependency() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding one session per request."""
    async with get_db() as session:
        yield session


async def check_database_health() -> Dict[str, Any]:
    """Round-trip latency, or the error when the database cannot answer."""
    started = time.perf_counter()
    try:
        async with get_db() as db:
            await db.execute(text("SELECT 1"))
    except (RuntimeError, SQLAlchemyError, OSError) as e:
        return {"status": "unhealthy", "error": str(e)}

    return {"status": "healthy", "latency_ms": round((time.perf_counter() - started) * 1000, 2)}
