"""Async SQLAlchemy engine + session factory.

Supports both SQLite (dev/tests) and PostgreSQL (prod) with appropriate pool
settings. The engine is built lazily on first use and shared for the rest of
the process lifetime.
"""
from __future__ import annotations

import logging
import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from config.settings import settings
from src.errors import StoreError

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None
_lock = threading.Lock()


def _database_url() -> str:
    url = settings.DATABASE_URL
    if not url:
        raise StoreError("DATABASE_URL is not configured")
    # Convert postgresql:// to postgresql+asyncpg:// for async support
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+asyncpg://", 1)
    return url


def _engine_kwargs(url: str) -> dict:
    kwargs: dict = {
        "echo": False,
        "future": True,
    }
    if url.startswith("sqlite"):
        return kwargs

    # Production PostgreSQL pool settings
    kwargs.update({
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": settings.DB_POOL_TIMEOUT_SECONDS,
        "pool_recycle": settings.DB_POOL_RECYCLE_SECONDS,
        "pool_pre_ping": True,  # Verify connections before use
        "connect_args": {"timeout": settings.DB_CONNECT_TIMEOUT_SECONDS},
    })
    return kwargs


def get_engine() -> AsyncEngine:
    """Return the process-wide engine, creating it on first call."""
    global _engine, _sessionmaker

    if _engine is not None:
        return _engine

    with _lock:
        if _engine is None:
            url = _database_url()
            try:
                engine = create_async_engine(url, **_engine_kwargs(url))
            except (ArgumentError, ImportError) as e:
                raise StoreError(f"Cannot create database engine: {e}") from e
            _sessionmaker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            _engine = engine
            logger.info("Database engine created (%s)", engine.dialect.name)
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """Return the session factory bound to the shared engine."""
    if _sessionmaker is None:
        get_engine()
    return _sessionmaker


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """Open a session on the shared engine; callers commit explicitly."""
    async with get_sessionmaker()() as session:
        yield session


async def dispose_engine() -> None:
    """Close pooled connections (app shutdown)."""
    global _engine, _sessionmaker
    with _lock:
        engine, _engine, _sessionmaker = _engine, None, None
    if engine is not None:
        await engine.dispose()
