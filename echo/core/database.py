"""Async database engine, session factory and declarative base"""

from datetime import datetime, timezone
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from echo.config import get_settings

settings = get_settings()

Base = declarative_base()

engine = create_async_engine(settings.database_url, pool_pre_ping=True)

async_session = async_sessionmaker(engine, expire_on_commit=False)


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a request-scoped session"""
    async with async_session() as session:
        yield session


async def init_db() -> None:
    """Create tables that do not exist yet"""
    # Import models so they register on Base.metadata
    import echo.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the connection pool"""
    await engine.dispose()
