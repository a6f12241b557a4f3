"""
Database Configuration

SQLAlchemy async setup. PostgreSQL in production, any async driver in tests.
"""

from collections.abc import AsyncGenerator
from datetime import datetime, timezone

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from meeting_protocols.core.config import settings

# JSONB on PostgreSQL, plain JSON everywhere else
JSONDocument = JSON().with_variant(JSONB(), "postgresql")

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def init_db() -> None:
    """Initialize database tables."""
    async with engine.begin() as conn:
        # In production, use migrations instead
        if settings.debug:
            await conn.run_sync(Base.metadata.create_all)


async def create_all() -> None:
    """Create every table unconditionally."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting database session."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
