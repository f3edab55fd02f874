"""
Database Session Management

This module provides:
- Async SQLAlchemy engine and session factory
- Declarative Base for the models
- Database initialization
"""
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from app.core.config import settings


# ============================================================================
# Async engine
# ============================================================================
# The batch scheduler keeps up to INGESTION_CONCURRENCY persist operations in
# flight per ingestion run, each on its own short-lived session, so the pool
# must comfortably exceed that bound.
# ============================================================================
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True,
    pool_size=20,
    max_overflow=20,
    pool_timeout=30,
    pool_recycle=1800,
)

# Create async session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models"""
    pass


async def init_db():
    """
    Initialize database tables.

    Creates all tables defined in SQLAlchemy models.
    Safe to call multiple times (tables won't be recreated if they exist).
    """
    # Import all models to register them with Base
    from app.models import Review, Product, ProductHistory  # noqa

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
