"""
PayEngine - Database Configuration

SQLAlchemy 2.0 async engine and sessions. The engine service never opens
sessions itself; it receives one per request through the repository.
"""

import logging
from typing import AsyncGenerator, Tuple

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from payengine.config import settings

logger = logging.getLogger(__name__)


# Naming convention for constraints
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
}


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    metadata = MetaData(naming_convention=convention)


def create_session_factory(url: str, **engine_options) -> Tuple[AsyncEngine, async_sessionmaker]:
    """
    Build an engine and its session factory.

    Sessions do not expire on commit so that loans and installments
    returned by the engine service stay readable after the commit.
    """
    engine_options.setdefault("pool_pre_ping", True)
    new_engine = create_async_engine(url, **engine_options)
    factory = async_sessionmaker(
        new_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return new_engine, factory


engine, async_session_maker = create_session_factory(
    settings.database_url_async,
    echo=settings.debug,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database session.

    Work left uncommitted when the request fails is rolled back.
    """
    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def create_tables(target: AsyncEngine) -> None:
    """Create every payroll table on the given engine."""
    # Register mappers on the metadata before create_all
    import payengine.models  # noqa: F401

    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db():
    """
    Initialize database - create all tables.
    Use this for development/testing only.
    """
    await create_tables(engine)
    logger.debug("Payroll tables created")


async def close_db():
    """Close database connections."""
    await engine.dispose()
