"""
Async Database Session

Engine and session factory for the Postgres database that holds the
subscriptions and invoices tables.

Usage:
    from loyalty_backend.database.db import async_db_session

    async with async_db_session() as session:
        result = await session.execute(text("SELECT 1"))
"""

from sqlalchemy import URL
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from loyalty_backend.core.conf import settings


def create_database_url() -> URL:
    return URL.create(
        drivername='postgresql+asyncpg',
        username=settings.DATABASE_USER,
        password=settings.DATABASE_PASSWORD,
        host=settings.DATABASE_HOST,
        port=settings.DATABASE_PORT,
        database=settings.DATABASE_SCHEMA,
    )


async_engine = create_async_engine(
    create_database_url(),
    echo=settings.DATABASE_ECHO,
    pool_size=settings.DATABASE_POOL_SIZE,
    max_overflow=settings.DATABASE_POOL_MAX_OVERFLOW,
    pool_pre_ping=True,
    future=True,
)

async_db_session = async_sessionmaker(bind=async_engine, class_=AsyncSession, autoflush=False, expire_on_commit=False)
