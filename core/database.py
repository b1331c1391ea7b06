"""
Async engine and session factory shared by the API, scheduler and CLI

The sync runner commits once per aircraft, so sessions are created with
expire_on_commit=False: reconciled rows stay readable after their commit
without another round trip.
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from core.config import settings


def build_engine(database_url: str = None):
    """PostgreSQL engines keep a small pre-pinged pool; anything else gets NullPool"""
    url = database_url or settings.DATABASE_URL
    if url.startswith("postgresql"):
        return create_async_engine(
            url,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_pre_ping=True,
        )
    return create_async_engine(url, poolclass=NullPool)


engine = build_engine()

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_session():
    """Yield a session; anything left uncommitted is rolled back on exit"""
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            if session.in_transaction():
                await session.rollback()
