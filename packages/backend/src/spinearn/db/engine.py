"""Async SQLAlchemy engine and session factory.

Learn: SQLAlchemy 2.0 async mode — one pooled engine, an AsyncSession per
request through get_db(). The unread-count synchronizer opens its own
short-lived sessions from the same factory, outside any request, so the
pool has to cover both: request traffic plus one count query per
notification per live user.
"""

from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from spinearn.config import settings

# pool_pre_ping: connections idle between notifications may have been
# dropped by the server or a proxy.
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency — one session per request, closed afterwards."""
    async with async_session_factory() as session:
        yield session
