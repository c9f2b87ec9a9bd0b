"""Async SQLAlchemy engine and session factory.

Learn: The realtime layer never holds a session for a view's lifetime.
Every count, recompute and profile lookup opens a short-lived session from
async_session_factory (see SqlRecordStore), so a thousand open views cost
a thousand small queries, not a thousand idle connections.

pool_pre_ping matters here: views live for hours and their recomputes are
bursty, so pooled connections often sit idle long enough for a proxy or
failover to kill them.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from servicehub.config import settings


def build_engine(url: str = settings.database_url) -> AsyncEngine:
    return create_async_engine(
        url,
        echo=settings.debug,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
    )


engine = build_engine()

async_session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)
