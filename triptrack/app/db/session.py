"""
Database engine and session factories.

PostgreSQL (asyncpg) in deployments; SQLite URLs are accepted for local
runs and skip the connection pool sizing.
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from triptrack.app.core.config import settings


def build_engine(url: str) -> AsyncEngine:
    options = {"echo": settings.db_echo, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        options.update(pool_size=settings.db_pool_size, max_overflow=settings.db_max_overflow)
    return create_async_engine(url, **options)


engine = build_engine(settings.database_url)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db():
    """
    FastAPI dependency for request-scoped sessions.

    The session is closed when the request finishes; services commit
    their own transactions.
    """
    async with AsyncSessionLocal() as session:
        yield session


def get_session_factory() -> async_sessionmaker:
    """
    FastAPI dependency for long-lived consumers (tracking sessions) that
    open a fresh database session per reconciliation.
    """
    return AsyncSessionLocal
