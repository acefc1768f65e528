"""
Async SQLAlchemy engine and sessions for the gateway.

The engine is built lazily from settings on first use, so importing models
(alembic, scripts, tests) never opens a connection pool. Sessions are created
with expire_on_commit=False: the intake pipeline and the engines keep reading
row attributes after committing, which would otherwise trigger lazy loads
outside the greenlet context.
"""
import logging
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class _EngineHolder:
    engine: Optional[AsyncEngine] = None
    sessionmaker: Optional[async_sessionmaker] = None


def _engine() -> AsyncEngine:
    if _EngineHolder.engine is None:
        from hookgate.config import get_settings

        settings = get_settings()
        options = {"echo": False, "pool_pre_ping": True}
        if not settings.database_url.startswith("sqlite"):
            options.update(
                pool_size=settings.database_pool_size,
                max_overflow=settings.database_max_overflow,
            )
        _EngineHolder.engine = create_async_engine(settings.database_url, **options)
    return _EngineHolder.engine


def _sessionmaker() -> async_sessionmaker:
    if _EngineHolder.sessionmaker is None:
        _EngineHolder.sessionmaker = async_sessionmaker(_engine(), class_=AsyncSession, expire_on_commit=False)
    return _EngineHolder.sessionmaker


def async_session_factory() -> AsyncSession:
    """New session for workers and scripts; use as ``async with``."""
    return _sessionmaker()()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session. Commits on success, rolls back on error."""
    async with _sessionmaker()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_all() -> None:
    """Create the schema directly from the models (development only; alembic owns production)."""
    import hookgate.models  # noqa: F401

    async with _engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Created %d tables", len(Base.metadata.tables))


async def dispose_engine() -> None:
    if _EngineHolder.engine is not None:
        await _EngineHolder.engine.dispose()
        _EngineHolder.engine = None
        _EngineHolder.sessionmaker = None
