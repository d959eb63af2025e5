"""
Database utilities and connection management
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from models import database as _models  # noqa: F401  registers tables on SQLModel.metadata
from utils.config import get_config

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def normalize_database_url(url: str) -> str:
    """Use the asyncpg driver for plain postgres URLs (Supabase hands those out)"""
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    return create_async_engine(normalize_database_url(database_url), echo=echo, future=True)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def get_engine() -> AsyncEngine:
    """Lazily create the process-wide engine from configuration"""
    global _engine
    if _engine is None:
        config = get_config()
        _engine = build_engine(config.database_url, echo=config.environment == "development")
    return _engine


def get_session_factory() -> async_sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(get_engine())
    return _session_factory


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    """Initialize database tables"""
    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    """Get database session"""
    async with get_session_factory()() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_db() -> AsyncIterator[AsyncSession]:
    """Dependency for FastAPI to get database session"""
    async with get_session() as session:
        yield session


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
