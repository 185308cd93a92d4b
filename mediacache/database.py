import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy import event

from mediacache.models import Base

logger = logging.getLogger(__name__)


def create_engine(database_path: str) -> AsyncEngine:
    """Create an async SQLite engine for the key-value store"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{database_path}",
        echo=False,
        future=True,
        pool_pre_ping=True,
        connect_args={"timeout": 30, "check_same_thread": False},
    )

    # Configure SQLite pragmas for better performance
    def configure_sqlite(dbapi_conn, _):
        """Configure SQLite connection parameters"""
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode = WAL")
        cursor.execute("PRAGMA synchronous = NORMAL")
        cursor.close()

    event.listen(engine.sync_engine, "connect", configure_sqlite)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create async session factory from engine"""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Initialize database schema"""
    logger.info(f"Initializing key-value store at {engine.url.database}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Key-value store initialized successfully")


async def close_db(engine: AsyncEngine) -> None:
    """Close database connections on shutdown"""
    await engine.dispose()
    logger.info("Key-value store connections closed")


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """
    Provide an async session wrapped in a transaction.

    Commits when the block exits cleanly and rolls back when it raises.

    Args:
        session_factory: Factory bound to the store's engine
    """
    async with session_factory() as session:
        async with session.begin():
            yield session
