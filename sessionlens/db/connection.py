"""
Database Connection Manager
===========================

Creates the async engine for the analytics SQLite database.

Unlike a process-wide handle, every call returns a fresh engine and session
maker; the owning AnalyticsStore keeps them and passes them where needed.
"""

from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession

from sessionlens.db.models import Base


def _enable_wal(dbapi_connection, connection_record) -> None:
    """Let readers run while ingestion or detection is writing."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def create_engine_for(db_path: Path) -> AsyncEngine:
    """Create an aiosqlite engine for db_path, creating its directory."""
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", echo=False)
    event.listen(engine.sync_engine, "connect", _enable_wal)
    return engine


async def init_db(db_path: Path) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """
    Initialize the database and create tables if they don't exist.

    The schema is otherwise assumed stable; there is no migration step.
    """
    engine = create_engine_for(db_path)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_maker = async_sessionmaker(engine, expire_on_commit=False)
    return engine, session_maker
