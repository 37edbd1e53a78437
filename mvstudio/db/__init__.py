"""
Database module for mvstudio.

Provides async SQLAlchemy engine with SQLite WAL mode,
session management, and schema initialization.
"""
from sqlalchemy.ext.asyncio import AsyncEngine

from mvstudio.db.engine import async_session, engine, get_session, shutdown
from mvstudio.db.models import STATE_VERSION, Base, ProjectRow, SceneRow


async def init_database(bind: AsyncEngine | None = None):
    """Initialize database schema on first run."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


__all__ = [
    "Base",
    "ProjectRow",
    "SceneRow",
    "STATE_VERSION",
    "engine",
    "async_session",
    "get_session",
    "shutdown",
    "init_database",
]
