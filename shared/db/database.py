"""
Async database engine and session factory.

Created once at process start and handed to the repository; nothing in the
code base reaches for a module-level connection.
"""

from pathlib import Path

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from shared.helper.HelperConfig import HelperConfig

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./data/knowledge.db"


def _ensure_sqlite_directory(url: str) -> None:
    database = make_url(url).database
    if database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    # sqlite ignores ON DELETE CASCADE and foreign keys unless enabled per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_async_db_engine(helper_config: HelperConfig) -> AsyncEngine:
    """Create the async engine for DATABASE_URL with pooling suited to the backend."""
    url = helper_config.get_string_val("DATABASE_URL", default=DEFAULT_DATABASE_URL)
    if url.startswith("sqlite"):
        # sqlite has no server side pool to tune
        _ensure_sqlite_directory(url)
        engine = create_async_engine(url, echo=False)
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        return engine
    return create_async_engine(
        url,
        pool_size=int(helper_config.get_number_val("DATABASE_POOL_SIZE", default=5)),
        max_overflow=int(helper_config.get_number_val("DATABASE_MAX_OVERFLOW", default=10)),
        pool_pre_ping=True,
        pool_recycle=1800,
        echo=False,
    )


def create_async_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create async session maker."""
    return async_sessionmaker(
        engine,
        expire_on_commit=False,
        class_=AsyncSession
    )
