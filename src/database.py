"""Engine, session factory and declarative base for the subscription store."""

import logging
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.config import settings

logger = logging.getLogger(__name__)

_SQLITE_PREFIX = "sqlite+aiosqlite:///"


def _is_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def _ensure_sqlite_directory(database_url: str) -> None:
    if not database_url.startswith(_SQLITE_PREFIX):
        return
    sqlite_path = database_url.removeprefix(_SQLITE_PREFIX)
    if sqlite_path in {"", ":memory:"}:
        return
    db_file = Path(sqlite_path)
    if db_file.parent and str(db_file.parent) != ".":
        db_file.parent.mkdir(parents=True, exist_ok=True)


_ensure_sqlite_directory(settings.database_url)

if _is_sqlite(settings.database_url):
    engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, _connection_record) -> None:
        # The retry queue references events; SQLite needs foreign keys switched on per connection.
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA synchronous=NORMAL;")
        cursor.execute("PRAGMA busy_timeout=30000;")
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.close()
else:
    engine = create_async_engine(settings.database_url, echo=settings.debug, pool_pre_ping=True)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


def register_models() -> None:
    """Import every model module so its table is attached to ``Base.metadata``."""
    from src.models import retry_queue_item, subscription, user, webhook_event  # noqa: F401


async def get_db():
    async with async_session() as session:
        yield session


async def init_db():
    register_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready (%s)", engine.url.render_as_string(hide_password=True))


async def close_db() -> None:
    await engine.dispose()
