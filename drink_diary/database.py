import logging
import os

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from .settings.config import settings

logger = logging.getLogger(__name__)


def normalize_database_url(raw_url: str) -> str:
    if raw_url.startswith("postgresql+psycopg") or raw_url.startswith("postgresql://"):
        # if someone provided a sync URL by mistake, upgrade it to async
        return "postgresql+asyncpg" + raw_url[raw_url.index("://"):]
    if raw_url.startswith("sqlite:///"):
        return raw_url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return raw_url or "sqlite+aiosqlite:///./data/drinks.sqlite"


def _enable_sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def make_engine(url: str) -> AsyncEngine:
    url = normalize_database_url(url)
    engine = create_async_engine(url, echo=False)
    if engine.dialect.name == "sqlite":
        event.listen(engine.sync_engine, "connect", _enable_sqlite_pragmas)
    return engine


def make_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False, autoflush=False)


DATABASE_URL = normalize_database_url(settings.DATABASE_URL)
engine = make_engine(DATABASE_URL)
async_session_maker = make_session_maker(engine)
Base = declarative_base()


async def get_db():
    async with async_session_maker() as session:
        yield session


def _ensure_sqlite_dir(url: str) -> None:
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return
    path = parsed.database or ""
    if path and path != ":memory:":
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)


async def init_db(bind: AsyncEngine | None = None):
    bind = bind or engine
    url = bind.url.render_as_string(hide_password=False)
    _ensure_sqlite_dir(url)
    # Alembic owns the schema outside SQLite unless DB_CREATE_ALL is set
    if settings.DB_CREATE_ALL or bind.dialect.name == "sqlite":
        from . import models  # noqa: F401  registers all tables on Base
        async with bind.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema ensured (%s)", bind.dialect.name)
