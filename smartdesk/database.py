from collections.abc import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm.exc import StaleDataError

from smartdesk.config import settings
from smartdesk.exceptions import ConcurrencyConflict


def enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """Let SQLAlchemy issue BEGIN itself so SAVEPOINTs nest correctly on SQLite."""

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


engine = create_async_engine(settings.database_url, echo=settings.database_echo)
if engine.dialect.name == "sqlite":
    enable_sqlite_savepoints(engine)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session; routers commit explicitly."""
    async with async_session() as session:
        yield session


async def flush(db: AsyncSession) -> None:
    """Flush pending changes, translating a lost optimistic-lock race."""
    try:
        await db.flush()
    except StaleDataError as exc:
        raise ConcurrencyConflict(
            "The record was modified by another request; re-read it and retry"
        ) from exc
