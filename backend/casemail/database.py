"""Database setup with async SQLAlchemy."""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from casemail.config import settings


def _pool_options(url: str) -> dict:
    # SQLite (tests, local runs) has no connection pool to size
    if url.startswith("sqlite"):
        return {}
    return {"pool_size": 10, "max_overflow": 20}


def serialize_sqlite_transactions(engine: AsyncEngine) -> AsyncEngine:
    """Make every SQLite transaction take the write lock when it begins.

    SQLite ignores ``FOR UPDATE``; ``BEGIN IMMEDIATE`` gives concurrent
    sessions the same read-then-write guarantee row locks give on PostgreSQL.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


engine = create_async_engine(
    settings.database_url,
    echo=False,
    **_pool_options(settings.database_url),
)
if settings.database_url.startswith("sqlite"):
    serialize_sqlite_transactions(engine)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def init_db():
    """Create all tables that do not exist yet."""
    # Register every model on Base.metadata before create_all
    import casemail.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
