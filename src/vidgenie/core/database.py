"""Database session factory setup."""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def setup_db_session(db_url: str, pool_size: int = 200) -> async_sessionmaker[AsyncSession]:
    """Create async database session factory.

    Args:
        db_url: Database connection URL (postgresql+psycopg://... in production,
            sqlite+aiosqlite://... for local tests)
        pool_size: Maximum number of connections in the pool (default: 200)

    Returns:
        Async session factory for creating database sessions
    """
    engine_kwargs: dict = {
        "pool_pre_ping": True,  # Verify connections before using
        "echo": False,  # Don't log SQL queries (use structlog instead)
    }
    is_sqlite = db_url.startswith("sqlite")
    if is_sqlite:
        engine_kwargs["connect_args"] = {"timeout": 30}
    else:
        engine_kwargs["pool_size"] = pool_size
        engine_kwargs["max_overflow"] = 0  # No overflow beyond pool_size

    engine = create_async_engine(db_url, **engine_kwargs)

    if is_sqlite:
        # SQLite only locks on the first write of a deferred transaction, so two
        # concurrent read-modify-write transactions can deadlock. Take the write
        # lock at BEGIN instead; other writers then wait on the busy timeout.
        @event.listens_for(engine.sync_engine, "connect")
        def _disable_driver_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Prevent lazy loading issues after commit
    )

    return session_factory
