from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

# Base class for all models
Base = declarative_base()


def _is_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def _is_sqlite_memory(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in database_url


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create the engine for the relational backend.

    check_same_thread=False is needed for SQLite because FastAPI runs sync
    handlers on a threadpool. An in-memory SQLite database only exists for the
    lifetime of one connection, so it is pinned with StaticPool.
    """
    kwargs = {"echo": echo}
    if _is_sqlite(database_url):
        kwargs["connect_args"] = {"check_same_thread": False}
        if _is_sqlite_memory(database_url):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True

    engine = create_engine(database_url, **kwargs)

    if _is_sqlite(database_url):
        @event.listens_for(engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            # pysqlite defers BEGIN to the first write; take over transaction
            # control so the "begin" hook below decides when it starts
            dbapi_connection.isolation_level = None
            # SQLite ignores foreign keys unless asked per connection
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _begin_immediate(conn):
            # SQLite has no SELECT ... FOR UPDATE. Holding the write lock from
            # the first statement keeps check-then-insert sequences atomic.
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    """Session factory for database operations, one session per storage call."""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    """
    Initialize database schema.
    Creates all tables defined in models.
    """
    # Import models so they register with Base.metadata
    from skillshare import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
