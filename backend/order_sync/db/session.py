"""Database engine and session factory for the local durable store."""

from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine - SQLite gets a thread-agnostic connection and WAL journaling."""
    connect_args = {}
    pool_config = {}
    is_sqlite = database_url.startswith("sqlite")
    in_memory = is_sqlite and (":memory:" in database_url or database_url.rstrip("/") == "sqlite:")

    if is_sqlite:
        connect_args = {"check_same_thread": False}
        if in_memory:
            # One shared connection, otherwise each session sees an empty database
            pool_config = {"poolclass": StaticPool}
        else:
            db_path = database_url.split("///", 1)[-1]
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    else:
        pool_config = {
            "pool_pre_ping": True,    # Test connections before using them
            "pool_recycle": 3600,     # Recycle connections after 1 hour
        }

    engine = create_engine(database_url, connect_args=connect_args, echo=echo, **pool_config)

    if is_sqlite and not in_memory:
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=FULL")
            cursor.close()

    return engine


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
