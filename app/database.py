"""Database connection and session management."""
from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base

from app.config import get_settings

settings = get_settings()


def _engine_kwargs(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True, "pool_size": 5, "max_overflow": 10}


def enable_sqlite_savepoints(target_engine) -> None:
    """
    Make pysqlite emit BEGIN itself so SAVEPOINTs nest inside the job transaction.

    Without this the driver defers BEGIN and a released savepoint commits.
    """

    @event.listens_for(target_engine, "connect")
    def disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(target_engine, "begin")
    def emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


engine = create_engine(settings.database_url, **_engine_kwargs(settings.database_url))
if engine.dialect.name == "sqlite":
    enable_sqlite_savepoints(engine)


@event.listens_for(engine, "connect")
def set_statement_timeout(dbapi_connection, connection_record):
    """Set a per-statement timeout on Postgres connections."""
    if engine.dialect.name != "postgresql":
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("SET statement_timeout = '30s'")
    cursor.close()


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_db():
    """Dependency for getting database sessions."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
