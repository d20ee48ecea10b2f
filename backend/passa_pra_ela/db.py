import os

from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker


def normalize_database_url(value: str) -> str:
    """
    Hosted Postgres is usually handed out as `postgres://...` or `postgresql://...`.

    SQLAlchemy maps a bare `postgresql://` to psycopg2; this service ships psycopg v3,
    so both spellings are rewritten to `postgresql+psycopg://...`. Other URLs
    (SQLite for local runs and tests) pass through untouched.
    """

    url = value.strip()
    if url.startswith("postgresql+psycopg://"):
        return url
    if url.startswith("postgres://"):
        return "postgresql+psycopg://" + url[len("postgres://") :]
    if url.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://") :]
    return url


DATABASE_URL = normalize_database_url(os.environ["DATABASE_URL"])

IS_SQLITE = DATABASE_URL.startswith("sqlite")
SQLITE_BUSY_TIMEOUT_SECONDS = float(os.environ.get("SQLITE_BUSY_TIMEOUT_SECONDS", "30"))

engine_kwargs: dict = {"pool_pre_ping": True}
if IS_SQLITE:
    # Request handlers run in a threadpool; SQLite connections must be shareable.
    engine_kwargs["connect_args"] = {
        "check_same_thread": False,
        "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
    }

engine = create_engine(DATABASE_URL, **engine_kwargs)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


if IS_SQLITE:
    # SQLite has no row locks and pysqlite defers BEGIN until the first write.
    # Take the database write lock when the transaction starts instead, so reads
    # made during a settlement or a lineup check cannot interleave with other writers.

    @event.listens_for(engine, "connect")
    def _sqlite_disable_driver_transactions(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _sqlite_begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Base(DeclarativeBase):
    pass


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
