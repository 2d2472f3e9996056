"""
Engine, sessions and the `documents` table.

One engine per process, built on first use from TEST_DATABASE_URL (when set)
or DATABASE_URL, then reused by every request.
"""
import logging
import os
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import JSON, Column, DateTime, Index, MetaData, String, Table, create_engine, event, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from companion.core.config import settings

logger = logging.getLogger("companion")

metadata = MetaData()

# Pool sizing for server databases; SQLite uses the driver default
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600

_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None
_schema_ready = False


# Every document is one row keyed by its full path
# (e.g. "journals/u1/entries/2024-05-01T12:00:00.000Z-1a2b3c4d").
documents = Table(
    "documents",
    metadata,
    Column("path", String(512), primary_key=True),
    Column("collection", String(512), nullable=False),
    Column("doc_id", String(255), nullable=False),
    Column("data", JSON, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Index("idx_documents_collection_created", "collection", "created_at"),
)


def get_database_url() -> Optional[str]:
    return os.getenv("TEST_DATABASE_URL") or settings.DATABASE_URL


def _begin_immediate(engine: Engine) -> None:
    """
    Start every SQLite transaction with BEGIN IMMEDIATE.

    pysqlite defers BEGIN until the first write, so two read-modify-write
    transactions can both read the same row. Taking the write lock up front
    serializes them.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def init_engine(database_url: Optional[str] = None) -> Engine:
    """
    Build the process-wide engine and session factory.

    Raises:
        ValueError: No database URL configured
    """
    global _engine, _SessionLocal, _schema_ready

    url = database_url or get_database_url()
    if not url:
        raise ValueError("DATABASE_URL is not configured. Set DATABASE_URL in environment or .env file.")

    if url.startswith("sqlite"):
        # handlers run in a threadpool, so connections cross threads
        _engine = create_engine(url, connect_args={"check_same_thread": False, "timeout": 30})
        _begin_immediate(_engine)
    else:
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            pool_pre_ping=True,
        )

    _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)
    _schema_ready = False
    logger.info("database.engine_ready", extra={"event_type": "db.init"})
    return _engine


def dispose_engine() -> None:
    global _engine, _SessionLocal, _schema_ready
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None
    _schema_ready = False


def get_engine() -> Engine:
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory() -> sessionmaker:
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session() -> Iterator[Session]:
    """
    One unit of work: commit on success, roll back on any exception.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables() -> None:
    """Create missing tables; existing ones are left untouched."""
    metadata.create_all(bind=get_engine())


def ensure_schema() -> None:
    """Create the tables once per engine; later calls are free."""
    global _schema_ready
    if _schema_ready:
        return
    create_all_tables()
    _schema_ready = True


def drop_all_tables() -> None:
    """Destructive. Tests and local development only."""
    global _schema_ready
    metadata.drop_all(bind=get_engine())
    _schema_ready = False


def check_connection() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(select(1))
        return True
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False
