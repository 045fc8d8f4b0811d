"""
Module: approval_kernel.db.engine
Responsibility: Owns the process-wide engine and session factory, and the
    ``session_scope`` unit of work that ApprovalCircuitService runs every
    operation in.
Architecture position: Kernel > DB.  Imports models lazily (table creation
    only); nothing above the db package is imported.

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED; decisions serialize on
      ``SELECT ... FOR UPDATE`` of the workflow row and then the step row.
    - SQLite (tests, local runs) opens every transaction with
      BEGIN IMMEDIATE, taking the write lock up front.  Concurrent deciders
      therefore queue on the busy timeout instead of deadlocking on a lock
      upgrade.
    - Foreign keys are enforced on SQLite.

Failure modes:
    - RuntimeError from the getters before ``init_engine_from_url``.
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from approval_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

# Module-level engine and session factory
_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

SQLITE_BUSY_TIMEOUT_SECONDS = 30


def _install_sqlite_pragmas(engine: Engine) -> None:
    """
    Make SQLite transactional behaviour usable for concurrent writers.

    pysqlite's own transaction handling is disabled so that SQLAlchemy
    emits BEGIN itself; BEGIN IMMEDIATE acquires the write lock before the
    first read, so a reader never upgrades into a deadlock.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_SECONDS * 1000}")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Build the engine and session factory for ``database_url``.

    Pool settings apply to PostgreSQL only.  Calling again replaces the
    previous engine without disposing it; use ``reset_engine`` first.
    Also registers the append-only listeners and makes sure kernel
    logging is configured.
    """
    global _engine, _SessionFactory

    if database_url.startswith("sqlite"):
        _engine = create_engine(
            database_url,
            echo=echo,
            connect_args={
                "check_same_thread": False,
                "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
            },
        )
        _install_sqlite_pragmas(_engine)
    else:
        _engine = create_engine(
            database_url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    from approval_kernel.db.immutability import register_immutability_listeners

    register_immutability_listeners()

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": _engine.dialect.name,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "echo": echo,
        },
    )

    return _engine


def _require_factory() -> sessionmaker[Session]:
    if _SessionFactory is None:
        raise RuntimeError("Database not initialized; call init_engine_from_url() first")
    return _SessionFactory


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Database not initialized; call init_engine_from_url() first")
    return _engine


def get_session() -> Session:
    return _require_factory()()


def get_session_factory() -> sessionmaker[Session]:
    """The configured factory; worker threads each open their own session from it."""
    return _require_factory()


@contextmanager
def session_scope(
    factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    One unit of work: commit on clean exit, roll back and re-raise on error.

    The session is always closed.  ``factory`` defaults to the configured
    one.
    """
    session = factory() if factory is not None else get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def _metadata():
    from approval_kernel.db.base import Base
    import approval_kernel.models  # noqa: F401  (registers every table)

    return Base.metadata


def create_tables() -> None:
    engine = get_engine()
    # Pooled connections may predate the schema
    engine.dispose()
    _metadata().create_all(engine)


def drop_tables() -> None:
    """Drop every approval table.  Tests only."""
    _metadata().drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the factory."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


@atexit.register
def _dispose_on_exit() -> None:
    if _engine is not None:
        _engine.dispose()


def is_postgres() -> bool:
    return _engine is not None and _engine.dialect.name == "postgresql"
