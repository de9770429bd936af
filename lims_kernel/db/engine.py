"""
Module: lims_kernel.db.engine
Responsibility: The kernel's single database connection point.  Builds the
    engine for PostgreSQL or SQLite, owns the process-wide session factory
    and offers ``session_scope()`` for callers that want commit-or-rollback
    around a unit of work.
Architecture position: Kernel > DB.  May import from db/base.py.  MUST NOT
    import from services/, selectors/, domain/, or outer layers (except
    create_tables, which imports models so metadata is complete).

Invariants enforced:
    - PostgreSQL runs READ COMMITTED; services take explicit row locks
      (SELECT ... FOR UPDATE) on counters, samples and documents.
    - SQLite transactions start with BEGIN IMMEDIATE.  The write lock is
      taken up front, so concurrent writers queue on the busy timeout
      instead of interleaving read-modify-write cycles.
    - Foreign keys are enforced on SQLite connections.

Failure modes:
    - RuntimeError from every accessor before init_engine_from_url().
    - OperationalError ("database is locked") on SQLite once the busy
      timeout elapses; the allocator reports it as AllocationConflictError.

Audit relevance:
    A mutation and its audit record are flushed in the same transaction,
    so session_scope() persists both or neither.
"""

import atexit
from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from lims_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

_NOT_INITIALIZED = "Engine not initialized. Call init_engine_from_url() first."


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    lock_timeout_seconds: float = 30.0,
) -> Engine:
    """
    Create an engine without touching module state.

    Args:
        database_url: postgresql://... or sqlite:///path/to/file.db
        lock_timeout_seconds: SQLite busy timeout.  PostgreSQL lock waits
            are bounded per transaction by the allocator's lock timeout.
    """
    options: dict[str, Any] = {
        "echo": echo,
        "poolclass": QueuePool,
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_timeout": pool_timeout,
    }

    if database_url.startswith("sqlite"):
        eng = create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": lock_timeout_seconds},
            **options,
        )
        _install_sqlite_locking(eng)
        return eng

    return create_engine(
        database_url,
        pool_pre_ping=pool_pre_ping,
        isolation_level="READ COMMITTED",
        **options,
    )


def _install_sqlite_locking(eng: Engine) -> None:
    """Take over transaction begin from pysqlite so it can be IMMEDIATE."""

    @event.listens_for(eng, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Turn off pysqlite's implicit BEGIN; _on_begin issues ours.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(eng, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def init_engine_from_url(database_url: str, **engine_options: Any) -> Engine:
    """
    Build the process-wide engine and session factory.

    ``engine_options`` are passed to ``build_engine``.  A second call
    replaces the first engine without disposing it.
    """
    global _engine, _SessionFactory

    _engine = build_engine(database_url, **engine_options)
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": _engine.dialect.name,
            "pool_size": _engine.pool.size(),
            "echo": _engine.echo,
        },
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Factory for callers that open one session per thread."""
    if _SessionFactory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _SessionFactory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Commit on normal exit; roll back and re-raise on exception.

    Usage:
        with session_scope() as session:
            CustodyService(session, clock, AuditTrail(session, clock)).apply_custody_event(...)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create every mapped table on the current engine."""
    from lims_kernel.db.base import Base
    import lims_kernel.models  # noqa: F401  registers every mapped table

    engine = get_engine()
    engine.dispose()
    Base.metadata.create_all(engine)


def drop_tables() -> None:
    """Drop every mapped table.  Tests only."""
    from lims_kernel.db.base import Base
    import lims_kernel.models  # noqa: F401

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose and forget the engine and session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


def _dialect_name() -> str | None:
    return _engine.dialect.name if _engine is not None else None


def is_postgres() -> bool:
    return _dialect_name() == "postgresql"


def is_sqlite() -> bool:
    return _dialect_name() == "sqlite"


def _atexit_dispose():
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)
