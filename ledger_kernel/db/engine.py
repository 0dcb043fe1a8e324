"""
Module: ledger_kernel.db.engine
Responsibility: Owns the process-wide Engine and sessionmaker, and the
    transaction scope the CLI and the scheduler run their work in.
Architecture position: Kernel > DB.  Imports db/base.py; create_tables and
    drop_tables additionally import the model packages so metadata is
    complete.

Backends:
    - PostgreSQL in production, READ COMMITTED with a QueuePool.
    - SQLite for tests and local runs.  Connections are shared across
      threads and SQLAlchemy issues BEGIN itself so SAVEPOINTs work.

Failure modes:
    - RuntimeError from every accessor until init_engine_from_url() ran.
"""

import atexit
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from ledger_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

POOL_DEFAULTS: dict[str, Any] = {
    "pool_size": 20,
    "max_overflow": 10,
    "pool_pre_ping": True,
    "pool_timeout": 30,
    "pool_recycle": 1800,
}

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _sqlite_engine(database_url: str, echo: bool) -> Engine:
    database = make_url(database_url).database
    options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if not database or database == ":memory:":
        # One shared connection, otherwise each session sees its own empty DB
        options["poolclass"] = StaticPool
    engine = create_engine(database_url, echo=echo, **options)
    _enable_sqlite_savepoints(engine)
    return engine


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """Take BEGIN away from pysqlite so begin_nested() can roll back."""

    @event.listens_for(engine, "connect")
    def _autocommit_driver(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _explicit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def init_engine_from_url(database_url: str, echo: bool = False, **pool_options: Any) -> Engine:
    """
    Create the engine and session factory, replacing any previous pair.

    ``pool_options`` override POOL_DEFAULTS and only apply to server
    backends.
    """
    global _engine, _SessionFactory

    reset_engine()

    if database_url.startswith("sqlite"):
        _engine = _sqlite_engine(database_url, echo)
        pool = {}
    else:
        pool = {**POOL_DEFAULTS, **pool_options}
        _engine = create_engine(
            database_url,
            echo=echo,
            poolclass=QueuePool,
            isolation_level="READ COMMITTED",
            **pool,
        )

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "echo": echo, **pool},
    )
    return _engine


def _require_factory() -> sessionmaker[Session]:
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    return _require_factory()()


def get_session_factory() -> sessionmaker[Session]:
    """The sessionmaker itself, for workers that open one session per tick."""
    return _require_factory()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    One transaction around a block of service calls.

    Commits when the block exits normally.  On an exception the transaction
    is rolled back, ``transaction_rolled_back`` is logged and the exception
    propagates.  The session is always closed.
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


def import_all_models() -> None:
    """Register every table on Base.metadata."""
    import ledger_batch.models  # noqa: F401
    import ledger_kernel.models  # noqa: F401


def create_tables() -> None:
    from ledger_kernel.db.base import Base

    import_all_models()
    Base.metadata.create_all(get_engine())
    logger.info("tables_created", extra={"table_count": len(Base.metadata.sorted_tables)})


def drop_tables() -> None:
    """Drop every table. Tests only."""
    from ledger_kernel.db.base import Base

    import_all_models()
    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


atexit.register(reset_engine)
