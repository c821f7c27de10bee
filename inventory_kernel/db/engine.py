"""
Module: inventory_kernel.db.engine
Responsibility: SQLAlchemy engine construction, transactional session scope
    and schema creation for one tenant store.
Architecture position: Kernel > DB.  May import from db/base.py.  Schema
    helpers import models lazily so Base.metadata is complete.

Invariants enforced:
    - PostgreSQL stores run at READ COMMITTED with explicit row locks
      (SELECT ... FOR UPDATE) where the ledger needs serialization.
    - SQLite stores (tests, single-site installs) enable foreign keys on
      every connection.  File-backed SQLite stores open every transaction
      with BEGIN IMMEDIATE, so concurrent writers are serialized.
    - session_scope() commits on normal exit and rolls back on exception.

Failure modes:
    - OperationalError propagates if the store is unreachable.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from inventory_kernel.logging_config import get_logger

logger = get_logger("db.engine")


def create_store_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Create an engine for one tenant store.

    Args:
        database_url: SQLAlchemy URL (postgresql+psycopg2://... or sqlite://...).
        echo: If True, log all SQL statements.
        pool_size: Connections kept in the pool (PostgreSQL only).
        max_overflow: Connections allowed beyond pool_size (PostgreSQL only).
        pool_timeout: Seconds to wait for a pooled connection.
        pool_recycle: Seconds after which a pooled connection is recycled.
    """
    if database_url.startswith("sqlite"):
        in_memory = database_url in ("sqlite://", "sqlite:///:memory:")
        kwargs = {"connect_args": {"check_same_thread": False}}
        if in_memory:
            kwargs["poolclass"] = StaticPool
        else:
            kwargs["connect_args"]["timeout"] = pool_timeout
        engine = create_engine(database_url, echo=echo, **kwargs)
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        if not in_memory:
            event.listen(engine, "connect", _disable_pysqlite_transactions)
            event.listen(engine, "begin", _begin_immediate)
        dialect = "sqlite"
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )
        dialect = engine.dialect.name

    logger.info(
        "engine_initialized",
        extra={"dialect": dialect, "echo": echo},
    )
    return engine


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _disable_pysqlite_transactions(dbapi_connection, connection_record):
    # SQLAlchemy emits BEGIN itself, see _begin_immediate
    dbapi_connection.isolation_level = None


def _begin_immediate(conn):
    # Writers queue on the database lock instead of failing on upgrade.
    conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory bound to ``engine``; objects stay usable after commit."""
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(
    session_factory: sessionmaker[Session],
) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Postconditions: On normal exit, session is committed and closed.
        On exception, session is rolled back and closed, and the exception
        is re-raised.

    Usage:
        with session_scope(factory) as session:
            session.add(entity)
    """
    session = session_factory()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine) -> None:
    """
    Create every inventory table in the store.  Safe to call repeatedly.
    """
    from inventory_kernel.db.base import Base
    from inventory_kernel.models import import_all_models

    import_all_models()
    Base.metadata.create_all(engine)
    logger.info("tables_created", extra={"table_count": len(Base.metadata.tables)})


def drop_tables(engine: Engine) -> None:
    """Drop all tables. Use with caution -- primarily for testing."""
    from inventory_kernel.db.base import Base
    from inventory_kernel.models import import_all_models

    import_all_models()
    Base.metadata.drop_all(engine)


def is_postgres(engine: Engine) -> bool:
    return engine.dialect.name == "postgresql"
