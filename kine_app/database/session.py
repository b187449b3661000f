"""
Database session handling for the maintenance worker.

One engine and one session factory per process, built lazily on first use.
Jobs never hold a session across runs: each run opens a unit of work with
`get_db_session()`, which commits on success and rolls back on error.
"""

import logging
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Generator, Optional

from sqlalchemy import create_engine, text, Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.exc import SQLAlchemyError

from config.settings import (
    APP_NAME,
    DATABASE_URI,
    DB_CONNECT_TIMEOUT,
    DB_MAX_OVERFLOW,
    DB_POOL_RECYCLE_SECONDS,
    DB_POOL_SIZE,
    DB_STATEMENT_TIMEOUT_MS,
    IS_PRODUCTION,
)
from kine_app.errors import AttemptAbandonedError

logger = logging.getLogger(__name__)

engine: Engine = None
SessionLocal: sessionmaker = None

# Set by the executor on the thread running a job attempt
_abandon_flag: ContextVar[Optional[threading.Event]] = ContextVar("abandon_flag", default=None)


def _engine_options(database_uri: str) -> Dict[str, Any]:
    # Job bodies run on executor threads, not the thread that opened the pool
    if database_uri.startswith('sqlite'):
        return {'connect_args': {'check_same_thread': False}}

    connect_args = {
        'connect_timeout': DB_CONNECT_TIMEOUT,
        'application_name': APP_NAME,
        'options': f'-c statement_timeout={DB_STATEMENT_TIMEOUT_MS}',
    }
    if IS_PRODUCTION:
        connect_args['sslmode'] = 'require'

    return {
        'pool_size': DB_POOL_SIZE,
        'max_overflow': DB_MAX_OVERFLOW,
        'pool_pre_ping': True,
        'pool_recycle': DB_POOL_RECYCLE_SECONDS,
        'connect_args': connect_args,
    }


def create_database_engine(database_uri: str = DATABASE_URI) -> Engine:
    """Build the engine for `database_uri` (PostgreSQL in production, SQLite locally)."""
    try:
        db_engine = create_engine(database_uri, echo=False, **_engine_options(database_uri))
    except Exception as e:
        logger.error(f"Could not create engine for {db_engine_label(database_uri)}: {e}")
        raise

    logger.info(f"Database engine ready ({db_engine_label(database_uri)})")
    return db_engine


def db_engine_label(database_uri: str) -> str:
    """Backend name of a database URI, safe to log (no credentials)."""
    return database_uri.split(':', 1)[0]


def initialize_database():
    """Create the process-wide engine and session factory if not done yet."""
    global engine, SessionLocal

    if engine is not None:
        return

    engine = create_database_engine()
    # Job summaries read attributes after the commit
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    logger.info("Session factory initialized")


def get_session_factory() -> sessionmaker:
    if SessionLocal is None:
        initialize_database()
    return SessionLocal


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """
    Open a session for one unit of work.

    Commits when the block completes, rolls back and re-raises otherwise.
    A unit of work whose executor attempt was abandoned is rolled back.

        with get_db_session() as session:
            due = queries.get_overdue_unarchived_programmes(session, now, 100)
    """
    session = get_session_factory()()
    try:
        yield session
        raise_if_abandoned()
        session.commit()

    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Database error, transaction rolled back: {e}")
        raise

    except Exception as e:
        session.rollback()
        logger.error(f"Transaction rolled back after error: {e}")
        raise

    finally:
        session.close()


def bind_abandon_flag(flag: threading.Event):
    """
    Tie the current thread's units of work to an attempt flag.

    Once the flag is set, `get_db_session()` rolls back instead of committing.
    Returns the token expected by `unbind_abandon_flag`.
    """
    return _abandon_flag.set(flag)


def unbind_abandon_flag(token) -> None:
    _abandon_flag.reset(token)


def raise_if_abandoned() -> None:
    """Raise AttemptAbandonedError if the current attempt was given up."""
    flag = _abandon_flag.get()
    if flag is not None and flag.is_set():
        raise AttemptAbandonedError("Attempt abandoned by the executor, not committing")


def get_engine() -> Engine:
    if engine is None:
        initialize_database()
    return engine


def health_check() -> bool:
    """Return True when a trivial query round-trips to the database."""
    try:
        with get_db_session() as session:
            session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return False

    logger.info("Database health check passed")
    return True


def close_all_connections():
    """Dispose of the engine; the next session call rebuilds it."""
    global engine, SessionLocal

    if engine is not None:
        engine.dispose()
        logger.info("Database engine disposed")

    engine = None
    SessionLocal = None
