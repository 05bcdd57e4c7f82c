"""
Database connector — read-only SQLAlchemy engine factory and per-dialect
statement timeouts. Supports PostgreSQL (production), MySQL and SQLite.
"""
import logging
import time
from contextlib import contextmanager
from threading import Event
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError

logger = logging.getLogger(__name__)

POOL_SIZE = 5
SQLITE_PROGRESS_STEPS = 1000    # VM instructions between deadline checks


def create_readonly_engine(url: str) -> Engine:
    """Build a pooled engine for the SELECT-only role. Nothing connects until first use."""
    if url.startswith("sqlite"):
        engine = create_engine(url, connect_args={"check_same_thread": False})
    else:
        engine = create_engine(url, pool_pre_ping=True, pool_size=POOL_SIZE, max_overflow=0)
    logger.info("Read-only engine created (%s)", engine.dialect.name)
    return engine


def ping(engine: Engine) -> None:
    """Raise ValueError if the database cannot be reached."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except OperationalError as e:
        raise ValueError(f"Could not connect to database: {e}") from e


@contextmanager
def statement_timeout(conn: Connection, timeout_ms: int, cancel: Optional[Event] = None):
    """
    Bound everything executed inside the block to `timeout_ms`.

    PostgreSQL: read-only transaction + SET LOCAL statement_timeout (server side).
    MySQL: MAX_EXECUTION_TIME for the session.
    SQLite: a progress handler that aborts the statement past the deadline or
    once `cancel` is set; SQLite reports this as "interrupted".
    """
    dialect = conn.dialect.name
    if dialect == "postgresql":
        conn.execute(text("SET TRANSACTION READ ONLY"))
        conn.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))
        yield
    elif dialect in ("mysql", "mariadb"):
        conn.execute(text(f"SET SESSION MAX_EXECUTION_TIME = {int(timeout_ms)}"))
        yield
    elif dialect == "sqlite":
        raw = conn.connection.driver_connection
        deadline = time.monotonic() + timeout_ms / 1000.0

        def _abort_when_due() -> int:
            if cancel is not None and cancel.is_set():
                return 1
            return 1 if time.monotonic() > deadline else 0

        raw.set_progress_handler(_abort_when_due, SQLITE_PROGRESS_STEPS)
        try:
            yield
        finally:
            raw.set_progress_handler(None, 0)
    else:
        logger.warning("No statement timeout support for dialect %s", dialect)
        yield
