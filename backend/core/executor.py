"""
Query executor — runs a validated query on the read-only connection.

The connection is checked out only for the duration of `execute` and every
value travels as a bind parameter. Timeouts are never retried.
"""
import logging
import re
import time
from datetime import date, datetime, time as dt_time
from decimal import Decimal
from threading import Event
from typing import Optional, Sequence

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from core.db_connector import statement_timeout
from core.errors import ErrorKind, PipelineError
from models.query import ExecutionResult, Scalar

logger = logging.getLogger(__name__)
security_log = logging.getLogger("storelens.security")

_PLACEHOLDER_RE = re.compile(r"\$(\d+)(?!\d)")
_BARE_COLON_RE = re.compile(r"(?<![:\\]):(?!:)")

_TIMEOUT_RE = re.compile(
    r"statement timeout|canceling statement|interrupted|max_execution_time", re.IGNORECASE
)
_PERMISSION_RE = re.compile(
    r"permission denied|readonly database|read-only|insufficient privilege|command denied",
    re.IGNORECASE,
)
PG_QUERY_CANCELED = "57014"
PG_PERMISSION_CODES = {"42501", "25006"}   # insufficient_privilege, read_only_sql_transaction


def to_named_binds(query: str, parameters: Sequence[Scalar]) -> tuple[str, dict[str, Scalar]]:
    """
    Rewrite positional `$n` placeholders to SQLAlchemy `:pn` binds.
    Other colons are escaped so text() never mistakes them for binds.
    """
    escaped = _BARE_COLON_RE.sub(r"\\:", query)
    binds: dict[str, Scalar] = {}

    def _bind(match: re.Match) -> str:
        index = int(match.group(1))
        if index < 1 or index > len(parameters):
            raise ValueError(f"Placeholder ${index} has no bound value ({len(parameters)} given)")
        binds[f"p{index}"] = parameters[index - 1]
        return f":p{index}"

    return _PLACEHOLDER_RE.sub(_bind, escaped), binds


def coerce_scalar(value) -> Scalar:
    """Serialise DB values to JSON scalars (Decimal → float, datetime → ISO string)."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date, dt_time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return str(value)


class QueryExecutor:
    """Executes validated queries with a hard statement timeout and row cap."""

    def __init__(self, engine: Engine, timeout_ms: int = 5_000, row_cap: int = 100):
        self.engine = engine
        self.timeout_ms = timeout_ms
        self.row_cap = row_cap

    def execute(
        self,
        query: str,
        parameters: Sequence[Scalar],
        cancel: Optional[Event] = None,
    ) -> ExecutionResult:
        try:
            sql, binds = to_named_binds(query, parameters)
        except ValueError as e:
            logger.error("Query executor: %s", e)
            raise PipelineError(ErrorKind.INTERNAL_ERROR, detail=str(e)) from e

        logger.info("Query executor: starting (%d chars, %d params)", len(sql), len(binds))
        t0 = time.monotonic()
        try:
            with self.engine.connect() as conn:
                with statement_timeout(conn, self.timeout_ms, cancel):
                    # server-side cursor where the driver has one, so fetchmany bounds the transfer
                    result = conn.execute(text(sql), binds, execution_options={"stream_results": True})
                    cols = list(result.keys())
                    fetched = result.fetchmany(self.row_cap + 1)
        except DBAPIError as e:
            raise self._classify(e, query, cancel, _elapsed_ms(t0)) from e
        except SQLAlchemyError as e:
            logger.error("Query executor: failed after %dms: %s", _elapsed_ms(t0), e)
            raise PipelineError(ErrorKind.INTERNAL_ERROR, detail=str(e)) from e

        duration_ms = _elapsed_ms(t0)
        truncated = len(fetched) > self.row_cap
        rows = [
            {col: coerce_scalar(value) for col, value in zip(cols, record)}
            for record in fetched[:self.row_cap]
        ]
        logger.info(
            "Query executor: %d rows in %dms%s", len(rows), duration_ms, " (truncated)" if truncated else ""
        )
        return ExecutionResult(rows=rows, row_count=len(rows), duration_ms=duration_ms, truncated=truncated)

    def _classify(self, err: DBAPIError, query: str, cancel: Optional[Event], duration_ms: int) -> PipelineError:
        message = str(getattr(err, "orig", err))
        pgcode = getattr(getattr(err, "orig", None), "pgcode", None)

        if cancel is not None and cancel.is_set():
            logger.info("Query executor: cancelled by caller after %dms", duration_ms)
            return PipelineError(ErrorKind.INTERNAL_ERROR, detail="cancelled")

        if pgcode == PG_QUERY_CANCELED or _TIMEOUT_RE.search(message):
            logger.warning("Query executor: timed out after %dms (limit %dms)", duration_ms, self.timeout_ms)
            return PipelineError(ErrorKind.QUERY_TIMEOUT, detail=message)

        if pgcode in PG_PERMISSION_CODES or _PERMISSION_RE.search(message):
            security_log.critical(
                "Permission error on read-only connection, validator let this through: %s | query=%r",
                message, query,
            )
            return PipelineError(ErrorKind.EXECUTION_PERMISSION_DENIED, detail=message)

        logger.error("Query executor: failed after %dms: %s", duration_ms, message)
        return PipelineError(ErrorKind.INTERNAL_ERROR, detail=message)


def _elapsed_ms(t0: float) -> int:
    return round((time.monotonic() - t0) * 1000)
