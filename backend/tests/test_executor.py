import threading
from datetime import date
from decimal import Decimal

import pytest
from conftest import STORE_A, STORE_EMPTY
from core.errors import ErrorKind, PipelineError
from core.executor import QueryExecutor, coerce_scalar, to_named_binds

SLOW_QUERY = "WITH RECURSIVE cnt(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM cnt) SELECT COUNT(*) FROM cnt"


def test_named_binds_rewrite():
    sql, binds = to_named_binds("SELECT * FROM orders WHERE store_id = $1 AND status = $2", ("s", "completed"))
    assert sql == "SELECT * FROM orders WHERE store_id = :p1 AND status = :p2"
    assert binds == {"p1": "s", "p2": "completed"}


def test_named_binds_escape_colons_but_keep_casts():
    sql, _ = to_named_binds("SELECT total::numeric, '10:30' FROM orders WHERE store_id = $1", ("s",))
    assert "total::numeric" in sql
    assert r"'10\:30'" in sql


def test_named_binds_reject_unbound_placeholder():
    with pytest.raises(ValueError):
        to_named_binds("SELECT 1 WHERE store_id = $1 AND x = $3", ("s",))


def test_coerce_scalar():
    assert coerce_scalar(Decimal("12.50")) == 12.5
    assert coerce_scalar(date(2024, 1, 5)) == "2024-01-05"
    assert coerce_scalar(b"\x01\xff") == "01ff"
    assert coerce_scalar(None) is None


def test_executes_tenant_scoped_query(readonly_engine):
    executor = QueryExecutor(readonly_engine)
    result = executor.execute(
        "SELECT status, SUM(total) AS revenue FROM orders WHERE store_id = $1 GROUP BY status ORDER BY status",
        (STORE_A,),
    )
    assert result.rows == [
        {"status": "completed", "revenue": 140.0},
        {"status": "processing", "revenue": 50.0},
        {"status": "refunded", "revenue": 75.0},
    ]
    assert list(result.rows[0].keys()) == ["status", "revenue"]
    assert result.row_count == 3
    assert result.truncated is False


def test_empty_result_is_success(readonly_engine):
    result = QueryExecutor(readonly_engine).execute("SELECT id FROM orders WHERE store_id = $1", (STORE_EMPTY,))
    assert result.rows == []
    assert result.row_count == 0


def test_row_cap_is_enforced_at_fetch(readonly_engine):
    result = QueryExecutor(readonly_engine, row_cap=2).execute(
        "SELECT id FROM orders WHERE store_id = $1 ORDER BY id", (STORE_A,)
    )
    assert result.row_count == 2
    assert result.truncated is True


def test_statement_timeout(readonly_engine):
    executor = QueryExecutor(readonly_engine, timeout_ms=50)
    with pytest.raises(PipelineError) as exc:
        executor.execute(SLOW_QUERY, ())
    assert exc.value.kind == ErrorKind.QUERY_TIMEOUT
    assert exc.value.status_code == 504


def test_cancel_interrupts_query(readonly_engine):
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(PipelineError) as exc:
        QueryExecutor(readonly_engine, timeout_ms=10_000).execute(SLOW_QUERY, (), cancel=cancel)
    assert exc.value.kind == ErrorKind.INTERNAL_ERROR
    assert exc.value.detail == "cancelled"


def test_write_on_readonly_connection_is_permission_error(readonly_engine, caplog):
    with caplog.at_level("CRITICAL", logger="storelens.security"):
        with pytest.raises(PipelineError) as exc:
            QueryExecutor(readonly_engine).execute(
                "INSERT INTO coupons (id, store_id, code) VALUES ('x', $1, 'FREE')", (STORE_A,)
            )
    assert exc.value.kind == ErrorKind.EXECUTION_PERMISSION_DENIED
    assert any(r.name == "storelens.security" for r in caplog.records)


def test_sql_error_is_internal(readonly_engine):
    with pytest.raises(PipelineError) as exc:
        QueryExecutor(readonly_engine).execute("SELECT nope FROM orders WHERE store_id = $1", (STORE_A,))
    assert exc.value.kind == ErrorKind.INTERNAL_ERROR
