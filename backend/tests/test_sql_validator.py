import pytest
from core.errors import ErrorKind
from core.sql_validator import validate_query
from prompts.query_generation import FEW_SHOT_EXAMPLES

STORE = "store-a"
SAFE = "SELECT SUM(total) AS revenue FROM orders WHERE store_id = $1"


def _reason(query, params=(STORE,)):
    verdict = validate_query(query, params, STORE)
    return verdict.rejection_reason


def test_accepts_scoped_select_and_appends_row_cap():
    verdict = validate_query(SAFE, (STORE,), STORE, row_cap=100)
    assert verdict.accepted
    assert verdict.normalized_query == SAFE + " LIMIT 100"
    assert verdict.rejection_reason is None


def test_existing_limit_is_kept():
    query = SAFE + " LIMIT 5"
    verdict = validate_query(query, (STORE,), STORE)
    assert verdict.normalized_query == query
    assert verdict.normalized_query.upper().count("LIMIT") == 1


def test_revalidation_is_idempotent():
    first = validate_query(SAFE, (STORE,), STORE)
    second = validate_query(first.normalized_query, (STORE,), STORE)
    assert second.accepted
    assert second.normalized_query == first.normalized_query


def test_limit_inside_subquery_does_not_count_as_row_cap():
    query = ("SELECT name FROM products WHERE store_id = $1 AND id IN "
             "(SELECT product_id FROM order_items WHERE store_id = $1 LIMIT 3)")
    verdict = validate_query(query, (STORE,), STORE, row_cap=50)
    assert verdict.normalized_query.endswith(") LIMIT 50")


def test_trailing_semicolon_and_whitespace_are_dropped():
    verdict = validate_query("  " + SAFE + " ;  \n", (STORE,), STORE)
    assert verdict.accepted
    assert verdict.normalized_query == SAFE + " LIMIT 100"


def test_leading_comment_is_allowed():
    verdict = validate_query("-- revenue\n" + SAFE, (STORE,), STORE)
    assert verdict.accepted
    assert verdict.normalized_query.startswith("SELECT")


@pytest.mark.parametrize("predicate", [
    "store_id = $1",
    "STORE_ID=$1",
    "o.store_id   =   $1",
    "$1 = o.store_id",
    "\"store_id\" = $1",
    "store_id\n=\n$1",
])
def test_tenant_predicate_forms(predicate):
    query = f"SELECT COUNT(*) FROM orders o WHERE {predicate}"
    assert validate_query(query, (STORE,), STORE).accepted


@pytest.mark.parametrize("query", [
    "SELECT COUNT(*) FROM orders",
    "SELECT COUNT(*) FROM orders WHERE store_id = $2",
    "SELECT COUNT(*) FROM orders WHERE store_id = $10",
    "SELECT COUNT(*) FROM orders WHERE store_id = 'store-a'",
    "SELECT COUNT(*) FROM orders WHERE other_store_id = $1",
    "SELECT 'store_id = $1' AS x FROM orders",
    "SELECT COUNT(*) FROM orders -- WHERE store_id = $1",
])
def test_missing_tenant_scope(query):
    assert _reason(query) == ErrorKind.MISSING_TENANT_SCOPE


def test_tenant_parameter_must_match_caller():
    assert _reason(SAFE, params=("store-b",)) == ErrorKind.MISSING_TENANT_SCOPE
    assert _reason(SAFE, params=()) == ErrorKind.MISSING_TENANT_SCOPE


def test_compound_query_is_rejected():
    query = SAFE + " UNION SELECT SUM(total) FROM orders WHERE store_id = $1"
    assert _reason(query) == ErrorKind.MISSING_TENANT_SCOPE


@pytest.mark.parametrize("query", [
    "SELECT 1; DROP TABLE orders;",
    SAFE + "; SELECT 1",
    SAFE + ";;",
])
def test_multiple_statements(query):
    assert _reason(query) == ErrorKind.MULTIPLE_STATEMENTS


@pytest.mark.parametrize("query", [
    "",
    "   ",
    "-- just a comment",
    "DELETE FROM orders WHERE store_id = $1",
    "UPDATE orders SET total = 0 WHERE store_id = $1",
    "WITH x AS (SELECT 1) SELECT * FROM x WHERE store_id = $1",
    "SELECT * INTO backup FROM orders WHERE store_id = $1",
    "SELECT id FROM orders WHERE store_id = $1 AND id IN (SELECT id FROM orders) FOR UPDATE",
    "SELECT pg_sleep(10) FROM orders WHERE store_id = $1",
    "SELECT PG_READ_FILE('/etc/passwd') FROM orders WHERE store_id = $1",
    "SELECT * FROM orders WHERE store_id = $1 AND status = 'café'",
    "/* comment */ insert into orders values (1)",
])
def test_not_read_only(query):
    assert _reason(query) == ErrorKind.NOT_READ_ONLY


def test_denylisted_words_inside_literals_and_identifiers_are_fine():
    query = ("SELECT updated_at, created_at FROM products WHERE store_id = $1 "
             "AND status = 'deleted' AND name = 'drop shipping'")
    assert validate_query(query, (STORE,), STORE).accepted


def test_denylisted_word_in_comment_is_ignored():
    query = SAFE + " /* never DELETE */"
    verdict = validate_query(query, (STORE,), STORE)
    assert verdict.accepted
    assert verdict.normalized_query == SAFE + " LIMIT 100"


@pytest.mark.parametrize("query", [
    "SELECT store_id, SUM(total) AS revenue FROM orders WHERE store_id = $1 OR store_id = $2 GROUP BY store_id",
    "SELECT SUM(total) FROM orders WHERE store_id = $1 OR store_id IN ('store-b')",
    "SELECT SUM(total) FROM orders WHERE store_id = $1 OR store_id LIKE '%'",
    "SELECT SUM(total) FROM orders WHERE store_id = $1 OR store_id IS NOT NULL",
    "SELECT SUM(total) FROM orders WHERE store_id = $1 AND store_id <> $2",
    "SELECT SUM(total) FROM orders WHERE store_id = $1 OR 1 = 1",
    "SELECT SUM(total) FROM orders WHERE NOT store_id = $1",
    "SELECT SUM(total) FROM orders WHERE lower(store_id) = $1",
    "SELECT SUM(total) FROM orders WHERE store_id = $1 || ''",
    "SELECT SUM(total) FROM orders WHERE store_id::text = 'store-b'",
    "SELECT store_id = $1 AS mine, SUM(total) FROM orders GROUP BY 1",
    "SELECT CASE WHEN store_id = $1 THEN total END AS t FROM orders",
])
def test_tenant_column_only_compared_with_caller(query):
    assert _reason(query, params=(STORE, "store-b")) == ErrorKind.MISSING_TENANT_SCOPE


@pytest.mark.parametrize("query", [
    "SELECT (SELECT SUM(total) FROM orders) AS everyone FROM orders WHERE store_id = $1",
    "SELECT SUM(total) FROM orders WHERE store_id = $1 AND id IN (SELECT order_id FROM order_items)",
    "SELECT o.total, c.email_hash FROM orders o, customers c WHERE o.store_id = $1",
    "SELECT o.total FROM orders o JOIN customers c ON c.id = o.customer_id WHERE o.store_id = $1",
    "SELECT o.total FROM orders o JOIN customers c ON c.id = o.customer_id AND o.store_id = $1",
])
def test_every_table_must_be_scoped(query):
    assert _reason(query) == ErrorKind.MISSING_TENANT_SCOPE


@pytest.mark.parametrize("query", [
    "SELECT store_id, COUNT(*) AS n FROM orders WHERE store_id = $1 GROUP BY store_id",
    "SELECT o.id, c.display_name FROM orders o LEFT JOIN customers c "
    "ON c.id = o.customer_id AND c.store_id = $1 WHERE o.store_id = $1",
    "SELECT oi.product_name FROM order_items oi JOIN orders o ON o.id = oi.order_id "
    "AND o.store_id = oi.store_id AND o.store_id = $1 WHERE oi.store_id = $1",
    "SELECT AVG(n) AS avg_items FROM (SELECT order_id, COUNT(*) AS n FROM order_items "
    "WHERE store_id = $1 GROUP BY order_id) t",
    "SELECT name FROM products WHERE store_id = $1 AND (status = 'publish' OR status = 'draft')",
])
def test_scoped_queries_are_accepted(query):
    verdict = validate_query(query, (STORE,), STORE)
    assert verdict.accepted, verdict.detail


def test_prompt_examples_pass_validation():
    for example in FEW_SHOT_EXAMPLES:
        verdict = validate_query(example["sql"], (STORE,), STORE)
        assert verdict.accepted, (example["question"], verdict.detail)
        assert verdict.normalized_query == example["sql"]


@pytest.mark.parametrize("limit, expected", [
    ("LIMIT ALL", "LIMIT 100"),
    ("LIMIT 100000000", "LIMIT 100"),
    ("LIMIT -1", "LIMIT 100"),
    ("LIMIT $2", "LIMIT 100"),
    ("LIMIT 500 OFFSET 20", "LIMIT 100 OFFSET 20"),
    ("LIMIT 5 OFFSET 20", "LIMIT 5 OFFSET 20"),
    ("FETCH FIRST 500 ROWS ONLY", "FETCH FIRST 100 ROWS ONLY"),
])
def test_row_limit_is_capped(limit, expected):
    verdict = validate_query(f"{SAFE} {limit}", (STORE, 5000), STORE, row_cap=100)
    assert verdict.accepted
    assert verdict.normalized_query == f"{SAFE} {expected}"
    again = validate_query(verdict.normalized_query, (STORE, 5000), STORE, row_cap=100)
    assert again.normalized_query == verdict.normalized_query


@pytest.mark.parametrize("limit", ["LIMIT 10 + 1000", "LIMIT 5, 1000", "LIMIT (SELECT 1000)"])
def test_unsupported_row_limit_is_rejected(limit):
    assert _reason(f"{SAFE} {limit}") == ErrorKind.NOT_READ_ONLY
