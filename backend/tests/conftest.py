import os
import sys

# Add the parent directory (backend) to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import json
import sqlite3
import tempfile

import pytest
from fastapi.testclient import TestClient

from api.deps import get_ollama_client, get_pipeline
from core.conversation import ConversationStore
from core.db_connector import create_readonly_engine
from core.executor import QueryExecutor
from core.pipeline import QueryPipeline
from core.rate_limiter import InMemoryRateLimitStore, RateLimiter
from core.schema_context import SchemaContextBuilder
from core.translator import QueryTranslator
from main import app

STORE_A = "store-a"
STORE_B = "store-b"
STORE_EMPTY = "store-empty"

SCHEMA = """
CREATE TABLE categories (id TEXT PRIMARY KEY, store_id TEXT, wc_category_id INTEGER, name TEXT,
                         parent_id TEXT, product_count INTEGER);
CREATE TABLE customers (id TEXT PRIMARY KEY, store_id TEXT, wc_customer_id INTEGER, display_name TEXT,
                        email_hash TEXT, total_spent REAL, order_count INTEGER,
                        first_order_date TIMESTAMP, last_order_date TIMESTAMP, created_at TIMESTAMP);
CREATE TABLE products (id TEXT PRIMARY KEY, store_id TEXT, wc_product_id INTEGER, name TEXT, sku TEXT,
                       price REAL, regular_price REAL, sale_price REAL, category_id TEXT, category_name TEXT,
                       stock_quantity INTEGER, stock_status TEXT, status TEXT, type TEXT,
                       created_at TIMESTAMP, updated_at TIMESTAMP);
CREATE TABLE orders (id TEXT PRIMARY KEY, store_id TEXT, wc_order_id INTEGER, date_created TIMESTAMP,
                     date_modified TIMESTAMP, status TEXT, total REAL, subtotal REAL, tax_total REAL,
                     shipping_total REAL, discount_total REAL, currency TEXT, customer_id TEXT,
                     payment_method TEXT, coupon_used TEXT);
CREATE TABLE order_items (id TEXT PRIMARY KEY, order_id TEXT, store_id TEXT, product_id TEXT,
                          product_name TEXT, sku TEXT, quantity INTEGER, subtotal REAL, total REAL);
CREATE TABLE coupons (id TEXT PRIMARY KEY, store_id TEXT, wc_coupon_id INTEGER, code TEXT,
                      discount_type TEXT, amount REAL, usage_count INTEGER);
"""


def _seed(conn: sqlite3.Connection) -> None:
    cur = conn.cursor()
    cur.executescript(SCHEMA)
    cur.executemany("INSERT INTO categories (id, store_id, name) VALUES (?,?,?)", [
        ("cat-a1", STORE_A, "Apparel"), ("cat-a2", STORE_A, "Books"),
        ("cat-b1", STORE_B, "Garden"), ("cat-e1", STORE_EMPTY, "Misc"),
    ])
    cur.executemany("INSERT INTO customers (id, store_id, display_name, total_spent, order_count) VALUES (?,?,?,?,?)", [
        ("cus-a1", STORE_A, "Ada", 150.0, 2), ("cus-a2", STORE_A, "Grace", 40.0, 1),
        ("cus-b1", STORE_B, "Linus", 999.0, 1),
    ])
    cur.executemany(
        "INSERT INTO products (id, store_id, name, price, category_name, stock_status, status) VALUES (?,?,?,?,?,?,?)", [
            ("prd-a1", STORE_A, "T-Shirt", 25.0, "Apparel", "instock", "publish"),
            ("prd-a2", STORE_A, "Novel", 15.0, "Books", "instock", "publish"),
            ("prd-b1", STORE_B, "Shovel", 999.0, "Garden", "instock", "publish"),
            ("prd-e1", STORE_EMPTY, "Widget", 5.0, "Misc", "instock", "publish"),
        ])
    cur.executemany(
        "INSERT INTO orders (id, store_id, date_created, status, total, currency, customer_id, payment_method) "
        "VALUES (?,?,?,?,?,?,?,?)", [
            ("ord-a1", STORE_A, "2024-01-05 10:00:00", "completed", 100.0, "USD", "cus-a1", "stripe"),
            ("ord-a2", STORE_A, "2024-02-10 12:30:00", "processing", 50.0, "USD", "cus-a1", "paypal"),
            ("ord-a3", STORE_A, "2024-03-15 09:15:00", "completed", 40.0, "USD", "cus-a2", "stripe"),
            ("ord-a4", STORE_A, "2024-03-20 18:00:00", "refunded", 75.0, "USD", "cus-a2", "stripe"),
            ("ord-b1", STORE_B, "2024-01-01 08:00:00", "completed", 999.0, "EUR", "cus-b1", "bacs"),
        ])
    cur.executemany(
        "INSERT INTO order_items (id, order_id, store_id, product_id, product_name, quantity, total) "
        "VALUES (?,?,?,?,?,?,?)", [
            ("itm-1", "ord-a1", STORE_A, "prd-a1", "T-Shirt", 4, 100.0),
            ("itm-2", "ord-a2", STORE_A, "prd-a1", "T-Shirt", 2, 50.0),
            ("itm-3", "ord-a3", STORE_A, "prd-a2", "Novel", 2, 30.0),
            ("itm-4", "ord-b1", STORE_B, "prd-b1", "Shovel", 1, 999.0),
        ])
    conn.commit()


@pytest.fixture(scope="session")
def store_db_path():
    fd, path = tempfile.mkstemp(suffix=".db")
    try:
        conn = sqlite3.connect(path)
        _seed(conn)
        conn.close()
        yield path
    finally:
        os.close(fd)
        os.remove(path)


@pytest.fixture(scope="session")
def readonly_engine(store_db_path):
    engine = create_readonly_engine(f"sqlite:///file:{store_db_path}?mode=ro&uri=true")
    yield engine
    engine.dispose()


class FakeLLM:
    """Scripted stand-in for OllamaClient: returns or raises the queued replies in order."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls: list[list[dict]] = []

    def queue(self, *replies):
        self.replies.extend(replies)

    def chat(self, messages, json_mode=True):
        self.calls.append(messages)
        if not self.replies:
            raise AssertionError("FakeLLM called more times than scripted")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply if isinstance(reply, str) else json.dumps(reply)

    def is_healthy(self):
        return True, "fake-model"


def model_reply(sql, explanation="Here you go.", chart=None, params=None):
    reply = {"sql": sql, "explanation": explanation, "chartSpec": chart}
    if params is not None:
        reply["params"] = params
    return reply


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def make_pipeline(readonly_engine, fake_llm):
    def _make(quota: int = 20, timeout_ms: int = 2_000, expose_sql: bool = True, **kwargs):
        limiter = RateLimiter(
            InMemoryRateLimitStore(),
            tiers={"free": quota, "pro": quota * 3},
            window_seconds=60,
        )
        return QueryPipeline(
            rate_limiter=limiter,
            schema_builder=SchemaContextBuilder(readonly_engine, ttl_seconds=0),
            translator=QueryTranslator(fake_llm),
            executor=QueryExecutor(readonly_engine, timeout_ms=timeout_ms, row_cap=100),
            conversations=ConversationStore(),
            row_cap=100,
            expose_sql=expose_sql,
            **kwargs,
        )
    return _make


@pytest.fixture
def pipeline(make_pipeline):
    return make_pipeline()


@pytest.fixture
def client(pipeline, fake_llm):
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    app.dependency_overrides[get_ollama_client] = lambda: fake_llm
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
