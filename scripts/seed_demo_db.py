#!/usr/bin/env python3
"""
Seed a local SQLite store database with demo data for StoreLens development.
Usage (from the repository root):
    python scripts/seed_demo_db.py
Creates: scripts/demo.db with two demo stores.
Point the API at it read-only:
    DATABASE_READONLY_URL="sqlite:///file:scripts/demo.db?mode=ro&uri=true"
"""
import random
import sqlite3
import uuid
from datetime import datetime, timedelta
from pathlib import Path

DB_PATH = Path(__file__).parent / "demo.db"

DEMO_STORES = {
    "11111111-1111-1111-1111-111111111111": "USD",
    "22222222-2222-2222-2222-222222222222": "EUR",
}

DDL = [
    """
    CREATE TABLE IF NOT EXISTS categories (
        id              TEXT PRIMARY KEY,
        store_id        TEXT NOT NULL,
        wc_category_id  INTEGER,
        name            TEXT NOT NULL,
        parent_id       TEXT,
        product_count   INTEGER DEFAULT 0
    )""",
    """
    CREATE TABLE IF NOT EXISTS customers (
        id                TEXT PRIMARY KEY,
        store_id          TEXT NOT NULL,
        wc_customer_id    INTEGER,
        display_name      TEXT,
        email_hash        TEXT,
        total_spent       REAL DEFAULT 0,
        order_count       INTEGER DEFAULT 0,
        first_order_date  TIMESTAMP,
        last_order_date   TIMESTAMP,
        created_at        TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )""",
    """
    CREATE TABLE IF NOT EXISTS products (
        id              TEXT PRIMARY KEY,
        store_id        TEXT NOT NULL,
        wc_product_id   INTEGER,
        name            TEXT NOT NULL,
        sku             TEXT,
        price           REAL,
        regular_price   REAL,
        sale_price      REAL,
        category_id     TEXT REFERENCES categories(id),
        category_name   TEXT,
        stock_quantity  INTEGER,
        stock_status    TEXT DEFAULT 'instock',
        status          TEXT DEFAULT 'publish',
        type            TEXT DEFAULT 'simple',
        created_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )""",
    """
    CREATE TABLE IF NOT EXISTS orders (
        id              TEXT PRIMARY KEY,
        store_id        TEXT NOT NULL,
        wc_order_id     INTEGER,
        date_created    TIMESTAMP NOT NULL,
        date_modified   TIMESTAMP,
        status          TEXT,
        total           REAL,
        subtotal        REAL,
        tax_total       REAL DEFAULT 0,
        shipping_total  REAL DEFAULT 0,
        discount_total  REAL DEFAULT 0,
        currency        TEXT,
        customer_id     TEXT REFERENCES customers(id),
        payment_method  TEXT,
        coupon_used     TEXT
    )""",
    """
    CREATE TABLE IF NOT EXISTS order_items (
        id            TEXT PRIMARY KEY,
        order_id      TEXT NOT NULL REFERENCES orders(id),
        store_id      TEXT NOT NULL,
        product_id    TEXT REFERENCES products(id),
        product_name  TEXT,
        sku           TEXT,
        quantity      INTEGER NOT NULL,
        subtotal      REAL,
        total         REAL
    )""",
    """
    CREATE TABLE IF NOT EXISTS coupons (
        id             TEXT PRIMARY KEY,
        store_id       TEXT NOT NULL,
        wc_coupon_id   INTEGER,
        code           TEXT,
        discount_type  TEXT,
        amount         REAL,
        usage_count    INTEGER DEFAULT 0
    )""",
    "CREATE INDEX IF NOT EXISTS idx_orders_store_date ON orders(store_id, date_created)",
    "CREATE INDEX IF NOT EXISTS idx_order_items_store ON order_items(store_id)",
]

STATUSES = ["completed", "completed", "completed", "processing", "refunded", "cancelled", "pending"]
CATEGORIES = ["Apparel", "Accessories", "Home", "Outdoor", "Books"]
PAYMENT_METHODS = ["stripe", "paypal", "cod", "bacs"]


def _ts(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def seed_store(cur: sqlite3.Cursor, store_id: str, currency: str, n_orders: int = 300) -> None:
    category_ids = {}
    for i, name in enumerate(CATEGORIES, start=1):
        cid = str(uuid.uuid4())
        category_ids[name] = cid
        cur.execute("INSERT INTO categories(id,store_id,wc_category_id,name) VALUES (?,?,?,?)",
                    (cid, store_id, i, name))

    products = []
    for i in range(1, 31):
        pid = str(uuid.uuid4())
        category = random.choice(CATEGORIES)
        price = round(random.uniform(5, 250), 2)
        stock = random.randint(0, 200)
        cur.execute(
            "INSERT INTO products(id,store_id,wc_product_id,name,sku,price,regular_price,category_id,"
            "category_name,stock_quantity,stock_status) VALUES (?,?,?,?,?,?,?,?,?,?,?)",
            (pid, store_id, i, f"{category} item {i}", f"SKU-{i:04d}", price, price,
             category_ids[category], category, stock, "instock" if stock else "outofstock"),
        )
        products.append((pid, f"{category} item {i}", f"SKU-{i:04d}", price))

    customers = []
    for i in range(1, 81):
        cust_id = str(uuid.uuid4())
        cur.execute(
            "INSERT INTO customers(id,store_id,wc_customer_id,display_name,email_hash,created_at) "
            "VALUES (?,?,?,?,?,?)",
            (cust_id, store_id, i, f"Customer {i}", uuid.uuid4().hex,
             _ts(datetime.now() - timedelta(days=random.randint(30, 700)))),
        )
        customers.append(cust_id)

    for i in range(1, n_orders + 1):
        order_id = str(uuid.uuid4())
        order_dt = datetime.now() - timedelta(days=random.randint(0, 365), minutes=random.randint(0, 1440))
        cust_id = random.choice(customers)
        subtotal = 0.0
        items = []
        for _ in range(random.randint(1, 4)):
            pid, name, sku, price = random.choice(products)
            qty = random.randint(1, 3)
            line = round(qty * price, 2)
            subtotal += line
            items.append((str(uuid.uuid4()), order_id, store_id, pid, name, sku, qty, line, line))
        subtotal = round(subtotal, 2)
        shipping = random.choice([0.0, 4.99, 9.99])
        cur.execute(
            "INSERT INTO orders(id,store_id,wc_order_id,date_created,date_modified,status,total,subtotal,"
            "shipping_total,currency,customer_id,payment_method) VALUES (?,?,?,?,?,?,?,?,?,?,?,?)",
            (order_id, store_id, 1000 + i, _ts(order_dt), _ts(order_dt), random.choice(STATUSES),
             round(subtotal + shipping, 2), subtotal, shipping, currency, cust_id,
             random.choice(PAYMENT_METHODS)),
        )
        cur.executemany("INSERT INTO order_items VALUES (?,?,?,?,?,?,?,?,?)", items)

    cur.execute(
        """
        UPDATE customers SET
            order_count      = (SELECT COUNT(*) FROM orders o WHERE o.customer_id = customers.id),
            total_spent      = COALESCE((SELECT ROUND(SUM(total), 2) FROM orders o
                                         WHERE o.customer_id = customers.id AND o.status IN ('completed','processing')), 0),
            first_order_date = (SELECT MIN(date_created) FROM orders o WHERE o.customer_id = customers.id),
            last_order_date  = (SELECT MAX(date_created) FROM orders o WHERE o.customer_id = customers.id)
        WHERE store_id = ?
        """,
        (store_id,),
    )
    cur.execute(
        "UPDATE categories SET product_count = (SELECT COUNT(*) FROM products p WHERE p.category_id = categories.id) "
        "WHERE store_id = ?",
        (store_id,),
    )
    cur.execute(
        "INSERT INTO coupons(id,store_id,wc_coupon_id,code,discount_type,amount,usage_count) VALUES (?,?,?,?,?,?,?)",
        (str(uuid.uuid4()), store_id, 1, "WELCOME10", "percent", 10, random.randint(0, 50)),
    )


def seed():
    conn = sqlite3.connect(DB_PATH)
    cur = conn.cursor()

    for stmt in DDL:
        cur.execute(stmt)
    for store_id, currency in DEMO_STORES.items():
        cur.execute("DELETE FROM order_items WHERE store_id = ?", (store_id,))
        for table in ("orders", "products", "customers", "categories", "coupons"):
            cur.execute(f"DELETE FROM {table} WHERE store_id = ?", (store_id,))
        seed_store(cur, store_id, currency)

    conn.commit()
    conn.close()
    print(f"Demo store database seeded: {DB_PATH}")
    print("   Stores: " + ", ".join(DEMO_STORES))


if __name__ == "__main__":
    seed()
