"""
Schema context builder — tenant-scoped description of the store tables with
live row counts, order date range and currency.

Every statistics query filters on store_id. If the statistics cannot be
fetched the static catalog is returned without them (degraded=True).
"""
import logging
import threading
import time
from datetime import date, datetime
from typing import Callable, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from models.table import ColumnDescriptor, SchemaContext, TableDescriptor

logger = logging.getLogger(__name__)


def _col(name: str, semantic_type: str, values: tuple = (), note: Optional[str] = None) -> ColumnDescriptor:
    return ColumnDescriptor(name=name, semantic_type=semantic_type, values=list(values), note=note)


ORDER_STATUSES = ("processing", "completed", "refunded", "cancelled", "pending", "on-hold", "failed")

STORE_TABLES: tuple[TableDescriptor, ...] = (
    TableDescriptor(name="orders", description="One row per order", columns=[
        _col("id", "uuid"), _col("store_id", "uuid"), _col("wc_order_id", "integer"),
        _col("date_created", "timestamp"), _col("date_modified", "timestamp"),
        _col("status", "text", ORDER_STATUSES),
        _col("total", "decimal"), _col("subtotal", "decimal"), _col("tax_total", "decimal"),
        _col("shipping_total", "decimal"), _col("discount_total", "decimal"),
        _col("currency", "text"), _col("customer_id", "uuid"),
        _col("payment_method", "text"), _col("coupon_used", "text"),
    ]),
    TableDescriptor(name="order_items", description="Line items of each order", columns=[
        _col("id", "uuid"), _col("order_id", "uuid"), _col("store_id", "uuid"),
        _col("product_id", "uuid"), _col("product_name", "text"), _col("sku", "text"),
        _col("quantity", "integer"), _col("subtotal", "decimal"), _col("total", "decimal"),
    ]),
    TableDescriptor(name="products", description="Catalog products", columns=[
        _col("id", "uuid"), _col("store_id", "uuid"), _col("wc_product_id", "integer"),
        _col("name", "text"), _col("sku", "text"), _col("price", "decimal"),
        _col("regular_price", "decimal"), _col("sale_price", "decimal"),
        _col("category_id", "uuid"), _col("category_name", "text"),
        _col("stock_quantity", "integer"),
        _col("stock_status", "text", ("instock", "outofstock", "onbackorder")),
        _col("status", "text", ("publish", "draft", "private")),
        _col("type", "text", ("simple", "variable", "grouped")),
        _col("created_at", "timestamp"), _col("updated_at", "timestamp"),
    ]),
    TableDescriptor(name="customers", description="Customers with lifetime totals", columns=[
        _col("id", "uuid"), _col("store_id", "uuid"), _col("wc_customer_id", "integer"),
        _col("display_name", "text"),
        _col("email_hash", "text", note="internal SHA-256 hash; NEVER select or return"),
        _col("total_spent", "decimal"), _col("order_count", "integer"),
        _col("first_order_date", "timestamp"), _col("last_order_date", "timestamp"),
        _col("created_at", "timestamp"),
    ]),
    TableDescriptor(name="categories", description="Product categories", columns=[
        _col("id", "uuid"), _col("store_id", "uuid"), _col("wc_category_id", "integer"),
        _col("name", "text"), _col("parent_id", "uuid"), _col("product_count", "integer"),
    ]),
    TableDescriptor(name="coupons", description="Discount coupons", columns=[
        _col("id", "uuid"), _col("store_id", "uuid"), _col("wc_coupon_id", "integer"),
        _col("code", "text"), _col("discount_type", "text"), _col("amount", "decimal"),
        _col("usage_count", "integer"),
    ]),
)

COUNTED_TABLES = ("orders", "products", "customers", "categories")


def _iso(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def static_context(store_id: str) -> SchemaContext:
    """Catalog only, no statistics."""
    return SchemaContext(store_id=store_id, tables=list(STORE_TABLES), degraded=True)


def fetch_store_statistics(engine: Engine, store_id: str) -> dict:
    """Run the tenant-scoped aggregate queries. Raises SQLAlchemyError on failure."""
    params = {"store_id": store_id}
    with engine.connect() as conn:
        order_row = conn.execute(text(
            "SELECT COUNT(*) AS total_orders, MIN(date_created) AS earliest, "
            "MAX(date_created) AS latest FROM orders WHERE store_id = :store_id"
        ), params).one()
        counts = {"orders": int(order_row.total_orders or 0)}
        for table in COUNTED_TABLES[1:]:
            counts[table] = int(conn.execute(
                text(f"SELECT COUNT(*) FROM {table} WHERE store_id = :store_id"), params
            ).scalar() or 0)
        currency = conn.execute(text(
            "SELECT currency FROM orders WHERE store_id = :store_id "
            "ORDER BY date_created DESC LIMIT 1"
        ), params).scalar()

    return {
        "counts": counts,
        "currency": currency or "USD",
        "earliest": _iso(order_row.earliest),
        "latest": _iso(order_row.latest),
    }


class SchemaContextBuilder:
    """Builds SchemaContext per tenant with a short-lived per-tenant cache."""

    def __init__(self, engine: Engine, ttl_seconds: int = 300, clock: Callable[[], float] = time.monotonic):
        self.engine = engine
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cache: dict[str, tuple[float, SchemaContext]] = {}
        self._lock = threading.Lock()

    def build(self, store_id: str) -> SchemaContext:
        cached = self._cached(store_id)
        if cached is not None:
            return cached

        try:
            stats = fetch_store_statistics(self.engine, store_id)
        except SQLAlchemyError as e:
            logger.warning("Schema statistics unavailable for store %s, using static catalog: %s", store_id, e)
            return static_context(store_id)

        counts = stats["counts"]
        tables = [
            t.model_copy(update={"row_count": counts.get(t.name)}) if t.name in counts else t
            for t in STORE_TABLES
        ]
        context = SchemaContext(
            store_id=store_id,
            currency=stats["currency"],
            tables=tables,
            earliest_order_date=stats["earliest"],
            latest_order_date=stats["latest"],
        )
        logger.info(
            "Schema context built for store %s: %d orders, %d products",
            store_id, counts["orders"], counts["products"],
        )
        if self.ttl_seconds > 0:
            with self._lock:
                self._cache[store_id] = (self._clock(), context)
        return context

    def invalidate(self, store_id: str) -> None:
        with self._lock:
            self._cache.pop(store_id, None)

    def _cached(self, store_id: str) -> Optional[SchemaContext]:
        if self.ttl_seconds <= 0:
            return None
        with self._lock:
            entry = self._cache.get(store_id)
            if entry is None:
                return None
            built_at, context = entry
            if self._clock() - built_at >= self.ttl_seconds:
                del self._cache[store_id]
                return None
            return context
