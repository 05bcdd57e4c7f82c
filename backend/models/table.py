"""Pydantic schemas for the tenant-scoped schema context sent to the model."""
from typing import Optional
from pydantic import BaseModel, ConfigDict


class ColumnDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    semantic_type: str                      # uuid | integer | decimal | text | timestamp
    values: list[str] = []                  # known enum values, e.g. order statuses
    note: Optional[str] = None


class TableDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    columns: list[ColumnDescriptor]
    row_count: Optional[int] = None         # None = statistics unavailable


class SchemaContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    store_id: str
    currency: str = "USD"
    tables: list[TableDescriptor]
    earliest_order_date: Optional[str] = None
    latest_order_date: Optional[str] = None
    degraded: bool = False                  # True = static catalog, no live statistics

    def table(self, name: str) -> Optional[TableDescriptor]:
        return next((t for t in self.tables if t.name == name), None)
