"""Pydantic schemas passed between the translator, validator and executor."""
from typing import Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from core.errors import ErrorKind

Scalar = Union[str, int, float, bool, None]
Row = dict[str, Scalar]

ChartType = Literal["bar", "line", "pie", "doughnut", "none"]


class ChartIntent(BaseModel):
    """Declarative chart request from the model. Carries no executable logic."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: ChartType = "none"
    title: str = ""
    x_label: Optional[str] = Field(None, alias="xLabel")
    y_label: Optional[str] = Field(None, alias="yLabel")
    data_key: str = Field("", alias="dataKey")
    label_key: str = Field("", alias="labelKey")

    @field_validator("type", mode="before")
    @classmethod
    def _table_means_none(cls, v):
        if isinstance(v, str) and v.strip().lower() == "table":
            return "none"
        return v.strip().lower() if isinstance(v, str) else v

    @model_validator(mode="after")
    def _keys_for_charts(self):
        if self.type != "none" and not (self.data_key and self.label_key):
            raise ValueError(f"a {self.type} chart needs dataKey and labelKey")
        return self


class TranslationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    query: str
    parameters: tuple[Scalar, ...]          # $1 is always the tenant id
    explanation: str
    chart_intent: Optional[ChartIntent] = None


class ValidationVerdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    accepted: bool
    normalized_query: Optional[str] = None
    rejection_reason: Optional[ErrorKind] = None
    detail: str = ""                        # log-only explanation of a rejection


class ExecutionResult(BaseModel):
    rows: list[Row] = Field(default_factory=list)
    row_count: int = 0
    duration_ms: int = 0
    truncated: bool = False
