"""Pydantic schemas for renderable chart configurations (Chart.js shape)."""
from typing import Annotated, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from models.query import Scalar


class _ChartModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class ChartDataset(_ChartModel):
    label: str
    data: list[float]
    background_color: list[str]
    border_color: list[str]
    border_width: int = 1


class ChartData(_ChartModel):
    labels: list[str]
    datasets: list[ChartDataset]


class TitleOption(_ChartModel):
    display: bool = True
    text: str = ""


class LegendOption(_ChartModel):
    display: bool = True
    position: str = "right"


class AxisOption(_ChartModel):
    title: TitleOption


class ScalesOption(_ChartModel):
    x: AxisOption
    y: AxisOption


class PluginsOption(_ChartModel):
    title: TitleOption
    legend: Optional[LegendOption] = None


class ChartOptions(_ChartModel):
    responsive: bool = True
    plugins: PluginsOption
    scales: Optional[ScalesOption] = None


class ChartConfiguration(_ChartModel):
    """Axis (bar/line) or radial (pie/doughnut) chart."""
    type: Literal["bar", "line", "pie", "doughnut"]
    data: ChartData
    options: ChartOptions


class TableConfig(_ChartModel):
    """Tabular fallback: headers plus positional row values."""
    type: Literal["table"] = "table"
    title: str = ""
    headers: list[str] = []
    rows: list[list[Scalar]] = []


ChartConfig = Annotated[Union[ChartConfiguration, TableConfig], Field(discriminator="type")]

ChartTarget = Literal["bar", "line", "pie", "doughnut", "table"]
