"""Chart data builder."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from spreadsheet_merge.dates import DATE_GROUPINGS, DateGrouping, date_key
from spreadsheet_merge.models import Dataset
from spreadsheet_merge.utils import cell_text, to_number

ChartKind = Literal[
    "line", "area", "groupedBar", "stackedBar", "bar", "pie", "donut", "bubble"
]
CHART_KINDS: tuple[str, ...] = (
    "line", "area", "groupedBar", "stackedBar", "bar", "pie", "donut", "bubble"
)
TEMPORAL_KINDS = frozenset({"line", "area", "groupedBar", "stackedBar", "bar"})

PALETTE: tuple[str, ...] = (
    "#8884d8",
    "#82ca9d",
    "#ffc658",
    "#ff8042",
    "#0088fe",
    "#00c49f",
    "#ffbb28",
    "#a4de6c",
    "#d0ed57",
    "#8dd1e1",
)


def series_color(index: int) -> str:
    """Palette color for the series at *index* (wraps around)."""
    return PALETTE[index % len(PALETTE)]


def is_temporal(kind: str) -> bool:
    return kind in TEMPORAL_KINDS


@dataclass
class ChartData:
    """Category records ready for a charting surface.

    Each record is ``{x_field: category, series_name: sum, ...}``.
    """

    kind: str
    x_field: str = ""
    y_field: str = ""
    value_field: str = ""
    date_grouping: str = "day"
    records: list[dict[str, Any]] = field(default_factory=list)
    series: list[str] = field(default_factory=list)
    colors: dict[str, str] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.records

    @property
    def categories(self) -> list[Any]:
        return [record[self.x_field] for record in self.records]

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "x_field": self.x_field,
            "y_field": self.y_field,
            "value_field": self.value_field,
            "date_grouping": self.date_grouping if is_temporal(self.kind) else None,
            "series": list(self.series),
            "colors": dict(self.colors),
            "records": [dict(record) for record in self.records],
        }


def build_chart_data(
    dataset: Dataset,
    kind: str,
    x_field: str | None,
    y_field: str | None,
    value_field: str | None,
    date_grouping: DateGrouping = "day",
) -> ChartData:
    """Group rows by x category and sum *value_field* per series.

    Line, area and the bar kinds key on the x value parsed as a date and
    bucketed by *date_grouping* (unparseable values land in
    ``"Invalid Date"``).  Pie, donut and bubble key on the raw x text.
    ``groupedBar`` gets one series per distinct y value; every other kind has
    a single series named after *y_field*.
    """
    if kind not in CHART_KINDS:
        raise ValueError(f"Invalid chart kind: {kind!r}. Use one of {', '.join(CHART_KINDS)}.")
    if date_grouping not in DATE_GROUPINGS:
        raise ValueError(f"Invalid date grouping: {date_grouping!r}. Use day/month/year.")
    if not x_field or not y_field or not value_field:
        return ChartData(kind=kind, date_grouping=date_grouping)
    for name in (x_field, y_field, value_field):
        if name not in dataset.columns:
            raise ValueError(f"Unknown column: {name!r}")

    temporal = is_temporal(kind)
    grouped = kind == "groupedBar"
    buckets: dict[str, dict[str, Any]] = {}
    series: dict[str, None] = {}

    for row in dataset.rows:
        if temporal:
            category = date_key(row[x_field], date_grouping)
        else:
            category = cell_text(row[x_field])
        record = buckets.setdefault(category, {x_field: category})

        name = cell_text(row[y_field]) if grouped else y_field
        series.setdefault(name, None)
        record[name] = record.get(name, 0.0) + to_number(row[value_field])

    names = list(series)
    return ChartData(
        kind=kind,
        x_field=x_field,
        y_field=y_field,
        value_field=value_field,
        date_grouping=date_grouping,
        records=list(buckets.values()),
        series=names,
        colors={name: series_color(idx) for idx, name in enumerate(names)},
    )
