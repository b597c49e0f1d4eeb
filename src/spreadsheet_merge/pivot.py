"""Pivot engine: two-dimensional sums with date bucketing and unit scaling."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Literal

import pandas as pd

from spreadsheet_merge.dates import date_key
from spreadsheet_merge.models import Dataset
from spreadsheet_merge.table import filter_rows, infer_column_type
from spreadsheet_merge.utils import cell_text, to_number

PivotDateGrouping = Literal["none", "month", "year"]
PIVOT_DATE_GROUPINGS: tuple[str, ...] = ("none", "month", "year")

HOURS_PER_WORKING_DAY = 8
EMPTY_CELL = "-"

_DATE_NAME_RE = re.compile(r"\bdate\b", re.IGNORECASE)


@dataclass
class PivotResult:
    """Accumulated sums keyed ``cells[row_key][column_key]``.

    ``column_keys`` lists column keys in the order they were first met;
    row keys keep the same first-seen order through ``cells``.
    """

    row_field: str
    column_field: str
    value_field: str
    cells: dict[str, dict[str, float]] = field(default_factory=dict)
    column_keys: list[str] = field(default_factory=list)

    @property
    def row_keys(self) -> list[str]:
        return list(self.cells)

    def value(self, row_key: str, column_key: str) -> float | None:
        return self.cells.get(row_key, {}).get(column_key)

    def render(self, row_key: str, column_key: str) -> str:
        value = self.value(row_key, column_key)
        return EMPTY_CELL if value is None else f"{value:.2f}"

    @property
    def header(self) -> list[str]:
        return [self.row_field, *self.column_keys]

    def to_rows(self, *, rendered: bool = True) -> list[list[Any]]:
        """Body rows: the row key, then one cell per column key."""
        body: list[list[Any]] = []
        for row_key in self.cells:
            if rendered:
                cells: list[Any] = [self.render(row_key, col) for col in self.column_keys]
            else:
                cells = [self.cells[row_key].get(col, EMPTY_CELL) for col in self.column_keys]
            body.append([row_key, *cells])
        return body

    def to_frame(self) -> pd.DataFrame:
        """Rendered table indexed by row key."""
        return pd.DataFrame(
            [row[1:] for row in self.to_rows()],
            index=pd.Index(self.row_keys, name=self.row_field),
            columns=list(self.column_keys),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "row_field": self.row_field,
            "column_field": self.column_field,
            "value_field": self.value_field,
            "column_keys": list(self.column_keys),
            "cells": {row: dict(cols) for row, cols in self.cells.items()},
        }


def is_date_column(dataset: Dataset, column: str) -> bool:
    """A column counts as a date column by name (the word "date") or by its values."""
    if _DATE_NAME_RE.search(column):
        return True
    return infer_column_type(dataset.column_values(column)) == "date"


def converts_to_working_days(value_field: str) -> bool:
    return "hours" in value_field.lower()


def compute_pivot(
    dataset: Dataset,
    row_field: str | None,
    column_field: str | None,
    value_field: str | None,
    filter_text: str = "",
    date_grouping: PivotDateGrouping = "none",
    working_days: bool = False,
    date_column: bool | None = None,
) -> PivotResult | None:
    """Sum *value_field* per (row key, column key).

    Returns ``None`` until all three fields are chosen.  Rows are first
    filtered by *filter_text* against every cell.  When the column field is
    a date column and *date_grouping* is ``month``/``year`` the column key
    becomes ``YYYY-MM``/``YYYY``.  With *working_days* on and a value field
    named like "hours", every value is divided by 8.
    """
    if date_grouping not in PIVOT_DATE_GROUPINGS:
        raise ValueError(f"Invalid date grouping: {date_grouping!r}. Use none/month/year.")
    if not row_field or not column_field or not value_field:
        return None
    for name in (row_field, column_field, value_field):
        if name not in dataset.columns:
            raise ValueError(f"Unknown column: {name!r}")

    if date_column is None:
        date_column = is_date_column(dataset, column_field)
    bucket = date_column and date_grouping != "none"
    divisor = HOURS_PER_WORKING_DAY if working_days and converts_to_working_days(value_field) else 1

    result = PivotResult(row_field=row_field, column_field=column_field, value_field=value_field)
    seen_columns: dict[str, None] = {}
    for row in filter_rows(dataset.rows, {}, filter_text):
        row_key = cell_text(row[row_field])
        col_key = cell_text(row[column_field])
        if bucket:
            col_key = date_key(col_key, date_grouping)

        value = to_number(row[value_field]) / divisor

        row_cells = result.cells.setdefault(row_key, {})
        row_cells[col_key] = row_cells.get(col_key, 0.0) + value
        seen_columns.setdefault(col_key, None)

    result.column_keys = list(seen_columns)
    return result
