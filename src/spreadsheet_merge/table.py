"""Table engine for the merged dataset."""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import date
from operator import itemgetter
from pathlib import Path
from typing import Any, Literal

from spreadsheet_merge import EXPORT_CSV_NAME, EXPORT_XLSX_NAME, PAGE_SIZES
from spreadsheet_merge.dates import is_iso_date, parse_date
from spreadsheet_merge.models import Cell, Dataset, Row
from spreadsheet_merge.report import csv_text, write_csv, write_xlsx, xlsx_bytes
from spreadsheet_merge.utils import cell_text, contains_text, to_number

ColumnType = Literal["numeric", "date", "string"]
SortDirection = Literal["asc", "desc"]
COLUMN_TYPES: tuple[str, ...] = ("numeric", "date", "string")

# ── Column typing + comparators ──────────────────────────────────


def _is_number(value: Cell) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def infer_column_type(values: Iterable[Cell]) -> ColumnType:
    """``numeric`` / ``date`` when every non-null cell agrees, else ``string``."""
    kinds: set[str] = set()
    for value in values:
        if value is None:
            continue
        if _is_number(value):
            kinds.add("numeric")
        elif is_iso_date(value):
            kinds.add("date")
        else:
            return "string"
        if len(kinds) > 1:
            return "string"
    return "numeric" if kinds == {"numeric"} else "date" if kinds == {"date"} else "string"


def _numeric_key(value: Cell) -> float | None:
    if value is None:
        return None
    return float(value) if _is_number(value) else to_number(value)


def _date_key(value: Cell) -> date | None:
    return parse_date(value)


def _string_key(value: Cell) -> str | None:
    return None if value is None else cell_text(value)


_SORT_KEYS: dict[str, Callable[[Cell], Any]] = {
    "numeric": _numeric_key,
    "date": _date_key,
    "string": _string_key,
}


def sort_rows(
    rows: Sequence[Row],
    column: str,
    direction: SortDirection = "asc",
    column_type: ColumnType = "string",
) -> list[Row]:
    """Stable sort on *column*; cells without a sort key always go last."""
    if direction not in ("asc", "desc"):
        raise ValueError(f"Invalid sort direction: {direction!r}. Use asc/desc.")
    key_fn = _SORT_KEYS[column_type]
    keyed: list[tuple[Any, Row]] = []
    missing: list[Row] = []
    for row in rows:
        key = key_fn(row.get(column))
        if key is None:
            missing.append(row)
        else:
            keyed.append((key, row))
    keyed.sort(key=itemgetter(0), reverse=direction == "desc")
    return [row for _key, row in keyed] + missing


def filter_rows(rows: Sequence[Row], filters: Mapping[str, str], search: str = "") -> list[Row]:
    """Column filters first, then the global search; all case-insensitive."""
    result = list(rows)
    for column, needle in filters.items():
        if needle:
            result = [row for row in result if contains_text(row.get(column), needle)]
    if search:
        result = [row for row in result if any(contains_text(v, search) for v in row.values())]
    return result


# ── Engine ───────────────────────────────────────────────────────


class TableEngine:
    """View state over a final dataset; the dataset itself is never modified.

    Filter and search edits go back to page 1, sort changes keep the page.
    """

    def __init__(
        self,
        dataset: Dataset,
        page_size: int = PAGE_SIZES[0],
        column_types: Mapping[str, str] | None = None,
    ) -> None:
        self.dataset = dataset
        self._filters: dict[str, str] = {}
        self._search = ""
        self._sort_column: str | None = None
        self._sort_direction: SortDirection = "asc"
        self._page = 1
        self._page_size = self._check_page_size(page_size)
        # filtered + sorted rows for the current state, keyed on the dataset
        self._view: tuple[Dataset, list[Row]] | None = None
        self._column_types: dict[str, ColumnType] = {}
        for column, kind in (column_types or {}).items():
            self._require_column(column)
            if kind not in COLUMN_TYPES:
                raise ValueError(f"Invalid column type for {column!r}: {kind!r}")
            self._column_types[column] = kind  # type: ignore[assignment]

    # -- helpers --------------------------------------------------

    @staticmethod
    def _check_page_size(size: int) -> int:
        if size not in PAGE_SIZES:
            allowed = ", ".join(str(s) for s in PAGE_SIZES)
            raise ValueError(f"Invalid page size: {size!r}. Use one of {allowed}.")
        return size

    def _require_column(self, column: str) -> None:
        if column not in self.dataset.columns:
            raise ValueError(f"Unknown column: {column!r}")

    def _view_changed(self) -> None:
        self._view = None

    def _view_rows(self) -> list[Row]:
        if self._view is not None and self._view[0] is self.dataset:
            return self._view[1]
        result = filter_rows(self.dataset.rows, self._filters, self._search)
        if self._sort_column is not None:
            result = sort_rows(
                result,
                self._sort_column,
                self._sort_direction,
                self.column_type(self._sort_column),
            )
        self._view = (self.dataset, result)
        return result

    # -- state ----------------------------------------------------

    @property
    def columns(self) -> list[str]:
        return list(self.dataset.columns)

    @property
    def filters(self) -> dict[str, str]:
        return dict(self._filters)

    @property
    def search(self) -> str:
        return self._search

    @property
    def sort_column(self) -> str | None:
        return self._sort_column

    @property
    def sort_direction(self) -> SortDirection:
        return self._sort_direction

    @property
    def page(self) -> int:
        return self._page

    @property
    def page_size(self) -> int:
        return self._page_size

    def column_type(self, column: str) -> ColumnType:
        self._require_column(column)
        if column not in self._column_types:
            self._column_types[column] = infer_column_type(self.dataset.column_values(column))
        return self._column_types[column]

    def set_filter(self, column: str, needle: str) -> None:
        self._require_column(column)
        if needle:
            self._filters[column] = needle
        else:
            self._filters.pop(column, None)
        self._view_changed()
        self._page = 1

    def clear_filters(self) -> None:
        self._filters.clear()
        self._view_changed()
        self._page = 1

    def set_search(self, needle: str) -> None:
        self._search = needle
        self._view_changed()
        self._page = 1

    def sort_by(self, column: str, direction: SortDirection = "asc") -> None:
        self._require_column(column)
        if direction not in ("asc", "desc"):
            raise ValueError(f"Invalid sort direction: {direction!r}. Use asc/desc.")
        self._sort_column = column
        self._sort_direction = direction
        self._view_changed()

    def toggle_sort(self, column: str) -> None:
        """Same column flips the direction; a new column starts ascending."""
        if column == self._sort_column:
            self._sort_direction = "desc" if self._sort_direction == "asc" else "asc"
            self._view_changed()
        else:
            self.sort_by(column, "asc")

    def clear_sort(self) -> None:
        self._sort_column = None
        self._sort_direction = "asc"
        self._view_changed()

    def set_page_size(self, size: int) -> None:
        self._page_size = self._check_page_size(size)
        self._page = 1

    def go_to_page(self, page: int) -> None:
        self._page = min(max(page, 1), max(self.total_pages, 1))

    def next_page(self) -> None:
        if self.has_next:
            self._page += 1

    def previous_page(self) -> None:
        if self.has_previous:
            self._page -= 1

    # -- derived views --------------------------------------------

    @property
    def rows(self) -> list[Row]:
        """Filtered and sorted rows, before pagination."""
        return list(self._view_rows())

    @property
    def total_rows(self) -> int:
        return len(self._view_rows())

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_rows / self._page_size)

    @property
    def has_previous(self) -> bool:
        return self._page > 1

    @property
    def has_next(self) -> bool:
        return self._page < self.total_pages

    @property
    def page_rows(self) -> list[Row]:
        start = (self._page - 1) * self._page_size
        return self._view_rows()[start:start + self._page_size]

    def visible_dataset(self) -> Dataset:
        """Current filtered + sorted rows as a dataset (for visualisation)."""
        return Dataset(columns=self.dataset.columns, rows=tuple(self._view_rows()))

    # -- export ---------------------------------------------------

    def xlsx_bytes(self) -> bytes:
        return xlsx_bytes(self.columns, self._view_rows())

    def csv_text(self) -> str:
        return csv_text(self.columns, self._view_rows())

    def export_xlsx(self, out_dir: Path, name: str = EXPORT_XLSX_NAME) -> Path:
        return write_xlsx(Path(out_dir) / name, self.columns, self._view_rows())

    def export_csv(self, out_dir: Path, name: str = EXPORT_CSV_NAME) -> Path:
        return write_csv(Path(out_dir) / name, self.columns, self._view_rows())
