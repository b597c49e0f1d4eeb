"""Data models shared across the package."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from numbers import Integral
from typing import Any

import pandas as pd

Cell = str | int | float | None
Row = dict[str, Cell]


def _to_non_negative_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, Integral):
        raise TypeError(f"{field_name} must be an integer")
    result = int(value)
    if result < 0:
        raise ValueError(f"{field_name} must be >= 0")
    return result


def _to_string_list(values: Sequence[Any] | None, field_name: str) -> list[str]:
    if values is None:
        return []
    if isinstance(values, str):
        raise TypeError(f"{field_name} must be a sequence of strings")
    normalized: list[str] = []
    for item in values:
        if not isinstance(item, str):
            raise TypeError(f"{field_name} items must be strings")
        normalized.append(item)
    return normalized


def _check_cell(value: Any, where: str) -> Cell:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{where} must be a string, number or None, got {type(value).__name__}")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"{where} must be a finite number")
    return value


def _normalize_rows(
    rows: Iterable[Mapping[str, Any]], columns: tuple[str, ...], owner: str
) -> tuple[Row, ...]:
    expected = set(columns)
    normalized: list[Row] = []
    for idx, row in enumerate(rows):
        if not isinstance(row, Mapping):
            raise TypeError(f"{owner} rows[{idx}] must be a mapping")
        keys = set(row)
        if keys != expected:
            missing = sorted(expected - keys)
            extra = sorted(str(k) for k in keys - expected)
            raise ValueError(
                f"{owner} rows[{idx}] does not match columns "
                f"(missing: {missing or 'none'}, unexpected: {extra or 'none'})"
            )
        normalized.append(
            {col: _check_cell(row[col], f"{owner} rows[{idx}][{col!r}]") for col in columns}
        )
    return tuple(normalized)


@dataclass(frozen=True)
class ParsedFile:
    """One decoded input file: its header row and the rows zipped against it."""

    name: str
    headers: tuple[str, ...] = ()
    rows: tuple[Row, ...] = ()

    def __post_init__(self) -> None:
        headers = tuple(_to_string_list(self.headers, "headers"))
        object.__setattr__(self, "headers", headers)
        object.__setattr__(self, "rows", _normalize_rows(self.rows, headers, self.name))

    @property
    def row_count(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class Dataset:
    """An ordered row-set over a fixed, unique column list.

    Contract invariant: every row carries exactly ``columns`` as keys (absent
    values are ``None``), in column order.  Used for both the merged dataset
    and the remapped final dataset; never mutated after construction.
    """

    columns: tuple[str, ...] = ()
    rows: tuple[Row, ...] = ()

    def __post_init__(self) -> None:
        columns = tuple(_to_string_list(self.columns, "columns"))
        duplicates = sorted({c for c in columns if columns.count(c) > 1})
        if duplicates:
            raise ValueError(f"Duplicate column names: {', '.join(duplicates)}")
        object.__setattr__(self, "columns", columns)
        object.__setattr__(self, "rows", _normalize_rows(self.rows, columns, "dataset"))

    def __len__(self) -> int:
        return len(self.rows)

    def column_values(self, name: str) -> list[Cell]:
        if name not in self.columns:
            raise KeyError(f"Unknown column: {name!r}")
        return [row[name] for row in self.rows]

    def to_records(self) -> list[Row]:
        """Return the rows as fresh dicts the caller may modify."""
        return [dict(row) for row in self.rows]

    def to_dict(self) -> dict[str, Any]:
        return {"columns": list(self.columns), "rows": self.to_records()}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Dataset:
        if not isinstance(payload, Mapping):
            raise TypeError("dataset payload must be a mapping")
        if "columns" not in payload or "rows" not in payload:
            raise ValueError("dataset payload needs 'columns' and 'rows'")
        return cls(columns=tuple(payload["columns"]), rows=tuple(payload["rows"]))

    def to_frame(self) -> pd.DataFrame:
        if not self.rows:
            return pd.DataFrame(columns=list(self.columns))
        return pd.DataFrame(self.to_records(), columns=list(self.columns))


@dataclass
class MergeReport:
    """Summary of one merge run, written as ``merge_report.json``.

    Contract invariant: ``files_in == files_parsed + len(files_failed)``.
    """

    files_in: int = 0
    files_parsed: int = 0
    rows_out: int = 0
    columns: list[str] = field(default_factory=list)
    files_failed: list[str] = field(default_factory=list)
    collisions: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.files_in = _to_non_negative_int(self.files_in, "files_in")
        self.files_parsed = _to_non_negative_int(self.files_parsed, "files_parsed")
        self.rows_out = _to_non_negative_int(self.rows_out, "rows_out")
        self.columns = _to_string_list(self.columns, "columns")
        self.files_failed = _to_string_list(self.files_failed, "files_failed")
        self.collisions = _to_string_list(self.collisions, "collisions")
        self.warnings = _to_string_list(self.warnings, "warnings")
        if self.files_parsed + len(self.files_failed) != self.files_in:
            raise ValueError("files_failed must account for every file not parsed")

    def to_dict(self) -> dict[str, Any]:
        return {
            "files_in": self.files_in,
            "files_parsed": self.files_parsed,
            "rows_out": self.rows_out,
            "columns": list(self.columns),
            "files_failed": list(self.files_failed),
            "collisions": list(self.collisions),
            "warnings": list(self.warnings),
        }


@dataclass
class RunManifest:
    """Audit-trail manifest for a single merge run."""

    tool: str = "spreadsheet-merge"
    version: str = ""
    inputs: list[dict[str, Any]] = field(default_factory=list)
    output_dir: str = ""
    created_at_utc: str = ""
    rows_out: int = 0
    status: str = "success"
    error_code: int | None = None
    error_message: str = ""

    def __post_init__(self) -> None:
        self.rows_out = _to_non_negative_int(self.rows_out, "rows_out")
        if self.status not in {"success", "failed"}:
            raise ValueError("status must be 'success' or 'failed'")
        if self.error_code is not None:
            self.error_code = _to_non_negative_int(self.error_code, "error_code")

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool": self.tool,
            "version": self.version,
            "inputs": [dict(item) for item in self.inputs],
            "output_dir": self.output_dir,
            "created_at_utc": self.created_at_utc,
            "rows_out": self.rows_out,
            "status": self.status,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }
