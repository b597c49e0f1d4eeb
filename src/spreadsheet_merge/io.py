"""I/O helpers — decode input files into cell grids, read/write JSON artifacts."""

from __future__ import annotations

import csv
import json
import re
import zipfile
from datetime import date, datetime, time
from io import BytesIO
from pathlib import Path
from typing import Any, Callable, cast

import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException

from spreadsheet_merge.models import Cell

Grid = list[list[Cell]]

EXCEL_SUFFIXES = (".xlsx", ".xlsm", ".xltx", ".xltm")
SUPPORTED_SUFFIXES = (".csv", ".xls", *EXCEL_SUFFIXES)

_INT_TOKEN_RE = re.compile(r"^[+-]?(0|[1-9]\d*)$")
_FLOAT_TOKEN_RE = re.compile(r"^[+-]?(0|[1-9]\d*)?\.\d+([eE][+-]?\d+)?$|^[+-]?(0|[1-9]\d*)[eE][+-]?\d+$")

# ── Cell normalisation ───────────────────────────────────────────


def _grid_cell(val: Any) -> Cell:
    if val is None:
        return None
    try:
        if pd.isna(val):
            return None
    except (TypeError, ValueError):
        pass

    if isinstance(val, bool):
        return "TRUE" if val else "FALSE"
    if isinstance(val, (datetime, pd.Timestamp)):
        # date cells keep the calendar day only, like floored serials
        return val.date().isoformat()
    if isinstance(val, (date, time)):
        return val.isoformat()
    if isinstance(val, (str, int, float)):
        return val
    item = getattr(val, "item", None)
    if callable(item):
        return _grid_cell(item())
    return str(val)


def _csv_cell(val: Any) -> Cell:
    """CSV cells arrive as text; plain numeric tokens become numbers."""
    cell = _grid_cell(val)
    if not isinstance(cell, str):
        return cell
    token = cell.strip()
    if _INT_TOKEN_RE.match(token):
        return int(token)
    if _FLOAT_TOKEN_RE.match(token):
        return float(token)
    return cell


def _frame_to_grid(df: pd.DataFrame, convert: Callable[[Any], Cell] = _grid_cell) -> Grid:
    return [[convert(val) for val in row] for row in df.itertuples(index=False, name=None)]


# ── Decoding ─────────────────────────────────────────────────────


def _source(data: Path | bytes) -> Path | BytesIO:
    return BytesIO(data) if isinstance(data, bytes) else data


def _read_csv(data: Path | bytes, label: str, delimiter: str | None) -> Grid:
    last_exc: Exception | None = None
    separators: list[str | None] = [delimiter] if delimiter else [None, ","]
    for encoding in ("utf-8-sig", "utf-8", "latin-1"):
        for sep in separators:
            try:
                df = pd.read_csv(
                    _source(data),
                    header=None,
                    dtype="string",
                    sep=sep,
                    engine="c" if sep else "python",
                    encoding=encoding,
                    encoding_errors="strict",
                    keep_default_na=False,
                    na_values=[""],
                )
                return _frame_to_grid(df, _csv_cell)
            except pd.errors.EmptyDataError:
                return []
            except csv.Error as exc:
                # sniffer could not pick a delimiter; retry with a comma
                last_exc = exc
            except (UnicodeDecodeError, pd.errors.ParserError) as exc:
                last_exc = exc
                break
    raise ValueError(f"Could not read CSV {label} (decode or parse failed)") from last_exc


def _read_workbook(data: Path | bytes, label: str, engine: str) -> dict[str, Grid]:
    read_excel = cast(Callable[..., dict[str, pd.DataFrame]], getattr(pd, "read_excel"))
    try:
        sheets = read_excel(
            _source(data), engine=engine, header=None, sheet_name=None, dtype=object
        )
    except (ValueError, KeyError, OSError, zipfile.BadZipFile, InvalidFileException) as exc:
        raise ValueError(f"Could not read workbook {label}: {exc}") from exc
    return {str(name): _frame_to_grid(df) for name, df in sheets.items()}


def _decode(data: Path | bytes, suffix: str, label: str, delimiter: str | None) -> dict[str, Grid]:
    if suffix == ".csv":
        return {Path(label).stem or "Sheet1": _read_csv(data, label, delimiter)}

    if suffix in EXCEL_SUFFIXES:
        return _read_workbook(data, label, "openpyxl")

    if suffix == ".xls":
        try:
            return _read_workbook(data, label, "xlrd")
        except ImportError as exc:
            raise ValueError(
                "Unsupported .xls input unless 'xlrd' is installed. "
                "Either convert to .xlsx or add dependency: pip install xlrd"
            ) from exc

    raise ValueError(
        f"Unsupported file type: {suffix!r}. Use one of {', '.join(SUPPORTED_SUFFIXES)}"
    )


def load_grid(path: Path, delimiter: str | None = None) -> dict[str, Grid]:
    """Decode a CSV or workbook into ``{sheet_name: rows of cells}``.

    Sheets keep workbook order; a CSV yields a single sheet.

    Raises
    ------
    FileNotFoundError
        If *path* does not exist.
    ValueError
        If *path* is a directory, the extension is not supported, or
        decoding fails.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")
    if path.is_dir():
        raise ValueError(f"Input path is a directory, not a file: {path}")
    return _decode(path, path.suffix.lower(), str(path), delimiter)


def load_grid_bytes(name: str, data: bytes, delimiter: str | None = None) -> dict[str, Grid]:
    """Same as :func:`load_grid` for an in-memory upload named *name*."""
    return _decode(bytes(data), Path(name).suffix.lower(), name, delimiter)


# ── JSON ─────────────────────────────────────────────────────────


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    item = getattr(obj, "item", None)
    if callable(item):
        converted = item()
        if isinstance(converted, (str, int, float, bool)) or converted is None:
            return converted
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def write_json(path: Path, data: Any, *, sort_keys: bool = True) -> Path:
    """Write *data* as pretty-printed JSON to *path* (atomic + deterministic).

    Pass ``sort_keys=False`` where key order carries meaning (row columns).
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    payload = json.dumps(
        data,
        indent=2,
        sort_keys=sort_keys,
        ensure_ascii=False,
        allow_nan=False,
        default=_json_default,
    ) + "\n"
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(payload, encoding="utf-8")
    tmp_path.replace(path)
    return path


def read_json(path: Path) -> Any:
    """Load a JSON artifact written by :func:`write_json`."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in {path}: {exc}") from exc
