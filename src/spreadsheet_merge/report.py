"""Export writers — merged_data.xlsx / merged_data.csv and the pivot workbook."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from io import BytesIO
from pathlib import Path
from typing import Any

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from spreadsheet_merge.models import Row
from spreadsheet_merge.utils import cell_text

# ── Style constants ──────────────────────────────────────────────

HEADER_FONT = Font(name="Calibri", bold=True, size=11, color="FFFFFF")
HEADER_FILL = PatternFill(start_color="2F5496", end_color="2F5496", fill_type="solid")
HEADER_ALIGN = Alignment(horizontal="center", vertical="center", wrap_text=True)
LABEL_FONT = Font(name="Calibri", bold=True, size=11)
VALUE_FONT = Font(name="Calibri", size=11)

TWO_DP_FMT = "0.00"

DATA_SHEET = "Merged Data"
PIVOT_SHEET = "Pivot"

_AUTO_WIDTH_SAMPLE_ROWS = 300
_EXCEL_FORMULA_PREFIXES = ("=", "+", "-", "@")


# ── Helpers ──────────────────────────────────────────────────────


def _style_header(ws: Worksheet, ncols: int) -> None:
    for c in range(1, ncols + 1):
        cell = ws.cell(row=1, column=c)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = HEADER_ALIGN


def _auto_width(ws: Worksheet) -> None:
    max_row = min(ws.max_row, _AUTO_WIDTH_SAMPLE_ROWS + 1)  # include header row
    for c_idx in range(1, ws.max_column + 1):
        letter = get_column_letter(c_idx)
        width = 0
        for row in ws.iter_rows(min_row=1, max_row=max_row, min_col=c_idx, max_col=c_idx):
            cell = row[0]
            width = max(width, len(str(cell.value or "")))
        width += 4
        ws.column_dimensions[letter].width = min(width, 30)


def _excel_value(val: Any) -> Any:
    if isinstance(val, str):
        if val.startswith("'"):
            return val
        stripped = val.lstrip()
        if len(stripped) > 1 and stripped[0] in _EXCEL_FORMULA_PREFIXES:
            return f"'{val}"
    return val


def _fill_sheet(
    ws: Worksheet,
    header: Sequence[str],
    body: Iterable[Sequence[Any]],
    *,
    number_format: str | None = None,
) -> None:
    if not header:
        ws.cell(row=1, column=1, value="No data").font = VALUE_FONT
        ws.column_dimensions["A"].width = 18
        return

    for c_idx, name in enumerate(header, 1):
        ws.cell(row=1, column=c_idx, value=name)
    nrows = 0
    for r_idx, values in enumerate(body, 2):
        nrows += 1
        for c_idx, val in enumerate(values, 1):
            cell = ws.cell(row=r_idx, column=c_idx, value=_excel_value(val))
            if number_format and isinstance(val, (int, float)) and not isinstance(val, bool):
                cell.number_format = number_format
    _style_header(ws, len(header))
    ws.freeze_panes = "A2"
    if nrows:
        ws.auto_filter.ref = ws.dimensions
    _auto_width(ws)


def _new_workbook() -> Workbook:
    wb = Workbook()
    active_sheet = wb.active
    if active_sheet is not None:
        wb.remove(active_sheet)  # remove default sheet
    return wb


def _save_atomic(wb: Workbook, path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.stem}.tmp{path.suffix}")
    wb.save(tmp_path)
    tmp_path.replace(path)
    return path


# ── Public API ───────────────────────────────────────────────────


def build_workbook(columns: Sequence[str], rows: Iterable[Row], sheet_name: str = DATA_SHEET) -> Workbook:
    """One-sheet workbook holding *rows* under a styled header row."""
    wb = _new_workbook()
    ws = wb.create_sheet(title=sheet_name)
    _fill_sheet(ws, list(columns), ([row.get(col) for col in columns] for row in rows))
    return wb


def write_xlsx(path: Path, columns: Sequence[str], rows: Iterable[Row]) -> Path:
    """Write rows to *path* as a spreadsheet and return the path."""
    return _save_atomic(build_workbook(columns, rows), path)


def xlsx_bytes(columns: Sequence[str], rows: Iterable[Row]) -> bytes:
    buffer = BytesIO()
    build_workbook(columns, rows).save(buffer)
    return buffer.getvalue()


def csv_text(columns: Sequence[str], rows: Iterable[Row]) -> str:
    """Comma-separated text with standard quoting; empty cells stay empty."""
    body = [[cell_text(row.get(col)) for col in columns] for row in rows]
    frame = pd.DataFrame(body, columns=list(columns), dtype="object")
    return frame.to_csv(index=False, lineterminator="\n")


def write_csv(path: Path, columns: Sequence[str], rows: Iterable[Row]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(csv_text(columns, rows), encoding="utf-8")
    tmp_path.replace(path)
    return path


def write_pivot_xlsx(path: Path, header: Sequence[str], body: Iterable[Sequence[Any]]) -> Path:
    """Write a pivot table: row labels first, sums formatted to 2 decimals."""
    wb = _new_workbook()
    ws = wb.create_sheet(title=PIVOT_SHEET)
    _fill_sheet(ws, list(header), body, number_format=TWO_DP_FMT)
    for row in ws.iter_rows(min_row=2, max_row=ws.max_row, min_col=1, max_col=1):
        row[0].font = LABEL_FONT
    return _save_atomic(wb, path)
