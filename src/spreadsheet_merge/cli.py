"""CLI entry point for spreadsheet-merge."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from enum import Enum
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table as RichTable

from spreadsheet_merge import PAGE_SIZES, SESSION_FILE_NAME, __version__
from spreadsheet_merge.chart import build_chart_data
from spreadsheet_merge.ingest import IngestResult, ingest_files
from spreadsheet_merge.io import write_json
from spreadsheet_merge.merge import ColumnRemapper, column_presence, merge_files
from spreadsheet_merge.models import Dataset, MergeReport, Row, RunManifest
from spreadsheet_merge.pivot import compute_pivot
from spreadsheet_merge.qc import write_merge_report
from spreadsheet_merge.report import write_pivot_xlsx
from spreadsheet_merge.session import Session
from spreadsheet_merge.table import TableEngine
from spreadsheet_merge.utils import cell_text, sha256_file, utcnow_iso

app = typer.Typer(
    name="smerge",
    help="spreadsheet-merge — Merge spreadsheets with different columns and explore the result.",
    add_completion=False,
    no_args_is_help=True,
)
console = Console()


class OutputFormat(str, Enum):
    xlsx = "xlsx"
    csv = "csv"
    both = "both"


class PivotGrouping(str, Enum):
    none = "none"
    month = "month"
    year = "year"


class ChartGrouping(str, Enum):
    day = "day"
    month = "month"
    year = "year"


class ChartKind(str, Enum):
    line = "line"
    area = "area"
    groupedBar = "groupedBar"
    stackedBar = "stackedBar"
    bar = "bar"
    pie = "pie"
    donut = "donut"
    bubble = "bubble"


def _noop(*_args: object, **_kwargs: object) -> None:
    return None


def _printer(quiet: bool) -> Callable[..., None]:
    return _noop if quiet else console.print


def _err(msg: str) -> None:
    console.print(f"[red]x[/red] {msg}")


def _configure_logging(*, verbose: bool = False, quiet: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    handler = RichHandler(console=console, show_time=False, show_path=False)
    logging.basicConfig(level=level, format="%(message)s", handlers=[handler], force=True)


# ── Helpers ──────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"spreadsheet-merge v{__version__}")
        raise typer.Exit()


def _parse_pairs(raw: Sequence[str] | None, option: str, left: str, right: str) -> list[tuple[str, str]]:
    pairs: list[tuple[str, str]] = []
    for item in raw or []:
        if "=" not in item:
            raise ValueError(f"Invalid {option} value: {item!r}  (expected {left}={right})")
        key, value = item.split("=", 1)
        if not key.strip():
            raise ValueError(f"{option} entries must have a non-empty {left} ({left}={right})")
        pairs.append((key.strip(), value))
    return pairs


def _parse_column_map(raw: list[str] | None, *, quiet: bool = False) -> dict[str, str]:
    """Parse ``--map new=original`` pairs into ``{original: new}``."""
    mapping: dict[str, str] = {}
    for new_name, original in _parse_pairs(raw, "--map", "new", "original"):
        original = original.strip()
        if not original:
            raise ValueError("--map entries must have non-empty new and original names (new=original)")
        if original in mapping and not quiet:
            console.print(f"[yellow]![/yellow] Overriding mapping for column {original!r}")
        mapping[original] = new_name
    return mapping


def _parse_filters(raw: list[str] | None) -> dict[str, str]:
    """Parse ``--filter column=needle`` pairs."""
    return dict(_parse_pairs(raw, "--filter", "column", "needle"))


def _load_profile_map(profile: Path | None) -> list[str]:
    """Return list of ``new=original`` strings from a profile file."""
    if not profile:
        return []
    if not profile.exists():
        raise ValueError(f"Profile not found: {profile} (expected lines like Amount=Total)")
    if profile.is_dir():
        raise ValueError(f"Profile is a directory, not a file: {profile}")
    try:
        text = profile.read_text(encoding="utf-8")
    except OSError as exc:
        raise ValueError(f"Cannot read profile {profile}: {exc}") from exc

    lines: list[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        lines.append(stripped)
    return lines


def _format_collisions(collisions: dict[str, list[str]]) -> list[str]:
    return [
        f"{target} (source: {' + '.join(sources)})"
        for target, sources in collisions.items()
    ]


def _input_entries(inputs: Sequence[Path], ingested: IngestResult | None) -> list[dict[str, Any]]:
    rows_by_key: dict[str, int] = {}
    if ingested is not None:
        rows_by_key = {key: parsed.row_count for key, parsed in zip(ingested.keys, ingested.files)}

    entries: list[dict[str, Any]] = []
    for path in inputs:
        sha256 = ""
        try:
            sha256 = sha256_file(path)
        except OSError:
            pass
        entries.append(
            {
                "path": str(path.resolve()),
                "sha256": sha256,
                "rows": rows_by_key.get(str(path)),
            }
        )
    return entries


def _write_manifest(
    out_dir: Path,
    inputs: Sequence[Path],
    created_at: str,
    *,
    rows_out: int = 0,
    ingested: IngestResult | None = None,
    status: str = "success",
    error_code: int | None = None,
    error_message: str = "",
) -> Path:
    manifest = RunManifest(
        version=__version__,
        inputs=_input_entries(inputs, ingested),
        output_dir=str(out_dir.resolve()),
        created_at_utc=created_at,
        rows_out=rows_out,
        status=status,
        error_code=error_code,
        error_message=error_message,
    )
    return write_json(out_dir / "run_manifest.json", manifest.to_dict())


def _failed_inputs(inputs: Sequence[Path], ingested: IngestResult | None) -> list[str]:
    """Inputs that did not parse, including any never read."""
    parsed = set(ingested.keys) if ingested is not None else set()
    return sorted(str(path) for path in inputs if str(path) not in parsed)


def _write_failure_artifacts(
    out_dir: Path,
    inputs: Sequence[Path],
    created_at: str,
    *,
    message: str,
    ingested: IngestResult | None = None,
    error_code: int = 2,
) -> tuple[Path, Path]:
    report = MergeReport(
        files_in=len(inputs),
        files_parsed=len(ingested.files) if ingested is not None else 0,
        files_failed=_failed_inputs(inputs, ingested),
        warnings=[message],
    )
    report_path = write_merge_report(out_dir, report)
    manifest_path = _write_manifest(
        out_dir,
        inputs,
        created_at,
        ingested=ingested,
        status="failed",
        error_code=error_code,
        error_message=message,
    )
    return report_path, manifest_path


def _fail(
    out_dir: Path,
    inputs: Sequence[Path],
    created_at: str,
    message: str,
    *,
    ingested: IngestResult | None = None,
    error_code: int = 2,
) -> typer.Exit:
    report_path, manifest_path = _write_failure_artifacts(
        out_dir,
        inputs,
        created_at,
        message=message,
        ingested=ingested,
        error_code=error_code,
    )
    _err(message)
    console.print(f"  Merge report -> {report_path}")
    console.print(f"  Manifest     -> {manifest_path}")
    return typer.Exit(code=error_code)


def _rows_table(title: str, columns: Sequence[str], rows: Sequence[Row]) -> RichTable:
    tbl = RichTable(title=title, show_lines=False)
    for col in columns:
        tbl.add_column(col)
    for row in rows:
        tbl.add_row(*(cell_text(row.get(col)) for col in columns))
    return tbl


def _load_session(path: Path) -> Session:
    try:
        return Session.load(path)
    except (FileNotFoundError, ValueError, TypeError) as exc:
        _err(str(exc))
        console.print("  Hint: run `smerge merge` first to create a session file")
        raise typer.Exit(code=2)


def _visual_dataset(session: Session) -> Dataset:
    if session.has_visualization:
        return session.visualization()
    try:
        return session.final()
    except ValueError as exc:
        _err(str(exc))
        raise typer.Exit(code=2)


# ── Callbacks ────────────────────────────────────────────────────


@app.callback()
def main(
    version: bool | None = typer.Option(
        None, "--version", "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """spreadsheet-merge CLI."""


# ── headers command ──────────────────────────────────────────────


@app.command()
def headers(
    inputs: list[Path] = typer.Option(
        ..., "--input", "-i",
        help="Spreadsheet to inspect (repeat for several files).",
        exists=True, readable=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging."),
) -> None:
    """Show which columns of the combined schema each file carries."""
    inputs = list(dict.fromkeys(inputs))
    _configure_logging(verbose=verbose)
    ingested = ingest_files(inputs)
    presence = column_presence(ingested.files)

    if not presence:
        _err("No file could be parsed.")
        raise typer.Exit(code=2)

    names = list(presence)
    schema = list(next(iter(presence.values())))
    tbl = RichTable(title="Column Headers", show_lines=True)
    tbl.add_column("Column", style="bold")
    for name in names:
        tbl.add_column(name, justify="center")
    for col in schema:
        tbl.add_row(col, *("[green]yes[/green]" if presence[n][col] else "[dim]-[/dim]" for n in names))
    console.print(tbl)
    for key, message in ingested.errors.items():
        _err(f"{key}: {message}")


# ── merge command ────────────────────────────────────────────────


@app.command()
def merge(
    inputs: list[Path] = typer.Option(
        ..., "--input", "-i",
        help="Spreadsheet to merge (repeat for several files; CSV or XLSX).",
        exists=True, readable=True,
    ),
    out_dir: Path = typer.Option(
        Path("output"), "--out-dir", "-o",
        help="Output directory for exports, session, report + manifest.",
    ),
    col_map: list[str] | None = typer.Option(
        None, "--map", "-m",
        help="Column rename: new=original. E.g. --map Amount=Total --map Amount=Sum",
    ),
    profile: Path | None = typer.Option(
        None, "--profile",
        help="Profile file containing column renames (new=original lines).",
    ),
    filters: list[str] | None = typer.Option(
        None, "--filter", "-f",
        help="Column filter: column=text (case-insensitive substring).",
    ),
    search: str = typer.Option("", "--search", "-s", help="Keep rows where any cell contains this text."),
    sort: str | None = typer.Option(None, "--sort", help="Column to sort the export by."),
    descending: bool = typer.Option(False, "--descending", help="Sort descending."),
    output_format: OutputFormat = typer.Option(
        OutputFormat.both, "--format",
        help="Export format: xlsx, csv or both.",
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q",
        help="Suppress informational output; still writes all artifacts.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging."),
) -> None:
    """Merge spreadsheets over their combined columns and export the result."""
    inputs = list(dict.fromkeys(inputs))
    _configure_logging(verbose=verbose, quiet=quiet)
    echo = _printer(quiet)
    created_at = utcnow_iso()
    out_dir.mkdir(parents=True, exist_ok=True)
    try:
        mapping = _parse_column_map(_load_profile_map(profile) + (col_map or []), quiet=quiet)
        column_filters = _parse_filters(filters)
    except ValueError as exc:
        raise _fail(out_dir, inputs, created_at, str(exc))

    if not quiet:
        console.print(Panel(
            f"[bold]spreadsheet-merge[/bold] v{__version__}\n"
            f"Inputs: {len(inputs)} file(s)\nOutput: {out_dir}",
            title="Merge Start", border_style="blue",
        ))
        if profile:
            console.print(f"  Using profile: {profile}")
        if mapping:
            console.print(f"  Column map: {mapping}")

    # ── Load ─────────────────────────────────────────────────────
    echo("[blue]>[/blue] Reading input files …")
    ingested = ingest_files(inputs)
    for parsed in ingested.files:
        echo(f"  {parsed.name}: {parsed.row_count} rows x {len(parsed.headers)} columns")
    if not ingested.files:
        raise _fail(out_dir, inputs, created_at, "No input file could be parsed.", ingested=ingested)

    try:
        # ── Merge + remap ────────────────────────────────────────
        echo("[blue]>[/blue] Merging …")
        merged = merge_files(ingested.files)
        try:
            remapper = ColumnRemapper(merged, mapping)
        except ValueError as exc:
            raise _fail(out_dir, inputs, created_at, str(exc), ingested=ingested)
        final = remapper.final
        collisions = _format_collisions(remapper.collisions())
        echo(f"  {len(final)} rows x {len(final.columns)} columns")
        for line in collisions:
            echo(f"  [yellow]![/yellow] Merged columns: {line}")

        # ── Filter / sort ────────────────────────────────────────
        engine = TableEngine(final)
        try:
            for column, needle in column_filters.items():
                engine.set_filter(column, needle)
            engine.set_search(search)
            if sort:
                engine.sort_by(sort, "desc" if descending else "asc")
        except ValueError as exc:
            raise _fail(out_dir, inputs, created_at, str(exc), ingested=ingested)

        # ── Export ───────────────────────────────────────────────
        if output_format in (OutputFormat.xlsx, OutputFormat.both):
            echo(f"  Excel   -> {engine.export_xlsx(out_dir)}")
        if output_format in (OutputFormat.csv, OutputFormat.both):
            echo(f"  CSV     -> {engine.export_csv(out_dir)}")

        session = Session()
        session.store_final(final)
        session.store_visualization(engine.visible_dataset())
        echo(f"  Session -> {session.save(out_dir / SESSION_FILE_NAME)}")

        # ── Report + manifest ────────────────────────────────────
        warnings = [f"Could not read {key}: {msg}" for key, msg in ingested.errors.items()]
        report = MergeReport(
            files_in=len(inputs),
            files_parsed=len(ingested.files),
            rows_out=len(final),
            columns=list(final.columns),
            files_failed=_failed_inputs(inputs, ingested),
            collisions=collisions,
            warnings=warnings,
        )
        echo(f"  Report  -> {write_merge_report(out_dir, report)}")
        manifest_path = _write_manifest(
            out_dir, inputs, created_at, rows_out=len(final), ingested=ingested,
        )
        echo(f"  Manifest -> {manifest_path}")

        if not quiet:
            console.print(Panel(
                f"[green]Done[/green] — {len(final)} rows merged, "
                f"{engine.total_rows} rows exported",
                title="Merge Complete", border_style="green",
            ))
    except typer.Exit:
        raise
    except Exception as exc:
        raise _fail(
            out_dir,
            inputs,
            created_at,
            f"Unexpected internal error: {exc}",
            ingested=ingested,
            error_code=1,
        )


# ── view command ─────────────────────────────────────────────────


@app.command()
def view(
    session_path: Path = typer.Option(
        Path("output") / SESSION_FILE_NAME, "--session",
        help="Session file written by `smerge merge`.",
    ),
    page: int = typer.Option(1, "--page", "-p", help="Page to show (1-based)."),
    page_size: int = typer.Option(PAGE_SIZES[0], "--page-size", help="Rows per page: 10, 20 or 50."),
    filters: list[str] | None = typer.Option(
        None, "--filter", "-f", help="Column filter: column=text.",
    ),
    search: str = typer.Option("", "--search", "-s", help="Global search text."),
    sort: str | None = typer.Option(None, "--sort", help="Column to sort by."),
    descending: bool = typer.Option(False, "--descending", help="Sort descending."),
) -> None:
    """Page through the merged dataset with filters, search and sorting."""
    _configure_logging()
    session = _load_session(session_path)
    try:
        engine = TableEngine(session.final(), page_size=page_size)
        for column, needle in _parse_filters(filters).items():
            engine.set_filter(column, needle)
        engine.set_search(search)
        if sort:
            engine.sort_by(sort, "desc" if descending else "asc")
    except ValueError as exc:
        _err(str(exc))
        raise typer.Exit(code=2)

    engine.go_to_page(page)
    console.print(_rows_table("Merged Data", engine.columns, engine.page_rows))
    console.print(
        f"Page {engine.page} of {engine.total_pages}  "
        f"({engine.total_rows} rows)  "
        f"previous: {'yes' if engine.has_previous else 'no'}, "
        f"next: {'yes' if engine.has_next else 'no'}"
    )


# ── pivot command ────────────────────────────────────────────────


@app.command()
def pivot(
    session_path: Path = typer.Option(
        Path("output") / SESSION_FILE_NAME, "--session",
        help="Session file written by `smerge merge`.",
    ),
    row_field: str | None = typer.Option(None, "--rows", "-r", help="Row field."),
    column_field: str | None = typer.Option(None, "--columns", "-c", help="Column field."),
    value_field: str | None = typer.Option(None, "--values", help="Value field to sum."),
    filter_text: str = typer.Option("", "--filter", "-f", help="Keep rows where any cell contains this text."),
    date_grouping: PivotGrouping = typer.Option(
        PivotGrouping.none, "--date-grouping",
        help="Group a date column field by month or year.",
    ),
    working_days: bool = typer.Option(
        False, "--working-days",
        help="Show an hours value field as working days (hours / 8).",
    ),
    out: Path | None = typer.Option(None, "--out", help="Write the pivot to .xlsx or .json."),
) -> None:
    """Sum a value field by a row field and a column field."""
    _configure_logging()
    dataset = _visual_dataset(_load_session(session_path))
    try:
        result = compute_pivot(
            dataset,
            row_field,
            column_field,
            value_field,
            filter_text=filter_text,
            date_grouping=date_grouping.value,
            working_days=working_days,
        )
    except ValueError as exc:
        _err(str(exc))
        raise typer.Exit(code=2)

    if result is None:
        console.print("[yellow]![/yellow] Choose --rows, --columns and --values to build a pivot.")
        console.print(f"  Columns: {', '.join(dataset.columns)}")
        return

    tbl = RichTable(title="Pivot Table", show_lines=True)
    for name in result.header:
        tbl.add_column(name)
    for body_row in result.to_rows():
        tbl.add_row(*body_row)
    console.print(tbl)

    if out is not None:
        if out.suffix.lower() == ".json":
            write_json(out, result.to_dict(), sort_keys=False)
        else:
            write_pivot_xlsx(out, result.header, result.to_rows(rendered=False))
        console.print(f"  Pivot -> {out}")


# ── chart command ────────────────────────────────────────────────


@app.command()
def chart(
    session_path: Path = typer.Option(
        Path("output") / SESSION_FILE_NAME, "--session",
        help="Session file written by `smerge merge`.",
    ),
    kind: ChartKind = typer.Option(ChartKind.line, "--kind", "-k", help="Chart kind."),
    x_field: str | None = typer.Option(None, "--x", help="Category (x axis) field."),
    y_field: str | None = typer.Option(None, "--y", help="Series (y axis) field."),
    value_field: str | None = typer.Option(None, "--value", help="Value field to sum."),
    date_grouping: ChartGrouping = typer.Option(
        ChartGrouping.day, "--date-grouping",
        help="Date bucket for line, area and bar charts.",
    ),
    out: Path | None = typer.Option(None, "--out", help="Write chart data as JSON."),
) -> None:
    """Build chart-ready category records from the merged dataset."""
    _configure_logging()
    dataset = _visual_dataset(_load_session(session_path))
    try:
        data = build_chart_data(
            dataset, kind.value, x_field, y_field, value_field, date_grouping.value,
        )
    except ValueError as exc:
        _err(str(exc))
        raise typer.Exit(code=2)

    if data.is_empty:
        console.print("[yellow]![/yellow] Choose --x, --y and --value to build chart data.")
        console.print(f"  Columns: {', '.join(dataset.columns)}")
        return

    console.print(_rows_table(f"{kind.value} chart", [data.x_field, *data.series], data.records))
    if out is not None:
        write_json(out, data.to_dict(), sort_keys=False)
        console.print(f"  Chart data -> {out}")
