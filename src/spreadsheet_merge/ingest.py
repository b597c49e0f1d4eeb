"""Turn decoded grids into parsed files and read many files at once."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError, as_completed
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path

from spreadsheet_merge.dates import is_serial_date, serial_to_iso
from spreadsheet_merge.io import load_grid, load_grid_bytes
from spreadsheet_merge.models import Cell, ParsedFile, Row
from spreadsheet_merge.utils import cell_text

logger = logging.getLogger(__name__)

EMPTY_HEADER = "__EMPTY"

# ── Row parsing ──────────────────────────────────────────────────


def normalize_cell(value: Cell) -> Cell:
    """Replace plausible date serial numbers with an ISO ``YYYY-MM-DD`` string."""
    if is_serial_date(value):
        return serial_to_iso(value)  # type: ignore[arg-type]
    return value


def _is_blank(cell: Cell) -> bool:
    return cell is None or cell == ""


def _grid_width(grid: Sequence[Sequence[Cell]]) -> int:
    width = 0
    for raw in grid:
        for idx in range(len(raw) - 1, width - 1, -1):
            if not _is_blank(raw[idx]):
                width = idx + 1
                break
    return width


def _unique_headers(raw: Sequence[Cell]) -> list[str]:
    """Stringify header cells; blanks become ``__EMPTY`` and repeats get ``_N``."""
    headers: list[str] = []
    used: set[str] = set()
    counters: dict[str, int] = {}
    for value in raw:
        base = cell_text(value) or EMPTY_HEADER
        name = base
        n = counters.get(base, 0)
        while name in used:
            n += 1
            name = f"{base}_{n}"
        counters[base] = n
        used.add(name)
        headers.append(name)
    return headers


def _pad(raw: Sequence[Cell], width: int) -> list[Cell]:
    cells = list(raw[:width])
    return cells + [None] * (width - len(cells))


def parse_grid(name: str, grid: Sequence[Sequence[Cell]]) -> ParsedFile:
    """Zip each grid row after the first against the header row.

    Fully blank rows are skipped; trailing columns that are blank
    everywhere are ignored.
    """
    width = _grid_width(grid)
    if width == 0:
        return ParsedFile(name=name)

    headers = _unique_headers(_pad(grid[0], width))
    rows: list[Row] = []
    for raw in grid[1:]:
        cells = _pad(raw, width)
        if all(_is_blank(cell) for cell in cells):
            continue
        rows.append({header: normalize_cell(cell) for header, cell in zip(headers, cells)})
    return ParsedFile(name=name, headers=tuple(headers), rows=tuple(rows))


def read_file(path: Path) -> ParsedFile:
    """Decode *path* and parse its first sheet."""
    path = Path(path)
    sheets = load_grid(path)
    grid = next(iter(sheets.values()), [])
    parsed = parse_grid(path.name, grid)
    logger.debug("Parsed %s: %d rows x %d columns", path.name, parsed.row_count, len(parsed.headers))
    return parsed


def read_bytes(name: str, data: bytes) -> ParsedFile:
    """Decode an in-memory upload and parse its first sheet."""
    sheets = load_grid_bytes(name, data)
    return parse_grid(name, next(iter(sheets.values()), []))


# ── Concurrent ingestion ─────────────────────────────────────────


@dataclass
class IngestResult:
    """Parsed files (with their ingestor keys) plus per-file error messages."""

    files: list[ParsedFile] = field(default_factory=list)
    keys: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    pending: list[str] = field(default_factory=list)


class FileIngestor:
    """Read files on a worker pool; every file is an independent task.

    Results are recorded as tasks finish, in whatever order that happens.
    A failing file only records an error.  Removing a file cancels its read
    if it has not started and discards its result otherwise.
    """

    def __init__(
        self,
        max_workers: int = 4,
        reader: Callable[[Path], ParsedFile] = read_file,
        on_parsed: Callable[[ParsedFile], None] | None = None,
    ) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ingest")
        self._reader = reader
        self._on_parsed = on_parsed
        self._lock = threading.Lock()
        self._order: list[str] = []
        self._pending: dict[str, Future[ParsedFile]] = {}
        self._parsed: dict[str, ParsedFile] = {}
        self._arrivals: list[str] = []
        self._errors: dict[str, str] = {}

    def __enter__(self) -> FileIngestor:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def add(self, path: Path, key: str | None = None) -> str:
        """Submit *path* for reading and return the key that identifies it."""
        path = Path(path)
        key = key or str(path)
        with self._lock:
            if key in self._order:
                raise ValueError(f"File already added: {key}")
            future = self._executor.submit(self._reader, path)
            self._order.append(key)
            self._pending[key] = future
        future.add_done_callback(partial(self._record, key))
        return key

    def remove(self, key: str) -> bool:
        with self._lock:
            if key not in self._order:
                return False
            self._order.remove(key)
            future = self._pending.pop(key, None)
            self._parsed.pop(key, None)
            self._errors.pop(key, None)
            if key in self._arrivals:
                self._arrivals.remove(key)
        if future is not None and future.cancel():
            logger.debug("Cancelled pending read of %s", key)
        return True

    def _record(self, key: str, future: Future[ParsedFile]) -> None:
        with self._lock:
            if self._pending.get(key) is not future:
                return
            del self._pending[key]
            if future.cancelled():
                return
            exc = future.exception()
            if exc is not None:
                self._errors[key] = str(exc) or type(exc).__name__
                parsed = None
            else:
                parsed = future.result()
                self._parsed[key] = parsed
                self._arrivals.append(key)

        if parsed is None:
            logger.warning("Skipping %s: %s", key, self._errors.get(key, ""))
        elif self._on_parsed is not None:
            self._on_parsed(parsed)

    def wait(self, timeout: float | None = None, *, ordered: bool = True) -> IngestResult:
        """Block until every submitted read finishes (or *timeout* passes).

        Reads still running at the timeout stay pending and are simply absent
        from the result.
        """
        with self._lock:
            keys = {future: key for key, future in self._pending.items()}
        try:
            for future in as_completed(keys, timeout=timeout):
                self._record(keys[future], future)
        except TimeoutError:
            with self._lock:
                waiting = len(self._pending)
            logger.warning("Timed out waiting for %d file(s)", waiting)
        return self.result(ordered=ordered)

    def result(self, *, ordered: bool = True) -> IngestResult:
        """Snapshot of finished reads; *ordered* keeps submission order."""
        with self._lock:
            order = self._order if ordered else self._arrivals
            keys = [key for key in order if key in self._parsed]
            return IngestResult(
                files=[self._parsed[key] for key in keys],
                keys=keys,
                errors=dict(self._errors),
                pending=[key for key in self._order if key in self._pending],
            )

    def close(self) -> None:
        self._executor.shutdown(wait=True, cancel_futures=True)


def ingest_files(paths: Iterable[Path], max_workers: int = 4) -> IngestResult:
    """Read every path concurrently and return parsed files in input order."""
    with FileIngestor(max_workers=max_workers) as ingestor:
        for path in paths:
            ingestor.add(path)
        return ingestor.wait()
