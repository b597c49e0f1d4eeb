"""Schema merge and column remapping."""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from spreadsheet_merge.models import Cell, Dataset, ParsedFile, Row

# ── Schema merge ─────────────────────────────────────────────────


def union_schema(files: Sequence[ParsedFile]) -> list[str]:
    """All distinct headers across *files*, in first-seen order."""
    seen: dict[str, None] = {}
    for parsed in files:
        for header in parsed.headers:
            seen.setdefault(header, None)
    return list(seen)


def column_presence(files: Sequence[ParsedFile]) -> dict[str, dict[str, bool]]:
    """For each file, which union-schema columns it carries."""
    schema = union_schema(files)
    presence: dict[str, dict[str, bool]] = {}
    for parsed in files:
        have = set(parsed.headers)
        presence[parsed.name] = {col: col in have for col in schema}
    return presence


def merge_files(files: Sequence[ParsedFile]) -> Dataset:
    """Concatenate rows of all *files* over the union schema.

    Rows keep file order, then their own order; columns a file lacks are
    filled with ``None``.
    """
    schema = union_schema(files)
    rows: list[Row] = []
    for parsed in files:
        for row in parsed.rows:
            rows.append({col: row.get(col) for col in schema})
    return Dataset(columns=tuple(schema), rows=tuple(rows))


# ── Column remapping ─────────────────────────────────────────────


def _is_empty(value: Cell) -> bool:
    return value is None or value == ""


def normalize_mapping(columns: Sequence[str], mapping: Mapping[str, str] | None) -> dict[str, str]:
    """Complete *mapping* into a total original -> new name function.

    Raises ``ValueError`` for originals not in *columns* and blank new names.
    """
    mapping = dict(mapping or {})
    unknown = sorted(set(mapping) - set(columns))
    if unknown:
        raise ValueError(f"Mapping refers to unknown columns: {', '.join(unknown)}")
    total: dict[str, str] = {}
    for col in columns:
        new_name = mapping.get(col, col)
        if not isinstance(new_name, str) or not new_name.strip():
            raise ValueError(f"New name for column {col!r} must be a non-empty string")
        total[col] = new_name
    return total


def remapped_columns(columns: Sequence[str], mapping: Mapping[str, str]) -> list[str]:
    """Distinct new names, ordered by their first original column."""
    seen: dict[str, None] = {}
    for col in columns:
        seen.setdefault(mapping[col], None)
    return list(seen)


def find_collisions(columns: Sequence[str], mapping: Mapping[str, str]) -> dict[str, list[str]]:
    """New names fed by more than one original column."""
    sources: dict[str, list[str]] = {}
    for col in columns:
        sources.setdefault(mapping[col], []).append(col)
    return {target: cols for target, cols in sources.items() if len(cols) > 1}


def remap(merged: Dataset, mapping: Mapping[str, str] | None = None) -> Dataset:
    """Rename columns of *merged*, collapsing originals that share a new name.

    Collision rule: originals are visited in schema order; the first one
    sets the value and every later one replaces it only with a non-empty
    value (not ``None``, not ``""``).  So the last non-empty value wins and
    the result is ``None`` only when all of them are empty.
    """
    total = normalize_mapping(merged.columns, mapping)
    new_columns = remapped_columns(merged.columns, total)
    rows: list[Row] = []
    for row in merged.rows:
        new_row: Row = {}
        for original in merged.columns:
            target = total[original]
            value = row[original]
            if target not in new_row or not _is_empty(value):
                new_row[target] = value
        rows.append(new_row)
    return Dataset(columns=tuple(new_columns), rows=tuple(rows))


class ColumnRemapper:
    """Interactive rename state over one merged dataset.

    Every edit recomputes the final dataset from the untouched merged
    dataset, so repeated edits never accumulate changes.
    """

    def __init__(self, merged: Dataset, mapping: Mapping[str, str] | None = None) -> None:
        self.merged = merged
        self._mapping = normalize_mapping(merged.columns, mapping)
        self._final = remap(merged, self._mapping)

    @property
    def mapping(self) -> dict[str, str]:
        return dict(self._mapping)

    @property
    def final(self) -> Dataset:
        return self._final

    def rename(self, original: str, new_name: str) -> Dataset:
        candidate = {**self._mapping, original: new_name}
        self._final = remap(self.merged, candidate)
        self._mapping = normalize_mapping(self.merged.columns, candidate)
        return self._final

    def update(self, mapping: Mapping[str, str]) -> Dataset:
        candidate = {**self._mapping, **mapping}
        self._final = remap(self.merged, candidate)
        self._mapping = normalize_mapping(self.merged.columns, candidate)
        return self._final

    def reset(self) -> Dataset:
        self._mapping = normalize_mapping(self.merged.columns, None)
        self._final = remap(self.merged, self._mapping)
        return self._final

    def sample(self, original: str) -> Cell:
        """First final row's value under *original*'s new name."""
        if not self._final.rows:
            return None
        return self._final.rows[0][self._mapping[original]]

    def preview(self, limit: int = 10) -> list[Row]:
        return [dict(row) for row in self._final.rows[:limit]]

    def collisions(self) -> dict[str, list[str]]:
        return find_collisions(self.merged.columns, self._mapping)
