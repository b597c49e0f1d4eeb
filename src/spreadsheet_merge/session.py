"""Session object that carries datasets between CLI commands."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from spreadsheet_merge.io import read_json, write_json
from spreadsheet_merge.models import Dataset

SESSION_FORMAT = 1


class Session:
    """Explicit, passed-around store for the datasets a view hands to the next.

    Lifecycle: :meth:`store_final` when a merge is confirmed (drops any stale
    visualisation rows), :meth:`store_visualization` from the table view,
    :meth:`clear` when a new upload starts.  Everything round-trips exactly
    through JSON.
    """

    def __init__(self) -> None:
        self._final: Dataset | None = None
        self._visualization: Dataset | None = None

    @property
    def has_final(self) -> bool:
        return self._final is not None

    @property
    def has_visualization(self) -> bool:
        return self._visualization is not None

    def store_final(self, dataset: Dataset) -> None:
        self._final = dataset
        self._visualization = None

    def store_visualization(self, dataset: Dataset) -> None:
        self._visualization = dataset

    def final(self) -> Dataset:
        if self._final is None:
            raise ValueError("No merged data available.")
        return self._final

    def visualization(self) -> Dataset:
        if self._visualization is None:
            raise ValueError("No data available for visualization.")
        return self._visualization

    def clear(self) -> None:
        self._final = None
        self._visualization = None

    # ── Serialisation ────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        return {
            "format": SESSION_FORMAT,
            "final": None if self._final is None else self._final.to_dict(),
            "visualization": (
                None if self._visualization is None else self._visualization.to_dict()
            ),
        }

    @classmethod
    def from_dict(cls, payload: Any) -> Session:
        if not isinstance(payload, dict):
            raise ValueError("Session payload must be a JSON object")
        if payload.get("format") != SESSION_FORMAT:
            raise ValueError(f"Unsupported session format: {payload.get('format')!r}")
        session = cls()
        if payload.get("final") is not None:
            session._final = Dataset.from_dict(payload["final"])
        if payload.get("visualization") is not None:
            session._visualization = Dataset.from_dict(payload["visualization"])
        return session

    def dumps(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, allow_nan=False)

    @classmethod
    def loads(cls, text: str) -> Session:
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid session data: {exc}") from exc
        return cls.from_dict(payload)

    def save(self, path: Path) -> Path:
        return write_json(path, self.to_dict(), sort_keys=False)

    @classmethod
    def load(cls, path: Path) -> Session:
        return cls.from_dict(read_json(path))
