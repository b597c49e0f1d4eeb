"""Merge report persistence."""

from __future__ import annotations

from pathlib import Path

from spreadsheet_merge.io import write_json
from spreadsheet_merge.models import MergeReport


def write_merge_report(out_dir: Path, report: MergeReport) -> Path:
    """Write ``merge_report.json`` into *out_dir* and return the path."""
    return write_json(out_dir / "merge_report.json", report.to_dict())
