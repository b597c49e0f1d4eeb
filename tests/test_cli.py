"""CLI integration smoke tests for spreadsheet-merge."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from openpyxl import load_workbook
from typer.testing import CliRunner

import spreadsheet_merge.cli as cli_mod
from spreadsheet_merge import __version__
from spreadsheet_merge.cli import app

runner = CliRunner()


def _write_csv(tmp_path: Path, name: str, rows: str) -> Path:
    path = tmp_path / name
    path.write_text(rows)
    return path


def _two_inputs(tmp_path: Path) -> tuple[Path, Path]:
    first = _write_csv(tmp_path, "a.csv", "Project,Hours\nAlpha,4\nBeta,2\n")
    second = _write_csv(tmp_path, "b.csv", "Project,Time\nGamma,3\n")
    return first, second


def _merge(tmp_path: Path, *extra: str) -> Path:
    first, second = _two_inputs(tmp_path)
    out_dir = tmp_path / "out"
    result = runner.invoke(
        app,
        ["merge", "-i", str(first), "-i", str(second), "--out-dir", str(out_dir), "--quiet", *extra],
    )
    assert result.exit_code == 0, result.stdout
    return out_dir


def _timesheet_session(tmp_path: Path) -> Path:
    csv_path = _write_csv(
        tmp_path,
        "timesheet.csv",
        "Project,Date,Hours\n"
        "Alpha,2023-01-15,8\n"
        "Alpha,2023-01-31,4\n"
        "Beta,2023-02-01,6\n",
    )
    out_dir = tmp_path / "ts"
    result = runner.invoke(app, ["merge", "-i", str(csv_path), "-o", str(out_dir), "-q"])
    assert result.exit_code == 0, result.stdout
    return out_dir / "session.json"


def test_version_flag() -> None:
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert f"v{__version__}" in result.stdout


def test_headers_shows_column_presence(tmp_path: Path) -> None:
    first, second = _two_inputs(tmp_path)

    result = runner.invoke(app, ["headers", "-i", str(first), "-i", str(second)])

    assert result.exit_code == 0
    assert "Column Headers" in result.stdout
    assert "Time" in result.stdout


def test_merge_writes_all_artifacts(tmp_path: Path) -> None:
    out_dir = _merge(tmp_path)

    assert (out_dir / "merged_data.xlsx").exists()
    assert (out_dir / "merged_data.csv").read_text(encoding="utf-8") == (
        "Project,Hours,Time\nAlpha,4,\nBeta,2,\nGamma,,3\n"
    )
    report = json.loads((out_dir / "merge_report.json").read_text())
    assert report["files_in"] == 2
    assert report["files_parsed"] == 2
    assert report["rows_out"] == 3
    assert report["columns"] == ["Project", "Hours", "Time"]

    manifest = json.loads((out_dir / "run_manifest.json").read_text())
    assert manifest["status"] == "success"
    assert manifest["rows_out"] == 3
    assert [entry["rows"] for entry in manifest["inputs"]] == [2, 1]
    assert all(len(entry["sha256"]) == 64 for entry in manifest["inputs"])

    session = json.loads((out_dir / "session.json").read_text())
    assert session["final"]["columns"] == ["Project", "Hours", "Time"]


def test_merge_map_collapses_columns_and_reports_collision(tmp_path: Path) -> None:
    out_dir = _merge(tmp_path, "--map", "Hours=Time", "--format", "xlsx")

    assert not (out_dir / "merged_data.csv").exists()
    ws = load_workbook(out_dir / "merged_data.xlsx")["Merged Data"]
    assert [c.value for c in ws[1]] == ["Project", "Hours"]
    assert [ws.cell(row=r, column=2).value for r in range(2, 5)] == [4, 2, 3]

    report = json.loads((out_dir / "merge_report.json").read_text())
    assert report["collisions"] == ["Hours (source: Hours + Time)"]


def test_merge_profile_file_supplies_mapping(tmp_path: Path) -> None:
    profile = tmp_path / "profile.txt"
    profile.write_text("# renames\nEffort=Hours\nEffort=Time\n")

    out_dir = _merge(tmp_path, "--profile", str(profile), "--format", "csv")

    assert (out_dir / "merged_data.csv").read_text(encoding="utf-8").splitlines() == [
        "Project,Effort",
        "Alpha,4",
        "Beta,2",
        "Gamma,3",
    ]


def test_merge_filter_search_and_sort_shape_the_export(tmp_path: Path) -> None:
    out_dir = _merge(
        tmp_path,
        "--map", "Hours=Time",
        "--filter", "Project=a",
        "--sort", "Hours",
        "--descending",
        "--format", "csv",
    )

    assert (out_dir / "merged_data.csv").read_text(encoding="utf-8").splitlines() == [
        "Project,Hours",
        "Alpha,4",
        "Gamma,3",
        "Beta,2",
    ]
    session = json.loads((out_dir / "session.json").read_text())
    assert len(session["final"]["rows"]) == 3
    assert [row["Project"] for row in session["visualization"]["rows"]] == ["Alpha", "Gamma", "Beta"]


def test_merge_invalid_map_exits_2_with_failure_artifacts(tmp_path: Path) -> None:
    first, _second = _two_inputs(tmp_path)
    out_dir = tmp_path / "bad_map"

    result = runner.invoke(
        app, ["merge", "-i", str(first), "-o", str(out_dir), "--map", "no-equals", "-q"]
    )

    assert result.exit_code == 2
    assert "Invalid --map value" in result.stdout
    manifest = json.loads((out_dir / "run_manifest.json").read_text())
    assert manifest["status"] == "failed"
    assert manifest["error_code"] == 2
    report = json.loads((out_dir / "merge_report.json").read_text())
    assert report["files_in"] == 1
    assert report["files_parsed"] == 0
    assert report["files_failed"] == [str(first)]


def test_merge_unknown_mapped_column_exits_2(tmp_path: Path) -> None:
    first, _second = _two_inputs(tmp_path)
    out_dir = tmp_path / "unknown"

    result = runner.invoke(
        app, ["merge", "-i", str(first), "-o", str(out_dir), "--map", "X=Nope", "-q"]
    )

    assert result.exit_code == 2
    manifest = json.loads((out_dir / "run_manifest.json").read_text())
    assert "Nope" in manifest["error_message"]


def test_merge_unknown_sort_column_exits_2(tmp_path: Path) -> None:
    first, _second = _two_inputs(tmp_path)
    out_dir = tmp_path / "sort"

    result = runner.invoke(
        app, ["merge", "-i", str(first), "-o", str(out_dir), "--sort", "Nope", "-q"]
    )

    assert result.exit_code == 2
    assert not (out_dir / "merged_data.xlsx").exists()


def test_merge_skips_unreadable_file(tmp_path: Path) -> None:
    first, _second = _two_inputs(tmp_path)
    broken = tmp_path / "broken.xlsx"
    broken.write_bytes(b"not a zip archive")
    out_dir = tmp_path / "partial"

    result = runner.invoke(
        app, ["merge", "-i", str(first), "-i", str(broken), "-o", str(out_dir), "-q"]
    )

    assert result.exit_code == 0
    report = json.loads((out_dir / "merge_report.json").read_text())
    assert report["files_in"] == 2
    assert report["files_parsed"] == 1
    assert report["files_failed"] == [str(broken)]
    assert report["warnings"][0].startswith(f"Could not read {broken}")
    manifest = json.loads((out_dir / "run_manifest.json").read_text())
    assert [entry["rows"] for entry in manifest["inputs"]] == [2, None]


def test_merge_nothing_parsed_exits_2(tmp_path: Path) -> None:
    broken = tmp_path / "broken.xlsx"
    broken.write_bytes(b"not a zip archive")
    out_dir = tmp_path / "none"

    result = runner.invoke(app, ["merge", "-i", str(broken), "-o", str(out_dir)])

    assert result.exit_code == 2
    assert "No input file could be parsed" in result.stdout
    report = json.loads((out_dir / "merge_report.json").read_text())
    assert report["files_failed"] == [str(broken)]
    assert report["files_parsed"] == 0


def test_merge_internal_error_exits_1(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    first, _second = _two_inputs(tmp_path)
    out_dir = tmp_path / "boom"

    def _boom(*_args: object, **_kwargs: object) -> None:
        raise RuntimeError("boom")

    monkeypatch.setattr(cli_mod, "merge_files", _boom)

    result = runner.invoke(app, ["merge", "-i", str(first), "-o", str(out_dir), "-q"])

    assert result.exit_code == 1
    manifest = json.loads((out_dir / "run_manifest.json").read_text())
    assert manifest["status"] == "failed"
    assert manifest["error_code"] == 1
    assert "Unexpected internal error: boom" in manifest["error_message"]
    report = json.loads((out_dir / "merge_report.json").read_text())
    assert report["files_in"] == 1
    assert report["files_parsed"] == 1
    assert report["files_failed"] == []


def test_merge_nonquiet_shows_progress_panels(tmp_path: Path) -> None:
    first, second = _two_inputs(tmp_path)
    out_dir = tmp_path / "verbose"

    result = runner.invoke(
        app, ["merge", "-i", str(first), "-i", str(second), "-o", str(out_dir), "-m", "Hours=Time"]
    )

    assert result.exit_code == 0
    assert "Merge Start" in result.stdout
    assert "Merged columns" in result.stdout
    assert "Merge Complete" in result.stdout


def test_view_pages_and_sorts_final_dataset(tmp_path: Path) -> None:
    out_dir = _merge(tmp_path, "--map", "Hours=Time")

    result = runner.invoke(
        app, ["view", "--session", str(out_dir / "session.json"), "--sort", "Hours", "--descending"]
    )

    assert result.exit_code == 0
    assert "Page 1 of 1" in result.stdout
    out = result.stdout
    assert out.index("Alpha") < out.index("Gamma") < out.index("Beta")


def test_view_filter_with_no_matches_shows_zero_pages(tmp_path: Path) -> None:
    out_dir = _merge(tmp_path)

    result = runner.invoke(
        app,
        ["view", "--session", str(out_dir / "session.json"), "--filter", "Project=zzz"],
    )

    assert result.exit_code == 0
    assert "Page 1 of 0" in result.stdout


def test_view_rejects_bad_page_size(tmp_path: Path) -> None:
    out_dir = _merge(tmp_path)

    result = runner.invoke(
        app, ["view", "--session", str(out_dir / "session.json"), "--page-size", "15"]
    )

    assert result.exit_code == 2
    assert "Invalid page size" in result.stdout


def test_view_without_session_exits_2(tmp_path: Path) -> None:
    result = runner.invoke(app, ["view", "--session", str(tmp_path / "missing.json")])

    assert result.exit_code == 2
    assert "smerge merge" in result.stdout


def test_pivot_writes_json(tmp_path: Path) -> None:
    session_path = _timesheet_session(tmp_path)
    out = tmp_path / "pivot.json"

    result = runner.invoke(
        app,
        [
            "pivot",
            "--session", str(session_path),
            "--rows", "Project",
            "--columns", "Date",
            "--values", "Hours",
            "--date-grouping", "month",
            "--working-days",
            "--out", str(out),
        ],
    )

    assert result.exit_code == 0
    assert "Pivot Table" in result.stdout
    payload = json.loads(out.read_text())
    assert payload["column_keys"] == ["2023-01", "2023-02"]
    assert payload["cells"] == {"Alpha": {"2023-01": 1.5}, "Beta": {"2023-02": 0.75}}


def test_pivot_writes_xlsx(tmp_path: Path) -> None:
    session_path = _timesheet_session(tmp_path)
    out = tmp_path / "pivot.xlsx"

    result = runner.invoke(
        app,
        [
            "pivot",
            "--session", str(session_path),
            "-r", "Project",
            "-c", "Date",
            "--values", "Hours",
            "--date-grouping", "year",
            "--out", str(out),
        ],
    )

    assert result.exit_code == 0
    ws = load_workbook(out)["Pivot"]
    assert [c.value for c in ws[1]] == ["Project", "2023"]
    assert ws.cell(row=2, column=2).value == 12
    assert ws.cell(row=3, column=2).value == 6


def test_pivot_without_fields_lists_columns(tmp_path: Path) -> None:
    session_path = _timesheet_session(tmp_path)

    result = runner.invoke(app, ["pivot", "--session", str(session_path), "--rows", "Project"])

    assert result.exit_code == 0
    assert "Choose --rows, --columns and --values" in result.stdout
    assert "Project, Date, Hours" in result.stdout


def test_pivot_unknown_column_exits_2(tmp_path: Path) -> None:
    session_path = _timesheet_session(tmp_path)

    result = runner.invoke(
        app,
        ["pivot", "--session", str(session_path), "-r", "Project", "-c", "Nope", "--values", "Hours"],
    )

    assert result.exit_code == 2
    assert "Unknown column" in result.stdout


def test_chart_grouped_bar_writes_json(tmp_path: Path) -> None:
    session_path = _timesheet_session(tmp_path)
    out = tmp_path / "chart.json"

    result = runner.invoke(
        app,
        [
            "chart",
            "--session", str(session_path),
            "--kind", "groupedBar",
            "--x", "Date",
            "--y", "Project",
            "--value", "Hours",
            "--date-grouping", "month",
            "--out", str(out),
        ],
    )

    assert result.exit_code == 0
    payload = json.loads(out.read_text())
    assert payload["series"] == ["Alpha", "Beta"]
    assert payload["records"] == [
        {"Date": "2023-01", "Alpha": 12.0},
        {"Date": "2023-02", "Beta": 6.0},
    ]
    assert payload["colors"]["Alpha"] != payload["colors"]["Beta"]


def test_chart_without_fields_lists_columns(tmp_path: Path) -> None:
    session_path = _timesheet_session(tmp_path)

    result = runner.invoke(app, ["chart", "--session", str(session_path), "--kind", "pie"])

    assert result.exit_code == 0
    assert "Choose --x, --y and --value" in result.stdout
