from __future__ import annotations

import argparse
import csv
import json
import logging
from pathlib import Path
from typing import List

import pytest

import download_dap_reports as cli
from conftest import API_URL, FROZEN_TODAY, FakeResponse, FakeSession, make_rows
from dap_api_service import DapApiService
from dap_report_catalog import AGENCIES, REPORTS


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()


def _args(tmp_path: Path, *extra: str) -> argparse.Namespace:
    return cli.parse_args(
        [
            "--api-url",
            API_URL,
            "--outdir",
            str(tmp_path / "out"),
            "--logs-dir",
            str(tmp_path / "logs"),
            *extra,
        ]
    )


def _service(responses: List[object]) -> DapApiService:
    session = FakeSession(responses)
    return DapApiService(API_URL, REPORTS, AGENCIES, session_factory=lambda: session, today=lambda: FROZEN_TODAY)


def _run_dir(tmp_path: Path) -> Path:
    run_dirs = list((tmp_path / "logs").iterdir())
    assert len(run_dirs) == 1
    return run_dirs[0]


# ---------------------------------------------------------------------------
# Config and argument parsing
# ---------------------------------------------------------------------------


def test_parse_month_arg() -> None:
    assert cli.parse_month_arg("2024-03") == (2024, 3)
    assert cli.parse_month_arg("2024-3") == (2024, 3)


@pytest.mark.parametrize("value", ["2024", "2024-13", "24-01", "march"])
def test_parse_month_arg_rejects_bad_values(value: str) -> None:
    with pytest.raises(argparse.ArgumentTypeError):
        cli.parse_month_arg(value)


def test_config_sections_are_flattened() -> None:
    defaults = cli.config_to_parser_defaults(
        {
            "api": {"base_url": "https://dap.example", "max_pages": 5, "agency": "education"},
            "range": {"from_month": "2023-11", "to_month": "2024-01"},
            "output": {"format": "csv", "overwrite": "yes"},
            "reports": "language",
            "profiles": ["devices"],
        }
    )
    assert defaults == {
        "api_url": "https://dap.example",
        "max_pages": 5,
        "agency": "education",
        "from_month": (2023, 11),
        "to_month": (2024, 1),
        "format": "csv",
        "overwrite": True,
        "report": ["language"],
        "profile": ["devices"],
    }


def test_config_rejects_bad_values() -> None:
    with pytest.raises(SystemExit):
        cli.config_to_parser_defaults({"dry_run": "sometimes"})
    with pytest.raises(SystemExit):
        cli.config_to_parser_defaults({"from_month": "last month"})
    with pytest.raises(SystemExit):
        cli.config_to_parser_defaults({"reports": 5})


def test_load_config_file_errors(tmp_path: Path) -> None:
    with pytest.raises(SystemExit):
        cli.load_config_file(tmp_path / "missing.yaml")
    bad = tmp_path / "config.toml"
    bad.write_text("x = 1", encoding="utf-8")
    with pytest.raises(SystemExit):
        cli.load_config_file(bad)
    listed = tmp_path / "config.yaml"
    listed.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(SystemExit):
        cli.load_config_file(listed)


def test_cli_flags_override_config(tmp_path: Path) -> None:
    config = tmp_path / "dap.yaml"
    config.write_text(
        "api:\n  base_url: https://from-config.example\n"
        "output:\n  format: csv\n"
        "range:\n  from_month: 2024-01\n  to_month: 2024-02\n"
        "reports: [languages]\n",
        encoding="utf-8",
    )
    args = cli.parse_args(["--config", str(config), "--format", "json"])

    assert args.api_url == "https://from-config.example"
    assert args.format == "json"
    assert args.from_month == (2024, 1)
    assert args.to_month == (2024, 2)
    assert args.report == ["language"]


def test_from_month_defaults_to_to_month(tmp_path: Path) -> None:
    args = _args(tmp_path, "--to-month", "2024-02")
    assert args.from_month == (2024, 2)


def test_api_url_falls_back_to_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DAP_API_URL", "https://env.example")
    assert cli.parse_args([]).api_url == "https://env.example"


def test_plan_downloads(tmp_path: Path) -> None:
    args = _args(tmp_path, "--report", "site", "--report", "language", "--from-month", "2023-12", "--to-month", "2024-01")
    assert cli.plan_downloads(args) == [
        ("site", 2023, 12),
        ("site", 2024, 1),
        ("language", 2023, 12),
        ("language", 2024, 1),
    ]


def test_plan_downloads_rejects_reversed_range(tmp_path: Path) -> None:
    args = _args(tmp_path, "--report", "site", "--from-month", "2024-02", "--to-month", "2024-01")
    with pytest.raises(SystemExit):
        cli.plan_downloads(args)


# ---------------------------------------------------------------------------
# Output files
# ---------------------------------------------------------------------------


def test_monthly_output_path(tmp_path: Path) -> None:
    path = cli.monthly_output_path(tmp_path, "site", None, 2024, 3, "csv")
    assert path == tmp_path / "all" / "site" / "2024" / "03" / "site_202403.csv"


def test_write_rows_csv_uses_union_of_columns(tmp_path: Path) -> None:
    path = tmp_path / "rows.csv"
    cli.write_rows(path, [{"a": 1}, {"a": 2, "b": "x"}], "csv")

    with open(path, encoding="utf-8", newline="") as handle:
        rows = list(csv.DictReader(handle))
    assert rows == [{"a": "1", "b": ""}, {"a": "2", "b": "x"}]
    assert not path.with_suffix(".csv.part").exists()


def test_write_rows_rejects_unknown_format(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        cli.write_rows(tmp_path / "rows.xml", [], "xml")


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


def test_run_writes_month_files_and_summary(tmp_path: Path) -> None:
    args = _args(
        tmp_path,
        "--report",
        "device",
        "--from-month",
        "2024-01",
        "--to-month",
        "2024-02",
        "--summarize-by",
        "report_name",
    )
    service = _service([FakeResponse(make_rows(2, report_name="device")), FakeResponse([])])

    assert cli.run(args, service=service) == 0

    january = tmp_path / "out" / "all" / "device" / "2024" / "01" / "device_202401.json"
    rows = json.loads(january.read_text(encoding="utf-8"))
    assert rows == [
        {"report_name": "Device Types", "report_agency": "Department of Education", "visits": 1},
        {"report_name": "Device Types", "report_agency": "Department of Education", "visits": 1},
    ]
    assert (january.parent / "device_202401_summary.json").exists()
    february = tmp_path / "out" / "all" / "device" / "2024" / "02" / "device_202402.json"
    assert json.loads(february.read_text(encoding="utf-8")) == []

    summary = json.loads((_run_dir(tmp_path) / "summary.json").read_text(encoding="utf-8"))
    assert summary["status"] == "completed"
    assert summary["stats"] == {
        "months_planned": 2,
        "months_downloaded": 2,
        "rows_downloaded": 2,
        "empty_months": 1,
        "failures": 0,
    }


def test_run_records_failures_and_continues(tmp_path: Path) -> None:
    args = _args(tmp_path, "--report", "site", "--from-month", "2024-01", "--to-month", "2024-02", "--format", "csv")
    service = _service([FakeResponse(None, status_code=500), FakeResponse(make_rows(1))])

    assert cli.run(args, service=service) == 1

    assert not (tmp_path / "out" / "all" / "site" / "2024" / "01" / "site_202401.csv").exists()
    assert (tmp_path / "out" / "all" / "site" / "2024" / "02" / "site_202402.csv").exists()

    run_dir = _run_dir(tmp_path)
    with open(run_dir / "failures.csv", encoding="utf-8", newline="") as handle:
        failures = list(csv.DictReader(handle))
    assert [(row["report"], row["month"]) for row in failures] == [("site", "1")]
    assert "HTTP 500" in failures[0]["error"]
    summary = json.loads((run_dir / "summary.json").read_text(encoding="utf-8"))
    assert summary["status"] == "completed_with_failures"
    assert (run_dir / "run.log").exists()


def test_run_skips_existing_months(tmp_path: Path) -> None:
    args = _args(tmp_path, "--report", "site", "--to-month", "2024-01")
    existing = cli.monthly_output_path(Path(args.outdir), "site", None, 2024, 1, "json")
    existing.parent.mkdir(parents=True)
    existing.write_text("[]", encoding="utf-8")

    assert cli.run(args, service=_service([])) == 0


def test_dry_run_makes_no_requests(tmp_path: Path) -> None:
    args = _args(tmp_path, "--report", "site", "--to-month", "2024-03", "--dry-run")
    assert cli.run(args, service=_service([])) == 0
    assert not (tmp_path / "out").exists() or not any((tmp_path / "out").rglob("*.json"))


def test_dry_run_with_future_month_reports_failures(tmp_path: Path) -> None:
    args = _args(tmp_path, "--report", "site", "--from-month", "2024-03", "--to-month", "2024-04", "--dry-run")

    assert cli.run(args, service=_service([])) == 1

    summary = json.loads((_run_dir(tmp_path) / "summary.json").read_text(encoding="utf-8"))
    assert summary["status"] == "completed_with_failures"
    assert summary["stats"]["failures"] == 1


def test_build_service_uses_catalog_file(tmp_path: Path) -> None:
    catalog = tmp_path / "catalog.yaml"
    catalog.write_text("reports:\n  - value: site\n    name: Custom Sites\n", encoding="utf-8")
    args = _args(tmp_path, "--catalog-file", str(catalog), "--max-pages", "3", "--timeout-seconds", "0")

    service = cli.build_service(args)
    mapped = service.map_rows(make_rows(1))

    assert service.max_pages == 3
    assert service.timeout_seconds is None
    assert mapped[0]["report_name"] == "Custom Sites"
    assert mapped[0]["report_agency"] == "Department of Education"
