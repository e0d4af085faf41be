#!/usr/bin/env python3
"""Download DAP report data by report name and calendar-month range."""

from __future__ import annotations

import argparse
import csv
import json
import logging
import os
import sys
import time
from dataclasses import asdict, dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import yaml
from tqdm import tqdm

from dap_api_service import (
    DEFAULT_MAX_PAGES,
    DapApiError,
    DapApiService,
    iter_months,
    resolve_window,
)
from dap_logging import configure_logging, format_exception_message, log_event, utc_now_iso
from dap_report_catalog import (
    AGENCIES,
    REPORTS,
    available_profiles,
    load_descriptor_file,
    normalize_report_names,
    resolve_report_names,
)
from report_transforms import summarize_rows

LOGGER = logging.getLogger("download_dap_reports")

DEFAULT_API_URL = "https://api.gsa.gov/analytics/dap/v2"
OUTPUT_FORMATS = ("json", "csv")


@dataclass
class DownloadStats:
    months_planned: int = 0
    months_downloaded: int = 0
    rows_downloaded: int = 0
    empty_months: int = 0
    failures: int = 0


def _parse_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "y", "on"}:
            return True
        if normalized in {"0", "false", "no", "n", "off"}:
            return False
    if isinstance(value, (int, float)):
        return bool(value)
    raise ValueError(f"Cannot parse boolean from value '{value}'.")


def load_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise SystemExit(f"Config file not found: {path}")
    suffix = path.suffix.lower()
    raw = path.read_text(encoding="utf-8")
    if suffix in {".yaml", ".yml"}:
        data = yaml.safe_load(raw)
    elif suffix == ".json":
        data = json.loads(raw)
    else:
        raise SystemExit("Unsupported config file extension. Use .yaml/.yml or .json.")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise SystemExit("Config root must be a mapping/object.")
    return data


def flatten_config(data: Dict[str, Any]) -> Dict[str, Any]:
    flattened: Dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, dict):
            for nested_key, nested_value in value.items():
                flattened[f"{key}_{nested_key}"] = nested_value
        else:
            flattened[key] = value
    return flattened


def _coerce_config_list(value: object, key: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [str(item) for item in value if item is not None]
    raise SystemExit(f"Config key '{key}' must be a string or list of strings.")


def parse_month_arg(value: str) -> Tuple[int, int]:
    """Parse ``YYYY-MM`` (or ``YYYY-M``) into a (year, month) pair."""
    text = str(value).strip()
    try:
        year_text, month_text = text.split("-", 1)
        year, month = int(year_text), int(month_text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid month '{value}'. Use YYYY-MM.") from exc
    if len(year_text) != 4 or not 1 <= month <= 12:
        raise argparse.ArgumentTypeError(f"Invalid month '{value}'. Use YYYY-MM.")
    return year, month


def _coerce_config_month(value: object, key: str) -> Tuple[int, int]:
    if isinstance(value, date):
        return value.year, value.month
    try:
        return parse_month_arg(str(value))
    except argparse.ArgumentTypeError as exc:
        raise SystemExit(f"Config key '{key}' must be YYYY-MM.") from exc


def config_to_parser_defaults(config_data: Dict[str, Any]) -> Dict[str, Any]:
    cfg = flatten_config(config_data)
    defaults: Dict[str, Any] = {}
    scalar_map = {
        "api_url": "api_url",
        "api_base_url": "api_url",
        "agency": "agency",
        "api_agency": "agency",
        "outdir": "outdir",
        "output_outdir": "outdir",
        "format": "format",
        "output_format": "format",
        "max_pages": "max_pages",
        "api_max_pages": "max_pages",
        "network_max_pages": "max_pages",
        "timeout_seconds": "timeout_seconds",
        "api_timeout_seconds": "timeout_seconds",
        "network_timeout_seconds": "timeout_seconds",
        "catalog_file": "catalog_file",
        "summarize_by": "summarize_by",
        "output_summarize_by": "summarize_by",
        "summary_metric": "summary_metric",
        "output_summary_metric": "summary_metric",
        "logs_dir": "logs_dir",
        "logging_logs_dir": "logs_dir",
    }
    bool_map = {
        "dry_run": "dry_run",
        "verbose": "verbose",
        "logging_verbose": "verbose",
        "overwrite": "overwrite",
        "output_overwrite": "overwrite",
    }
    month_map = {
        "from_month": "from_month",
        "range_from_month": "from_month",
        "to_month": "to_month",
        "range_to_month": "to_month",
    }
    list_map = {
        "report": "report",
        "reports": "report",
        "profile": "profile",
        "profiles": "profile",
    }

    for source_key, target_key in scalar_map.items():
        if source_key in cfg:
            defaults[target_key] = cfg[source_key]
    for source_key, target_key in bool_map.items():
        if source_key in cfg:
            try:
                defaults[target_key] = _parse_bool(cfg[source_key])
            except ValueError as exc:
                raise SystemExit(f"Config key '{source_key}': {exc}") from exc
    for source_key, target_key in month_map.items():
        if source_key in cfg:
            defaults[target_key] = _coerce_config_month(cfg[source_key], source_key)
    for source_key, target_key in list_map.items():
        if source_key in cfg:
            defaults[target_key] = _coerce_config_list(cfg[source_key], source_key)
    return defaults


def monthly_output_path(outdir: Path, report: str, agency: Optional[str], year: int, month: int, fmt: str) -> Path:
    scope = agency or "all"
    return outdir / scope / report / f"{year:04d}" / f"{month:02d}" / f"{report}_{year:04d}{month:02d}.{fmt}"


def _fieldnames(rows: Sequence[Mapping[str, object]]) -> List[str]:
    names: List[str] = []
    seen = set()
    for row in rows:
        for key in row.keys():
            if key not in seen:
                names.append(key)
                seen.add(key)
    return names


def write_rows(path: Path, rows: Sequence[Mapping[str, object]], fmt: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".part")
    if fmt == "json":
        with open(tmp_path, "w", encoding="utf-8") as handle:
            json.dump(list(rows), handle, indent=2, ensure_ascii=False)
            handle.write("\n")
    elif fmt == "csv":
        with open(tmp_path, "w", encoding="utf-8", newline="") as handle:
            writer = csv.DictWriter(handle, fieldnames=_fieldnames(rows), extrasaction="ignore")
            writer.writeheader()
            for row in rows:
                writer.writerow(row)
    else:
        raise ValueError(f"Unsupported output format '{fmt}'.")
    tmp_path.replace(path)


def build_service(args: argparse.Namespace) -> DapApiService:
    reports, agencies = REPORTS, AGENCIES
    if args.catalog_file:
        try:
            file_reports, file_agencies = load_descriptor_file(Path(args.catalog_file))
        except (OSError, ValueError) as exc:
            raise SystemExit(f"Could not load catalog file: {format_exception_message(exc)}") from exc
        # An empty table in the file keeps the built-in one.
        reports = file_reports or reports
        agencies = file_agencies or agencies
    return DapApiService(
        args.api_url,
        reports,
        agencies,
        max_pages=int(args.max_pages),
        timeout_seconds=float(args.timeout_seconds) if args.timeout_seconds else None,
    )


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    this_month = (date.today().year, date.today().month)

    pre_parser = argparse.ArgumentParser(add_help=False)
    pre_parser.add_argument("--config", help="Path to YAML/JSON config file.")
    pre_args, _ = pre_parser.parse_known_args(argv)
    config_defaults: Dict[str, Any] = {}
    if pre_args.config:
        config_defaults = config_to_parser_defaults(load_config_file(Path(pre_args.config)))

    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--config", help="Path to YAML/JSON config file.")
    parser.add_argument(
        "--api-url",
        default=os.getenv("DAP_API_URL", DEFAULT_API_URL),
        help="Base URL of the DAP API. Falls back to DAP_API_URL.",
    )
    parser.add_argument(
        "--report",
        action="append",
        default=[],
        help="Report name to download (repeatable), for example 'language'.",
    )
    parser.add_argument(
        "--profile",
        action="append",
        choices=available_profiles(),
        help="Report profile to include (repeatable). Defaults to 'core' when no --report is given.",
    )
    parser.add_argument("--agency", default=None, help="Limit data to one agency. Omit for all agencies.")
    parser.add_argument(
        "--from-month",
        type=parse_month_arg,
        default=None,
        help="First month to download (YYYY-MM). Defaults to --to-month.",
    )
    parser.add_argument(
        "--to-month",
        type=parse_month_arg,
        default=this_month,
        help="Last month to download (YYYY-MM). Defaults to the current month.",
    )
    parser.add_argument("--outdir", default="data/raw/dap", help="Output directory for downloads.")
    parser.add_argument("--format", choices=OUTPUT_FORMATS, default="json", help="Output file format.")
    parser.add_argument(
        "--max-pages",
        type=int,
        default=DEFAULT_MAX_PAGES,
        help="Fail a month after this many full pages (0 means unlimited).",
    )
    parser.add_argument(
        "--timeout-seconds",
        type=float,
        default=60.0,
        help="HTTP timeout in seconds (0 uses the transport default).",
    )
    parser.add_argument(
        "--catalog-file",
        default=None,
        help="YAML/JSON file with 'reports' and 'agencies' display-name tables.",
    )
    parser.add_argument(
        "--summarize-by",
        default=None,
        help="Also write a proportions summary keyed by this column (for example 'language').",
    )
    parser.add_argument("--summary-metric", default="visits", help="Metric column summed by --summarize-by.")
    parser.add_argument("--overwrite", action="store_true", help="Re-download months that already have output.")
    parser.add_argument("--dry-run", action="store_true", help="Show planned downloads without fetching data.")
    parser.add_argument("--verbose", action="store_true", help="Log every page request.")
    parser.add_argument(
        "--logs-dir",
        default="logs/downloads",
        help="Directory where per-run logs are written.",
    )

    if config_defaults:
        parser.set_defaults(**config_defaults)

    args = parser.parse_args(argv)
    args.report = normalize_report_names(args.report or [])
    if args.from_month is None:
        args.from_month = args.to_month
    return args


def plan_downloads(args: argparse.Namespace) -> List[Tuple[str, int, int]]:
    try:
        reports = resolve_report_names(args.profile, args.report)
    except KeyError as exc:
        raise SystemExit(str(exc.args[0])) from exc
    if args.from_month > args.to_month:
        raise SystemExit("--from-month must be on or before --to-month.")
    plan: List[Tuple[str, int, int]] = []
    for report in reports:
        for year, month in iter_months(args.from_month, args.to_month):
            plan.append((report, year, month))
    return plan


def run(args: argparse.Namespace, service: Optional[DapApiService] = None) -> int:
    run_started_at = utc_now_iso()
    run_started_monotonic = time.monotonic()
    run_dir = Path(args.logs_dir) / datetime.now().strftime("%Y%m%d_%H%M%S")
    run_dir.mkdir(parents=True, exist_ok=True)
    configure_logging(run_dir / "run.log", verbose=bool(args.verbose))

    plan = plan_downloads(args)
    service = service or build_service(args)
    outdir = Path(args.outdir)
    stats = DownloadStats(months_planned=len(plan))
    summary_status = "completed"

    log_event(LOGGER, "RUN_PATHS", run_dir=run_dir, outdir=outdir)
    if args.config:
        log_event(LOGGER, "RUN_CONFIG", config=args.config)
    log_event(
        LOGGER,
        "RUN_PLAN",
        api_url=service.api_url,
        agency=args.agency or "all",
        reports=",".join(sorted({report for report, _, _ in plan})),
        from_month=f"{args.from_month[0]:04d}-{args.from_month[1]:02d}",
        to_month=f"{args.to_month[0]:04d}-{args.to_month[1]:02d}",
        months=len(plan),
    )

    failures_csv_path = run_dir / "failures.csv"
    with open(failures_csv_path, "w", encoding="utf-8", newline="") as failures_handle:
        failure_writer = csv.DictWriter(
            failures_handle,
            fieldnames=("timestamp", "report", "agency", "year", "month", "error"),
        )
        failure_writer.writeheader()

        for report, year, month in tqdm(plan, desc="Reports", unit="month", disable=not sys.stderr.isatty()):
            destination = monthly_output_path(outdir, report, args.agency, year, month, args.format)
            if args.dry_run:
                try:
                    window = resolve_window(month, year, today=service.today())
                except DapApiError as exc:
                    stats.failures += 1
                    summary_status = "completed_with_failures"
                    log_event(LOGGER, "DRY_RUN_INVALID", logging.ERROR, report=report, year=year, month=month, error=exc)
                    continue
                log_event(
                    LOGGER,
                    "DRY_RUN",
                    report=report,
                    url=service.build_month_report_url(report, args.agency),
                    after=window.after,
                    before=window.before,
                    destination=destination,
                )
                continue
            if destination.exists() and not args.overwrite:
                log_event(LOGGER, "SKIP_EXISTING", destination=destination)
                continue
            try:
                rows = service.get_report_for_month(report, args.agency, month, year)
                write_rows(destination, rows, args.format)
                if args.summarize_by:
                    summary = summarize_rows(rows, args.summarize_by, metric=args.summary_metric)
                    write_rows(destination.with_name(f"{destination.stem}_summary.json"), summary, "json")
            except (DapApiError, OSError) as exc:
                stats.failures += 1
                summary_status = "completed_with_failures"
                message = format_exception_message(exc)
                log_event(LOGGER, "MONTH_FAILED", logging.ERROR, report=report, year=year, month=month, error=message)
                failure_writer.writerow(
                    {
                        "timestamp": datetime.now().astimezone().isoformat(timespec="seconds"),
                        "report": report,
                        "agency": args.agency or "",
                        "year": year,
                        "month": month,
                        "error": message,
                    }
                )
                failures_handle.flush()
                continue
            stats.months_downloaded += 1
            stats.rows_downloaded += len(rows)
            if not rows:
                stats.empty_months += 1
            log_event(LOGGER, "MONTH_DONE", report=report, year=year, month=month, rows=len(rows), file=destination)

    summary = {
        "status": summary_status,
        "started_at": run_started_at,
        "finished_at": utc_now_iso(),
        "elapsed_seconds": round(time.monotonic() - run_started_monotonic, 3),
        "api_url": service.api_url,
        "agency": args.agency,
        "format": args.format,
        "stats": asdict(stats),
    }
    (run_dir / "summary.json").write_text(json.dumps(summary, indent=2) + "\n", encoding="utf-8")
    log_event(LOGGER, "RUN_DONE", status=summary_status, **asdict(stats))
    return 1 if stats.failures else 0


def main() -> None:
    args = parse_args()
    sys.exit(run(args))


if __name__ == "__main__":
    main()
