#!/usr/bin/env python3
"""Show DAP reports for dashboard profiles."""

from __future__ import annotations

import argparse
import json
from typing import Dict, List, Optional, Sequence

from dap_report_catalog import AGENCIES, REPORT_PROFILES, REPORTS, available_profiles, resolve_report_names

_DISPLAY_NAMES = {descriptor.api_value: descriptor.display_name for descriptor in REPORTS}


def _build_payload(selected_reports: List[str], selected_profiles: List[str], include_agencies: bool) -> Dict[str, object]:
    report_rows = [
        {"report": report_name, "display_name": _DISPLAY_NAMES.get(report_name, report_name)}
        for report_name in selected_reports
    ]
    payload: Dict[str, object] = {
        "selected_profiles": selected_profiles,
        "profiles": {name: REPORT_PROFILES[name]["description"] for name in selected_profiles},
        "report_count": len(report_rows),
        "reports": report_rows,
    }
    if include_agencies:
        payload["agencies"] = [
            {"agency": descriptor.api_value, "display_name": descriptor.display_name} for descriptor in AGENCIES
        ]
    return payload


def _print_text(payload: Dict[str, object]) -> None:
    profile_names: List[str] = payload["selected_profiles"]  # type: ignore[assignment]
    print("DAP reports")
    print("===========")
    print(f"Profiles: {', '.join(profile_names)}")
    for name in profile_names:
        print(f"- {name}: {REPORT_PROFILES[name]['description']}")

    print("")
    print(f"Total reports: {payload['report_count']}")
    for row in payload["reports"]:  # type: ignore[attr-defined]
        print(f"- {row['report']}: {row['display_name']}")

    agencies = payload.get("agencies")
    if agencies:
        print("")
        print(f"Agencies: {len(agencies)}")  # type: ignore[arg-type]
        for row in agencies:  # type: ignore[attr-defined]
            print(f"- {row['agency']}: {row['display_name']}")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--profile",
        action="append",
        choices=available_profiles(),
        help="Report profile to include. Can be passed multiple times. Defaults to 'core'.",
    )
    parser.add_argument("--agencies", action="store_true", help="Also list the known agencies.")
    parser.add_argument("--json", action="store_true", help="Emit JSON instead of text output.")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    profiles = args.profile or ["core"]
    selected_reports = resolve_report_names(profiles, None)
    payload = _build_payload(selected_reports, profiles, args.agencies)
    if args.json:
        print(json.dumps(payload, indent=2))
    else:
        _print_text(payload)


if __name__ == "__main__":
    main()
