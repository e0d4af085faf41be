#!/usr/bin/env python3
"""Report and agency catalog for the Digital Analytics Program (DAP) API."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence, Tuple

import yaml


@dataclass(frozen=True)
class ReportDescriptor:
    """Maps an API identifier to the label shown on the dashboard."""

    api_value: str
    display_name: str


# Agencies share the descriptor shape.
AgencyDescriptor = ReportDescriptor


REPORTS: Tuple[ReportDescriptor, ...] = (
    ReportDescriptor("site", "Visitors by Site"),
    ReportDescriptor("domain", "Visitors by Domain"),
    ReportDescriptor("second-level-domain", "Visitors by Second-Level Domain"),
    ReportDescriptor("download", "Top Downloads"),
    ReportDescriptor("traffic-source", "Traffic Sources"),
    ReportDescriptor("language", "Languages"),
    ReportDescriptor("device", "Device Types"),
    ReportDescriptor("device-model", "Device Models"),
    ReportDescriptor("os", "Operating Systems"),
    ReportDescriptor("windows", "Windows Versions"),
    ReportDescriptor("browser", "Web Browsers"),
    ReportDescriptor("os-browser", "Operating System and Browser"),
    ReportDescriptor("windows-browser", "Windows and Browser"),
    ReportDescriptor("screen-size", "Screen Sizes"),
)

AGENCIES: Tuple[AgencyDescriptor, ...] = (
    AgencyDescriptor("agency-international-development", "Agency for International Development"),
    AgencyDescriptor("agriculture", "Department of Agriculture"),
    AgencyDescriptor("commerce", "Department of Commerce"),
    AgencyDescriptor("defense", "Department of Defense"),
    AgencyDescriptor("education", "Department of Education"),
    AgencyDescriptor("energy", "Department of Energy"),
    AgencyDescriptor("environmental-protection-agency", "Environmental Protection Agency"),
    AgencyDescriptor("general-services-administration", "General Services Administration"),
    AgencyDescriptor("health-human-services", "Department of Health and Human Services"),
    AgencyDescriptor("homeland-security", "Department of Homeland Security"),
    AgencyDescriptor("housing-urban-development", "Department of Housing and Urban Development"),
    AgencyDescriptor("interior", "Department of the Interior"),
    AgencyDescriptor("justice", "Department of Justice"),
    AgencyDescriptor("labor", "Department of Labor"),
    AgencyDescriptor("national-aeronautics-space-administration", "National Aeronautics and Space Administration"),
    AgencyDescriptor("national-archives-records-administration", "National Archives and Records Administration"),
    AgencyDescriptor("national-science-foundation", "National Science Foundation"),
    AgencyDescriptor("nuclear-regulatory-commission", "Nuclear Regulatory Commission"),
    AgencyDescriptor("office-personnel-management", "Office of Personnel Management"),
    AgencyDescriptor("small-business-administration", "Small Business Administration"),
    AgencyDescriptor("social-security-administration", "Social Security Administration"),
    AgencyDescriptor("state", "Department of State"),
    AgencyDescriptor("transportation", "Department of Transportation"),
    AgencyDescriptor("treasury", "Department of the Treasury"),
    AgencyDescriptor("veterans-affairs", "Department of Veterans Affairs"),
)

REPORT_PROFILES: Dict[str, Dict[str, object]] = {
    "visitors": {
        "description": "Visit counts by site and domain.",
        "reports": ["site", "domain", "second-level-domain"],
    },
    "languages": {
        "description": "Browser language breakdown.",
        "reports": ["language"],
    },
    "devices": {
        "description": "Device, operating system, browser and screen breakdowns.",
        "reports": [
            "device",
            "device-model",
            "os",
            "windows",
            "browser",
            "os-browser",
            "windows-browser",
            "screen-size",
        ],
    },
    "sources": {
        "description": "Where visits come from and what people download.",
        "reports": ["traffic-source", "download"],
    },
    "core": {
        "description": "The reports behind the main dashboard charts.",
        "reports": ["site", "language", "device", "traffic-source"],
    },
    "all": {
        "description": "All reports in this catalog.",
        "reports": [descriptor.api_value for descriptor in REPORTS],
    },
}

DEFAULT_PROFILE = "core"

# Older names still accepted on the command line.
REPORT_NAME_ALIASES: Dict[str, str] = {
    "devices": "device",
    "languages": "language",
    "traffic-sources": "traffic-source",
    "downloads": "download",
    "sites": "site",
    "domains": "domain",
}


@dataclass(frozen=True)
class PublishedFile:
    stem: str
    description: str
    time_range: str
    frequency: str
    section: str


# Static files the site publishes for each agency under the data URL.
PUBLISHED_FILES: Tuple[PublishedFile, ...] = (
    PublishedFile("all-pages-realtime", "Top pages and screens people are viewing", "30 minutes", "Every 30 minutes", "traffic"),
    PublishedFile("top-10000-domains-30-days", "Top hostnames", "30 days", "Daily", "traffic"),
    PublishedFile("top-traffic-sources-30-days", "Top traffic sources", "30 days", "Daily", "traffic"),
    PublishedFile("top-downloads-yesterday", "Top downloads", "Yesterday", "Daily", "traffic"),
    PublishedFile("language", "Language", "90 days", "Daily", "demographics"),
    PublishedFile("top-countries-realtime", "Users per country", "30 minutes", "Every 30 minutes", "demographics"),
    PublishedFile("top-cities-realtime", "Users per city", "30 minutes", "Every 30 minutes", "demographics"),
    PublishedFile("devices-90-days", "Desktop, mobile, tablet", "90 days", "Daily", "demographics"),
    PublishedFile("browsers-90-days", "Web browsers", "90 days", "Daily", "demographics"),
    PublishedFile("os-90-days", "Operating systems", "90 days", "Daily", "demographics"),
    PublishedFile("windows-90-days", "Versions of Windows", "90 days", "Daily", "demographics"),
    PublishedFile("os-browsers", "OS & browser (combined)", "90 days", "Daily", "demographics"),
    PublishedFile("windows-browsers", "Windows & browser (combined)", "90 days", "Daily", "demographics"),
    PublishedFile("screen-size", "Screen sizes", "90 days", "Daily", "demographics"),
    PublishedFile("device-model", "Device model", "90 days", "Daily", "demographics"),
)


def available_profiles() -> List[str]:
    return sorted(REPORT_PROFILES.keys())


def normalize_report_names(report_names: Iterable[str]) -> List[str]:
    unique: List[str] = []
    seen = set()
    for report_name in report_names:
        cleaned = report_name.strip().lower()
        cleaned = REPORT_NAME_ALIASES.get(cleaned, cleaned)
        if not cleaned or cleaned in seen:
            continue
        unique.append(cleaned)
        seen.add(cleaned)
    return unique


def resolve_report_names(
    profile_names: Sequence[str] | None,
    explicit_reports: Sequence[str] | None,
) -> List[str]:
    selected: List[str] = []
    seen = set()

    selected_profiles = list(profile_names or ([] if explicit_reports else [DEFAULT_PROFILE]))
    for profile in selected_profiles:
        if profile not in REPORT_PROFILES:
            raise KeyError(f"Unknown profile '{profile}'. Choices: {', '.join(available_profiles())}")
        for report_name in REPORT_PROFILES[profile]["reports"]:  # type: ignore[union-attr]
            if report_name not in seen:
                selected.append(report_name)
                seen.add(report_name)

    for report_name in normalize_report_names(explicit_reports or []):
        if report_name not in seen:
            selected.append(report_name)
            seen.add(report_name)

    return selected


def _coerce_descriptors(raw: object, key: str) -> Tuple[ReportDescriptor, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ValueError(f"Catalog key '{key}' must be a list of {{value, name}} mappings.")
    descriptors: List[ReportDescriptor] = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValueError(f"Catalog entry {key}[{index}] must be a mapping.")
        api_value = item.get("value", item.get("api_value"))
        display_name = item.get("name", item.get("display_name"))
        if not api_value or not display_name:
            raise ValueError(f"Catalog entry {key}[{index}] needs both 'value' and 'name'.")
        descriptors.append(ReportDescriptor(str(api_value), str(display_name)))
    return tuple(descriptors)


def load_descriptor_file(path: Path) -> Tuple[Tuple[ReportDescriptor, ...], Tuple[AgencyDescriptor, ...]]:
    """Read report and agency descriptor tables from a YAML or JSON file.

    The file holds two optional lists, ``reports`` and ``agencies``, whose
    entries are mappings with ``value`` (the API identifier) and ``name``
    (the display label).
    """
    if not path.exists():
        raise FileNotFoundError(f"Catalog file not found: {path}")
    suffix = path.suffix.lower()
    raw = path.read_text(encoding="utf-8")
    if suffix in {".yaml", ".yml"}:
        data: Any = yaml.safe_load(raw)
    elif suffix == ".json":
        data = json.loads(raw)
    else:
        raise ValueError("Unsupported catalog file extension. Use .yaml/.yml or .json.")
    if data is None:
        return (), ()
    if not isinstance(data, dict):
        raise ValueError("Catalog root must be a mapping/object.")
    return _coerce_descriptors(data.get("reports"), "reports"), _coerce_descriptors(data.get("agencies"), "agencies")
