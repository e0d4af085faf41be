#!/usr/bin/env python3
"""Summaries of fetched report rows for the dashboard bar charts."""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Sequence

DEFAULT_METRIC = "visits"
DEFAULT_EXCLUDED_KEYS = ("(other)",)

DISPLAY_LABELS: Dict[str, str] = {
    "smart tv": "Smart TV",
    "(not set)": "Not set",
}


def _to_number(value: object) -> float:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.replace(",", "").strip() or 0)
        except ValueError:
            return 0.0
    return 0.0


def totals_by(
    rows: Iterable[Mapping[str, object]],
    dimension: str,
    metric: str = DEFAULT_METRIC,
) -> Dict[str, float]:
    """Sum ``metric`` for each distinct value of ``dimension``.

    Rows without the dimension are counted under ``(not set)``.
    """
    totals: Dict[str, float] = {}
    for row in rows:
        raw_key = row.get(dimension)
        key = "(not set)" if raw_key is None or raw_key == "" else str(raw_key)
        totals[key] = totals.get(key, 0.0) + _to_number(row.get(metric))
    return totals


def find_proportions(
    totals: Mapping[str, float],
    exclude: Sequence[str] = DEFAULT_EXCLUDED_KEYS,
    labels: Optional[Mapping[str, str]] = None,
    top: Optional[int] = None,
) -> List[Dict[str, object]]:
    labels = DISPLAY_LABELS if labels is None else labels
    included = [(key, value) for key, value in totals.items() if key not in exclude]
    grand_total = sum(value for _, value in included)

    entries: List[Dict[str, object]] = []
    for key, value in included:
        proportion = (value / grand_total * 100.0) if grand_total else 0.0
        entries.append({"key": labels.get(key, key), "value": value, "proportion": proportion})

    entries.sort(key=lambda entry: (-float(entry["value"]), str(entry["key"])))  # type: ignore[arg-type]
    if top is not None and top >= 0:
        entries = entries[:top]
    return entries


def summarize_rows(
    rows: Sequence[Mapping[str, object]],
    dimension: str,
    metric: str = DEFAULT_METRIC,
    top: Optional[int] = 10,
) -> List[Dict[str, object]]:
    return find_proportions(totals_by(rows, dimension, metric), top=top)
