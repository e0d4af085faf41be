from __future__ import annotations

import pytest

from report_transforms import find_proportions, summarize_rows, totals_by


ROWS = [
    {"device": "mobile", "visits": 60},
    {"device": "desktop", "visits": "30"},
    {"device": "smart tv", "visits": 10},
    {"device": "(other)", "visits": 500},
    {"device": "mobile", "visits": 20},
    {"visits": 5},
]


def test_totals_by_sums_metric_per_value() -> None:
    assert totals_by(ROWS, "device") == {
        "mobile": 80.0,
        "desktop": 30.0,
        "smart tv": 10.0,
        "(other)": 500.0,
        "(not set)": 5.0,
    }


def test_totals_by_treats_unparseable_metric_as_zero() -> None:
    assert totals_by([{"language": "en", "visits": "n/a"}, {"language": "en"}], "language") == {"en": 0.0}


def test_find_proportions_excludes_other_and_relabels() -> None:
    entries = find_proportions(totals_by(ROWS, "device"))

    assert [entry["key"] for entry in entries] == ["mobile", "desktop", "Smart TV", "Not set"]
    assert sum(entry["proportion"] for entry in entries) == pytest.approx(100.0)
    assert entries[0]["proportion"] == pytest.approx(80 / 125 * 100)


def test_find_proportions_top_n() -> None:
    entries = find_proportions({"en": 3, "es": 2, "fr": 1}, top=2)
    assert [entry["key"] for entry in entries] == ["en", "es"]


def test_find_proportions_ties_sort_by_key() -> None:
    entries = find_proportions({"b": 1, "a": 1})
    assert [entry["key"] for entry in entries] == ["a", "b"]


def test_find_proportions_zero_total() -> None:
    entries = find_proportions({"en": 0, "es": 0})
    assert [entry["proportion"] for entry in entries] == [0.0, 0.0]


def test_summarize_rows_defaults_to_top_ten() -> None:
    rows = [{"language": f"lang-{index:02d}", "visits": index + 1} for index in range(15)]
    summary = summarize_rows(rows, "language")
    assert len(summary) == 10
    assert summary[0]["key"] == "lang-14"
