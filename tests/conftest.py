from __future__ import annotations

from datetime import date
from typing import Dict, List, Optional

import requests

FROZEN_TODAY = date(2024, 3, 15)
API_URL = "https://api.example.gov/analytics/v2"


class FakeResponse:
    def __init__(
        self,
        payload: object = None,
        status_code: int = 200,
        headers: Optional[Dict[str, str]] = None,
        invalid_json: bool = False,
    ) -> None:
        self.payload = payload
        self.invalid_json = invalid_json
        self.status_code = status_code
        self.headers = headers or {}
        self.closed = False

    def json(self) -> object:
        if self.invalid_json:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self.payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)  # type: ignore[arg-type]

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class FakeSession:
    """Serves queued responses and records every GET."""

    def __init__(self, responses: List[object]) -> None:
        self.responses = list(responses)
        self.calls: List[Dict[str, object]] = []
        self.headers: Dict[str, str] = {}
        self.opened = 0

    def get(self, url: str, **kwargs: object) -> FakeResponse:
        self.calls.append({"url": url, **kwargs})
        if not self.responses:
            raise AssertionError(f"Unexpected request to {url}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response  # type: ignore[return-value]

    def prepared_urls(self) -> List[str]:
        return [
            requests.Request("GET", call["url"], params=call.get("params")).prepare().url  # type: ignore[arg-type]
            for call in self.calls
        ]

    def __enter__(self) -> "FakeSession":
        self.opened += 1
        return self

    def __exit__(self, *exc: object) -> None:
        return None


def make_rows(count: int, report_name: str = "site", report_agency: str = "education") -> List[Dict[str, object]]:
    return [
        {"id": index, "notice": "Data is sampled", "report_name": report_name, "report_agency": report_agency, "visits": 1}
        for index in range(count)
    ]
