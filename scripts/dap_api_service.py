#!/usr/bin/env python3
"""Fetch full months of report data from the DAP analytics API."""

from __future__ import annotations

import calendar
import logging
import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple
from urllib.parse import quote

import requests

from dap_logging import log_event
from dap_report_catalog import AgencyDescriptor, ReportDescriptor

LOGGER = logging.getLogger(__name__)

API_PAGE_LIMIT = 10000
DEFAULT_MAX_PAGES = 1000
DATE_FORMAT = "%Y-%m-%d"
TRANSPORT_METADATA_KEYS = ("notice", "id")

Row = Dict[str, object]


class DapApiError(Exception):
    """Base class for errors raised while fetching report data."""


class MissingParameter(DapApiError, ValueError):
    pass


class InvalidParameter(DapApiError, ValueError):
    pass


class TransportFailure(DapApiError):
    def __init__(self, message: str, url: str = "", status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class MalformedResponse(TransportFailure):
    pass


class TooManyPages(DapApiError):
    def __init__(self, url: str, max_pages: int) -> None:
        super().__init__(
            f"Stopped after {max_pages} full pages of {API_PAGE_LIMIT} rows without reaching the last page: {url}"
        )
        self.url = url
        self.max_pages = max_pages


@dataclass(frozen=True)
class ReportWindow:
    start_date: date
    end_date: date

    @property
    def after(self) -> str:
        return self.start_date.strftime(DATE_FORMAT)

    @property
    def before(self) -> str:
        return self.end_date.strftime(DATE_FORMAT)


def parse_month(value: object) -> int:
    text = str(value).strip()
    if not re.fullmatch(r"\d{1,2}", text):
        raise InvalidParameter(f"Invalid month '{value}'. Use 1-12.")
    month = int(text)
    if month < 1 or month > 12:
        raise InvalidParameter(f"Invalid month '{value}'. Use 1-12.")
    return month


def parse_year(value: object) -> int:
    text = str(value).strip()
    if not re.fullmatch(r"\d{4}", text):
        raise InvalidParameter(f"Invalid year '{value}'. Use a 4 digit year.")
    return int(text)


def resolve_window(month: object, year: object, today: Optional[date] = None) -> ReportWindow:
    """Return the inclusive date window covering one calendar month.

    A month that has not finished yet ends yesterday so the window never
    reaches into days without complete data. On the first day of the current
    month the window collapses to that single day.
    """
    month_number = parse_month(month)
    year_number = parse_year(year)
    today = today or date.today()

    start_date = date(year_number, month_number, 1)
    if start_date > today:
        raise InvalidParameter(f"Month {year_number}-{month_number:02d} has not started yet.")
    last_day = date(year_number, month_number, calendar.monthrange(year_number, month_number)[1])
    end_date = last_day
    if last_day > today:
        end_date = max(start_date, today - timedelta(days=1))
    return ReportWindow(start_date=start_date, end_date=end_date)


def iter_months(start: Tuple[int, int], end: Tuple[int, int]) -> Iterator[Tuple[int, int]]:
    """Yield (year, month) pairs from start to end, both inclusive."""
    year, month = start
    while (year, month) <= end:
        yield year, month
        month += 1
        if month > 12:
            year += 1
            month = 1


def _build_lookup(descriptors: Iterable[ReportDescriptor]) -> Dict[str, str]:
    lookup: Dict[str, str] = {}
    for descriptor in descriptors:
        # First entry wins when an API value is listed twice.
        lookup.setdefault(descriptor.api_value, descriptor.display_name)
    return lookup


class DapApiService:
    """Client for the DAP ``/reports/{report}/data`` endpoints.

    The instance only holds configuration and the read-only descriptor
    lookups. Every call opens its own HTTP session, so one service can be
    shared by threads fetching different reports at the same time.
    """

    def __init__(
        self,
        api_url: str,
        reports: Sequence[ReportDescriptor] = (),
        agencies: Sequence[AgencyDescriptor] = (),
        *,
        max_pages: int = DEFAULT_MAX_PAGES,
        timeout_seconds: Optional[float] = None,
        session_factory: Callable[[], requests.Session] = requests.Session,
        today: Callable[[], date] = date.today,
    ) -> None:
        if max_pages < 0:
            raise ValueError("max_pages must be 0 (unlimited) or a positive integer.")
        self.api_url = api_url.rstrip("/")
        self.max_pages = max_pages
        self.timeout_seconds = timeout_seconds
        self.session_factory = session_factory
        self.today = today
        self._report_names = _build_lookup(reports)
        self._agency_names = _build_lookup(agencies)

    def get_report_for_month(
        self,
        report: str,
        agency: Optional[str],
        month: object,
        year: object,
    ) -> List[Row]:
        """Return every row of ``report`` for one calendar month.

        When ``agency`` is empty the rows cover all DAP agencies. Any failure
        aborts the whole call; rows from pages fetched before the failure are
        discarded.
        """
        rows: List[Row] = []
        pages = 0
        for page_rows in self.iter_pages(report, agency, month, year):
            rows.extend(page_rows)
            pages += 1
        log_event(
            LOGGER,
            "REPORT_FETCHED",
            report=report,
            agency=agency or "all",
            year=year,
            month=month,
            pages=pages,
            rows=len(rows),
        )
        return rows

    def get_report_for_months(
        self,
        report: str,
        agency: Optional[str],
        start: Tuple[int, int],
        end: Tuple[int, int],
    ) -> Dict[Tuple[int, int], List[Row]]:
        if start > end:
            raise InvalidParameter("Start month must be on or before end month.")
        results: Dict[Tuple[int, int], List[Row]] = {}
        for year, month in iter_months(start, end):
            results[(year, month)] = self.get_report_for_month(report, agency, month, year)
        return results

    def build_month_report_url(self, report: str, agency: Optional[str]) -> str:
        full_url = self.api_url
        if agency:
            full_url = f"{full_url}/agencies/{quote(agency, safe='')}"
        return f"{full_url}/reports/{quote(report, safe='')}/data"

    def iter_pages(
        self,
        report: str,
        agency: Optional[str],
        month: object,
        year: object,
    ) -> Iterator[List[Row]]:
        """Return the lazy sequence of normalized pages for one month.

        The API has no count or cursor field, so a page holding fewer than
        ``API_PAGE_LIMIT`` rows is the only end-of-data signal. A month whose
        row count is an exact multiple of the limit costs one extra request
        that comes back empty.
        """
        if not (report and month and year):
            raise MissingParameter("Missing required params for report API call")

        window = resolve_window(month, year, today=self.today())
        url = self.build_month_report_url(report, agency)
        return self._iter_pages(url, window)

    def _iter_pages(self, url: str, window: ReportWindow) -> Iterator[List[Row]]:
        with self.session_factory() as session:
            session.headers.update({"Content-Type": "application/json"})
            page = 1
            while True:
                if self.max_pages and page > self.max_pages:
                    raise TooManyPages(url, self.max_pages)
                raw_rows = self._get_page(session, url, window, page)
                log_event(LOGGER, "PAGE_FETCHED", logging.DEBUG, url=url, page=page, rows=len(raw_rows))
                yield self.map_rows(raw_rows)
                if len(raw_rows) < API_PAGE_LIMIT:
                    return
                page += 1

    def _get_page(
        self,
        session: requests.Session,
        url: str,
        window: ReportWindow,
        page: int,
    ) -> List[Row]:
        params = {
            "after": window.after,
            "before": window.before,
            "limit": API_PAGE_LIMIT,
            "page": page,
        }
        try:
            response = session.get(
                url,
                params=params,
                timeout=self.timeout_seconds,
                allow_redirects=False,
            )
        except requests.RequestException as exc:
            raise TransportFailure(f"Request failed for {url} page {page}: {exc}", url=url) from exc

        with response:
            status = response.status_code
            if 300 <= status < 400:
                location = response.headers.get("Location", "")
                raise TransportFailure(
                    f"Unexpected redirect (HTTP {status}) for {url} page {page} to {location or '-'}",
                    url=url,
                    status_code=status,
                )
            try:
                response.raise_for_status()
            except requests.HTTPError as exc:
                raise TransportFailure(
                    f"HTTP {status} for {url} page {page}",
                    url=url,
                    status_code=status,
                ) from exc
            try:
                payload = response.json()
            except ValueError as exc:
                raise MalformedResponse(
                    f"Response for {url} page {page} is not valid JSON.",
                    url=url,
                    status_code=status,
                ) from exc

        if not isinstance(payload, list):
            raise MalformedResponse(
                f"Response for {url} page {page} is not a JSON array (got {type(payload).__name__}).",
                url=url,
                status_code=status,
            )
        for index, row in enumerate(payload):
            if not isinstance(row, dict):
                raise MalformedResponse(
                    f"Response for {url} page {page} has a non-object row at index {index} "
                    f"(got {type(row).__name__}).",
                    url=url,
                    status_code=status,
                )
        return payload

    def map_rows(self, rows: List[Row]) -> List[Row]:
        """Drop transport metadata and swap identifiers for display names.

        All rows of one response share a report and agency, so the names are
        looked up once from the first row.
        """
        if not rows:
            return []
        first = rows[0]
        report_name = self._report_names.get(str(first.get("report_name")))
        agency_name = self._agency_names.get(str(first.get("report_agency")))

        mapped: List[Row] = []
        for row in rows:
            # Keys the raw row does not carry stay absent.
            out: Row = {}
            if "report_name" in row:
                out["report_name"] = report_name if report_name is not None else row["report_name"]
            if "report_agency" in row:
                out["report_agency"] = agency_name if agency_name is not None else row["report_agency"]
            for key, value in row.items():
                if key not in TRANSPORT_METADATA_KEYS and key not in ("report_name", "report_agency"):
                    out[key] = value
            mapped.append(out)
        return mapped
