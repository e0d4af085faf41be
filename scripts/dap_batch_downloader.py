#!/usr/bin/env python3
"""
DAP batch downloader (fetches the report files published for an agency, JSON and/or CSV).

Usage:
    python scripts/dap_batch_downloader.py --data-url "https://analytics.usa.gov/data" --agency-prefix live --format json csv

The agency prefix is the path segment that scopes the published files, for example
'live' for the government-wide data or 'education' for one agency.
"""

import argparse
import logging
import os
import sys
import time

import requests
from tqdm import tqdm

from dap_report_catalog import PUBLISHED_FILES

# ------- CONFIG (edit or override via CLI) -------
DATA_URL = os.getenv("DAP_DATA_URL", "https://analytics.usa.gov/data")
AGENCY_PREFIX = "live"
OUTDIR = "data/raw/published"
FORMATS = ["json", "csv"]
USER_AGENT = "dap-downloader/1.0"
MAX_RETRIES = 5
SLEEP_BETWEEN_REQUESTS = 0.5  # seconds
# -------------------------------------------------

session = requests.Session()
session.headers.update({"User-Agent": USER_AGENT})


def published_file_urls(data_url, agency_prefix, formats, sections=None):
    base = f"{data_url.rstrip('/')}/{agency_prefix.strip('/')}"
    urls = []
    for published in PUBLISHED_FILES:
        if sections and published.section not in sections:
            continue
        for fmt in formats:
            urls.append({"href": f"{base}/{published.stem}.{fmt}", "name": f"{published.stem}.{fmt}", "file": published})
    return urls


def ensure_dir(path):
    if not os.path.exists(path):
        os.makedirs(path, exist_ok=True)


def download_with_resume(url, dest_path, max_retries=MAX_RETRIES, retry_sleep=1.0):
    """
    Download file with resume support.
    """
    temp_path = dest_path + ".part"
    for attempt in range(max_retries):
        headers = {}
        pos = 0
        if os.path.exists(temp_path):
            pos = os.path.getsize(temp_path)
            headers["Range"] = f"bytes={pos}-"
        try:
            with session.get(url, stream=True, headers=headers, timeout=30, allow_redirects=False) as r:
                if r.status_code in (403, 404):
                    logging.error("HTTP %d for %s -- not retrying", r.status_code, url)
                    return False
                if 300 <= r.status_code < 400:
                    logging.error("Redirect (HTTP %d) for %s -- not following", r.status_code, url)
                    return False
                if r.status_code == 416 and pos:
                    # nothing left past the partial file, it is already complete
                    logging.info("Range not satisfiable for %s at byte %d, keeping partial file", url, pos)
                    os.replace(temp_path, dest_path)
                    return True
                r.raise_for_status()
                if pos and r.status_code != 206:
                    # server ignored the Range header, start over
                    pos = 0
                total = r.headers.get("Content-Length")
                if total is not None:
                    total = int(total) + pos
                mode = "ab" if pos else "wb"
                with open(temp_path, mode) as f, tqdm(total=total, unit="B", unit_scale=True, desc=os.path.basename(dest_path), initial=pos, disable=not sys.stderr.isatty()) as pbar:
                    for chunk in r.iter_content(chunk_size=8192):
                        if chunk:
                            f.write(chunk)
                            pbar.update(len(chunk))
            os.replace(temp_path, dest_path)
            return True
        except requests.RequestException as e:
            logging.warning("Download %s failed attempt %d/%d: %s", url, attempt + 1, max_retries, e)
            time.sleep(retry_sleep + attempt * 2 * retry_sleep)
    return False


def main(args):
    data_url = args.data_url or DATA_URL
    outdir = args.outdir or OUTDIR
    formats = [f.lower() for f in (args.format or FORMATS)]
    agency_prefix = args.agency_prefix or AGENCY_PREFIX

    logging.info("Data URL: %s", data_url)
    logging.info("Agency prefix: %s", agency_prefix)
    logging.info("Formats: %s", formats)

    dest_dir = os.path.join(outdir, agency_prefix)
    ensure_dir(dest_dir)

    links = published_file_urls(data_url, agency_prefix, formats, sections=args.section)
    logging.info("Found %d published files to consider for download", len(links))

    failed = 0
    for L in links:
        dest_path = os.path.join(dest_dir, L["name"])
        if os.path.exists(dest_path) and not args.overwrite:
            logging.info("Already have %s -- skipping", dest_path)
            continue
        logging.info("Downloading %s -> %s", L["href"], dest_path)
        if not download_with_resume(L["href"], dest_path):
            logging.error("Failed to download %s", L["href"])
            failed += 1
            continue
        time.sleep(SLEEP_BETWEEN_REQUESTS)

    logging.info("Done. %d of %d files failed.", failed, len(links))
    return 1 if failed else 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    parser = argparse.ArgumentParser(description="DAP batch downloader (published report files for one agency).")
    parser.add_argument("--data-url", type=str, help="Base URL of the published data. Falls back to DAP_DATA_URL.")
    parser.add_argument("--agency-prefix", type=str, help="Agency path segment ('live' for all agencies).")
    parser.add_argument("--outdir", type=str, help="Output directory root.")
    parser.add_argument("--format", nargs="+", choices=["json", "csv"], help="File formats to download.")
    parser.add_argument("--section", action="append", choices=["traffic", "demographics"], help="Only download files in this section (repeatable).")
    parser.add_argument("--overwrite", action="store_true", help="Download files that already exist.")
    args = parser.parse_args()
    sys.exit(main(args))
