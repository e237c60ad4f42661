"""PHIVOLCS bulletin scraper.

The bulletin is a JavaScript-rendered page with no machine-readable API, so
it is loaded in headless Chromium and the resulting HTML table is parsed.
Browser automation is confined to ``fetch_rendered_html``; row extraction,
validation and date parsing are plain functions over strings.

The only stable contract the page offers is positional: six cells per row
(date-time, latitude, longitude, depth, magnitude, location). If that
layout changes, extraction yields zero rows rather than failing.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from quake_catalog.adapters.base import safe_float
from quake_catalog.models import DEFAULT_DEPTH_KM, Bounds, EarthquakeEvent, ScrapeRun, utcnow
from quake_catalog.regions import categorize_region
from quake_catalog.sources import PHIVOLCS, PHIVOLCS_URL
from quake_catalog.store import CatalogStore, CatalogUnavailableError

logger = logging.getLogger(__name__)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]
VIEWPORT = {"width": 1920, "height": 1080}
NAVIGATION_TIMEOUT_MS = 30_000
SELECTOR_TIMEOUT_MS = 10_000

# Philippine Standard Time, no DST
PHT = timezone(timedelta(hours=8))
BULLETIN_FORMAT = "%d %B %Y - %I:%M %p"

# Rows outside the national territory are page furniture or typos
TERRITORY = Bounds(4.0, 22.0, 116.0, 128.0)
MIN_MAGNITUDE = 0.5
MAX_MAGNITUDE = 10.0

ROW_CELLS = 6

_WS_RE = re.compile(r"\s+")
_DASH_RE = re.compile(r"\s*-\s*")
_YEAR_RE = re.compile(r"\d{4}")
_MERIDIEM_RE = re.compile(r"(\d)\s*([AaPp][Mm])\b")

FetchHtml = Callable[[str, str], Awaitable[str]]


async def fetch_rendered_html(url: str, wait_selector: str = "table") -> str:
    """Load ``url`` in headless Chromium and return the rendered HTML.

    Raises playwright's Error (TimeoutError included) when the browser can't
    launch, navigate, or find ``wait_selector``.
    """
    async with async_playwright() as pw:
        browser = await pw.chromium.launch(headless=True, args=BROWSER_ARGS)
        try:
            context = await browser.new_context(user_agent=BROWSER_USER_AGENT, viewport=VIEWPORT)
            page = await context.new_page()
            logger.info("[%s] navigating to %s", PHIVOLCS, url)
            await page.goto(url, wait_until="networkidle", timeout=NAVIGATION_TIMEOUT_MS)
            await page.wait_for_selector(wait_selector, timeout=SELECTOR_TIMEOUT_MS)
            return await page.content()
        finally:
            await browser.close()


def _clean(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


def extract_rows(html: str) -> list[list[str]]:
    """Text of every six-cell data row in every table, header rows skipped."""
    soup = BeautifulSoup(html, "html.parser")
    rows: list[list[str]] = []

    for table in soup.find_all("table"):
        for tr in table.find_all("tr"):
            if tr.find("th") is not None:
                continue
            cells = [_clean(td.get_text(" ")) for td in tr.find_all("td")]
            if len(cells) != ROW_CELLS:
                continue
            # Date column must look like "30 January 2026 - 04:47 PM"
            if "-" not in cells[0] or not _YEAR_RE.search(cells[0]):
                continue
            rows.append(cells)

    return rows


def parse_bulletin_datetime(text: str) -> datetime | None:
    """Parse a bulletin timestamp given in Philippine time; returns UTC."""
    cleaned = _DASH_RE.sub(" - ", _clean(text), count=1)
    cleaned = _MERIDIEM_RE.sub(r"\1 \2", cleaned)
    for fmt in (BULLETIN_FORMAT, "%d %B %Y - %H:%M"):
        try:
            local = datetime.strptime(cleaned, fmt)
        except ValueError:
            continue
        return local.replace(tzinfo=PHT).astimezone(timezone.utc)
    return None


def synthesize_id(origin_time_utc: datetime, magnitude: float, latitude: float, longitude: float) -> str:
    """Deterministic id so repeated scrapes of one earthquake collide."""
    epoch_ms = int(round(origin_time_utc.timestamp() * 1000))
    return f"{PHIVOLCS}_{epoch_ms}_{magnitude:.1f}_{latitude:.2f}_{longitude:.2f}"


def parse_row(cells: list[str], scraped_at: Optional[datetime] = None) -> EarthquakeEvent | None:
    """One extracted row → event, or None when the row fails validation."""
    if len(cells) != ROW_CELLS:
        return None
    raw_time, raw_lat, raw_lon, raw_depth, raw_mag, location = cells

    latitude = safe_float(raw_lat)
    longitude = safe_float(raw_lon)
    magnitude = safe_float(raw_mag)
    if latitude is None or longitude is None or magnitude is None:
        return None
    if not TERRITORY.contains(latitude, longitude):
        return None
    if not MIN_MAGNITUDE <= magnitude <= MAX_MAGNITUDE:
        return None

    origin = parse_bulletin_datetime(raw_time)
    if origin is None:
        return None

    depth = safe_float(raw_depth)
    return EarthquakeEvent(
        id=synthesize_id(origin, magnitude, latitude, longitude),
        source=PHIVOLCS,
        origin_time_utc=origin,
        latitude=latitude,
        longitude=longitude,
        depth_km=depth if depth is not None else DEFAULT_DEPTH_KM,
        magnitude=magnitude,
        magnitude_type="Ms",
        place=location or "Philippines",
        region=categorize_region(latitude, longitude),
        url=PHIVOLCS_URL,
        scraped_at=scraped_at or utcnow(),
    )


def parse_bulletin(html: str, scraped_at: Optional[datetime] = None) -> list[EarthquakeEvent]:
    scraped_at = scraped_at or utcnow()
    rows = extract_rows(html)
    events: list[EarthquakeEvent] = []
    for cells in rows:
        event = parse_row(cells, scraped_at)
        if event is None:
            logger.debug("[%s] skipping row %r", PHIVOLCS, cells)
            continue
        events.append(event)
    logger.info("[%s] %d rows extracted, %d valid", PHIVOLCS, len(rows), len(events))
    return events


async def run_scrape(
    store: CatalogStore,
    fetch_html: FetchHtml = fetch_rendered_html,
    url: str = PHIVOLCS_URL,
) -> ScrapeRun:
    """Scrape the bulletin into the store; the run is logged whatever the outcome.

    Raises CatalogUnavailableError only if the run log itself can't be opened.
    """
    run = store.start_scrape_run(PHIVOLCS)
    started = time.perf_counter()

    try:
        html = await fetch_html(url, "table")
        events = parse_bulletin(html)
        run.earthquakes_found = len(events)
        if events:
            run.earthquakes_new, run.earthquakes_updated = await asyncio.to_thread(
                store.upsert_events, events
            )
        run.success = True
    except (PlaywrightError, RuntimeError, OSError, CatalogUnavailableError) as exc:
        logger.error("[%s] scrape failed: %s", PHIVOLCS, exc)
        run.error_message = str(exc) or exc.__class__.__name__
    except Exception as exc:
        logger.exception("[%s] scrape failed unexpectedly", PHIVOLCS)
        run.error_message = f"{exc.__class__.__name__}: {exc}"
    finally:
        if not run.success and run.error_message is None:
            # Cancelled or interrupted before an error could be recorded
            run.error_message = "scrape interrupted"
        run.completed_at = utcnow()
        run.duration_ms = int((time.perf_counter() - started) * 1000)
        store.finish_scrape_run(run)

    logger.info(
        "[%s] run %s: success=%s found=%d new=%d updated=%d in %dms",
        PHIVOLCS, run.run_id, run.success, run.earthquakes_found,
        run.earthquakes_new, run.earthquakes_updated, run.duration_ms,
    )
    return run
