"""Historical backfill of the national catalog from the global feed, one year per request."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from quake_catalog.adapters.base import FeedQuery, SourceAdapter
from quake_catalog.adapters.usgs_geojson import USGSAdapter
from quake_catalog.models import Err
from quake_catalog.regions import NATIONAL_ENVELOPE
from quake_catalog.sources import BACKFILL_SOURCE
from quake_catalog.store import CatalogStore

logger = logging.getLogger(__name__)

DEFAULT_DELAY_SECONDS = 1.0

# (first year, floor): older catalogs are only complete for larger events
COMPLETENESS_SCHEDULE = (
    (2020, 1.0),
    (2010, 2.0),
    (2000, 2.5),
    (1990, 3.0),
    (1980, 4.0),
    (1960, 4.5),
)
PRE_INSTRUMENTAL_FLOOR = 5.0


def completeness_floor(year: int) -> float:
    """Minimum magnitude the global catalog reports reliably for ``year``."""
    for first_year, floor in COMPLETENESS_SCHEDULE:
        if year >= first_year:
            return floor
    return PRE_INSTRUMENTAL_FLOOR


@dataclass
class YearResult:
    year: int
    floor: float
    fetched: int = 0
    new: int = 0
    error: Optional[str] = None


@dataclass
class BackfillSummary:
    start_year: int
    end_year: int
    years: list[YearResult] = field(default_factory=list)
    database: dict = field(default_factory=dict)

    @property
    def total_fetched(self) -> int:
        return sum(y.fetched for y in self.years)

    @property
    def total_new(self) -> int:
        return sum(y.new for y in self.years)

    @property
    def failed_years(self) -> list[int]:
        return [y.year for y in self.years if y.error]

    def to_dict(self) -> dict:
        d = asdict(self)
        d["total_fetched"] = self.total_fetched
        d["total_new"] = self.total_new
        return d


def year_query(year: int) -> FeedQuery:
    return FeedQuery(
        start=datetime(year, 1, 1, tzinfo=timezone.utc),
        end=datetime(year, 12, 31, 23, 59, 59, tzinfo=timezone.utc),
        min_magnitude=completeness_floor(year),
        bounds=NATIONAL_ENVELOPE,
        limit=BACKFILL_SOURCE.limit,
    )


async def run_backfill(
    start_year: int,
    end_year: int,
    store: CatalogStore,
    adapter: Optional[SourceAdapter] = None,
    delay_seconds: float = DEFAULT_DELAY_SECONDS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> BackfillSummary:
    """Fetch and store every year in [start_year, end_year], strictly in sequence.

    A failed year is recorded and the run moves on. ``delay_seconds`` is
    waited between consecutive requests to honour the provider's rate policy.
    """
    if start_year > end_year:
        raise ValueError(f"start year {start_year} is after end year {end_year}")

    adapter = adapter or USGSAdapter(BACKFILL_SOURCE)
    summary = BackfillSummary(start_year=start_year, end_year=end_year)
    store.init_db()

    for year in range(start_year, end_year + 1):
        if year > start_year and delay_seconds > 0:
            await sleep(delay_seconds)

        query = year_query(year)
        result = YearResult(year=year, floor=query.min_magnitude)
        logger.info("[%s] fetching %d (M%.1f+)", adapter.name, year, query.min_magnitude)

        outcome = await adapter.fetch(query)
        if isinstance(outcome, Err):
            logger.warning("[%s] year %d failed: %s", adapter.name, year, outcome.reason)
            result.error = outcome.reason
        else:
            result.fetched = len(outcome.events)
            result.new, _ = await asyncio.to_thread(store.upsert_events, outcome.events)
            logger.info("[%s] year %d: %d fetched, %d new", adapter.name, year, result.fetched, result.new)

        summary.years.append(result)

    summary.database = store.database_info()
    return summary
