"""Query façade over the stored catalog.

Caller filters arrive loosely typed (CLI options, query-string values) and
are normalized best-effort: out-of-range values are clamped, unparseable ones
fall back to defaults, nothing is rejected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from quake_catalog.adapters.base import parse_iso_utc, safe_float, safe_int
from quake_catalog.models import Bounds, EarthquakeEvent, utcnow
from quake_catalog.regions import NATIONAL_BUCKETS, OTHER_REGION, REGIONS
from quake_catalog.sources import PHIVOLCS
from quake_catalog.store import CatalogStore, EventFilter

logger = logging.getLogger(__name__)

DEFAULT_HOURS = 168
MAX_HOURS = 8784        # one leap year
DEFAULT_MIN_MAGNITUDE = 1.0
DEFAULT_MAX_MAGNITUDE = 10.0
MAGNITUDE_RANGE = (-2.0, 10.0)
DEFAULT_LIMIT = 1000
MAX_LIMIT = 10000

FLAT = "flat"
GEOJSON = "geojson"
FORMATS = (FLAT, GEOJSON)

_BUCKET_NAMES = {
    name.lower(): name
    for name in (*NATIONAL_BUCKETS, *(cfg.name for cfg in REGIONS.values()), OTHER_REGION)
}


@dataclass
class CatalogQuery:
    hours: float = DEFAULT_HOURS
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    min_magnitude: float = DEFAULT_MIN_MAGNITUDE
    max_magnitude: float = DEFAULT_MAX_MAGNITUDE
    source: Optional[str] = None
    region: Optional[str] = None
    bounds: Optional[Bounds] = None
    limit: int = DEFAULT_LIMIT
    offset: int = 0
    format: str = FLAT
    include_stats: bool = False
    include_freshness: bool = True

    @property
    def uses_date_range(self) -> bool:
        return self.start is not None or self.end is not None

    def window(self, now: datetime) -> tuple[Optional[datetime], datetime]:
        """(start, end) of the time filter; an explicit range wins over ``hours``."""
        if self.uses_date_range:
            return self.start, self.end or now
        return now - timedelta(hours=self.hours), now

    def to_filter(self, now: datetime) -> EventFilter:
        start, end = self.window(now)
        flt = EventFilter(
            start=start,
            end=end,
            min_magnitude=self.min_magnitude,
            max_magnitude=self.max_magnitude,
            source=self.source,
            bounds=self.bounds,
            limit=self.limit,
            offset=self.offset,
        )
        if self.region:
            _apply_region(flt, self.region)
        return flt


@dataclass
class QueryResult:
    query: CatalogQuery
    events: list[EarthquakeEvent]
    total_count: int
    generated: datetime
    stats: Optional[dict] = None
    freshness: Optional[dict] = None


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _parse_when(raw: Any) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=timezone.utc)
    if isinstance(raw, date):
        return datetime(raw.year, raw.month, raw.day, tzinfo=timezone.utc)
    try:
        return parse_iso_utc(str(raw))
    except ValueError:
        logger.debug("Ignoring unparseable date %r", raw)
        return None


def _parse_bounds(raw: Any) -> Optional[Bounds]:
    if raw is None or isinstance(raw, Bounds):
        return raw
    try:
        return Bounds.parse(str(raw))
    except ValueError:
        logger.debug("Ignoring unparseable bounds %r", raw)
        return None


def _as_bool(raw: Any) -> bool:
    if isinstance(raw, str):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    return bool(raw)


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


def normalize_filters(raw: Mapping[str, Any]) -> CatalogQuery:
    """Build a CatalogQuery from caller-supplied values, clamping instead of rejecting."""
    hours = safe_float(_first(raw, "hours"))
    hours = DEFAULT_HOURS if hours is None else _clamp(hours, 1, MAX_HOURS)

    start = _parse_when(_first(raw, "start", "starttime"))
    end = _parse_when(_first(raw, "end", "endtime"))
    if start and end and start > end:
        start, end = end, start

    min_mag = safe_float(_first(raw, "min_magnitude", "minmag"))
    max_mag = safe_float(_first(raw, "max_magnitude", "maxmag"))
    min_mag = _clamp(DEFAULT_MIN_MAGNITUDE if min_mag is None else min_mag, *MAGNITUDE_RANGE)
    max_mag = _clamp(DEFAULT_MAX_MAGNITUDE if max_mag is None else max_mag, *MAGNITUDE_RANGE)
    if min_mag > max_mag:
        min_mag, max_mag = max_mag, min_mag

    limit = safe_int(_first(raw, "limit"))
    limit = DEFAULT_LIMIT if limit is None else int(_clamp(limit, 1, MAX_LIMIT))
    offset = safe_int(_first(raw, "offset"))
    offset = max(offset or 0, 0)

    fmt = str(_first(raw, "format") or FLAT).lower()
    if fmt not in FORMATS:
        fmt = FLAT

    source = _first(raw, "source")
    freshness = _first(raw, "freshness")

    return CatalogQuery(
        hours=hours,
        start=start,
        end=end,
        min_magnitude=min_mag,
        max_magnitude=max_mag,
        source=str(source).lower() if source else None,
        region=_first(raw, "region") or None,
        bounds=_parse_bounds(_first(raw, "bounds")),
        limit=limit,
        offset=offset,
        format=fmt,
        include_stats=_as_bool(_first(raw, "stats", "include_stats")),
        include_freshness=True if freshness is None else _as_bool(freshness),
    )


def _apply_region(flt: EventFilter, name: str) -> None:
    """Narrow the filter by a region-table key (bounds) or a bucket name; unknown names are ignored."""
    key = name.strip().lower().replace(" ", "-")
    cfg = REGIONS.get(key)
    if cfg is not None:
        if key != "global":
            flt.bounds = cfg.bounds
        return

    bucket = _BUCKET_NAMES.get(name.strip().lower())
    if bucket is not None:
        flt.region_name = bucket
        return

    logger.info("Unknown region %r, not filtering by region", name)


def run_query(store: CatalogStore, query: CatalogQuery, now: Optional[datetime] = None) -> QueryResult:
    """Run the query against the store.

    Raises CatalogUnavailableError when the store cannot be read.
    """
    now = now or utcnow()
    flt = query.to_filter(now)

    events = store.query_events(flt)
    total = store.count_events(flt)

    result = QueryResult(query=query, events=events, total_count=total, generated=now)
    if query.include_stats:
        result.stats = store.get_stats(flt, now=now)
    if query.include_freshness:
        result.freshness = freshness(store)
    return result


def freshness(store: CatalogStore) -> dict:
    """How current the scraped national data is."""
    run = store.latest_scrape_run(PHIVOLCS)
    return {
        "last_scrape": run.to_dict() if run else None,
        "last_update": store.last_update(PHIVOLCS),
    }


def to_flat(result: QueryResult) -> dict:
    body: dict = {
        "generated": result.generated.isoformat(),
        "count": len(result.events),
        "total_count": result.total_count,
        "earthquakes": [e.to_dict() for e in result.events],
    }
    if result.stats is not None:
        body["stats"] = result.stats
    if result.freshness is not None:
        body["freshness"] = result.freshness
    return body


def to_feature_collection(result: QueryResult) -> dict:
    metadata: dict = {
        "generated": result.generated.isoformat(),
        "count": len(result.events),
        "total_count": result.total_count,
    }
    if result.stats is not None:
        metadata["stats"] = result.stats
    if result.freshness is not None:
        metadata["freshness"] = result.freshness
    return {
        "type": "FeatureCollection",
        "metadata": metadata,
        "features": [e.to_feature() for e in result.events],
    }


def render(result: QueryResult) -> dict:
    if result.query.format == GEOJSON:
        return to_feature_collection(result)
    return to_flat(result)


def risk_records(result: QueryResult) -> list[dict]:
    """Read-only per-event records for the volcanic-risk model."""
    return [e.to_risk_record() for e in result.events]
