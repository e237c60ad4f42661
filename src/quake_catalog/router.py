"""Region router: concurrent fan-out to a region's sources, then a single merge.

Every adapter configured for the region is invoked at once; the call resolves
only after all of them have, and a failed source contributes an empty list.
The national region also pulls scraped rows from the store, since that agency
has no live endpoint.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping, Optional

from quake_catalog.adapters import build_adapters
from quake_catalog.adapters.base import FeedQuery, SourceAdapter
from quake_catalog.deduplicator import deduplicate
from quake_catalog.models import AdapterResult, EarthquakeEvent, Err, Ok
from quake_catalog.regions import RegionConfig, get_region
from quake_catalog.sources import PHIVOLCS
from quake_catalog.store import CatalogStore, CatalogUnavailableError, EventFilter

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL = 60.0


class UnknownRegionError(KeyError):
    """Requested region key is not in the region table."""


@dataclass
class RegionResult:
    region: str
    events: list[EarthquakeEvent]
    source_counts: dict[str, int] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    combined: int = 0
    after_dedup: int = 0
    min_magnitude: float = 0.0
    fetch_ms: int = 0
    cached: bool = False

    def to_dict(self) -> dict:
        return {
            "region": self.region,
            "count": len(self.events),
            "sources": dict(self.source_counts),
            "errors": dict(self.errors),
            "combined": self.combined,
            "after_dedup": self.after_dedup,
            "min_magnitude": self.min_magnitude,
            "fetch_ms": self.fetch_ms,
            "cached": self.cached,
            "earthquakes": [e.to_dict() for e in self.events],
        }


class RegionRouter:
    """Maps a region key to its sources and floor, and drives one aggregation."""

    def __init__(
        self,
        adapters: Optional[Mapping[str, SourceAdapter]] = None,
        store: Optional[CatalogStore] = None,
        cache_ttl: float = DEFAULT_CACHE_TTL,
    ):
        self.adapters = dict(adapters) if adapters is not None else build_adapters()
        self.store = store
        self.cache_ttl = cache_ttl
        self._cache: dict[tuple, tuple[float, RegionResult]] = {}

    async def fetch_region(
        self,
        key: str,
        hours: float = 24,
        min_magnitude: float = 0.0,
        now: Optional[datetime] = None,
    ) -> RegionResult:
        region = get_region(key)
        if region is None:
            raise UnknownRegionError(key)

        # Requests never go below what the region's catalogs report reliably
        floor = max(min_magnitude, region.min_magnitude)

        # An explicit `now` pins the window, so it is part of the key
        cache_key = (key.lower(), hours, floor, now)
        cached = self._cache_get(cache_key)
        if cached is not None:
            return cached

        query = FeedQuery.last_hours(hours, min_magnitude=floor, bounds=region.bounds, now=now)
        result = await self._aggregate(key.lower(), region, query)

        if self.cache_ttl > 0:
            self._cache[cache_key] = (time.monotonic(), copy.deepcopy(result))
        return result

    async def _aggregate(self, key: str, region: RegionConfig, query: FeedQuery) -> RegionResult:
        started = time.perf_counter()

        names: list[str] = []
        tasks = []
        for name in region.sources:
            adapter = self.adapters.get(name)
            if adapter is None:
                logger.warning("[%s] no adapter configured, skipping for %s", name, key)
                continue
            names.append(name)
            tasks.append(adapter.fetch(query))
        if region.includes_stored and self.store is not None:
            names.append(PHIVOLCS)
            tasks.append(self._read_stored(query))

        outcomes = await asyncio.gather(*tasks)

        combined: list[EarthquakeEvent] = []
        counts: dict[str, int] = {}
        errors: dict[str, str] = {}
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, Err):
                logger.warning("[%s] %s: %s", name, key, outcome.reason)
                errors[name] = outcome.reason
                counts[name] = 0
                continue
            counts[name] = len(outcome.events)
            combined.extend(outcome.events)

        events = deduplicate(combined, tolerance=region.tolerance)
        fetch_ms = int((time.perf_counter() - started) * 1000)

        logger.info(
            "Region %s: %d combined → %d after dedup in %dms (%s)",
            key, len(combined), len(events), fetch_ms,
            ", ".join(f"{n}={c}" for n, c in counts.items()),
        )
        return RegionResult(
            region=key,
            events=events,
            source_counts=counts,
            errors=errors,
            combined=len(combined),
            after_dedup=len(events),
            min_magnitude=query.min_magnitude,
            fetch_ms=fetch_ms,
        )

    async def _read_stored(self, query: FeedQuery) -> AdapterResult:
        flt = EventFilter(
            start=query.start,
            end=query.end,
            min_magnitude=query.min_magnitude,
            source=PHIVOLCS,
            bounds=query.bounds,
        )
        try:
            events = await asyncio.to_thread(self.store.query_events, flt)
        except CatalogUnavailableError as exc:
            return Err(f"{PHIVOLCS}: {exc}")
        return Ok(events)

    def _cache_get(self, cache_key: tuple) -> Optional[RegionResult]:
        if self.cache_ttl <= 0:
            return None
        entry = self._cache.get(cache_key)
        if entry is None:
            return None
        stored_at, result = entry
        if time.monotonic() - stored_at > self.cache_ttl:
            del self._cache[cache_key]
            return None
        hit = copy.deepcopy(result)
        hit.cached = True
        return hit
