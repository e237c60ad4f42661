"""Tests for the region router: fan-out, floors, partial failure and the stored merge."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from quake_catalog.adapters.usgs_geojson import USGSAdapter
from quake_catalog.models import EarthquakeEvent, Err, Ok
from quake_catalog.router import RegionRouter, UnknownRegionError
from quake_catalog.sources import EMSC, GEONET, JMA, PHIVOLCS, USGS
from quake_catalog.store import CatalogStore

NOW = datetime(2026, 1, 30, 12, 0, 0, tzinfo=timezone.utc)


def _make_event(uid, source, time_utc=NOW - timedelta(hours=1), lat=35.7, lon=139.7, mag=4.5):
    return EarthquakeEvent(
        id=uid, source=source, origin_time_utc=time_utc,
        latitude=lat, longitude=lon, magnitude=mag, magnitude_type="ml",
    )


class FakeAdapter:
    """Stands in for a live adapter; records every query it receives."""

    def __init__(self, name, events=(), error=None):
        self.name = name
        self.events = list(events)
        self.error = error
        self.queries = []

    async def fetch(self, query):
        self.queries.append(query)
        if self.error:
            return Err(f"{self.name}: {self.error}")
        return Ok(list(self.events))


def _adapters(**events_by_source):
    return {
        name: FakeAdapter(name, events_by_source.get(name, ()))
        for name in (USGS, EMSC, JMA, GEONET)
    }


def _fetch(router, key, **kwargs):
    kwargs.setdefault("now", NOW)
    return asyncio.run(router.fetch_region(key, **kwargs))


class TestRouting:
    def test_invokes_exactly_the_region_sources(self):
        adapters = _adapters()
        _fetch(RegionRouter(adapters, cache_ttl=0), "japan")
        called = {name for name, a in adapters.items() if a.queries}
        assert called == {JMA, USGS, EMSC}

    def test_region_floor_overrides_lower_request(self):
        adapters = _adapters()
        result = _fetch(RegionRouter(adapters, cache_ttl=0), "chile", min_magnitude=0.5)
        assert adapters[USGS].queries[0].min_magnitude == 3.0
        assert result.min_magnitude == 3.0

    def test_higher_request_kept(self):
        adapters = _adapters()
        _fetch(RegionRouter(adapters, cache_ttl=0), "japan", min_magnitude=4.0)
        assert adapters[JMA].queries[0].min_magnitude == 4.0

    def test_query_uses_region_box_and_window(self):
        adapters = _adapters()
        _fetch(RegionRouter(adapters, cache_ttl=0), "new-zealand", hours=6)
        query = adapters[GEONET].queries[0]
        assert query.bounds.min_lat == -48.0
        assert query.end == NOW
        assert query.start == NOW - timedelta(hours=6)

    def test_unknown_region(self):
        with pytest.raises(UnknownRegionError):
            _fetch(RegionRouter(_adapters(), cache_ttl=0), "atlantis")

    def test_unknown_region_is_a_key_error(self):
        assert issubclass(UnknownRegionError, KeyError)

    def test_adapters_run_concurrently(self):
        class Rendezvous(FakeAdapter):
            async def fetch(self, query):
                self.started.set()
                # Deadlocks unless the peer is running at the same time
                await asyncio.wait_for(self.peer.started.wait(), timeout=2)
                return await super().fetch(query)

        async def run():
            a, b = Rendezvous(GEONET), Rendezvous(USGS)
            a.started, b.started = asyncio.Event(), asyncio.Event()
            a.peer, b.peer = b, a
            router = RegionRouter({GEONET: a, USGS: b}, cache_ttl=0)
            return await router.fetch_region("new-zealand", now=NOW)

        result = asyncio.run(run())
        assert result.errors == {}


class TestMerge:
    def test_cross_source_duplicates_collapse(self):
        adapters = _adapters(**{
            JMA: [_make_event("jma_1", JMA)],
            USGS: [_make_event("usgs_1", USGS, NOW - timedelta(hours=1, seconds=-20), lat=35.75)],
            EMSC: [_make_event("emsc_2", EMSC, NOW - timedelta(hours=3))],
        })
        result = _fetch(RegionRouter(adapters, cache_ttl=0), "japan")
        assert result.combined == 3
        assert result.after_dedup == 2
        assert [e.id for e in result.events] == ["jma_1", "emsc_2"]
        assert result.source_counts == {JMA: 1, USGS: 1, EMSC: 1}

    def test_partial_failure_returns_remaining_sources(self):
        adapters = _adapters(**{EMSC: [_make_event("emsc_1", EMSC)]})
        adapters[USGS].error = "HTTP 500"
        adapters[JMA].error = "timed out"
        result = _fetch(RegionRouter(adapters, cache_ttl=0), "japan")
        assert [e.id for e in result.events] == ["emsc_1"]
        assert set(result.errors) == {USGS, JMA}
        assert result.source_counts[USGS] == 0

    def test_all_sources_down(self):
        adapters = _adapters()
        for a in adapters.values():
            a.error = "unreachable"
        result = _fetch(RegionRouter(adapters, cache_ttl=0), "global")
        assert result.events == []
        assert len(result.errors) == 4


class TestNationalRegion:
    @pytest.fixture
    def store(self, tmp_path):
        s = CatalogStore(str(tmp_path / "catalog.db"))
        s.init_db()
        s.upsert_events([
            _make_event(f"{PHIVOLCS}_1", PHIVOLCS, lat=14.6, lon=121.0, mag=4.0),
            # Outside the requested window
            _make_event(f"{PHIVOLCS}_old", PHIVOLCS, NOW - timedelta(days=3), lat=14.6, lon=121.0),
        ])
        return s

    def test_stored_rows_merged_and_preferred(self, store):
        live = _make_event("usgs_1", USGS, NOW - timedelta(hours=1, seconds=-20),
                           lat=14.62, lon=121.03, mag=4.1)
        adapters = _adapters(**{USGS: [live]})
        result = _fetch(RegionRouter(adapters, store=store, cache_ttl=0), "philippines")
        assert result.source_counts[PHIVOLCS] == 1
        assert [e.id for e in result.events] == [f"{PHIVOLCS}_1"]

    def test_unavailable_store_degrades(self, tmp_path):
        adapters = _adapters(**{EMSC: [_make_event("emsc_1", EMSC, lat=10.0, lon=124.0)]})
        router = RegionRouter(adapters, store=CatalogStore(str(tmp_path / "missing.db")), cache_ttl=0)
        result = _fetch(router, "philippines")
        assert [e.id for e in result.events] == ["emsc_1"]
        assert PHIVOLCS in result.errors

    def test_other_regions_skip_store(self, store):
        result = _fetch(RegionRouter(_adapters(), store=store, cache_ttl=0), "japan")
        assert PHIVOLCS not in result.source_counts


class TestCache:
    def test_second_call_served_from_cache(self):
        adapters = _adapters(**{JMA: [_make_event("jma_1", JMA)]})
        router = RegionRouter(adapters, cache_ttl=60)
        first = _fetch(router, "japan")
        second = _fetch(router, "japan")
        assert len(adapters[JMA].queries) == 1
        assert not first.cached
        assert second.cached
        assert [e.id for e in second.events] == ["jma_1"]

    def test_cached_result_is_a_copy(self):
        adapters = _adapters(**{JMA: [_make_event("jma_1", JMA)]})
        router = RegionRouter(adapters, cache_ttl=60)
        _fetch(router, "japan").events.clear()
        assert len(_fetch(router, "japan").events) == 1

    def test_ttl_zero_disables(self):
        adapters = _adapters()
        router = RegionRouter(adapters, cache_ttl=0)
        _fetch(router, "japan")
        _fetch(router, "japan")
        assert len(adapters[JMA].queries) == 2

    def test_explicit_now_is_part_of_the_key(self):
        adapters = _adapters(**{JMA: [_make_event("jma_1", JMA)]})
        router = RegionRouter(adapters, cache_ttl=60)
        _fetch(router, "japan", now=NOW)
        later = _fetch(router, "japan", now=NOW + timedelta(hours=6))
        assert len(adapters[JMA].queries) == 2
        assert not later.cached
        assert adapters[JMA].queries[1].end == NOW + timedelta(hours=6)


# ── Live adapter behind the router ───────────────────────────────────────


class TestLiveAdapterBoundary:
    def test_bad_record_does_not_fail_the_region(self):
        def feature(native_id, time_ms):
            return {
                "type": "Feature",
                "id": native_id,
                "properties": {"mag": 4.2, "time": time_ms, "type": "earthquake", "magType": "ml"},
                "geometry": {"type": "Point", "coordinates": [-120.5, 35.8, 8.0]},
            }

        good_ms = int((NOW - timedelta(hours=1)).timestamp() * 1000)
        payload = json.dumps({"type": "FeatureCollection", "features": [
            feature("ci001", good_ms),
            feature("ci002", 1e20),
        ]})

        async def run():
            transport = httpx.MockTransport(lambda request: httpx.Response(200, text=payload))
            async with httpx.AsyncClient(transport=transport) as client:
                router = RegionRouter({USGS: USGSAdapter(client=client)}, cache_ttl=0)
                return await router.fetch_region("united-states", now=NOW)

        result = asyncio.run(run())
        assert [e.id for e in result.events] == ["usgs_ci001"]
        assert result.errors == {}
