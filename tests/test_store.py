"""Tests for the SQLite catalog store."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from quake_catalog.models import Bounds, EarthquakeEvent
from quake_catalog.sources import EMSC, PHIVOLCS, USGS
from quake_catalog.store import CatalogStore, CatalogUnavailableError, EventFilter

NOW = datetime(2026, 1, 30, 12, 0, 0, tzinfo=timezone.utc)


def _make_event(uid="usgs_eq1", source=USGS, time_utc=NOW - timedelta(hours=1),
                lat=14.6, lon=121.0, mag=4.5, region="Luzon", **extra):
    return EarthquakeEvent(
        id=uid, source=source, origin_time_utc=time_utc,
        latitude=lat, longitude=lon, magnitude=mag, magnitude_type="ml",
        place="Somewhere", region=region, **extra,
    )


@pytest.fixture
def store(tmp_path):
    s = CatalogStore(str(tmp_path / "catalog.db"))
    s.init_db()
    return s


class TestSchema:
    def test_init_creates_file(self, tmp_path):
        s = CatalogStore(str(tmp_path / "nested" / "catalog.db"))
        s.init_db()
        assert s.path.exists()
        assert s.database_info()["total"] == 0

    def test_missing_database_is_unavailable(self, tmp_path):
        s = CatalogStore(str(tmp_path / "missing.db"))
        with pytest.raises(CatalogUnavailableError):
            s.query_events()

    def test_corrupt_database_is_unavailable(self, tmp_path):
        path = tmp_path / "corrupt.db"
        path.write_text("this is not a sqlite database" * 100)
        with pytest.raises(CatalogUnavailableError):
            CatalogStore(str(path)).count_events()


class TestUpsert:
    def test_new_rows_counted(self, store):
        assert store.upsert_events([_make_event(), _make_event("usgs_eq2")]) == (2, 0)
        assert store.count_events() == 2

    def test_empty_batch(self, store):
        assert store.upsert_events([]) == (0, 0)

    def test_live_source_first_write_wins(self, store):
        store.upsert_events([_make_event(mag=4.5)])
        assert store.upsert_events([_make_event(mag=5.0)]) == (0, 0)
        assert store.query_events()[0].magnitude == 4.5

    def test_scraped_source_refreshes(self, store):
        first_scrape = NOW - timedelta(minutes=30)
        original = _make_event(f"{PHIVOLCS}_1", PHIVOLCS, mag=4.5, scraped_at=first_scrape)
        store.upsert_events([original])

        revised = replace(original, magnitude=4.7, depth_km=22.0, place="Revised place",
                          scraped_at=NOW)
        assert store.upsert_events([revised]) == (0, 1)

        [row] = store.query_events()
        assert row.id == original.id
        assert row.magnitude == 4.7
        assert row.depth_km == 22.0
        assert row.place == "Revised place"
        assert row.scraped_at == NOW
        assert row.origin_time_utc == original.origin_time_utc

    def test_idempotent(self, store):
        batch = [_make_event(), _make_event("emsc_eq1", EMSC)]
        store.upsert_events(batch)
        before = [e.to_dict() for e in store.query_events()]
        store.upsert_events(batch)
        assert [e.to_dict() for e in store.query_events()] == before

    def test_round_trip_fields(self, store):
        event = _make_event(felt=42, tsunami=True, url="https://example.org/eq1")
        store.upsert_events([event])
        [row] = store.query_events()
        assert row == event


class TestQuery:
    def test_order_newest_first_then_id(self, store):
        store.upsert_events([
            _make_event("usgs_b", time_utc=NOW - timedelta(hours=1)),
            _make_event("usgs_a", time_utc=NOW - timedelta(hours=1)),
            _make_event("usgs_c", time_utc=NOW - timedelta(minutes=5)),
        ])
        assert [e.id for e in store.query_events()] == ["usgs_c", "usgs_a", "usgs_b"]

    def test_filters(self, store):
        store.upsert_events([
            _make_event("usgs_luzon"),
            _make_event("usgs_mindanao", lat=7.1, lon=125.6, region="Mindanao", mag=2.0),
            _make_event("emsc_japan", EMSC, lat=35.7, lon=139.7, region="Japan"),
            _make_event("usgs_old", time_utc=NOW - timedelta(days=30)),
        ])

        def ids(**kwargs):
            return {e.id for e in store.query_events(EventFilter(**kwargs))}

        assert ids(source=EMSC) == {"emsc_japan"}
        assert ids(min_magnitude=3.0, start=NOW - timedelta(days=1)) == {"usgs_luzon", "emsc_japan"}
        assert ids(max_magnitude=2.5) == {"usgs_mindanao"}
        assert ids(region_name="LUZON") == {"usgs_luzon", "usgs_old"}
        assert ids(bounds=Bounds(4.5, 21.5, 116.0, 127.0), end=NOW - timedelta(days=1)) == {"usgs_old"}

    def test_pagination(self, store):
        store.upsert_events([
            _make_event(f"usgs_{i}", time_utc=NOW - timedelta(minutes=i)) for i in range(5)
        ])
        page = store.query_events(EventFilter(limit=2, offset=2))
        assert [e.id for e in page] == ["usgs_2", "usgs_3"]
        assert store.count_events(EventFilter(limit=2, offset=2)) == 5


class TestStats:
    def test_stats(self, store):
        store.upsert_events([
            _make_event("usgs_1", mag=2.1, time_utc=NOW - timedelta(hours=2)),
            _make_event("usgs_2", mag=4.2, time_utc=NOW - timedelta(days=3)),
            _make_event("emsc_1", EMSC, mag=6.3, time_utc=NOW - timedelta(days=10), region="Japan"),
        ])
        stats = store.get_stats(now=NOW)
        assert stats["total"] == 3
        assert stats["last_24h"] == 1
        assert stats["last_7d"] == 2
        assert stats["m2_plus"] == 3
        assert stats["m3_plus"] == 2
        assert stats["m5_plus"] == 1
        assert stats["m6_plus"] == 1
        assert stats["max_magnitude"] == 6.3
        assert stats["min_magnitude"] == 2.1
        assert stats["by_source"] == {USGS: 2, EMSC: 1}
        assert stats["by_region"][0]["region"] == "Luzon"
        assert stats["largest"]["id"] == "emsc_1"

    def test_stats_empty(self, store):
        stats = store.get_stats(now=NOW)
        assert stats["total"] == 0
        assert stats["largest"] is None

    def test_last_update_and_info(self, store):
        store.upsert_events([
            _make_event(f"{PHIVOLCS}_1", PHIVOLCS, time_utc=NOW - timedelta(hours=3)),
            _make_event(f"{PHIVOLCS}_2", PHIVOLCS, time_utc=NOW - timedelta(hours=1)),
            _make_event("usgs_1", time_utc=NOW - timedelta(days=400)),
        ])
        update = store.last_update(PHIVOLCS)
        assert update["count"] == 2
        assert update["last_event"] == (NOW - timedelta(hours=1)).isoformat()

        info = store.database_info()
        assert info["total"] == 3
        assert info["by_source"] == {PHIVOLCS: 2, USGS: 1}
        assert info["oldest"] == (NOW - timedelta(days=400)).isoformat()


class TestScrapeLog:
    def test_run_lifecycle(self, store):
        run = store.start_scrape_run(PHIVOLCS, started_at=NOW)
        assert run.run_id is not None

        run.completed_at = NOW + timedelta(seconds=12)
        run.success = True
        run.earthquakes_found = 30
        run.earthquakes_new = 4
        run.earthquakes_updated = 26
        run.duration_ms = 12000
        store.finish_scrape_run(run)

        latest = store.latest_scrape_run(PHIVOLCS)
        assert latest == run

    def test_latest_is_most_recent(self, store):
        store.start_scrape_run(PHIVOLCS, started_at=NOW - timedelta(hours=1))
        second = store.start_scrape_run(PHIVOLCS, started_at=NOW)
        assert store.latest_scrape_run(PHIVOLCS).run_id == second.run_id

    def test_no_runs(self, store):
        assert store.latest_scrape_run(PHIVOLCS) is None
