"""Tests for cross-source fuzzy deduplication."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from quake_catalog.deduplicator import (
    GLOBAL_TOLERANCE,
    NATIONAL_TOLERANCE,
    deduplicate,
    is_same_event,
)
from quake_catalog.models import EarthquakeEvent
from quake_catalog.sources import EMSC, JMA, PHIVOLCS, USGS

T0 = datetime(2026, 1, 30, 8, 47, 0, tzinfo=timezone.utc)


def _make_event(uid="usgs_eq1", source=USGS, time_utc=T0, lat=12.0, lon=123.0, mag=4.5):
    return EarthquakeEvent(
        id=uid, source=source, origin_time_utc=time_utc,
        latitude=lat, longitude=lon, magnitude=mag, magnitude_type="ml",
    )


class TestIsSameEvent:
    def test_close_reports_match(self):
        a = _make_event()
        # 30 s apart, ~10 km apart, Δmag 0.2
        b = _make_event("emsc_eq1", EMSC, T0 + timedelta(seconds=30), lat=12.09, mag=4.7)
        assert is_same_event(a, b, GLOBAL_TOLERANCE)
        assert is_same_event(a, b, NATIONAL_TOLERANCE)

    def test_time_bound_is_strict(self):
        a = _make_event()
        b = _make_event("emsc_eq1", EMSC, T0 + timedelta(seconds=120))
        assert not is_same_event(a, b, GLOBAL_TOLERANCE)

    def test_distance_between_tolerances(self):
        a = _make_event()
        b = _make_event("emsc_eq1", EMSC, lat=12.6)  # ~67 km
        assert is_same_event(a, b, GLOBAL_TOLERANCE)
        assert not is_same_event(a, b, NATIONAL_TOLERANCE)

    def test_magnitude_between_tolerances(self):
        a = _make_event()
        b = _make_event("emsc_eq1", EMSC, mag=4.9)
        assert is_same_event(a, b, GLOBAL_TOLERANCE)
        assert not is_same_event(a, b, NATIONAL_TOLERANCE)


class TestDeduplicate:
    def test_close_reports_merge(self):
        a = _make_event()
        b = _make_event("emsc_eq1", EMSC, T0 + timedelta(seconds=30), lat=12.09, mag=4.7)
        assert len(deduplicate([a, b])) == 1
        assert len(deduplicate([a, b], tolerance=NATIONAL_TOLERANCE)) == 1

    def test_five_minutes_apart_stay_separate(self):
        a = _make_event()
        b = _make_event("usgs_eq2", time_utc=T0 + timedelta(minutes=5))
        assert len(deduplicate([a, b])) == 2

    def test_magnitude_disagreement_stays_separate(self):
        a = _make_event()
        b = _make_event("emsc_eq1", EMSC, mag=5.5)
        assert len(deduplicate([a, b])) == 2

    def test_newest_first(self):
        older = _make_event("usgs_old", time_utc=T0 - timedelta(hours=1))
        newer = _make_event("usgs_new", time_utc=T0)
        assert [e.id for e in deduplicate([older, newer])] == ["usgs_new", "usgs_old"]

    def test_priority_wins_when_scanned_first(self):
        national = _make_event(f"{PHIVOLCS}_1", PHIVOLCS, T0 + timedelta(seconds=5))
        usgs = _make_event()
        result = deduplicate([usgs, national], tolerance=NATIONAL_TOLERANCE)
        assert [e.source for e in result] == [PHIVOLCS]

    def test_priority_replaces_accepted_representative(self):
        # USGS is newer so it is scanned first; the national report still wins
        national = _make_event(f"{PHIVOLCS}_1", PHIVOLCS, T0 - timedelta(seconds=20), mag=4.4)
        usgs = _make_event(time_utc=T0)
        result = deduplicate([usgs, national], tolerance=NATIONAL_TOLERANCE)
        assert len(result) == 1
        assert result[0].id == f"{PHIVOLCS}_1"
        assert result[0].magnitude == 4.4

    def test_order_independent(self):
        events = [
            _make_event(),
            _make_event("jma_eq1", JMA, T0 + timedelta(seconds=10), lat=12.05),
            _make_event("emsc_eq1", EMSC, T0 - timedelta(seconds=15), mag=4.3),
        ]
        forward = [e.id for e in deduplicate(events)]
        backward = [e.id for e in deduplicate(list(reversed(events)))]
        assert forward == backward == ["jma_eq1"]

    def test_custom_priority(self):
        a = _make_event()
        b = _make_event("emsc_eq1", EMSC)
        result = deduplicate([a, b], priority=[USGS, EMSC])
        assert [e.id for e in result] == ["usgs_eq1"]

    def test_idempotent(self):
        events = [
            _make_event(),
            _make_event("emsc_eq1", EMSC, T0 + timedelta(seconds=30)),
            _make_event("usgs_eq2", time_utc=T0 - timedelta(hours=2), lat=7.0),
        ]
        once = deduplicate(events)
        assert [e.id for e in deduplicate(once)] == [e.id for e in once]
        # Re-ingesting the same batch twice changes nothing
        assert [e.id for e in deduplicate(events + events)] == [e.id for e in once]

    def test_input_not_mutated(self):
        events = [_make_event(), _make_event("emsc_eq1", EMSC)]
        snapshot = list(events)
        deduplicate(events)
        assert events == snapshot

    def test_empty(self):
        assert deduplicate([]) == []
