"""Fuzzy deduplication of earthquake reports from overlapping sources.

Two reports describe the same physical earthquake when their origin times,
epicenters and magnitudes all agree within a tolerance. The merge is a pure
function: the full candidate list goes in, the accepted representatives come
out, and nothing outside the call is mutated.

The scan is O(n * accepted) per batch, which is fine for the low thousands of
events a region request returns.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from quake_catalog.geo import haversine_km
from quake_catalog.models import EarthquakeEvent
from quake_catalog.sources import SOURCE_PRIORITY

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchTolerance:
    """Strict upper bounds for treating two reports as one event."""

    max_time_diff_sec: float
    max_distance_km: float
    max_mag_diff: float


# Cross-agency location and magnitude error is larger at global scope
GLOBAL_TOLERANCE = MatchTolerance(max_time_diff_sec=120.0, max_distance_km=100.0, max_mag_diff=0.5)
NATIONAL_TOLERANCE = MatchTolerance(max_time_diff_sec=120.0, max_distance_km=50.0, max_mag_diff=0.3)


def is_same_event(a: EarthquakeEvent, b: EarthquakeEvent, tolerance: MatchTolerance) -> bool:
    """True when a and b fall inside every bound of the tolerance."""
    dt = abs((a.origin_time_utc - b.origin_time_utc).total_seconds())
    if dt >= tolerance.max_time_diff_sec:
        return False

    # Magnitudes disagreeing beyond tolerance stay separate, even at the same spot
    if abs(a.magnitude - b.magnitude) >= tolerance.max_mag_diff:
        return False

    dist = haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)
    return dist < tolerance.max_distance_km


def deduplicate(
    events: Iterable[EarthquakeEvent],
    tolerance: MatchTolerance = GLOBAL_TOLERANCE,
    priority: Sequence[str] = SOURCE_PRIORITY,
) -> list[EarthquakeEvent]:
    """Reduce events to at most one representative per physical earthquake.

    Candidates are scanned newest first, ties broken by source priority. A
    candidate matching an accepted representative is discarded, unless its
    source ranks strictly higher, in which case it takes that
    representative's place.

    Returns the representatives, newest first.
    """
    ranks = {source: i for i, source in enumerate(priority)}

    def rank(e: EarthquakeEvent) -> int:
        return ranks.get(e.source, len(ranks))

    candidates = sorted(events, key=lambda e: (-e.timestamp_ms, rank(e), e.id))
    accepted: list[EarthquakeEvent] = []

    for candidate in candidates:
        for i, existing in enumerate(accepted):
            if is_same_event(existing, candidate, tolerance):
                if rank(candidate) < rank(existing):
                    accepted[i] = candidate
                break
        else:
            accepted.append(candidate)

    accepted.sort(key=lambda e: (-e.timestamp_ms, e.id))
    if len(candidates) != len(accepted):
        logger.debug("Dedup: %d candidates → %d events", len(candidates), len(accepted))
    return accepted
