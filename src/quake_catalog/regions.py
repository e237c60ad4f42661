"""Region table: bounds, preferred live sources and magnitude-completeness floor.

Global bulk catalogs reliably report only M3+ for most of the world, while a
national network is complete to M1+ inside its own territory. Each region
therefore carries its own floor, and requests never go below it.
"""

from __future__ import annotations

from dataclasses import dataclass

from quake_catalog.deduplicator import GLOBAL_TOLERANCE, NATIONAL_TOLERANCE, MatchTolerance
from quake_catalog.models import WORLD, Bounds
from quake_catalog.sources import EMSC, GEONET, JMA, USGS

OTHER_REGION = "Other"


@dataclass(frozen=True)
class RegionConfig:
    name: str
    bounds: Bounds
    sources: tuple[str, ...]
    min_magnitude: float
    tolerance: MatchTolerance = NATIONAL_TOLERANCE
    # Merge in scraped national-agency rows from the store (no live endpoint)
    includes_stored: bool = False


REGIONS: dict[str, RegionConfig] = {
    "global": RegionConfig(
        "Global", WORLD, (USGS, EMSC, JMA, GEONET), 1.0, tolerance=GLOBAL_TOLERANCE,
    ),
    # Asia-Pacific
    "philippines": RegionConfig(
        "Philippines", Bounds(4.5, 21.5, 116.0, 127.0), (EMSC, USGS), 1.0, includes_stored=True,
    ),
    "japan": RegionConfig("Japan", Bounds(24.0, 46.0, 122.0, 154.0), (JMA, USGS, EMSC), 1.0),
    "indonesia": RegionConfig("Indonesia", Bounds(-11.0, 6.0, 95.0, 141.0), (EMSC, USGS), 2.0),
    "taiwan": RegionConfig("Taiwan", Bounds(21.5, 25.5, 119.0, 122.5), (EMSC, USGS), 2.0),
    "new-zealand": RegionConfig("New Zealand", Bounds(-48.0, -34.0, 165.0, 179.0), (GEONET, USGS), 1.0),
    # Americas
    "united-states": RegionConfig("United States", Bounds(24.0, 50.0, -125.0, -66.0), (USGS,), 1.0),
    "alaska": RegionConfig("Alaska", Bounds(51.0, 71.5, -180.0, -129.0), (USGS,), 1.0),
    "california": RegionConfig("California", Bounds(32.0, 42.0, -125.0, -114.0), (USGS,), 1.0),
    "mexico": RegionConfig("Mexico", Bounds(14.0, 33.0, -118.0, -86.0), (USGS, EMSC), 3.0),
    "chile": RegionConfig("Chile", Bounds(-56.0, -17.5, -76.0, -66.0), (USGS, EMSC), 3.0),
    "peru": RegionConfig("Peru", Bounds(-18.5, 0.0, -81.5, -68.5), (USGS, EMSC), 3.0),
    # Europe & Mediterranean
    "italy": RegionConfig("Italy", Bounds(35.5, 47.5, 6.5, 19.0), (EMSC, USGS), 1.5),
    "greece": RegionConfig("Greece", Bounds(34.5, 42.0, 19.0, 30.0), (EMSC, USGS), 2.0),
    "turkey": RegionConfig("Turkey", Bounds(35.5, 42.5, 25.5, 45.0), (EMSC, USGS), 2.0),
    "iceland": RegionConfig("Iceland", Bounds(63.0, 67.0, -25.0, -13.0), (EMSC, USGS), 1.0),
    # Other
    "iran": RegionConfig("Iran", Bounds(25.0, 40.0, 44.0, 63.5), (EMSC, USGS), 3.0),
    "pakistan": RegionConfig("Pakistan", Bounds(23.5, 37.5, 60.5, 77.5), (EMSC, USGS), 3.0),
    "nepal": RegionConfig("Nepal", Bounds(26.0, 30.5, 80.0, 88.5), (EMSC, USGS), 3.0),
    "india": RegionConfig("India", Bounds(6.0, 36.0, 68.0, 98.0), (EMSC, USGS), 3.0),
}

NATIONAL_REGION = "philippines"

# Expanded national envelope, includes offshore events
NATIONAL_ENVELOPE = Bounds(3.0, 22.0, 115.0, 130.0)

NATIONAL_BUCKETS = (
    "Luzon", "Visayas", "Mindanao", "Palawan",
    "Philippine Sea", "South China Sea", "Celebes Sea", "Luzon Strait", "Philippines",
)


def get_region(key: str) -> RegionConfig | None:
    return REGIONS.get(key.lower())


def list_regions() -> list[dict]:
    return [
        {
            "key": key,
            "name": cfg.name,
            "sources": list(cfg.sources),
            "min_magnitude": cfg.min_magnitude,
            "includes_stored": cfg.includes_stored,
        }
        for key, cfg in REGIONS.items()
    ]


def _national_bucket(lat: float, lon: float) -> str:
    if 12.0 <= lat <= 21.5 and 119.0 <= lon <= 127.0:
        return "Luzon"
    if 9.0 <= lat < 12.5 and 122.0 <= lon <= 127.0:
        return "Visayas"
    if 4.5 <= lat < 10.0 and 118.0 <= lon <= 127.0:
        return "Mindanao"
    if lon < 121.0 and 8.0 <= lat < 12.5:
        return "Palawan"

    # Offshore
    if lon > 127.0:
        return "Philippine Sea"
    if lon < 118.0:
        return "South China Sea"
    if lat < 4.5:
        return "Celebes Sea"
    if lat > 21.5:
        return "Luzon Strait"
    return "Philippines"


def categorize_region(lat: float, lon: float) -> str:
    """Deterministic region bucket for an epicenter."""
    if NATIONAL_ENVELOPE.contains(lat, lon):
        return _national_bucket(lat, lon)

    for key, cfg in REGIONS.items():
        if key == "global" or cfg.includes_stored:
            continue
        if cfg.bounds.contains(lat, lon):
            return cfg.name

    return OTHER_REGION
