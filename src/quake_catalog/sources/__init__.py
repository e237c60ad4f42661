"""Source registry for earthquake data providers."""

from __future__ import annotations

import os
from dataclasses import dataclass

USGS = "usgs"           # primary global catalog
EMSC = "emsc"           # regional live API (Europe-Mediterranean, Asia)
JMA = "jma"             # regional live API (Japan)
GEONET = "geonet"       # regional live API (New Zealand)
PHIVOLCS = "phivolcs"   # national agency, scraped bulletin


@dataclass(frozen=True)
class SourceConfig:
    """Configuration for a single earthquake data source."""

    name: str
    base_url: str
    timeout_seconds: float
    max_retries: int
    retry_backoff_base: float
    rate_limit_rpm: int
    limit: int
    enabled: bool = True


SOURCES: dict[str, SourceConfig] = {
    USGS: SourceConfig(
        name=USGS,
        base_url="https://earthquake.usgs.gov/fdsnws/event/1/query",
        timeout_seconds=15,
        max_retries=0,
        retry_backoff_base=2.0,
        rate_limit_rpm=60,
        limit=5000,
    ),
    EMSC: SourceConfig(
        name=EMSC,
        base_url="https://www.seismicportal.eu/fdsnws/event/1/query",
        timeout_seconds=15,
        max_retries=0,
        retry_backoff_base=2.0,
        rate_limit_rpm=30,
        limit=2000,
    ),
    JMA: SourceConfig(
        name=JMA,
        base_url="https://www.jma.go.jp/bosai/quake/data/list.json",
        timeout_seconds=15,
        max_retries=0,
        retry_backoff_base=2.0,
        rate_limit_rpm=30,
        limit=1000,
    ),
    GEONET: SourceConfig(
        name=GEONET,
        base_url="https://api.geonet.org.nz/quake",
        timeout_seconds=15,
        max_retries=0,
        retry_backoff_base=2.0,
        rate_limit_rpm=30,
        limit=1000,
    ),
}

# Year-by-year historical pulls; USGS asks for at most one request per second
BACKFILL_SOURCE = SourceConfig(
    name=USGS,
    base_url=SOURCES[USGS].base_url,
    timeout_seconds=60,
    max_retries=2,
    retry_backoff_base=2.0,
    rate_limit_rpm=60,
    limit=20000,
)

PHIVOLCS_URL = os.getenv("PHIVOLCS_URL", "https://earthquake.phivolcs.dost.gov.ph/")

# Deduplication preference (lower index = higher priority): the national agency,
# then regional agencies, then the global catalog.
SOURCE_PRIORITY = [PHIVOLCS, JMA, GEONET, EMSC, USGS]

# Sources whose stored rows are refreshed on re-ingestion; all others are first-write-wins.
REFRESHING_SOURCES = frozenset({PHIVOLCS})


def source_rank(source: str) -> int:
    try:
        return SOURCE_PRIORITY.index(source)
    except ValueError:
        return len(SOURCE_PRIORITY)
