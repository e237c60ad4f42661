"""Adapter for the Japan Meteorological Agency quake list.

The feed is a flat JSON array of bulletins, newest first, with several
bulletins per earthquake (intensity report, hypocenter report, updates). It
has no query parameters, so filtering happens after parsing.

Hypocenters are ISO 6709 strings, e.g. ``+35.8+140.3-40000/`` where the last
component is depth in metres.
"""

from __future__ import annotations

import json
import re
from datetime import datetime
from typing import Optional

import httpx

from quake_catalog.adapters.base import RECORD_ERRORS, FeedQuery, SourceAdapter, parse_iso_utc
from quake_catalog.models import DEFAULT_DEPTH_KM, EarthquakeEvent
from quake_catalog.regions import categorize_region
from quake_catalog.sources import JMA, SOURCES, SourceConfig

DATA_URL = "https://www.jma.go.jp/bosai/quake/data/{json}"

# ±lat±lon[±depth_m]/, depth may be omitted
_COORD_RE = re.compile(r"^([+-]\d+(?:\.\d+)?)([+-]\d+(?:\.\d+)?)([+-]\d+)?/?$")


def parse_jma_coords(cod: str) -> tuple[float, float, float] | None:
    """(lat, lon, depth_km) from an ISO 6709 string, or None if it doesn't parse."""
    match = _COORD_RE.match((cod or "").strip())
    if match is None:
        return None
    lat, lon, depth_m = match.groups()
    depth_km = abs(int(depth_m)) / 1000 if depth_m is not None else DEFAULT_DEPTH_KM
    return float(lat), float(lon), depth_km


class JMAAdapter(SourceAdapter):

    def __init__(self, config: SourceConfig = SOURCES[JMA], client: Optional[httpx.AsyncClient] = None):
        super().__init__(config, client)

    def build_params(self, query: FeedQuery) -> dict:
        return {}

    def parse(self, raw_payload: str, fetched_at: datetime) -> list[EarthquakeEvent]:
        data = json.loads(raw_payload)
        if not isinstance(data, list):
            raise ValueError("JMA list.json is not an array")

        events: list[EarthquakeEvent] = []
        seen: set[str] = set()

        for item in data:
            try:
                event = self._parse_item(item)
            except RECORD_ERRORS:
                continue
            # Keep the newest bulletin per earthquake
            if event is None or event.id in seen:
                continue
            seen.add(event.id)
            events.append(event)

        return events

    @staticmethod
    def _parse_item(item: dict) -> EarthquakeEvent | None:
        coords = parse_jma_coords(item.get("cod"))
        if coords is None:
            return None
        latitude, longitude, depth_km = coords

        # Intensity-only bulletins carry an empty or non-numeric magnitude
        magnitude = float(item["mag"])

        return EarthquakeEvent(
            id=f"jma_{item['eid']}",
            source=JMA,
            origin_time_utc=parse_iso_utc(item["at"]),
            latitude=latitude,
            longitude=longitude,
            depth_km=depth_km,
            magnitude=magnitude,
            magnitude_type="mj",
            place=item.get("en_anm") or item.get("anm") or "Japan",
            region=categorize_region(latitude, longitude),
            url=DATA_URL.format(json=item["json"]) if item.get("json") else None,
        )
