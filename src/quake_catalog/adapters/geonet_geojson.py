"""Adapter for the GeoNet (New Zealand) quake GeoJSON feed."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

import httpx

from quake_catalog.adapters.base import RECORD_ERRORS, FeedQuery, SourceAdapter, depth_or_default, parse_iso_utc
from quake_catalog.geo import normalize_longitude
from quake_catalog.models import DEFAULT_DEPTH_KM, EarthquakeEvent
from quake_catalog.regions import categorize_region
from quake_catalog.sources import GEONET, SOURCES, SourceConfig

EVENT_PAGE = "https://www.geonet.org.nz/earthquake/{id}"


class GeoNetAdapter(SourceAdapter):
    """GeoNet GeoJSON response → list of EarthquakeEvent.

    The endpoint only filters by intensity; MMI=-1 returns every recent quake
    and the time/box/magnitude filtering is done after parsing.
    """

    def __init__(self, config: SourceConfig = SOURCES[GEONET], client: Optional[httpx.AsyncClient] = None):
        super().__init__(config, client)

    def build_params(self, query: FeedQuery) -> dict:
        return {"MMI": "-1"}

    def parse(self, raw_payload: str, fetched_at: datetime) -> list[EarthquakeEvent]:
        data = json.loads(raw_payload)
        events: list[EarthquakeEvent] = []

        for feature in data.get("features") or []:
            try:
                events.append(self._parse_feature(feature))
            except RECORD_ERRORS:
                continue

        return events

    @staticmethod
    def _parse_feature(feature: dict) -> EarthquakeEvent:
        props = feature["properties"]
        coords = feature["geometry"]["coordinates"]
        public_id = props["publicID"]

        latitude = float(coords[1])
        longitude = normalize_longitude(float(coords[0]))
        depth = props.get("depth")
        if depth is None and len(coords) > 2:
            depth = coords[2]

        return EarthquakeEvent(
            id=f"geonet_{public_id}",
            source=GEONET,
            origin_time_utc=parse_iso_utc(props["time"]),
            latitude=latitude,
            longitude=longitude,
            depth_km=depth_or_default(depth, DEFAULT_DEPTH_KM),
            magnitude=float(props["magnitude"]),
            magnitude_type=props.get("magnitudeType") or "ml",
            place=props.get("locality") or "New Zealand",
            region=categorize_region(latitude, longitude),
            url=EVENT_PAGE.format(id=public_id),
        )
