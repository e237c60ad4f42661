"""Adapter for the USGS FDSN GeoJSON feed (primary global catalog)."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Optional

import httpx

from quake_catalog.adapters.base import RECORD_ERRORS, FeedQuery, SourceAdapter, depth_or_default, safe_int
from quake_catalog.geo import normalize_longitude
from quake_catalog.models import DEFAULT_DEPTH_KM, EarthquakeEvent
from quake_catalog.regions import categorize_region
from quake_catalog.sources import SOURCES, USGS, SourceConfig

EVENT_PAGE = "https://earthquake.usgs.gov/earthquakes/eventpage/{id}"


class USGSAdapter(SourceAdapter):
    """USGS GeoJSON response → list of EarthquakeEvent."""

    def __init__(self, config: SourceConfig = SOURCES[USGS], client: Optional[httpx.AsyncClient] = None):
        super().__init__(config, client)

    def build_params(self, query: FeedQuery) -> dict:
        params = {
            "format": "geojson",
            "starttime": query.start.strftime("%Y-%m-%dT%H:%M:%S"),
            "endtime": query.end.strftime("%Y-%m-%dT%H:%M:%S"),
            "minmagnitude": str(query.min_magnitude),
            "limit": str(query.limit or self.config.limit),
            "orderby": "time",
        }
        if query.bounds is not None:
            params.update(query.bounds.to_params())
        return params

    def parse(self, raw_payload: str, fetched_at: datetime) -> list[EarthquakeEvent]:
        data = json.loads(raw_payload)
        events: list[EarthquakeEvent] = []

        for feature in data.get("features", []):
            try:
                event = self._parse_feature(feature)
            except RECORD_ERRORS:
                continue
            if event is not None:
                events.append(event)

        return events

    @staticmethod
    def _parse_feature(feature: dict) -> EarthquakeEvent | None:
        props = feature["properties"]
        # Quarry blasts, explosions, etc.
        if (props.get("type") or "earthquake") != "earthquake":
            return None

        coords = feature["geometry"]["coordinates"]
        native_id = feature["id"]
        latitude = float(coords[1])
        longitude = normalize_longitude(float(coords[0]))

        return EarthquakeEvent(
            id=f"usgs_{native_id}",
            source=USGS,
            origin_time_utc=datetime.fromtimestamp(props["time"] / 1000, tz=timezone.utc),
            latitude=latitude,
            longitude=longitude,
            depth_km=depth_or_default(coords[2] if len(coords) > 2 else None, DEFAULT_DEPTH_KM),
            magnitude=float(props["mag"]),
            magnitude_type=props.get("magType") or "ml",
            place=props.get("place") or "Unknown",
            region=categorize_region(latitude, longitude),
            url=props.get("url") or EVENT_PAGE.format(id=native_id),
            felt=safe_int(props.get("felt")),
            tsunami=props.get("tsunami") == 1,
        )
