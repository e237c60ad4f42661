"""Adapter for the EMSC (SeismicPortal) FDSN JSON feed."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

import httpx

from quake_catalog.adapters.base import RECORD_ERRORS, FeedQuery, SourceAdapter, depth_or_default, parse_iso_utc
from quake_catalog.geo import normalize_longitude
from quake_catalog.models import DEFAULT_DEPTH_KM, EarthquakeEvent
from quake_catalog.regions import categorize_region
from quake_catalog.sources import EMSC, SOURCES, SourceConfig

EVENT_PAGE = "https://www.emsc-csem.org/Earthquake/earthquake.php?id={unid}"


class EMSCAdapter(SourceAdapter):
    """EMSC/SeismicPortal GeoJSON response → list of EarthquakeEvent."""

    def __init__(self, config: SourceConfig = SOURCES[EMSC], client: Optional[httpx.AsyncClient] = None):
        super().__init__(config, client)

    def build_params(self, query: FeedQuery) -> dict:
        params = {
            "format": "json",
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

        native_id = props.get("source_id") or feature.get("id") or props.get("unid")
        if not native_id:
            raise ValueError("EMSC feature without an identifier")

        latitude = float(coords[1])
        longitude = normalize_longitude(float(coords[0]))
        unid = props.get("unid")

        # EMSC's Flinn-Engdahl region name is the only place text it offers
        return EarthquakeEvent(
            id=f"emsc_{native_id}",
            source=EMSC,
            origin_time_utc=parse_iso_utc(props["time"]),
            latitude=latitude,
            longitude=longitude,
            depth_km=depth_or_default(coords[2] if len(coords) > 2 else None, DEFAULT_DEPTH_KM),
            magnitude=float(props["mag"]),
            magnitude_type=props.get("magtype") or props.get("magType") or "ml",
            place=props.get("flynn_region") or props.get("place") or "Unknown",
            region=categorize_region(latitude, longitude),
            url=EVENT_PAGE.format(unid=unid) if unid else None,
        )
