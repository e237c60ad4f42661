"""Data models for the unified earthquake catalog."""

from __future__ import annotations

from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import Optional, Union

DEFAULT_DEPTH_KM = 10.0


@dataclass(frozen=True)
class Bounds:
    """Geographic bounding box in WGS84 decimal degrees (inclusive)."""

    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def contains(self, lat: float, lon: float) -> bool:
        return (
            self.min_lat <= lat <= self.max_lat
            and self.min_lon <= lon <= self.max_lon
        )

    def to_params(self) -> dict[str, str]:
        """FDSN query parameters for this box."""
        return {
            "minlatitude": str(self.min_lat),
            "maxlatitude": str(self.max_lat),
            "minlongitude": str(self.min_lon),
            "maxlongitude": str(self.max_lon),
        }

    @classmethod
    def parse(cls, raw: str) -> Bounds:
        """Parse ``"minLat,maxLat,minLon,maxLon"``."""
        parts = [float(p) for p in raw.split(",")]
        if len(parts) != 4:
            raise ValueError(f"expected 4 comma-separated values, got {len(parts)}")
        return cls(*parts)


WORLD = Bounds(-90.0, 90.0, -180.0, 180.0)


@dataclass
class EarthquakeEvent:
    """Unified earthquake event, translated from any source's native schema."""

    id: str                     # "{source}_{native id}", or synthesized for scraped rows
    source: str                 # "usgs", "emsc", "jma", "geonet", "phivolcs"
    origin_time_utc: datetime   # Always UTC
    latitude: float
    longitude: float
    magnitude: float
    magnitude_type: str         # As reported, never normalized across agencies
    depth_km: float = DEFAULT_DEPTH_KM

    place: str = "Unknown"
    region: Optional[str] = None
    url: Optional[str] = None
    felt: Optional[int] = None
    tsunami: bool = False
    scraped_at: Optional[datetime] = None

    @property
    def timestamp_ms(self) -> int:
        return int(round(self.origin_time_utc.timestamp() * 1000))

    def to_dict(self) -> dict:
        d = asdict(self)
        d["origin_time_utc"] = self.origin_time_utc.isoformat()
        d["scraped_at"] = self.scraped_at.isoformat() if self.scraped_at else None
        d["timestamp"] = self.timestamp_ms
        return d

    def to_feature(self) -> dict:
        """GeoJSON Point feature; coordinates are [lon, lat, depth]."""
        return {
            "type": "Feature",
            "id": self.id,
            "properties": {
                "mag": self.magnitude,
                "magType": self.magnitude_type,
                "place": self.place,
                "time": self.timestamp_ms,
                "region": self.region,
                "depth": self.depth_km,
                "url": self.url,
                "felt": self.felt,
                "tsunami": self.tsunami,
                "source": self.source,
            },
            "geometry": {
                "type": "Point",
                "coordinates": [self.longitude, self.latitude, self.depth_km],
            },
        }

    def to_risk_record(self) -> dict:
        """Read-only view consumed by the volcanic-risk model."""
        return {
            "id": self.id,
            "magnitude": self.magnitude,
            "depth": self.depth_km,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "occurred_at": self.origin_time_utc.isoformat(),
            "place": self.place,
        }


@dataclass
class ScrapeRun:
    """One execution of the browser-based ingestion path, logged regardless of outcome."""

    source: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    success: bool = False
    earthquakes_found: int = 0
    earthquakes_new: int = 0
    earthquakes_updated: int = 0
    error_message: Optional[str] = None
    duration_ms: int = 0
    run_id: Optional[int] = None

    def to_dict(self) -> dict:
        d = asdict(self)
        d["started_at"] = self.started_at.isoformat()
        d["completed_at"] = self.completed_at.isoformat() if self.completed_at else None
        return d


# ── Adapter outcomes ────────────────────────────────────────────────────


@dataclass
class Ok:
    events: list[EarthquakeEvent] = field(default_factory=list)


@dataclass
class Err:
    reason: str


AdapterResult = Union[Ok, Err]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
