"""Source adapter contract, shared validation and the adapter boundary."""

from __future__ import annotations

import abc
import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx

from quake_catalog.clients.feed_client import FeedClient
from quake_catalog.models import AdapterResult, Bounds, EarthquakeEvent, Err, Ok, utcnow
from quake_catalog.sources import SourceConfig

logger = logging.getLogger(__name__)

# A single bad record raising one of these is skipped; the rest of the batch survives.
# OverflowError/OSError come from out-of-range epoch times and infinite numbers.
RECORD_ERRORS = (KeyError, TypeError, ValueError, AttributeError, IndexError, OverflowError, OSError)


@dataclass(frozen=True)
class FeedQuery:
    """What a caller asks of one adapter: where, when, and how strong."""

    start: datetime
    end: datetime
    min_magnitude: float = 0.0
    bounds: Optional[Bounds] = None
    limit: Optional[int] = None

    @classmethod
    def last_hours(cls, hours: float, min_magnitude: float = 0.0,
                   bounds: Optional[Bounds] = None, now: Optional[datetime] = None) -> FeedQuery:
        now = now or utcnow()
        return cls(start=now - timedelta(hours=hours), end=now,
                   min_magnitude=min_magnitude, bounds=bounds)

    def accepts(self, event: EarthquakeEvent) -> bool:
        if event.magnitude < self.min_magnitude:
            return False
        if not self.start <= event.origin_time_utc <= self.end:
            return False
        if self.bounds is not None and not self.bounds.contains(event.latitude, event.longitude):
            return False
        return True


def validate_event(event: EarthquakeEvent) -> list[str]:
    """Validate an EarthquakeEvent. Returns list of error messages (empty = valid)."""
    errors: list[str] = []

    if not -90 <= event.latitude <= 90:
        errors.append(f"latitude {event.latitude} out of range [-90, 90]")

    if not -180 <= event.longitude <= 180:
        errors.append(f"longitude {event.longitude} out of range [-180, 180]")

    # Some shallow events sit slightly above sea level
    if event.depth_km < -10:
        errors.append(f"depth_km {event.depth_km} unreasonably negative")
    if event.depth_km > 800:
        errors.append(f"depth_km {event.depth_km} exceeds 800 km")

    if not -2.0 <= event.magnitude <= 10.0:
        errors.append(f"magnitude {event.magnitude} out of range [-2, 10]")

    # Not in the future (with 1-hour tolerance)
    if event.origin_time_utc.tzinfo is None:
        errors.append("origin_time_utc is not timezone-aware")
    elif event.origin_time_utc > utcnow() + timedelta(hours=1):
        errors.append(f"origin_time_utc {event.origin_time_utc} is in the future")

    if not event.id:
        errors.append("id is empty")
    if not event.source:
        errors.append("source is empty")

    return errors


class SourceAdapter(abc.ABC):
    """Translates one provider's feed into unified events.

    Subclasses build the request and parse the payload; `fetch` is the
    boundary that turns every failure into an `Err` so a dead source can only
    shrink a result, never break it.
    """

    def __init__(self, config: SourceConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        # One feed client per adapter so the rate limit holds across fetches
        self.feed = FeedClient(config, client)

    @property
    def name(self) -> str:
        return self.config.name

    @abc.abstractmethod
    def build_params(self, query: FeedQuery) -> dict:
        """Query-string parameters for this provider."""

    @abc.abstractmethod
    def parse(self, raw_payload: str, fetched_at: datetime) -> list[EarthquakeEvent]:
        """Parse a raw response body into unified events, skipping bad records.

        Raises ValueError (json.JSONDecodeError) when the payload as a whole
        is malformed.
        """

    async def fetch(self, query: FeedQuery) -> AdapterResult:
        """Fetch, parse, validate and filter; never raises."""
        try:
            raw_text = await asyncio.wait_for(
                self.feed.fetch_text(self.build_params(query)),
                timeout=self.config.timeout_seconds * (self.config.max_retries + 1) + 5,
            )
            if not raw_text.strip():
                return Ok([])
            kept = self._keep(self.parse(raw_text, utcnow()), query)
        except asyncio.TimeoutError:
            return Err(f"{self.name}: timed out")
        except (RuntimeError, httpx.HTTPError) as exc:
            return Err(f"{self.name}: {exc}")
        except (ValueError, TypeError, KeyError, AttributeError) as exc:
            return Err(f"{self.name}: malformed payload: {exc}")
        except Exception as exc:
            logger.exception("[%s] unexpected failure", self.name)
            return Err(f"{self.name}: {exc.__class__.__name__}: {exc}")
        finally:
            await self.feed.close()

        limit = query.limit or self.config.limit
        return Ok(kept[:limit])

    def _keep(self, events: list[EarthquakeEvent], query: FeedQuery) -> list[EarthquakeEvent]:
        kept: list[EarthquakeEvent] = []
        for event in events:
            errors = validate_event(event)
            if errors:
                logger.debug("[%s] dropping %s: %s", self.name, event.id, errors)
                continue
            if query.accepts(event):
                kept.append(event)
        return kept

    async def fetch_events(self, query: FeedQuery) -> list[EarthquakeEvent]:
        """Like `fetch`, with an `Err` reduced to an empty list (logged)."""
        result = await self.fetch(query)
        if isinstance(result, Err):
            logger.warning("[%s] fetch failed: %s", self.name, result.reason)
            return []
        return result.events


_FRACTION_RE = re.compile(r"\.(\d+)")


def parse_iso_utc(raw: str) -> datetime:
    """Parse an ISO-8601 timestamp, assuming UTC when no offset is given."""
    text = raw.strip().replace("Z", "+00:00")
    # Pad/trim fractional seconds to 6 digits for older fromisoformat
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1).ljust(6, "0")[:6], text, count=1)
    value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def depth_or_default(value, default: float) -> float:
    """Reported depth, or the default when the source omits it."""
    if value is None or value == "":
        return default
    return float(value)


def safe_float(val) -> float | None:
    if val is None:
        return None
    try:
        return float(val)
    except (TypeError, ValueError, OverflowError):
        return None


def safe_int(val) -> int | None:
    if val is None:
        return None
    try:
        return int(val)
    except (TypeError, ValueError, OverflowError):
        return None
