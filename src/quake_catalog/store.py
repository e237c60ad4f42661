"""SQLite persistence for the earthquake catalog and the scrape-run log."""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, Iterator, Optional

from quake_catalog.models import Bounds, EarthquakeEvent, ScrapeRun, utcnow
from quake_catalog.sources import REFRESHING_SOURCES

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = os.getenv("QUAKE_CATALOG_DB", "data/earthquakes.db")

SCHEMA = """
CREATE TABLE IF NOT EXISTS earthquakes (
    id              TEXT PRIMARY KEY,
    source          TEXT NOT NULL,
    date_time       TEXT NOT NULL,
    timestamp       INTEGER NOT NULL,
    latitude        REAL NOT NULL,
    longitude       REAL NOT NULL,
    depth           REAL NOT NULL,
    magnitude       REAL NOT NULL,
    magnitude_type  TEXT,
    location        TEXT NOT NULL,
    region          TEXT,
    url             TEXT,
    felt            INTEGER,
    tsunami         INTEGER NOT NULL DEFAULT 0,
    scraped_at      TEXT,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_earthquakes_timestamp ON earthquakes (timestamp);
CREATE INDEX IF NOT EXISTS idx_earthquakes_magnitude ON earthquakes (magnitude);
CREATE INDEX IF NOT EXISTS idx_earthquakes_source ON earthquakes (source);
CREATE INDEX IF NOT EXISTS idx_earthquakes_region ON earthquakes (region);

CREATE TABLE IF NOT EXISTS scrape_log (
    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
    source               TEXT NOT NULL,
    started_at           TEXT NOT NULL,
    completed_at         TEXT,
    success              INTEGER NOT NULL DEFAULT 0,
    earthquakes_found    INTEGER NOT NULL DEFAULT 0,
    earthquakes_new      INTEGER NOT NULL DEFAULT 0,
    earthquakes_updated  INTEGER NOT NULL DEFAULT 0,
    error_message        TEXT,
    duration_ms          INTEGER NOT NULL DEFAULT 0
);
"""

_INSERT_COLUMNS = """
    INSERT {verb} INTO earthquakes (
        id, source, date_time, timestamp, latitude, longitude, depth, magnitude,
        magnitude_type, location, region, url, felt, tsunami, scraped_at,
        created_at, updated_at
    ) VALUES (
        :id, :source, :date_time, :timestamp, :latitude, :longitude, :depth, :magnitude,
        :magnitude_type, :location, :region, :url, :felt, :tsunami, :scraped_at,
        :now, :now
    )
"""

INSERT_IGNORE = _INSERT_COLUMNS.format(verb="OR IGNORE")

# Scraped rows refresh their mutable fields; id, source and origin time never change
INSERT_REFRESH = _INSERT_COLUMNS.format(verb="") + """
    ON CONFLICT (id) DO UPDATE SET
        depth = excluded.depth,
        magnitude = excluded.magnitude,
        location = excluded.location,
        scraped_at = excluded.scraped_at,
        updated_at = excluded.updated_at
"""


class CatalogUnavailableError(Exception):
    """The persisted catalog cannot be opened or read."""


@dataclass
class EventFilter:
    """Store-level filter; every field is optional and combined with AND."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None
    min_magnitude: Optional[float] = None
    max_magnitude: Optional[float] = None
    source: Optional[str] = None
    bounds: Optional[Bounds] = None
    region_name: Optional[str] = None   # matched case-insensitively against the region column
    limit: Optional[int] = None
    offset: int = 0

    def where(self) -> tuple[str, list]:
        clauses: list[str] = []
        params: list = []
        if self.start is not None:
            clauses.append("timestamp >= ?")
            params.append(_epoch_ms(self.start))
        if self.end is not None:
            clauses.append("timestamp <= ?")
            params.append(_epoch_ms(self.end))
        if self.min_magnitude is not None:
            clauses.append("magnitude >= ?")
            params.append(self.min_magnitude)
        if self.max_magnitude is not None:
            clauses.append("magnitude <= ?")
            params.append(self.max_magnitude)
        if self.source:
            clauses.append("source = ?")
            params.append(self.source)
        if self.bounds is not None:
            clauses.append("latitude BETWEEN ? AND ? AND longitude BETWEEN ? AND ?")
            params.extend([self.bounds.min_lat, self.bounds.max_lat,
                           self.bounds.min_lon, self.bounds.max_lon])
        if self.region_name:
            clauses.append("LOWER(region) = ?")
            params.append(self.region_name.lower())
        sql = " WHERE " + " AND ".join(clauses) if clauses else ""
        return sql, params


def _epoch_ms(value: datetime) -> int:
    return int(round(value.timestamp() * 1000))


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def event_to_row(event: EarthquakeEvent, now: datetime) -> dict:
    return {
        "id": event.id,
        "source": event.source,
        "date_time": event.origin_time_utc.isoformat(),
        "timestamp": event.timestamp_ms,
        "latitude": event.latitude,
        "longitude": event.longitude,
        "depth": event.depth_km,
        "magnitude": event.magnitude,
        "magnitude_type": event.magnitude_type,
        "location": event.place,
        "region": event.region,
        "url": event.url,
        "felt": event.felt,
        "tsunami": int(event.tsunami),
        "scraped_at": event.scraped_at.isoformat() if event.scraped_at else None,
        "now": now.isoformat(),
    }


def row_to_event(row: sqlite3.Row) -> EarthquakeEvent:
    return EarthquakeEvent(
        id=row["id"],
        source=row["source"],
        origin_time_utc=datetime.fromisoformat(row["date_time"]),
        latitude=row["latitude"],
        longitude=row["longitude"],
        depth_km=row["depth"],
        magnitude=row["magnitude"],
        magnitude_type=row["magnitude_type"] or "",
        place=row["location"],
        region=row["region"],
        url=row["url"],
        felt=row["felt"],
        tsunami=bool(row["tsunami"]),
        scraped_at=_parse_ts(row["scraped_at"]),
    )


def row_to_scrape_run(row: sqlite3.Row) -> ScrapeRun:
    return ScrapeRun(
        source=row["source"],
        started_at=datetime.fromisoformat(row["started_at"]),
        completed_at=_parse_ts(row["completed_at"]),
        success=bool(row["success"]),
        earthquakes_found=row["earthquakes_found"],
        earthquakes_new=row["earthquakes_new"],
        earthquakes_updated=row["earthquakes_updated"],
        error_message=row["error_message"],
        duration_ms=row["duration_ms"],
        run_id=row["id"],
    )


class CatalogStore:
    """Earthquake catalog backed by a single SQLite file.

    Each operation opens its own connection, so one store can be shared by
    the event loop and worker threads.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path or DEFAULT_DB_PATH)

    @contextmanager
    def _connect(self, create: bool = False) -> Iterator[sqlite3.Connection]:
        if create:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        elif not self.path.exists():
            raise CatalogUnavailableError(f"catalog database not found: {self.path}")

        try:
            conn = sqlite3.connect(str(self.path))
        except sqlite3.Error as exc:
            raise CatalogUnavailableError(f"cannot open {self.path}: {exc}") from exc

        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise CatalogUnavailableError(f"{self.path}: {exc}") from exc
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create tables and indexes if they don't exist."""
        with self._connect(create=True) as conn:
            conn.executescript(SCHEMA)
        logger.info("Catalog initialized at %s", self.path)

    # ── Events ──────────────────────────────────────────────────────────

    def upsert_events(self, events: Iterable[EarthquakeEvent]) -> tuple[int, int]:
        """Insert a batch of events. Returns (new, updated) counts.

        Live-feed sources are first-write-wins; refreshing sources update
        depth, magnitude, location and scrape time on an existing id.
        """
        events = list(events)
        if not events:
            return 0, 0

        now = utcnow()
        new = updated = 0
        with self._connect(create=True) as conn:
            conn.executescript(SCHEMA)
            for event in events:
                existing = conn.execute(
                    "SELECT 1 FROM earthquakes WHERE id = ?", (event.id,)
                ).fetchone()
                refresh = event.source in REFRESHING_SOURCES
                conn.execute(INSERT_REFRESH if refresh else INSERT_IGNORE, event_to_row(event, now))
                if existing is None:
                    new += 1
                elif refresh:
                    updated += 1

        logger.debug("Upserted %d events: %d new, %d updated", len(events), new, updated)
        return new, updated

    def query_events(self, flt: Optional[EventFilter] = None) -> list[EarthquakeEvent]:
        """Events matching the filter, newest first (ties by id)."""
        flt = flt or EventFilter()
        where, params = flt.where()
        sql = f"SELECT * FROM earthquakes{where} ORDER BY timestamp DESC, id ASC"
        if flt.limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params = params + [flt.limit, max(flt.offset, 0)]

        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [row_to_event(row) for row in rows]

    def count_events(self, flt: Optional[EventFilter] = None) -> int:
        where, params = (flt or EventFilter()).where()
        with self._connect() as conn:
            row = conn.execute(f"SELECT COUNT(*) FROM earthquakes{where}", params).fetchone()
        return row[0]

    def get_stats(self, flt: Optional[EventFilter] = None, now: Optional[datetime] = None) -> dict:
        """Summary statistics over every event matching the filter (pagination ignored)."""
        now = now or utcnow()
        where, params = (flt or EventFilter()).where()
        day_ago = _epoch_ms(now - timedelta(days=1))
        week_ago = _epoch_ms(now - timedelta(days=7))

        with self._connect() as conn:
            row = conn.execute(f"""
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(CASE WHEN timestamp >= ? THEN 1 ELSE 0 END), 0) AS last_24h,
                    COALESCE(SUM(CASE WHEN timestamp >= ? THEN 1 ELSE 0 END), 0) AS last_7d,
                    COALESCE(SUM(CASE WHEN magnitude >= 2 THEN 1 ELSE 0 END), 0) AS m2_plus,
                    COALESCE(SUM(CASE WHEN magnitude >= 3 THEN 1 ELSE 0 END), 0) AS m3_plus,
                    COALESCE(SUM(CASE WHEN magnitude >= 4 THEN 1 ELSE 0 END), 0) AS m4_plus,
                    COALESCE(SUM(CASE WHEN magnitude >= 5 THEN 1 ELSE 0 END), 0) AS m5_plus,
                    COALESCE(SUM(CASE WHEN magnitude >= 6 THEN 1 ELSE 0 END), 0) AS m6_plus,
                    COALESCE(AVG(magnitude), 0) AS avg_magnitude,
                    COALESCE(MAX(magnitude), 0) AS max_magnitude,
                    COALESCE(MIN(magnitude), 0) AS min_magnitude,
                    COALESCE(AVG(depth), 0) AS avg_depth
                FROM earthquakes{where}
            """, [day_ago, week_ago] + params).fetchone()
            stats = dict(row)

            stats["by_source"] = {
                r["source"]: r["count"]
                for r in conn.execute(
                    f"SELECT source, COUNT(*) AS count FROM earthquakes{where} "
                    "GROUP BY source ORDER BY count DESC, source", params,
                )
            }
            stats["by_region"] = [
                {"region": r["region"], "count": r["count"], "avg_magnitude": r["avg_mag"]}
                for r in conn.execute(
                    f"SELECT region, COUNT(*) AS count, AVG(magnitude) AS avg_mag "
                    f"FROM earthquakes{where} GROUP BY region ORDER BY count DESC, region", params,
                )
            ]
            largest = conn.execute(
                f"SELECT * FROM earthquakes{where} ORDER BY magnitude DESC, timestamp DESC LIMIT 1",
                params,
            ).fetchone()

        stats["largest"] = row_to_event(largest).to_dict() if largest else None
        return stats

    def last_update(self, source: str) -> dict:
        """Newest origin time and row count for one source."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT MAX(timestamp) AS latest, COUNT(*) AS count FROM earthquakes WHERE source = ?",
                (source,),
            ).fetchone()
            latest = None
            if row["latest"] is not None:
                latest = conn.execute(
                    "SELECT date_time FROM earthquakes WHERE source = ? AND timestamp = ? LIMIT 1",
                    (source, row["latest"]),
                ).fetchone()["date_time"]
        return {"source": source, "last_event": latest, "count": row["count"]}

    def database_info(self) -> dict:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS total, MIN(date_time) AS oldest, MAX(date_time) AS newest "
                "FROM earthquakes"
            ).fetchone()
            by_source = {
                r["source"]: r["count"]
                for r in conn.execute(
                    "SELECT source, COUNT(*) AS count FROM earthquakes GROUP BY source ORDER BY source"
                )
            }
        return {
            "path": str(self.path),
            "total": row["total"],
            "oldest": row["oldest"],
            "newest": row["newest"],
            "by_source": by_source,
        }

    # ── Scrape log ──────────────────────────────────────────────────────

    def start_scrape_run(self, source: str, started_at: Optional[datetime] = None) -> ScrapeRun:
        run = ScrapeRun(source=source, started_at=started_at or utcnow())
        with self._connect(create=True) as conn:
            conn.executescript(SCHEMA)
            cur = conn.execute(
                "INSERT INTO scrape_log (source, started_at) VALUES (?, ?)",
                (run.source, run.started_at.isoformat()),
            )
            run.run_id = cur.lastrowid
        return run

    def finish_scrape_run(self, run: ScrapeRun) -> None:
        with self._connect(create=True) as conn:
            conn.execute(
                """
                UPDATE scrape_log SET
                    completed_at = ?, success = ?, earthquakes_found = ?,
                    earthquakes_new = ?, earthquakes_updated = ?,
                    error_message = ?, duration_ms = ?
                WHERE id = ?
                """,
                (
                    run.completed_at.isoformat() if run.completed_at else None,
                    int(run.success),
                    run.earthquakes_found,
                    run.earthquakes_new,
                    run.earthquakes_updated,
                    run.error_message,
                    run.duration_ms,
                    run.run_id,
                ),
            )

    def latest_scrape_run(self, source: str) -> Optional[ScrapeRun]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM scrape_log WHERE source = ? ORDER BY id DESC LIMIT 1",
                (source,),
            ).fetchone()
        return row_to_scrape_run(row) if row else None
