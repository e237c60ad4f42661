"""CLI entrypoint for quake-catalog."""

from __future__ import annotations

import asyncio
import json
import logging

import click
from rich.console import Console
from rich.table import Table

from quake_catalog.models import EarthquakeEvent
from quake_catalog.query import FORMATS, normalize_filters, render, run_query
from quake_catalog.regions import list_regions
from quake_catalog.sources import PHIVOLCS_URL
from quake_catalog.store import DEFAULT_DB_PATH, CatalogStore, CatalogUnavailableError

console = Console()

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def _mag_color(magnitude: float) -> str:
    return "red" if magnitude >= 5.0 else "yellow" if magnitude >= 3.0 else "green"


def _events_table(title: str, events: list[EarthquakeEvent], limit: int) -> Table:
    table = Table(title=title)
    table.add_column("Mag", style="bold", width=5)
    table.add_column("Type", width=4)
    table.add_column("Place")
    table.add_column("Region")
    table.add_column("Depth (km)", justify="right")
    table.add_column("Time (UTC)")
    table.add_column("Source")

    for e in events[:limit]:
        table.add_row(
            f"[{_mag_color(e.magnitude)}]{e.magnitude:.1f}[/]",
            e.magnitude_type,
            e.place,
            e.region or "",
            f"{e.depth_km:.1f}",
            f"{e.origin_time_utc:%Y-%m-%d %H:%M}",
            e.source,
        )
    return table


@click.group()
@click.option("--db", "db_path", default=DEFAULT_DB_PATH, envvar="QUAKE_CATALOG_DB",
              show_default=True, help="SQLite catalog file.")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging.")
@click.pass_context
def cli(ctx: click.Context, db_path: str, verbose: bool):
    """Quake Catalog: multi-source earthquake aggregation and catalog."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)
    ctx.obj = CatalogStore(db_path)


@cli.command("init-db")
@click.pass_obj
def init_db(store: CatalogStore):
    """Create the catalog tables."""
    store.init_db()
    click.echo(f"Catalog ready at {store.path}")


@cli.command()
def regions():
    """List configured regions with their sources and magnitude floors."""
    table = Table(title="Regions")
    table.add_column("Key", style="bold")
    table.add_column("Name")
    table.add_column("Sources")
    table.add_column("Floor", justify="right")

    for r in list_regions():
        sources = ", ".join(r["sources"])
        if r["includes_stored"]:
            sources += " + stored"
        table.add_row(r["key"], r["name"], sources, f"M{r['min_magnitude']:.1f}+")

    console.print(table)


@cli.command()
@click.argument("key")
@click.option("--hours", default=24.0, help="Look-back window in hours.")
@click.option("--min-mag", default=0.0, help="Minimum magnitude (raised to the region floor).")
@click.option("--limit", default=25, help="Max results to display.")
@click.option("--json", "as_json", is_flag=True, help="Print the full result as JSON.")
@click.pass_obj
def region(store: CatalogStore, key: str, hours: float, min_mag: float, limit: int, as_json: bool):
    """Aggregate live sources for one region, deduplicated."""
    from quake_catalog.router import RegionRouter, UnknownRegionError

    router = RegionRouter(store=store, cache_ttl=0)
    try:
        result = asyncio.run(router.fetch_region(key, hours=hours, min_magnitude=min_mag))
    except UnknownRegionError:
        raise click.BadParameter(f"unknown region {key!r} (see `quake-catalog regions`)", param_hint="KEY") from None

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    title = f"{result.region} — M{result.min_magnitude:.1f}+, last {hours:g}h"
    console.print(_events_table(title, result.events, limit))
    counts = ", ".join(f"{name}={n}" for name, n in result.source_counts.items())
    click.echo(f"{result.combined} combined → {result.after_dedup} after dedup ({counts}) in {result.fetch_ms}ms")
    for name, reason in result.errors.items():
        click.echo(f"  {name} unavailable: {reason}", err=True)


@cli.command()
@click.option("--url", default=PHIVOLCS_URL, envvar="PHIVOLCS_URL", show_default=True,
              help="Bulletin page to scrape.")
@click.pass_obj
def scrape(store: CatalogStore, url: str):
    """Scrape the PHIVOLCS bulletin into the catalog (exit 1 on failure)."""
    from quake_catalog import scraper

    try:
        run = asyncio.run(scraper.run_scrape(store, fetch_html=scraper.fetch_rendered_html, url=url))
    except CatalogUnavailableError as exc:
        click.echo(f"catalog unavailable: {exc}", err=True)
        raise SystemExit(1)

    if not run.success:
        click.echo(f"Scrape failed after {run.duration_ms}ms: {run.error_message}", err=True)
        raise SystemExit(1)

    click.echo(
        f"Scraped {run.earthquakes_found} earthquakes: "
        f"{run.earthquakes_new} new, {run.earthquakes_updated} updated ({run.duration_ms}ms)"
    )


@cli.command()
@click.argument("start_year", type=int)
@click.argument("end_year", type=int)
@click.option("--delay", default=1.0, help="Seconds between yearly requests.")
@click.pass_obj
def backfill(store: CatalogStore, start_year: int, end_year: int, delay: float):
    """Backfill national-area history from the global catalog, one year at a time."""
    from quake_catalog.backfill import run_backfill

    if start_year > end_year:
        raise click.BadParameter("START_YEAR must not be after END_YEAR")

    summary = asyncio.run(run_backfill(start_year, end_year, store, delay_seconds=delay))

    for y in summary.years:
        status = f"error: {y.error}" if y.error else f"{y.fetched} fetched, {y.new} new"
        click.echo(f"  {y.year} (M{y.floor:.1f}+): {status}")
    db = summary.database
    click.echo(f"Years processed: {len(summary.years)}  fetched: {summary.total_fetched}  new: {summary.total_new}")
    click.echo(f"Catalog: {db.get('total', 0)} records, {db.get('oldest')} → {db.get('newest')}")
    for source, count in db.get("by_source", {}).items():
        click.echo(f"  {source}: {count}")


@cli.command()
@click.option("--hours", type=float, help="Relative window in hours (default 168).")
@click.option("--start", help="Range start (ISO date/time); wins over --hours.")
@click.option("--end", help="Range end (ISO date/time).")
@click.option("--min-mag", type=float, help="Minimum magnitude.")
@click.option("--max-mag", type=float, help="Maximum magnitude.")
@click.option("--source", help="Only this source (usgs, emsc, jma, geonet, phivolcs).")
@click.option("--region", help="Region key or bucket name (e.g. japan, luzon).")
@click.option("--bounds", help="minLat,maxLat,minLon,maxLon")
@click.option("--limit", type=int, help="Page size (default 1000).")
@click.option("--offset", type=int, help="Page offset.")
@click.option("--format", "fmt", type=click.Choice(FORMATS), default="flat", show_default=True)
@click.option("--stats", is_flag=True, help="Include summary statistics.")
@click.option("--table", "as_table", is_flag=True, help="Show a table instead of JSON.")
@click.pass_obj
def query(store: CatalogStore, as_table: bool, **filters):
    """Query the stored catalog (exit 2 if the catalog is unavailable)."""
    filters["format"] = filters.pop("fmt")
    filters["min_magnitude"] = filters.pop("min_mag")
    filters["max_magnitude"] = filters.pop("max_mag")
    catalog_query = normalize_filters(filters)

    try:
        result = run_query(store, catalog_query)
    except CatalogUnavailableError as exc:
        click.echo(f"catalog unavailable: {exc}", err=True)
        raise SystemExit(2)

    if as_table:
        title = f"Catalog ({result.total_count} matching)"
        console.print(_events_table(title, result.events, len(result.events)))
        return

    click.echo(json.dumps(render(result), indent=2, default=str))
