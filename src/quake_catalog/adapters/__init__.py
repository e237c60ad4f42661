from __future__ import annotations

from typing import Optional

import httpx

from quake_catalog.adapters.base import SourceAdapter
from quake_catalog.adapters.emsc_geojson import EMSCAdapter
from quake_catalog.adapters.geonet_geojson import GeoNetAdapter
from quake_catalog.adapters.jma_json import JMAAdapter
from quake_catalog.adapters.usgs_geojson import USGSAdapter
from quake_catalog.sources import EMSC, GEONET, JMA, SOURCES, USGS

ADAPTERS: dict[str, type[SourceAdapter]] = {
    USGS: USGSAdapter,
    EMSC: EMSCAdapter,
    JMA: JMAAdapter,
    GEONET: GeoNetAdapter,
}


def build_adapters(client: Optional[httpx.AsyncClient] = None) -> dict[str, SourceAdapter]:
    """One adapter per enabled live source, optionally sharing an HTTP client."""
    return {
        name: cls(SOURCES[name], client)
        for name, cls in ADAPTERS.items()
        if SOURCES[name].enabled
    }


__all__ = [
    "ADAPTERS",
    "EMSCAdapter",
    "GeoNetAdapter",
    "JMAAdapter",
    "SourceAdapter",
    "USGSAdapter",
    "build_adapters",
]
