"""Async HTTP client shared by every live earthquake feed."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

import httpx

from quake_catalog.sources import SourceConfig

logger = logging.getLogger(__name__)

USER_AGENT = "quake-catalog/0.3 (+https://github.com/quake-catalog/quake-catalog)"


class RateLimiter:
    """Minimum-interval rate limiter."""

    def __init__(self, rpm: int):
        self.min_interval = 60.0 / max(rpm, 1)
        self._last_call = 0.0

    async def acquire(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_call
        if elapsed < self.min_interval:
            await asyncio.sleep(self.min_interval - elapsed)
        self._last_call = time.monotonic()


class FeedClient:
    """Async HTTP client for one earthquake feed.

    Works for the FDSN event services (USGS, EMSC) as well as the plain JSON
    feeds (JMA, GeoNet): callers supply the query parameters, the client owns
    timeouts, rate limiting and retry.
    """

    def __init__(self, config: SourceConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._rate_limiter = RateLimiter(config.rate_limit_rpm)
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.config.timeout_seconds,
                headers={"User-Agent": USER_AGENT},
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()

    async def fetch_text(self, params: Optional[dict] = None) -> str:
        """GET the feed and return the body; "" when the service reports no content."""
        return await self._request_with_retry(params or {})

    async def _request_with_retry(self, params: dict) -> str:
        """Make HTTP request with exponential backoff retry."""
        client = await self._get_client()
        last_exc: Exception | None = None

        for attempt in range(self.config.max_retries + 1):
            await self._rate_limiter.acquire()
            try:
                resp = await client.get(
                    self.config.base_url,
                    params=params,
                    timeout=self.config.timeout_seconds,
                )
                # FDSN returns 204 No Content when no events match
                if resp.status_code == 204:
                    return ""
                resp.raise_for_status()
                return resp.text
            except (httpx.HTTPStatusError, httpx.RequestError) as exc:
                last_exc = exc
                if attempt < self.config.max_retries:
                    backoff = self.config.retry_backoff_base ** attempt
                    logger.warning(
                        "[%s] attempt %d/%d failed (%s), retrying in %.1fs",
                        self.config.name, attempt + 1, self.config.max_retries + 1,
                        exc, backoff,
                    )
                    await asyncio.sleep(backoff)

        raise RuntimeError(
            f"{self.config.name}: all {self.config.max_retries + 1} attempts failed: {last_exc}"
        ) from last_exc
