"""Throttled market data HTTP client with 429 backoff."""
from __future__ import annotations

import asyncio
import logging
import math
import ssl
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import aiohttp
import certifi

from ..config import MarketDataConfig
from ..errors import (
    ApiError,
    MalformedDataError,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
)

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "User-Agent": "walletsync/1.0",
}

# Longest server-requested pause honored
MAX_RETRY_AFTER_SECONDS = 3600.0


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """Seconds to wait from a Retry-After header (delay-seconds or HTTP-date)."""
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            logger.debug("Ignoring unparseable Retry-After: %r", value)
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        seconds = (when - (now or datetime.now(timezone.utc))).total_seconds()

    if not math.isfinite(seconds):
        return None
    return min(max(0.0, seconds), MAX_RETRY_AFTER_SECONDS)


class MarketDataClient:
    """GET JSON from a price API.

    Requests are spaced at least ``min_request_interval_seconds`` apart.
    HTTP 429 is retried with exponential backoff; every other failure is
    raised immediately as a typed ``MarketDataError``.
    """

    def __init__(
        self,
        config: MarketDataConfig,
        name: str = "market-data",
        headers: dict[str, str] | None = None,
    ) -> None:
        self.name = name
        self.timeout = config.timeout_seconds
        self.min_interval = config.min_request_interval_seconds
        self.max_retries = config.max_retries
        self.backoff_base = config.backoff_base_seconds
        self.headers = {**DEFAULT_HEADERS, **(headers or {})}
        self._last_request_at: float | None = None
        self._throttle_lock = asyncio.Lock()

    async def fetch(self, url: str, params: dict[str, Any] | None = None) -> Any:
        """Fetch and decode JSON, retrying only on rate limiting."""
        for attempt in range(self.max_retries + 1):
            await self._throttle()
            try:
                return await self._request(url, params)
            except RateLimitError:
                if attempt >= self.max_retries:
                    logger.error(
                        "[%s] Rate limited, giving up after %d retries: %s",
                        self.name, self.max_retries, url,
                    )
                    raise
                delay = self.backoff_base * (2**attempt)
                logger.warning(
                    "[%s] Rate limited (429), retry %d/%d in %.1fs",
                    self.name, attempt + 1, self.max_retries, delay,
                )
                await asyncio.sleep(delay)

    async def _throttle(self) -> None:
        async with self._throttle_lock:
            if self._last_request_at is not None:
                wait = self.min_interval - (time.monotonic() - self._last_request_at)
                if wait > 0:
                    logger.debug("[%s] Throttling for %.0fms", self.name, wait * 1000)
                    await asyncio.sleep(wait)
            self._last_request_at = time.monotonic()

    async def _request(self, url: str, params: dict[str, Any] | None) -> Any:
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        logger.debug("[%s] GET %s params=%s", self.name, url, params)
        try:
            async with aiohttp.ClientSession(
                connector=connector,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers=self.headers,
            ) as session:
                async with session.get(url, params=params) as response:
                    if response.status == 429:
                        raise RateLimitError(
                            url=url,
                            retry_after=parse_retry_after(
                                response.headers.get("Retry-After")
                            ),
                        )
                    if not 200 <= response.status < 300:
                        body = await response.text()
                        logger.error(
                            "[%s] HTTP %s from %s", self.name, response.status, url
                        )
                        raise ApiError(response.status, url=url, body=body)

                    try:
                        return await response.json(content_type=None)
                    except ValueError as e:
                        raise MalformedDataError(
                            f"Response from {url} is not valid JSON: {e}"
                        ) from e
        except asyncio.TimeoutError as e:
            logger.warning(
                "[%s] Request timed out after %.0fs: %s", self.name, self.timeout, url
            )
            raise RequestTimeoutError(
                f"Request timed out after {self.timeout:.0f}s", url=url
            ) from e
        except aiohttp.ClientError as e:
            logger.warning("[%s] Network error for %s: %s", self.name, url, e)
            raise NetworkError(f"Network error: {e}", url=url) from e
