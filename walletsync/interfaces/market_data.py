"""Market data protocol — JSON GET against a price API."""
from typing import Any, Protocol


class MarketDataSource(Protocol):
    """Abstract interface for fetching decoded JSON from a market data API."""

    async def fetch(self, url: str, params: dict[str, Any] | None = None) -> Any: ...
