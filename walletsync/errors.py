"""Error taxonomy for market data, ledger and exchange operations."""
from __future__ import annotations

from typing import Any


class WalletSyncError(Exception):
    """Base class for every error raised by walletsync."""


# ---------------------------------------------------------------------------
# Market data (non-fatal, routed through the failure tracker)
# ---------------------------------------------------------------------------


class MarketDataError(WalletSyncError):
    """A price or catalog fetch failed."""

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.url = url


class NetworkError(MarketDataError):
    """No connectivity or the connection was dropped."""


class RequestTimeoutError(MarketDataError):
    """The request exceeded the client deadline."""


class RateLimitError(MarketDataError):
    """HTTP 429 persisted after all backoff retries."""

    status_code = 429

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        url: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, url)
        self.retry_after = retry_after


class ApiError(MarketDataError):
    """Any other non-2xx response."""

    def __init__(
        self,
        status_code: int,
        message: str | None = None,
        url: str | None = None,
        body: str = "",
    ) -> None:
        super().__init__(message or f"HTTP {status_code}", url)
        self.status_code = status_code
        self.body = body[:500]


class MalformedDataError(MarketDataError):
    """A payload item could not be normalized into a quote."""

    def __init__(self, reason: str, item: Any = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.item = item


# ---------------------------------------------------------------------------
# Exchange validation (raised before any ledger mutation)
# ---------------------------------------------------------------------------


class ExchangeError(WalletSyncError):
    """An exchange request was rejected."""


class InvalidAssetError(ExchangeError):
    """An asset cannot be quoted, e.g. its price is zero or negative."""


class InvalidAmountError(ExchangeError):
    """Amount is non-positive or below the asset minimum."""


class InsufficientBalanceError(ExchangeError):
    """Balance does not cover amount plus fee."""

    def __init__(self, asset_id: str, required: float, available: float) -> None:
        super().__init__(
            f"Insufficient {asset_id} balance: need {required:.8f}, have {available:.8f}"
        )
        self.asset_id = asset_id
        self.required = required
        self.available = available


class ExchangeBlockedError(ExchangeError):
    """Exchanges are halted until a ledger inconsistency is acknowledged."""


# ---------------------------------------------------------------------------
# Ledger / session
# ---------------------------------------------------------------------------


class LedgerInconsistencyError(WalletSyncError):
    """A swap left the ledger in a state that does not match what was written.

    Fatal: the exchange engine refuses further mutations for the session
    until the error is acknowledged.
    """

    def __init__(
        self,
        message: str,
        user_id: str,
        expected: dict[str, Any] | None = None,
        observed: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.user_id = user_id
        self.expected = expected or {}
        self.observed = observed or {}


class NoSessionError(WalletSyncError):
    """No signed-in user; ledger operations are not allowed."""
