"""Ledger store protocol — per-user document store of holdings."""
from typing import AsyncIterator, Protocol

from ..models import LedgerEntry


class LedgerStore(Protocol):
    """Abstract interface over the per-user asset ledger.

    Writes to a single entry are independent documents; ``write_many``
    commits several entries as one transaction.
    """

    async def read(self, user_id: str) -> dict[str, LedgerEntry]: ...

    async def write(self, user_id: str, asset_id: str, entry: LedgerEntry) -> None: ...

    async def write_many(self, user_id: str, entries: dict[str, LedgerEntry]) -> None: ...

    def stream(self, user_id: str) -> AsyncIterator[dict[str, LedgerEntry]]: ...
