"""Ledger store implementations — in-memory and JSON-file backed."""
from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, AsyncIterator

from ..interfaces.ledger_store import LedgerStore
from ..models import LedgerEntry

logger = logging.getLogger(__name__)

Ledger = dict[str, LedgerEntry]

DEFAULT_PORTFOLIO: tuple[LedgerEntry, ...] = (
    LedgerEntry("bitcoin", 0.04511, average_cost_usd=45000.0),
    LedgerEntry("ethereum", 3.56, average_cost_usd=2500.0),
    LedgerEntry("ripple", 4.0, average_cost_usd=0.50),
)


class InMemoryLedgerStore:
    """Dict-backed ledger with change streams.

    Every committed write publishes the user's full ledger to each open
    stream. ``write_many`` applies all entries under one lock acquisition,
    so readers and subscribers never observe a partial swap.
    """

    def __init__(self, initial: dict[str, Ledger] | None = None) -> None:
        self._ledgers: dict[str, Ledger] = {
            user_id: dict(entries) for user_id, entries in (initial or {}).items()
        }
        self._lock = asyncio.Lock()
        self._subscribers: dict[str, list[asyncio.Queue[Ledger]]] = {}

    async def read(self, user_id: str) -> Ledger:
        async with self._lock:
            return dict(self._ledgers.get(user_id, {}))

    async def write(self, user_id: str, asset_id: str, entry: LedgerEntry) -> None:
        await self.write_many(user_id, {asset_id: entry})

    async def write_many(self, user_id: str, entries: dict[str, LedgerEntry]) -> None:
        if not entries:
            return
        async with self._lock:
            updated = dict(self._ledgers.get(user_id, {}))
            updated.update(entries)
            await self._commit(user_id, updated)
            self._ledgers[user_id] = updated
            snapshot = dict(updated)
        logger.debug("Committed %d ledger entries for %s", len(entries), user_id)
        self._publish(user_id, snapshot)

    async def stream(self, user_id: str) -> AsyncIterator[Ledger]:
        """Yield the current ledger, then the full ledger after every change."""
        queue: asyncio.Queue[Ledger] = asyncio.Queue()
        self._subscribers.setdefault(user_id, []).append(queue)
        try:
            yield await self.read(user_id)
            while True:
                yield await queue.get()
        finally:
            self._subscribers[user_id].remove(queue)

    async def _commit(self, user_id: str, ledger: Ledger) -> None:
        """Persistence hook, awaited with the lock held before the update is visible."""

    def _publish(self, user_id: str, ledger: Ledger) -> None:
        for queue in self._subscribers.get(user_id, []):
            queue.put_nowait(dict(ledger))


class JsonFileLedgerStore(InMemoryLedgerStore):
    """In-memory ledger persisted to a JSON file after every write.

    File layout mirrors the document store: ``{user_id: {asset_id: doc}}``.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        super().__init__(self._load())

    def _load(self) -> dict[str, Ledger]:
        if not self.path.exists():
            return {}
        with open(self.path) as f:
            raw = json.load(f)
        ledgers = {
            user_id: {
                asset_id: LedgerEntry.from_dict(asset_id, doc)
                for asset_id, doc in docs.items()
            }
            for user_id, docs in raw.items()
        }
        logger.info("Loaded ledgers for %d users from %s", len(ledgers), self.path)
        return ledgers

    async def _commit(self, user_id: str, ledger: Ledger) -> None:
        data = {
            uid: {asset_id: entry.to_dict() for asset_id, entry in entries.items()}
            for uid, entries in {**self._ledgers, user_id: ledger}.items()
        }
        await asyncio.to_thread(self._write_file, data)

    def _write_file(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except OSError:
            Path(tmp_path).unlink(missing_ok=True)
            raise


async def seed_default_portfolio(store: LedgerStore, user_id: str) -> bool:
    """Give a new user the starter portfolio. Returns False if they already hold assets."""
    if await store.read(user_id):
        logger.info("Ledger for %s already exists, not seeding", user_id)
        return False
    await store.write_many(
        user_id,
        {
            entry.asset_identifier: LedgerEntry(
                entry.asset_identifier,
                entry.quantity,
                average_cost_usd=entry.average_cost_usd,
            )
            for entry in DEFAULT_PORTFOLIO
        },
    )
    logger.info("Seeded default portfolio for %s", user_id)
    return True
