import logging
import time
from typing import Protocol

from mexc_monitor.config import Thresholds

from .database import Database
from .models import BlacklistEntry

logger = logging.getLogger(__name__)


class SettingsSource(Protocol):
    def current_thresholds(self) -> Thresholds: ...

    def is_suppressed(self, symbol: str, now: int) -> bool: ...


class SettingsProvider:
    """In-memory view of the settings and blacklist tables.

    Reads are synchronous and served from the cache, so the analysis pass can
    query every symbol without touching SQLite. ``refresh`` reloads the cache
    once per pass; writes go to the database first and then to the cache.
    """

    def __init__(self, db: Database, defaults: Thresholds):
        self.db = db
        self._thresholds = defaults
        self._blacklist: dict[str, int] = {}

    async def init(self) -> None:
        await self.db.seed_settings(self._thresholds)
        await self.refresh()

    async def refresh(self) -> None:
        self._thresholds = await self.db.get_thresholds()
        entries = await self.db.get_blacklist()
        self._blacklist = {e.symbol: e.expires_at for e in entries}

    def current_thresholds(self) -> Thresholds:
        return self._thresholds

    def is_suppressed(self, symbol: str, now: int) -> bool:
        expires_at = self._blacklist.get(symbol)
        return expires_at is not None and expires_at > now

    def blacklist(self) -> list[BlacklistEntry]:
        now = int(time.time() * 1000)
        return sorted(
            (BlacklistEntry(s, exp) for s, exp in self._blacklist.items() if exp > now),
            key=lambda e: e.expires_at,
        )

    async def update_threshold(self, key: str, value: str) -> Thresholds:
        self._thresholds = await self.db.update_threshold(key, value)
        logger.info(f"Threshold {key} set to {getattr(self._thresholds, key)}")
        return self._thresholds

    async def suppress(self, symbol: str, duration_seconds: int) -> BlacklistEntry:
        entry = await self.db.add_to_blacklist(symbol, duration_seconds)
        self._blacklist[entry.symbol] = entry.expires_at
        logger.info(f"{symbol} blacklisted for {duration_seconds}s")
        return entry

    async def unsuppress(self, symbol: str) -> bool:
        removed = await self.db.remove_from_blacklist(symbol)
        self._blacklist.pop(symbol, None)
        return removed

    async def cleanup_expired(self) -> int:
        deleted = await self.db.cleanup_expired_blacklist()
        now = int(time.time() * 1000)
        self._blacklist = {s: exp for s, exp in self._blacklist.items() if exp > now}
        return deleted
