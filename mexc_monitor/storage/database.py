import time

import aiosqlite
from pydantic import ValidationError

from mexc_monitor.config import Thresholds

from .models import BlacklistEntry

SETTING_KEYS = ("time_interval", "price_change", "min_volume")


class SettingsError(Exception):
    """Settings table holds values that do not form valid thresholds"""


class Database:
    def __init__(self, path: str):
        self.path = path
        self.conn: aiosqlite.Connection | None = None

    async def init(self) -> None:
        self.conn = await aiosqlite.connect(self.path)
        await self._create_tables()

    async def close(self) -> None:
        if self.conn:
            await self.conn.close()
            self.conn = None

    async def _create_tables(self) -> None:
        assert self.conn is not None
        await self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS blacklist (
                symbol TEXT PRIMARY KEY,
                expires_at INTEGER NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_blacklist_expires ON blacklist(expires_at);
        """)
        await self.conn.commit()

    async def seed_settings(self, defaults: Thresholds) -> None:
        """Insert default thresholds without overwriting values set by the operator."""
        assert self.conn is not None
        await self.conn.executemany(
            "INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?)",
            [(key, str(getattr(defaults, key))) for key in SETTING_KEYS],
        )
        await self.conn.commit()

    async def get_thresholds(self) -> Thresholds:
        assert self.conn is not None
        cursor = await self.conn.execute("SELECT key, value FROM settings")
        rows = await cursor.fetchall()
        values = {key: value for key, value in rows if key in SETTING_KEYS}
        try:
            return Thresholds(**values)
        except ValidationError as e:
            raise SettingsError(f"Invalid settings {values}: {e}") from e

    async def update_threshold(self, key: str, value: str) -> Thresholds:
        """Validate and persist one threshold, returning the resulting snapshot."""
        assert self.conn is not None
        if key not in SETTING_KEYS:
            raise SettingsError(f"Unknown setting: {key}")

        current = await self.get_thresholds()
        try:
            updated = Thresholds(**{**current.model_dump(), key: value})
        except ValidationError as e:
            raise SettingsError(f"Invalid value for {key}: {value}") from e

        await self.conn.execute(
            "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
            (key, str(getattr(updated, key))),
        )
        await self.conn.commit()
        return updated

    async def add_to_blacklist(self, symbol: str, duration_seconds: int) -> BlacklistEntry:
        assert self.conn is not None
        expires_at = int(time.time() * 1000) + duration_seconds * 1000
        await self.conn.execute(
            "INSERT OR REPLACE INTO blacklist (symbol, expires_at) VALUES (?, ?)",
            (symbol, expires_at),
        )
        await self.conn.commit()
        return BlacklistEntry(symbol=symbol, expires_at=expires_at)

    async def remove_from_blacklist(self, symbol: str) -> bool:
        assert self.conn is not None
        cursor = await self.conn.execute("DELETE FROM blacklist WHERE symbol = ?", (symbol,))
        await self.conn.commit()
        return cursor.rowcount > 0

    async def get_blacklist(self) -> list[BlacklistEntry]:
        assert self.conn is not None
        now = int(time.time() * 1000)
        cursor = await self.conn.execute(
            """SELECT symbol, expires_at FROM blacklist
               WHERE expires_at > ? ORDER BY expires_at""",
            (now,),
        )
        rows = await cursor.fetchall()
        return [BlacklistEntry(*row) for row in rows]

    async def cleanup_expired_blacklist(self) -> int:
        assert self.conn is not None
        now = int(time.time() * 1000)
        cursor = await self.conn.execute("DELETE FROM blacklist WHERE expires_at <= ?", (now,))
        await self.conn.commit()
        return cursor.rowcount
