# tests/storage/test_database.py
import time
from decimal import Decimal

import pytest

from mexc_monitor.config import Thresholds
from mexc_monitor.storage.database import Database, SettingsError


@pytest.fixture
async def db(tmp_path):
    db_path = tmp_path / "test.db"
    database = Database(str(db_path))
    await database.init()
    yield database
    await database.close()


async def test_seed_settings_does_not_overwrite(db: Database):
    await db.seed_settings(Thresholds())
    await db.update_threshold("min_volume", "8000")

    await db.seed_settings(Thresholds())

    thresholds = await db.get_thresholds()
    assert thresholds.min_volume == 8000
    assert thresholds.time_interval == 5
    assert thresholds.price_change == Decimal("2.0")


async def test_empty_settings_table_yields_defaults(db: Database):
    assert await db.get_thresholds() == Thresholds()


async def test_update_threshold_validates(db: Database):
    await db.seed_settings(Thresholds())

    updated = await db.update_threshold("price_change", "3.5")
    assert updated.price_change == Decimal("3.5")

    with pytest.raises(SettingsError):
        await db.update_threshold("price_change", "abc")
    with pytest.raises(SettingsError):
        await db.update_threshold("time_interval", "0")
    with pytest.raises(SettingsError):
        await db.update_threshold("min_volume", "-10")
    with pytest.raises(SettingsError):
        await db.update_threshold("cooldown", "10")

    # Rejected updates leave the stored values unchanged
    thresholds = await db.get_thresholds()
    assert thresholds.price_change == Decimal("3.5")
    assert thresholds.time_interval == 5


async def test_corrupt_settings_raise(db: Database):
    assert db.conn is not None
    await db.conn.execute("INSERT INTO settings (key, value) VALUES ('time_interval', 'soon')")
    await db.conn.commit()

    with pytest.raises(SettingsError):
        await db.get_thresholds()


async def test_blacklist_crud(db: Database):
    # Create
    entry = await db.add_to_blacklist("DOGEUSDT", 3600)
    now = int(time.time() * 1000)
    assert entry.symbol == "DOGEUSDT"
    assert now + 3_500_000 < entry.expires_at <= now + 3_600_000

    # Read
    entries = await db.get_blacklist()
    assert [e.symbol for e in entries] == ["DOGEUSDT"]

    # Re-adding replaces the expiry
    await db.add_to_blacklist("DOGEUSDT", 60)
    entries = await db.get_blacklist()
    assert len(entries) == 1
    assert entries[0].expires_at < entry.expires_at

    # Delete
    assert await db.remove_from_blacklist("DOGEUSDT")
    assert not await db.remove_from_blacklist("DOGEUSDT")
    assert await db.get_blacklist() == []


async def test_get_blacklist_orders_by_expiry(db: Database):
    await db.add_to_blacklist("ETHUSDT", 7200)
    await db.add_to_blacklist("BTCUSDT", 60)

    entries = await db.get_blacklist()

    assert [e.symbol for e in entries] == ["BTCUSDT", "ETHUSDT"]


async def test_cleanup_expired_blacklist(db: Database):
    assert db.conn is not None
    past = int(time.time() * 1000) - 1000
    await db.conn.execute("INSERT INTO blacklist (symbol, expires_at) VALUES (?, ?)", ("XRPUSDT", past))
    await db.conn.commit()
    await db.add_to_blacklist("BTCUSDT", 3600)

    assert await db.cleanup_expired_blacklist() == 1
    assert await db.cleanup_expired_blacklist() == 0
    assert [e.symbol for e in await db.get_blacklist()] == ["BTCUSDT"]
