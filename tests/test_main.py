# tests/test_main.py
import json
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from mexc_monitor.client.models import RecentTrade
from mexc_monitor.collector.base import ConnectionState
from mexc_monitor.collector.events import PriceUpdateEvent, TradeEvent
from mexc_monitor.collector.mexc_poller import MexcPollingCollector
from mexc_monitor.collector.mexc_stream import MexcStreamCollector
from mexc_monitor.config import Config
from mexc_monitor.main import MexcMonitor


@pytest.fixture
async def monitor(tmp_path):
    config = Config(
        telegram={"bot_token": "test", "chat_id": "123"},
        symbols=["BTCUSDT", "ETHUSDT"],
        database={"path": str(tmp_path / "data" / "monitor.db")},
    )
    with patch("mexc_monitor.notifier.telegram.Bot"):
        monitor = MexcMonitor(config)
    await monitor.init()
    yield monitor
    await monitor.db.close()


async def test_init_builds_collectors(monitor: MexcMonitor):
    assert monitor.symbols == ["BTCUSDT", "ETHUSDT"]
    assert [type(c) for c in monitor.collectors] == [MexcStreamCollector, MexcPollingCollector]
    assert monitor.notifier.on_set is not None


async def test_events_update_market_state(monitor: MexcMonitor):
    stream = monitor.collectors[0]

    await stream.events.dispatch(PriceUpdateEvent("BTCUSDT", Decimal("100"), 1))
    await stream.events.dispatch(TradeEvent("BTCUSDT", Decimal("100"), Decimal("60"), 1))

    latest = monitor.state.latest_price("BTCUSDT")
    assert latest is not None
    assert latest.price == Decimal("100")
    # Stored with the local receipt time, not the exchange time
    assert latest.observed_at > 1
    volume = monitor.state.current_volume("BTCUSDT")
    assert volume is not None
    assert volume.total_volume == 6000


async def test_on_set_updates_threshold(monitor: MexcMonitor):
    reply = await monitor._on_set("price_change", "3.5")

    assert reply.startswith("✅ Updated")
    assert "3.50%" in reply
    assert monitor.settings.current_thresholds().price_change == Decimal("3.5")


async def test_on_set_rejects_invalid_value(monitor: MexcMonitor):
    reply = await monitor._on_set("min_volume", "lots")

    assert reply.startswith("❌")
    assert monitor.settings.current_thresholds().min_volume == 5000


async def test_on_set_rejects_window_beyond_retention(monitor: MexcMonitor):
    reply = await monitor._on_set("time_interval", "600")

    assert reply.startswith("❌")
    assert monitor.settings.current_thresholds().time_interval == 5


async def test_blacklist_commands(monitor: MexcMonitor):
    assert await monitor._on_blacklist() == "Blacklist is empty"

    reply = await monitor._on_blacklist_add("DOGEUSDT", 1800)
    assert reply == "✅ DOGEUSDT blacklisted for 30m"
    assert "DOGEUSDT" in await monitor._on_blacklist()

    assert await monitor._on_blacklist_remove("DOGEUSDT") == "✅ DOGEUSDT removed from blacklist"
    assert await monitor._on_blacklist_remove("DOGEUSDT") == "DOGEUSDT is not blacklisted"


async def test_on_status_includes_runtime(monitor: MexcMonitor):
    status = await monitor._on_status()

    assert "📊 Current settings:" in status
    assert "stream-1: disconnected" in status
    assert "polling: disconnected" in status


def deals_message(symbol: str, price: str, qty: str, at: int) -> str:
    return json.dumps(
        {
            "c": f"spot@public.deals.v3.api@{symbol}",
            "s": symbol,
            "d": {"deals": [{"p": price, "v": qty, "t": at}]},
            "t": at,
        }
    )


async def test_trade_seen_by_stream_and_poller_counts_once(monitor: MexcMonitor):
    stream, poller = monitor.collectors
    at = 1_700_000_000_000
    stream._set_state(ConnectionState.CONNECTED)
    poller._since = at - 1
    poller.client.get_recent_trades = AsyncMock(
        side_effect=lambda symbol, limit: [RecentTrade("100", "30", at, False)] if symbol == "BTCUSDT" else []
    )

    await stream._process_message(deals_message("BTCUSDT", "100", "30", at))
    await poller._poll_trades()

    volume = monitor.state.current_volume("BTCUSDT")
    assert volume is not None
    assert volume.total_volume == 3000


async def test_poller_fills_in_while_stream_is_down(monitor: MexcMonitor):
    stream, poller = monitor.collectors
    at = 1_700_000_000_000
    poller._since = at - 1
    poller.client.get_recent_trades = AsyncMock(
        side_effect=lambda symbol, limit: (
            [RecentTrade("100", "30", at, False), RecentTrade("100", "10", at + 500, False)]
            if symbol == "BTCUSDT"
            else []
        )
    )

    stream._set_state(ConnectionState.CONNECTED)
    await stream._process_message(deals_message("BTCUSDT", "100", "30", at))
    stream._set_state(ConnectionState.RECONNECTING)
    await poller._poll_trades()
    await poller._poll_trades()

    volume = monitor.state.current_volume("BTCUSDT")
    assert volume is not None
    assert volume.total_volume == 4000


async def test_cleanup_prunes_state_when_blacklist_cleanup_fails(monitor: MexcMonitor):
    now = 1_700_000_000_000
    stale = now - 11 * 60 * 1000
    monitor.state.record_price("BTCUSDT", Decimal("100"), stale)
    monitor.state.record_trade("BTCUSDT", Decimal("100"), Decimal("30"), stale)
    monitor.state.record_trade("ETHUSDT", Decimal("10"), Decimal("1"), now)
    monitor.settings.cleanup_expired = AsyncMock(side_effect=RuntimeError("database is locked"))

    await monitor.cleanup_once(now=now)

    monitor.settings.cleanup_expired.assert_awaited_once()
    assert monitor.state.current_volume("BTCUSDT") is None
    assert monitor.state.latest_price("BTCUSDT") is None
    assert monitor.state.current_volume("ETHUSDT") is not None
