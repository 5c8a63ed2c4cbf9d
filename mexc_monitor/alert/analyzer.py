import logging
import time
from decimal import Decimal
from typing import Protocol

from mexc_monitor.aggregator.state import MarketState
from mexc_monitor.config import Thresholds
from mexc_monitor.storage.models import AlertEvent
from mexc_monitor.storage.settings import SettingsSource

logger = logging.getLogger(__name__)


class AlertSink(Protocol):
    async def deliver(self, alert: AlertEvent) -> None: ...


def calculate_price_change(start: Decimal, current: Decimal) -> Decimal:
    """Percent change from ``start`` to ``current``; zero when there is no usable start."""
    if start <= 0:
        return Decimal(0)
    return (current - start) / start * 100


def should_alert(percent_change: Decimal, volume: int, thresholds: Thresholds) -> bool:
    return volume >= thresholds.min_volume and abs(percent_change) >= thresholds.price_change


class AlertAnalyzer:
    """Periodic pass that turns price/volume state into alerts.

    A symbol alerts when, within the trailing window, its accumulated traded
    volume reaches ``min_volume`` and its price moved by at least
    ``price_change`` percent in either direction. Firing consumes the volume:
    the accumulator is cleared before delivery and stays cleared even if the
    sink fails.
    """

    def __init__(self, state: MarketState, settings: SettingsSource, sink: AlertSink):
        self.state = state
        self.settings = settings
        self.sink = sink

    async def run_pass(self, now: int | None = None) -> list[AlertEvent]:
        if now is None:
            now = int(time.time() * 1000)

        try:
            thresholds = self.settings.current_thresholds()
        except Exception as e:
            logger.error(f"Failed to read thresholds, skipping analysis pass: {e}")
            return []

        logger.debug(
            f"Analysis pass: window={thresholds.time_interval}s "
            f"price_change={thresholds.price_change}% min_volume={thresholds.min_volume}"
        )

        fired: list[AlertEvent] = []
        for symbol in self.state.symbols():
            alert = self._evaluate(symbol, thresholds, now)
            if alert is None:
                continue

            self.state.reset_volume(symbol)
            fired.append(alert)
            await self._deliver(alert)

        return fired

    def _evaluate(self, symbol: str, thresholds: Thresholds, now: int) -> AlertEvent | None:
        cutoff = now - thresholds.window_ms

        window = self.state.snapshot_window(symbol, cutoff)
        if window is None:
            logger.debug(f"Skipping {symbol}: no price history")
            return None
        if window.latest.observed_at < cutoff:
            logger.debug(f"Skipping {symbol}: price too old")
            return None

        try:
            if self.settings.is_suppressed(symbol, now):
                return None
        except Exception as e:
            logger.error(f"Failed to check blacklist for {symbol}: {e}")
            return None

        volume = window.volume
        if volume is None or volume.last_updated_at < cutoff:
            return None

        change = calculate_price_change(window.start.price, window.latest.price)
        logger.debug(
            f"{symbol}: start={window.start.price} current={window.latest.price} "
            f"change={change:.4f}% volume={volume.total_volume}"
        )

        if not should_alert(change, volume.total_volume, thresholds):
            return None

        return AlertEvent(
            symbol=symbol,
            percent_change=change,
            volume=volume.total_volume,
            fired_at=now,
        )

    async def _deliver(self, alert: AlertEvent) -> None:
        logger.info(f"Conditions met for {alert.symbol}, sending alert")
        try:
            await self.sink.deliver(alert)
        except Exception as e:
            logger.error(f"Failed to send alert for {alert.symbol}: {e}")
            return
        logger.info(
            f"Alert sent for {alert.symbol}: {alert.percent_change:+.2f}% change, "
            f"${alert.volume:,} volume"
        )
