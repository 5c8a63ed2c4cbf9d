import threading
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal

from mexc_monitor.storage.models import PriceSample, VolumeAccumulator


@dataclass(frozen=True)
class WindowSnapshot:
    """Everything the analyzer needs for one symbol, read atomically."""

    latest: PriceSample
    start: PriceSample
    volume: VolumeAccumulator | None


@dataclass(frozen=True)
class StateStats:
    symbols: int
    samples: int
    volumes: int


class MarketState:
    """Rolling per-symbol price samples and accumulated trade volume.

    Shared by the collectors (writers), the analyzer and the pruning pass.
    Every public method takes the store-wide lock for its whole duration, so a
    multi-step read such as "latest sample, then scan back for the window
    start" never observes a half-applied write. The underlying dicts are never
    handed out; callers get immutable samples or copies.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._prices: dict[str, list[PriceSample]] = {}
        self._volumes: dict[str, VolumeAccumulator] = {}

    def record_price(self, symbol: str, price: Decimal, at: int) -> None:
        sample = PriceSample(price=price, observed_at=at)
        with self._lock:
            self._prices.setdefault(symbol, []).append(sample)

    def record_trade(self, symbol: str, price: Decimal, quantity: Decimal, at: int) -> int:
        """Add the trade notional to the symbol's volume; returns the new total."""
        notional = int(price * quantity)
        with self._lock:
            acc = self._volumes.get(symbol)
            if acc is None:
                acc = VolumeAccumulator(symbol=symbol, total_volume=0, last_updated_at=at)
                self._volumes[symbol] = acc
            acc.total_volume += notional
            acc.last_updated_at = at
            return acc.total_volume

    def latest_price(self, symbol: str) -> PriceSample | None:
        with self._lock:
            series = self._prices.get(symbol)
            return series[-1] if series else None

    def price_at_or_before(self, symbol: str, target_time: int) -> PriceSample | None:
        """Most recent sample observed at or before ``target_time``.

        When the retained history does not reach back that far, the oldest
        retained sample is returned instead: with a short history the window
        start is approximated by the first price seen. ``None`` only for a
        symbol without samples.
        """
        with self._lock:
            return self._at_or_before(symbol, target_time)

    def _at_or_before(self, symbol: str, target_time: int) -> PriceSample | None:
        series = self._prices.get(symbol)
        if not series:
            return None
        for sample in reversed(series):
            if sample.observed_at <= target_time:
                return sample
        return series[0]

    def current_volume(self, symbol: str) -> VolumeAccumulator | None:
        with self._lock:
            acc = self._volumes.get(symbol)
            if acc is None:
                return None
            return VolumeAccumulator(acc.symbol, acc.total_volume, acc.last_updated_at)

    def reset_volume(self, symbol: str) -> None:
        with self._lock:
            self._volumes.pop(symbol, None)

    def snapshot_window(self, symbol: str, since: int) -> WindowSnapshot | None:
        with self._lock:
            series = self._prices.get(symbol)
            if not series:
                return None
            start = self._at_or_before(symbol, since)
            assert start is not None
            acc = self._volumes.get(symbol)
            volume = (
                VolumeAccumulator(acc.symbol, acc.total_volume, acc.last_updated_at)
                if acc
                else None
            )
            return WindowSnapshot(latest=series[-1], start=start, volume=volume)

    def prune_older_than(self, retention_ms: int, now: int) -> tuple[int, int]:
        """Drop samples and volumes last touched before ``now - retention_ms``.

        Returns (samples removed, volume accumulators removed).
        """
        cutoff = now - retention_ms
        removed_samples = 0
        removed_volumes = 0
        with self._lock:
            for symbol in list(self._prices):
                series = self._prices[symbol]
                kept = [s for s in series if s.observed_at >= cutoff]
                removed_samples += len(series) - len(kept)
                if kept:
                    self._prices[symbol] = kept
                else:
                    del self._prices[symbol]

            for symbol in list(self._volumes):
                if self._volumes[symbol].last_updated_at < cutoff:
                    del self._volumes[symbol]
                    removed_volumes += 1
        return removed_samples, removed_volumes

    def symbols(self) -> list[str]:
        with self._lock:
            return list(self._prices.keys() | self._volumes.keys())

    def for_each_symbol(self, visitor: Callable[[str], None]) -> None:
        """Call ``visitor`` for every tracked symbol.

        Iterates over a snapshot taken under the lock; the visitor runs outside
        it and may call back into the store.
        """
        for symbol in self.symbols():
            visitor(symbol)

    def stats(self) -> StateStats:
        with self._lock:
            return StateStats(
                symbols=len(self._prices),
                samples=sum(len(s) for s in self._prices.values()),
                volumes=len(self._volumes),
            )
