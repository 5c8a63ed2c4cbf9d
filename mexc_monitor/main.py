# mexc_monitor/main.py
import asyncio
import logging
import signal
import time
from pathlib import Path
from typing import Any

from mexc_monitor.aggregator.state import MarketState
from mexc_monitor.alert.analyzer import AlertAnalyzer
from mexc_monitor.client.mexc import MexcClient
from mexc_monitor.collector.base import BaseCollector
from mexc_monitor.collector.events import PriceUpdateEvent, TradeEvent
from mexc_monitor.collector.mexc_poller import MexcPollingCollector
from mexc_monitor.collector.mexc_stream import MexcStreamCollector, shard_symbols
from mexc_monitor.collector.symbols import resolve_symbols
from mexc_monitor.config import Config, load_config
from mexc_monitor.notifier.formatter import format_blacklist, format_duration, format_status
from mexc_monitor.notifier.telegram import TelegramNotifier
from mexc_monitor.storage.database import Database, SettingsError
from mexc_monitor.storage.settings import SettingsProvider

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)


def setup_logging(config: Config) -> None:
    level = getattr(logging, config.logging.level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)

    if not config.logging.file:
        return
    try:
        Path(config.logging.file).parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(config.logging.file)
    except OSError as e:
        logger.warning(f"Failed to open log file {config.logging.file}: {e}")
        return
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(handler)


class MexcMonitor:
    def __init__(self, config: Config):
        self.config = config
        self.db = Database(config.database.path)
        self.settings = SettingsProvider(self.db, config.monitoring)
        self.state = MarketState()
        self.notifier = TelegramNotifier(
            config.telegram.bot_token, config.telegram.chat_id, config.quote_asset
        )
        self.analyzer = AlertAnalyzer(self.state, self.settings, self.notifier)
        self.collectors: list[BaseCollector] = []
        self.symbols: list[str] = []
        self.running = False
        self.start_time = time.time()

    async def init(self) -> None:
        # Ensure data directory exists
        Path(self.config.database.path).parent.mkdir(parents=True, exist_ok=True)

        await self.db.init()
        await self.settings.init()

        self.symbols = await resolve_symbols(self.config)
        logger.info(f"Monitoring {len(self.symbols)} symbols")

        mexc = self.config.mexc
        streams: list[MexcStreamCollector] = []
        if mexc.stream_enabled:
            for i, group in enumerate(shard_symbols(self.symbols), start=1):
                streams.append(
                    MexcStreamCollector(
                        symbols=group,
                        url=mexc.websocket_url,
                        reconnect_backoff=mexc.reconnect_backoff_seconds,
                        read_timeout=mexc.read_timeout_seconds,
                        ping_interval=mexc.ping_interval_seconds,
                        name=f"stream-{i}",
                    )
                )
            self.collectors.extend(streams)
        if mexc.polling_enabled:
            # Takes over per symbol whenever its stream connection is down
            self.collectors.append(
                MexcPollingCollector(
                    symbols=self.symbols,
                    client=MexcClient(base_url=mexc.rest_url),
                    interval=self.config.intervals.polling_seconds,
                    streams=streams,
                )
            )

        for collector in self.collectors:
            collector.on_trade(self._on_trade)
            collector.on_price_update(self._on_price_update)

        # Setup Telegram callbacks
        self.notifier.on_status = self._on_status
        self.notifier.on_set = self._on_set
        self.notifier.on_blacklist = self._on_blacklist
        self.notifier.on_blacklist_add = self._on_blacklist_add
        self.notifier.on_blacklist_remove = self._on_blacklist_remove

    def _on_trade(self, trade: TradeEvent) -> None:
        total = self.state.record_trade(
            trade.symbol, trade.price, trade.quantity, int(time.time() * 1000)
        )
        logger.debug(f"Trade: {trade.symbol} {trade.quantity}@{trade.price} volume=${total:,}")

    def _on_price_update(self, update: PriceUpdateEvent) -> None:
        self.state.record_price(update.symbol, update.price, int(time.time() * 1000))

    async def _on_status(self) -> str:
        stats = self.state.stats()
        runtime: dict[str, Any] = {
            "uptime": format_duration(time.time() - self.start_time),
            "symbols": f"{stats.symbols} priced / {len(self.symbols)} tracked",
            "price samples": stats.samples,
            "volume accumulators": stats.volumes,
        }
        for collector in self.collectors:
            s = collector.stats
            runtime[collector.name] = (
                f"{collector.state.value}, frames={s.frames} decode_errors={s.decode_errors} "
                f"dropped={s.dropped_events} handler_errors={s.handler_errors} "
                f"reconnects={s.reconnects}"
            )
        return format_status(self.settings.current_thresholds(), runtime)

    async def _on_set(self, key: str, value: str) -> str:
        retention_seconds = self.config.intervals.retention_minutes * 60
        if key == "time_interval" and value.isdigit() and int(value) >= retention_seconds:
            return f"❌ Time interval must be below the {retention_seconds}s retention"
        try:
            thresholds = await self.settings.update_threshold(key, value)
        except SettingsError as e:
            logger.warning(f"Rejected setting {key}={value}: {e}")
            return f"❌ Invalid value for {key}: {value}"
        return "✅ Updated\n\n" + format_status(thresholds)

    async def _on_blacklist(self) -> str:
        return format_blacklist(self.settings.blacklist(), int(time.time() * 1000))

    async def _on_blacklist_add(self, symbol: str, seconds: int) -> str:
        await self.settings.suppress(symbol, seconds)
        return f"✅ {symbol} blacklisted for {format_duration(seconds)}"

    async def _on_blacklist_remove(self, symbol: str) -> str:
        if await self.settings.unsuppress(symbol):
            return f"✅ {symbol} removed from blacklist"
        return f"{symbol} is not blacklisted"

    async def _analyze(self) -> None:
        interval = self.config.intervals.analysis_seconds
        while self.running:
            await asyncio.sleep(interval)
            try:
                await self.settings.refresh()
            except Exception as e:
                logger.error(f"Failed to refresh settings, skipping analysis pass: {e}")
                continue
            try:
                fired = await self.analyzer.run_pass()
                if fired:
                    logger.info(f"Analysis pass fired {len(fired)} alerts")
            except Exception as e:
                logger.error(f"Analysis pass failed: {e}")

    async def cleanup_once(self, now: int | None = None) -> None:
        """Prune stale market state and expired blacklist entries"""
        if now is None:
            now = int(time.time() * 1000)
        retention_ms = self.config.intervals.retention_minutes * 60 * 1000

        try:
            expired = await self.settings.cleanup_expired()
            if expired > 0:
                logger.info(f"Removed {expired} expired blacklist entries")
        except Exception as e:
            logger.error(f"Failed to cleanup blacklist: {e}")

        try:
            samples, volumes = self.state.prune_older_than(retention_ms, now)
            if samples or volumes:
                logger.debug(f"Pruned {samples} price samples and {volumes} volume records")
        except Exception as e:
            logger.error(f"Failed to prune market state: {e}")

    async def _cleanup_old_data(self) -> None:
        interval = self.config.intervals.cleanup_minutes * 60
        while self.running:
            await asyncio.sleep(interval)
            await self.cleanup_once()

    async def run(self) -> None:
        await self.init()
        self.running = True

        # Start collectors
        for collector in self.collectors:
            await collector.start()

        # Start Telegram bot
        await self.notifier.start_polling()

        # Start background tasks
        tasks = [
            asyncio.create_task(self._analyze()),
            asyncio.create_task(self._cleanup_old_data()),
        ]

        logger.info("MEXC Monitor started")

        # Wait for shutdown signal
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        await stop_event.wait()

        # Cleanup
        self.running = False
        for task in tasks:
            task.cancel()
        for collector in self.collectors:
            await collector.stop()
        await self.notifier.stop_polling()
        await self.db.close()

        logger.info("MEXC Monitor stopped")


async def main() -> None:
    config = load_config(Path("config.yaml"))
    setup_logging(config)
    monitor = MexcMonitor(config)
    await monitor.run()


if __name__ == "__main__":
    asyncio.run(main())
