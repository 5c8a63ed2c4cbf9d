# mexc_monitor/collector/mexc_poller.py
import logging
import time

from mexc_monitor.client.mexc import MexcClient

from .base import BaseCollector, ConnectionState
from .events import PriceUpdateEvent, TradeEvent, parse_decimal
from .mexc_stream import MexcStreamCollector

logger = logging.getLogger(__name__)


class MexcPollingCollector(BaseCollector):
    """Snapshot-based fallback for the stream.

    Every interval it fetches all current prices and the recent trades of each
    tracked symbol. Events are only emitted for symbols whose stream
    connection is down (or for every symbol when no stream is configured), so
    a trade is never counted by both paths.

    Trades are forwarded once: only those newer than the last trade time seen
    for that symbol, by this poller or by its stream, are emitted. The initial
    watermark is the collector start time. Polls made while the stream is up
    still advance the watermark, so trades already delivered by the stream are
    not replayed when it drops.
    """

    def __init__(
        self,
        symbols: list[str],
        client: MexcClient,
        interval: float = 5.0,
        trades_limit: int = 100,
        streams: list[MexcStreamCollector] | None = None,
    ):
        super().__init__("polling")
        self.symbols = symbols
        self.client = client
        self.interval = interval
        self.trades_limit = trades_limit
        self._since = 0
        self._last_trade_time: dict[str, int] = {}
        self._streams: dict[str, MexcStreamCollector] = {}
        for stream in streams or []:
            for symbol in stream.symbols:
                self._streams[symbol] = stream

    def _stream_covers(self, symbol: str) -> bool:
        stream = self._streams.get(symbol)
        return stream is not None and stream.state == ConnectionState.CONNECTED

    def _watermark(self, symbol: str) -> int:
        watermark = self._last_trade_time.get(symbol, self._since)
        stream = self._streams.get(symbol)
        if stream is not None:
            watermark = max(watermark, stream.last_trade_time.get(symbol, 0))
        return watermark

    async def connect(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        await self.client.open()
        self._set_state(ConnectionState.CONNECTED)

    async def disconnect(self) -> None:
        await self.client.close()

    async def poll_once(self) -> None:
        await self._poll_prices()
        await self._poll_trades()

    async def _poll_prices(self) -> None:
        tracked = {s for s in self.symbols if not self._stream_covers(s)}
        if not tracked:
            return

        try:
            tickers = await self.client.get_all_prices()
        except Exception as e:
            logger.error(f"Failed to get tickers: {e}")
            return

        now = int(time.time() * 1000)
        for ticker in tickers:
            if ticker.symbol not in tracked:
                continue
            try:
                price = parse_decimal(ticker.price)
            except ValueError as e:
                self.stats.dropped_events += 1
                logger.error(f"Failed to parse price for {ticker.symbol}: {e}")
                continue
            await self.events.dispatch(PriceUpdateEvent(ticker.symbol, price, now))

    async def _poll_trades(self) -> None:
        for symbol in self.symbols:
            try:
                trades = await self.client.get_recent_trades(symbol, self.trades_limit)
            except Exception as e:
                logger.debug(f"Failed to get trades for {symbol}: {e}")
                continue

            # Checked after the request so a stream that came up meanwhile wins
            forward = not self._stream_covers(symbol)
            watermark = self._watermark(symbol)
            newest = watermark
            for trade in sorted(trades, key=lambda t: t.time):
                if trade.time <= watermark:
                    continue
                newest = max(newest, trade.time)
                if not forward:
                    continue
                try:
                    price = parse_decimal(trade.price)
                    quantity = parse_decimal(trade.qty)
                except ValueError:
                    self.stats.dropped_events += 1
                    continue
                await self.events.dispatch(TradeEvent(symbol, price, quantity, trade.time))
            self._last_trade_time[symbol] = newest

    async def _run(self) -> None:
        await self.connect()
        self._since = int(time.time() * 1000)
        logger.info(f"Starting REST polling for {len(self.symbols)} symbols")

        while self.running:
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"MEXC polling error: {e}")
            if await self._wait(self.interval):
                break
