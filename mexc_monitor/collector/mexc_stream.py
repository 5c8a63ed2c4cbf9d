# mexc_monitor/collector/mexc_stream.py
import asyncio
import json
import logging
import time
from typing import Any

import websockets

from .base import BaseCollector, ConnectionState
from .events import MarketEvent, PriceUpdateEvent, TradeEvent, parse_decimal

logger = logging.getLogger(__name__)

MEXC_WS_URL = "wss://wbs.mexc.com/ws"
DEALS_CHANNEL = "spot@public.deals.v3.api"
TICKER_CHANNEL = "spot@public.miniTicker.v3.api"
# MEXC serves at most 30 subscriptions per connection
MAX_STREAMS_PER_CONNECTION = 30
CHANNELS_PER_SYMBOL = 2
SYMBOLS_PER_CONNECTION = MAX_STREAMS_PER_CONNECTION // CHANNELS_PER_SYMBOL
PING_MESSAGE = json.dumps({"method": "PING"})


class StreamConnectionError(ConnectionError):
    pass


def channel_base(channel: str) -> str:
    """'spot@public.deals.v3.api@BTCUSDT' -> 'spot@public.deals.v3.api'"""
    return "@".join(channel.split("@")[:2])


def shard_symbols(symbols: list[str], size: int = SYMBOLS_PER_CONNECTION) -> list[list[str]]:
    """Split symbols into groups that each fit on one stream connection."""
    return [symbols[i : i + size] for i in range(0, len(symbols), size)]


class MexcStreamCollector(BaseCollector):
    def __init__(
        self,
        symbols: list[str],
        url: str = MEXC_WS_URL,
        reconnect_backoff: float = 5.0,
        read_timeout: float = 60.0,
        ping_interval: float = 20.0,
        name: str = "stream",
    ):
        if len(symbols) > SYMBOLS_PER_CONNECTION:
            raise ValueError(
                f"{len(symbols)} symbols exceed the {SYMBOLS_PER_CONNECTION} per stream connection, "
                "use shard_symbols()"
            )
        super().__init__(name)
        self.symbols = symbols
        self.url = url
        self.reconnect_backoff = reconnect_backoff
        self.read_timeout = read_timeout
        self.ping_interval = ping_interval
        self.ws: Any = None
        self._ping_task: asyncio.Task[None] | None = None
        # Exchange time of the newest deal received per symbol
        self.last_trade_time: dict[str, int] = {}

    def _subscription_params(self) -> list[str]:
        params: list[str] = []
        for symbol in self.symbols:
            params.append(f"{DEALS_CHANNEL}@{symbol}")
            params.append(f"{TICKER_CHANNEL}@{symbol}@UTC+8")
        return params

    async def connect(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        params = self._subscription_params()
        try:
            # MEXC expects application-level PING frames, not protocol pings
            self.ws = await websockets.connect(self.url, ping_interval=None)
            await self.ws.send(json.dumps({"method": "SUBSCRIPTION", "params": params}))
        except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as e:
            await self._close_ws()
            raise StreamConnectionError(f"Failed to connect to {self.url}: {e}") from e

        self._set_state(ConnectionState.CONNECTED)
        self._ping_task = asyncio.create_task(self._keepalive())
        logger.info(f"Connected to MEXC {self.name}, {len(params)} channels for {len(self.symbols)} symbols")

    async def disconnect(self) -> None:
        await self._close_ws()

    async def _close_ws(self) -> None:
        if self._ping_task:
            self._ping_task.cancel()
            self._ping_task = None
        if self.ws:
            ws, self.ws = self.ws, None
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Error closing MEXC stream: {e}")

    async def _keepalive(self) -> None:
        while self.ws is not None:
            await asyncio.sleep(self.ping_interval)
            if self.ws is None:
                return
            try:
                await self.ws.send(PING_MESSAGE)
            except Exception as e:
                # The read loop notices the broken connection and reconnects
                logger.debug(f"MEXC stream ping failed: {e}")
                return

    def _parse_frame(self, data: Any) -> list[MarketEvent]:
        if not isinstance(data, dict):
            self.stats.decode_errors += 1
            logger.warning(f"Unexpected MEXC stream frame: {data!r}")
            return []

        channel = data.get("c")
        if not isinstance(channel, str):
            # Subscription acks and PONG replies
            logger.debug(f"MEXC control message: {data}")
            return []

        base = channel_base(channel)
        if base not in (DEALS_CHANNEL, TICKER_CHANNEL):
            return []

        parts = channel.split("@")
        symbol = data.get("s") or (parts[2] if len(parts) > 2 else None)
        payload = data.get("d")
        if not isinstance(symbol, str) or not isinstance(payload, dict):
            self.stats.decode_errors += 1
            logger.warning(f"Malformed MEXC {base} frame: {data}")
            return []

        frame_time = data.get("t")
        if not isinstance(frame_time, int):
            frame_time = int(time.time() * 1000)

        if base == DEALS_CHANNEL:
            return self._parse_deals(symbol, payload, frame_time)
        return self._parse_ticker(symbol, payload, frame_time)

    def _parse_deals(self, symbol: str, payload: dict[str, Any], frame_time: int) -> list[MarketEvent]:
        deals = payload.get("deals")
        if not isinstance(deals, list):
            self.stats.decode_errors += 1
            logger.warning(f"MEXC deals frame for {symbol} without deals: {payload}")
            return []

        events: list[MarketEvent] = []
        for deal in deals:
            try:
                events.append(
                    TradeEvent(
                        symbol=symbol,
                        price=parse_decimal(deal["p"]),
                        quantity=parse_decimal(deal["v"]),
                        event_time=int(deal.get("t") or frame_time),
                    )
                )
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                self.stats.dropped_events += 1
                logger.warning(f"Dropping malformed {symbol} deal {deal!r}: {e}")
        if events:
            newest = max(e.event_time for e in events)
            self.last_trade_time[symbol] = max(self.last_trade_time.get(symbol, 0), newest)
        return events

    def _parse_ticker(self, symbol: str, payload: dict[str, Any], frame_time: int) -> list[MarketEvent]:
        try:
            price = parse_decimal(payload["p"])
        except (KeyError, ValueError) as e:
            self.stats.dropped_events += 1
            logger.warning(f"Dropping malformed {symbol} ticker {payload}: {e}")
            return []
        return [PriceUpdateEvent(symbol=symbol, price=price, event_time=frame_time)]

    async def _process_message(self, message: str | bytes) -> None:
        self.stats.frames += 1
        try:
            data = json.loads(message)
        except (json.JSONDecodeError, UnicodeDecodeError):
            self.stats.decode_errors += 1
            logger.warning(f"Failed to parse MEXC stream message: {message[:200]!r}")
            return

        for event in self._parse_frame(data):
            await self.events.dispatch(event)

    async def _try_connect(self) -> bool:
        try:
            await self.connect()
        except StreamConnectionError as e:
            logger.error(f"MEXC stream error: {e}")
            self._set_state(ConnectionState.RECONNECTING)
            return False
        return True

    async def _run(self) -> None:
        while self.running:
            if self.ws is None and not await self._try_connect():
                if await self._wait(self.reconnect_backoff):
                    break
                continue

            try:
                message = await asyncio.wait_for(self.ws.recv(), timeout=self.read_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"No MEXC stream data for {self.read_timeout}s, reconnecting...")
            except websockets.ConnectionClosed:
                logger.warning("MEXC stream disconnected, reconnecting...")
            except Exception as e:
                logger.error(f"MEXC stream read error: {e}")
            else:
                await self._process_message(message)
                continue

            self._set_state(ConnectionState.RECONNECTING)
            self.stats.reconnects += 1
            await self._close_ws()
            if await self._wait(self.reconnect_backoff):
                break
