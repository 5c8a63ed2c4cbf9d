import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TradeEvent:
    symbol: str
    price: Decimal
    quantity: Decimal
    event_time: int  # ms, exchange clock


@dataclass(frozen=True)
class PriceUpdateEvent:
    symbol: str
    price: Decimal
    event_time: int  # ms, exchange clock


MarketEvent = TradeEvent | PriceUpdateEvent

TradeHandler = Callable[[TradeEvent], Awaitable[None] | None]
PriceHandler = Callable[[PriceUpdateEvent], Awaitable[None] | None]


@dataclass
class CollectorStats:
    frames: int = 0
    decode_errors: int = 0
    dropped_events: int = 0
    handler_errors: int = 0
    reconnects: int = 0


def parse_decimal(value: Any) -> Decimal:
    """Parse an exchange numeric field (sent as text) into a finite, non-negative Decimal."""
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ValueError(f"not a numeric string: {value!r}")
    try:
        result = Decimal(value)
    except InvalidOperation as e:
        raise ValueError(f"not a number: {value!r}") from e
    if not result.is_finite() or result < 0:
        raise ValueError(f"out of range: {value!r}")
    return result


class EventDispatcher:
    """Trade / price-update subscriptions for one collector.

    Handlers run in registration order. Each call is isolated: an exception
    is logged and counted and the remaining handlers still receive the event.
    """

    def __init__(self, stats: CollectorStats | None = None):
        self.stats = stats or CollectorStats()
        self._trade_handlers: list[TradeHandler] = []
        self._price_handlers: list[PriceHandler] = []

    def on_trade(self, handler: TradeHandler) -> None:
        self._trade_handlers.append(handler)

    def on_price_update(self, handler: PriceHandler) -> None:
        self._price_handlers.append(handler)

    async def dispatch(self, event: MarketEvent) -> None:
        handlers: list[Any]
        if isinstance(event, TradeEvent):
            handlers = list(self._trade_handlers)
        else:
            handlers = list(self._price_handlers)

        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.stats.handler_errors += 1
                logger.error(f"Handler {getattr(handler, '__name__', handler)} failed for {event}: {e}")
