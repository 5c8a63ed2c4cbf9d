# mexc_monitor/collector/base.py
import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum

from .events import CollectorStats, EventDispatcher, PriceHandler, TradeHandler

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class BaseCollector(ABC):
    def __init__(self, name: str):
        self.name = name
        self.running = False
        self.state = ConnectionState.DISCONNECTED
        self.stats = CollectorStats()
        self.events = EventDispatcher(self.stats)
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    def on_trade(self, handler: TradeHandler) -> None:
        self.events.on_trade(handler)

    def on_price_update(self, handler: PriceHandler) -> None:
        self.events.on_price_update(handler)

    @abstractmethod
    async def connect(self) -> None:
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    @abstractmethod
    async def _run(self) -> None:
        pass

    async def start(self) -> None:
        self.running = True
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())
        logger.info(f"{self.__class__.__name__} started for {self.name}")

    async def stop(self) -> None:
        self.running = False
        self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.disconnect()
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info(f"{self.__class__.__name__} stopped for {self.name}")

    async def _wait(self, seconds: float) -> bool:
        """Sleep for ``seconds`` unless shutdown is requested first.

        Returns True when the collector is stopping.
        """
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    def _set_state(self, state: ConnectionState) -> None:
        if state != self.state:
            logger.info(f"{self.__class__.__name__} {self.state.value} -> {state.value}")
            self.state = state
