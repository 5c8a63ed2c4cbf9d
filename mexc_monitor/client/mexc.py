"""MEXC spot REST API client"""

import json
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from mexc_monitor.client.models import RecentTrade, TickerPrice


class MexcAPIError(Exception):
    """MEXC API error"""

    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


@dataclass
class MexcClient:
    """MEXC spot REST API client"""

    base_url: str = "https://api.mexc.com"
    timeout: float = 10.0
    _session: aiohttp.ClientSession | None = field(default=None, repr=False)

    async def _request(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        """GET ``endpoint`` and decode the JSON body"""
        if self._session is None:
            raise RuntimeError("Session not initialized. Call open() first.")

        url = f"{self.base_url}{endpoint}"
        response = await self._session.get(url, params=params)

        if response.status != 200:
            error_text = await response.text()
            try:
                error_data = json.loads(error_text)
                raise MexcAPIError(error_data.get("code", -1), error_data.get("msg", error_text))
            except (json.JSONDecodeError, AttributeError):
                raise MexcAPIError(response.status, error_text)

        return await response.json()

    async def open(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def get_all_prices(self) -> list[TickerPrice]:
        """Latest price of every symbol"""
        data = await self._request("/api/v3/ticker/price")
        return [
            TickerPrice(symbol=str(d["symbol"]), price=str(d["price"]))
            for d in data
            if isinstance(d, dict) and "symbol" in d and "price" in d
        ]

    async def get_recent_trades(self, symbol: str, limit: int = 100) -> list[RecentTrade]:
        """Most recent public trades for one symbol"""
        data = await self._request("/api/v3/trades", {"symbol": symbol, "limit": limit})
        trades: list[RecentTrade] = []
        for d in data:
            try:
                trades.append(
                    RecentTrade(
                        price=str(d["price"]),
                        qty=str(d["qty"]),
                        time=int(d["time"]),
                        is_buyer_maker=bool(d.get("isBuyerMaker", False)),
                    )
                )
            except (KeyError, TypeError, ValueError, AttributeError):
                continue
        return trades
