# mexc_monitor/collector/symbols.py
import logging
from typing import Any

import ccxt.async_support as ccxt

from mexc_monitor.config import DEFAULT_SYMBOLS, Config

logger = logging.getLogger(__name__)


def select_symbols(
    markets: dict[str, Any],
    tickers: dict[str, Any],
    quote_asset: str,
    limit: int,
) -> list[str]:
    """Pick active spot markets in ``quote_asset``, busiest first, as exchange ids."""
    candidates: list[tuple[float, str]] = []
    for symbol, market in markets.items():
        if not market.get("spot") or market.get("quote") != quote_asset:
            continue
        # MEXC leaves "active" unset for most markets
        if market.get("active") is False:
            continue
        ticker = tickers.get(symbol) or {}
        quote_volume = ticker.get("quoteVolume") or 0
        candidates.append((float(quote_volume), market["id"]))

    candidates.sort(key=lambda c: c[0], reverse=True)
    return [market_id for _, market_id in candidates[:limit]]


async def resolve_symbols(config: Config) -> list[str]:
    if config.symbols:
        return [s.upper() for s in config.symbols]

    exchange = ccxt.mexc()
    try:
        markets: dict[str, Any] = await exchange.load_markets()
        tickers: dict[str, Any] = await exchange.fetch_tickers()
        symbols = select_symbols(markets, tickers, config.quote_asset, config.max_symbols)
    except Exception as e:
        logger.warning(f"Failed to discover MEXC symbols, using defaults: {e}")
        return list(DEFAULT_SYMBOLS)
    finally:
        await exchange.close()

    if not symbols:
        logger.warning(f"No active {config.quote_asset} markets found, using defaults")
        return list(DEFAULT_SYMBOLS)

    logger.info(f"Discovered {len(symbols)} active {config.quote_asset} symbols")
    return symbols
