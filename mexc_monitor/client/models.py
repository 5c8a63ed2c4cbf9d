"""MEXC spot API data models

Numeric fields stay as the text the API sends; callers parse them.
"""

from dataclasses import dataclass


@dataclass
class TickerPrice:
    """Latest price for one symbol"""

    symbol: str
    price: str


@dataclass
class RecentTrade:
    """One public trade"""

    price: str
    qty: str
    time: int
    is_buyer_maker: bool
