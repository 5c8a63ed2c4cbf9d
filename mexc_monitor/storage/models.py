# mexc_monitor/storage/models.py
from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class PriceSample:
    price: Decimal
    observed_at: int  # ms


@dataclass
class VolumeAccumulator:
    symbol: str
    total_volume: int  # quote currency, truncated per trade
    last_updated_at: int  # ms


@dataclass(frozen=True)
class AlertEvent:
    symbol: str
    percent_change: Decimal
    volume: int
    fired_at: int  # ms


@dataclass
class BlacklistEntry:
    symbol: str
    expires_at: int  # ms
