# mexc_monitor/config.py
from decimal import Decimal
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, model_validator

DEFAULT_SYMBOLS = [
    "BTCUSDT", "ETHUSDT", "BNBUSDT", "ADAUSDT", "SOLUSDT",
    "XRPUSDT", "DOTUSDT", "DOGEUSDT", "AVAXUSDT", "MATICUSDT",
    "LINKUSDT", "LTCUSDT", "UNIUSDT", "ATOMUSDT", "ETCUSDT",
    "FILUSDT", "TRXUSDT", "XLMUSDT", "VETUSDT", "ALGOUSDT",
]


class Thresholds(BaseModel, frozen=True):
    """Alert thresholds: window length, price move and minimum traded volume."""

    time_interval: int = Field(default=5, gt=0)  # seconds
    price_change: Decimal = Field(default=Decimal("2.0"), gt=0)  # percent
    min_volume: int = Field(default=5000, ge=0)  # quote currency

    @property
    def window_ms(self) -> int:
        return self.time_interval * 1000


class MexcConfig(BaseModel):
    websocket_url: str = "wss://wbs.mexc.com/ws"
    rest_url: str = "https://api.mexc.com"
    stream_enabled: bool = True
    polling_enabled: bool = True
    reconnect_backoff_seconds: float = Field(default=5, gt=0)
    read_timeout_seconds: float = Field(default=60, gt=0)
    ping_interval_seconds: float = Field(default=20, gt=0)


class IntervalsConfig(BaseModel):
    analysis_seconds: float = Field(default=5, gt=0)
    polling_seconds: float = Field(default=5, gt=0)
    cleanup_minutes: float = Field(default=5, gt=0)
    retention_minutes: int = Field(default=10, gt=0)


class TelegramConfig(BaseModel):
    bot_token: str
    chat_id: str


class DatabaseConfig(BaseModel):
    path: str = "data/monitor.db"


class LoggingConfig(BaseModel):
    level: str = "info"
    file: str | None = "logs/monitor.log"


class Config(BaseModel):
    telegram: TelegramConfig
    mexc: MexcConfig = MexcConfig()
    symbols: list[str] = []
    quote_asset: str = "USDT"
    max_symbols: int = Field(default=20, gt=0)
    monitoring: Thresholds = Thresholds()
    intervals: IntervalsConfig = IntervalsConfig()
    database: DatabaseConfig = DatabaseConfig()
    logging: LoggingConfig = LoggingConfig()

    @model_validator(mode="after")
    def _check_retention(self) -> "Config":
        if self.intervals.retention_minutes * 60 <= self.monitoring.time_interval:
            raise ValueError("intervals.retention_minutes must exceed monitoring.time_interval")
        return self


def load_config(path: Path) -> Config:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return Config(**data)
