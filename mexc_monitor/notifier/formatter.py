# mexc_monitor/notifier/formatter.py
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from mexc_monitor.config import Thresholds
from mexc_monitor.storage.models import AlertEvent, BlacklistEntry


def format_volume(volume: int) -> str:
    if volume >= 1_000_000:
        return f"{volume / 1_000_000:.1f}M"
    elif volume >= 1_000:
        return f"{volume / 1_000:.1f}K"
    else:
        return f"{volume}"


def get_volume_emojis(volume: int) -> str:
    if volume < 10_000:
        return ""
    elif volume < 50_000:
        return "👁"
    elif volume < 100_000:
        return "👁🔥"
    elif volume < 150_000:
        return "👁🔥🔥"
    elif volume < 200_000:
        return "👁🔥🔥🔥"
    fires = min((volume - 200_000) // 50_000 + 3, 10)
    return "👁" + "🔥" * fires


def get_price_emojis(percent_change: Decimal) -> str:
    circles = min(int(abs(percent_change) / 10) + 1, 10)
    return "🔵" * circles


def format_duration(seconds: float) -> str:
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    elif seconds < 3600:
        return f"{seconds // 60}m"
    hours, minutes = seconds // 3600, (seconds % 3600) // 60
    return f"{hours}h" if minutes == 0 else f"{hours}h{minutes}m"


def format_alert(alert: AlertEvent) -> str:
    change = f"{alert.percent_change:+.2f}%"
    fired = datetime.fromtimestamp(alert.fired_at / 1000, UTC).strftime("%H:%M:%S UTC")

    return f"""⚡ <b>ALERT</b>

<b>{alert.symbol}</b>

📈 <b>Price change:</b> {change} {get_price_emojis(alert.percent_change)}
💰 <b>Volume:</b> {format_volume(alert.volume)} {get_volume_emojis(alert.volume)}
⏰ <b>Time:</b> {fired}"""


def format_status(thresholds: Thresholds, runtime: dict[str, Any] | None = None) -> str:
    lines = [
        "📊 Current settings:",
        "",
        f"⏱ Time interval: {thresholds.time_interval}s",
        f"📈 Price change: {thresholds.price_change:.2f}%",
        f"💰 Minimum volume: ${thresholds.min_volume:,}",
    ]
    if runtime:
        lines.append("")
        lines.append("🔧 Runtime:")
        lines.extend(f"  {key}: {value}" for key, value in runtime.items())
    return "\n".join(lines)


def format_blacklist(entries: list[BlacklistEntry], now: int) -> str:
    if not entries:
        return "Blacklist is empty"

    lines = ["🚫 Blacklist:", ""]
    for entry in entries:
        remaining = max(entry.expires_at - now, 0) / 1000
        lines.append(f"• {entry.symbol} (expires in {format_duration(remaining)})")
    return "\n".join(lines)
