# mexc_monitor/notifier/telegram.py
import logging
import re
import time
from collections.abc import Callable, Coroutine
from decimal import Decimal
from typing import Any

from telegram import Bot, BotCommand, Update
from telegram.error import TelegramError
from telegram.ext import Application, CommandHandler, ContextTypes

from mexc_monitor.notifier.formatter import format_alert
from mexc_monitor.storage.models import AlertEvent

logger = logging.getLogger(__name__)

WELCOME_MESSAGE = """
🤖 <b>MEXC Monitor</b>

Tracks MEXC spot prices and trade volume and alerts when a symbol moves
by the configured percentage on enough volume within the time window.

This chat will now receive alerts. Type /help for all commands.
"""

HELP_MESSAGE = """
📋 <b>Commands</b>

<b>🔧 Settings</b>
/set time 5 - time window in seconds
/set volume 5000 - minimum volume in USD
/set change 2.0 - price change threshold in %
/status - current settings

<b>🚫 Blacklist</b>
/blacklist - list blacklisted symbols
/blacklist DOGE 1800 - mute DOGE for 30 minutes
/unblacklist DOGE - unmute DOGE

<b>📈 Alerts</b>
An alert fires when, within the time window, the price moves by at least
the threshold (up or down), traded volume reaches the minimum, and the
symbol is not blacklisted.

/test - send a test alert
"""

BOT_COMMANDS = [
    BotCommand("start", "Receive alerts in this chat"),
    BotCommand("help", "Show help"),
    BotCommand("status", "Current settings"),
    BotCommand("set", "Change a threshold"),
    BotCommand("blacklist", "List or add blacklisted symbols"),
    BotCommand("unblacklist", "Remove a symbol from the blacklist"),
    BotCommand("test", "Send a test alert"),
]

SET_PARAMS = {
    "time": "time_interval",
    "volume": "min_volume",
    "change": "price_change",
}


class DeliveryError(Exception):
    pass


class TelegramNotifier:
    def __init__(self, bot_token: str, chat_id: str, quote_asset: str = "USDT"):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.quote_asset = quote_asset
        self.bot = Bot(token=bot_token)
        self.app: Application | None = None  # type: ignore[type-arg]
        self.chat_ids: set[str] = {chat_id}

        # Callbacks
        self.on_status: Callable[[], Coroutine[Any, Any, str]] | None = None
        self.on_set: Callable[[str, str], Coroutine[Any, Any, str]] | None = None
        self.on_blacklist: Callable[[], Coroutine[Any, Any, str]] | None = None
        self.on_blacklist_add: Callable[[str, int], Coroutine[Any, Any, str]] | None = None
        self.on_blacklist_remove: Callable[[str], Coroutine[Any, Any, str]] | None = None

    async def send_message(self, text: str, chat_id: str | None = None) -> None:
        await self.bot.send_message(
            chat_id=chat_id or self.chat_id,
            text=text,
            parse_mode="HTML",
        )

    async def deliver(self, alert: AlertEvent) -> None:
        """Send an alert to every registered chat.

        Raises DeliveryError only when no chat received it.
        """
        text = format_alert(alert)
        delivered = 0
        for chat_id in sorted(self.chat_ids):
            try:
                await self.send_message(text, chat_id)
                delivered += 1
            except TelegramError as e:
                logger.error(f"Failed to send alert to {chat_id}: {e}")
        if delivered == 0:
            raise DeliveryError(f"Alert for {alert.symbol} not delivered to any chat")

    def normalize_symbol(self, symbol: str) -> str:
        symbol = symbol.upper().replace("/", "")
        if not symbol.endswith(self.quote_asset):
            symbol += self.quote_asset
        return symbol

    @staticmethod
    def _parse_set_command(text: str) -> tuple[str, str] | None:
        match = re.match(r"/set(?:@\w+)?\s+(\w+)\s+(\S+)\s*$", text)
        if match and match.group(1).lower() in SET_PARAMS:
            return SET_PARAMS[match.group(1).lower()], match.group(2)
        return None

    @staticmethod
    def _parse_blacklist_command(text: str) -> tuple[str, int] | None:
        match = re.match(r"/blacklist(?:@\w+)?\s+([\w/]+)\s+(\d+)\s*$", text)
        if match and int(match.group(2)) > 0:
            return match.group(1), int(match.group(2))
        return None

    async def _handle_set(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message or not update.message.text:
            return

        result = self._parse_set_command(update.message.text)
        if not result:
            await update.message.reply_text("Usage: /set <time|volume|change> <value>")
            return

        key, value = result
        if self.on_set:
            await update.message.reply_text(await self.on_set(key, value))

    async def _handle_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message:
            return

        if self.on_status:
            await update.message.reply_text(await self.on_status())
        else:
            await update.message.reply_text("Monitor is running")

    async def _handle_blacklist(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message or not update.message.text:
            return

        parts = update.message.text.split()
        if len(parts) == 1:
            text = await self.on_blacklist() if self.on_blacklist else "Blacklist is empty"
            await update.message.reply_text(text)
            return

        result = self._parse_blacklist_command(update.message.text)
        if not result:
            await update.message.reply_text(
                "Usage: /blacklist <symbol> <seconds>\nExample: /blacklist BTC 3600"
            )
            return

        symbol, seconds = result
        if self.on_blacklist_add:
            await update.message.reply_text(
                await self.on_blacklist_add(self.normalize_symbol(symbol), seconds)
            )

    async def _handle_unblacklist(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        if not update.message or not update.message.text:
            return

        parts = update.message.text.split()
        if len(parts) != 2:
            await update.message.reply_text("Usage: /unblacklist <symbol>")
            return

        if self.on_blacklist_remove:
            await update.message.reply_text(
                await self.on_blacklist_remove(self.normalize_symbol(parts[1]))
            )

    async def _handle_test(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message:
            return

        await update.message.reply_text("🧪 Sending test alert...")
        alert = AlertEvent(
            symbol=f"TEST{self.quote_asset}",
            percent_change=Decimal("2.5"),
            volume=15000,
            fired_at=int(time.time() * 1000),
        )
        try:
            await self.deliver(alert)
        except DeliveryError as e:
            logger.error(f"Test alert failed: {e}")
            await update.message.reply_text("❌ Failed to send test alert")

    async def _handle_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message:
            return
        self.chat_ids.add(str(update.message.chat_id))
        logger.info(f"Chat {update.message.chat_id} subscribed to alerts")
        await update.message.reply_text(WELCOME_MESSAGE, parse_mode="HTML")

    async def _handle_help(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message:
            return
        await update.message.reply_text(HELP_MESSAGE, parse_mode="HTML")

    def setup_handlers(self, app: Application) -> None:  # type: ignore[type-arg]
        app.add_handler(CommandHandler("start", self._handle_start))
        app.add_handler(CommandHandler("help", self._handle_help))
        app.add_handler(CommandHandler("status", self._handle_status))
        app.add_handler(CommandHandler("set", self._handle_set))
        app.add_handler(CommandHandler("blacklist", self._handle_blacklist))
        app.add_handler(CommandHandler("unblacklist", self._handle_unblacklist))
        app.add_handler(CommandHandler("test", self._handle_test))

    async def start_polling(self) -> None:
        self.app = Application.builder().token(self.bot_token).build()
        self.setup_handlers(self.app)
        await self.app.initialize()
        await self.app.start()

        # Set bot command menu
        await self.bot.set_my_commands(BOT_COMMANDS)

        if self.app.updater:
            await self.app.updater.start_polling()

    async def stop_polling(self) -> None:
        if self.app:
            if self.app.updater:
                await self.app.updater.stop()
            await self.app.stop()
            await self.app.shutdown()
