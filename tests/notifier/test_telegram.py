# tests/notifier/test_telegram.py
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from telegram.error import TelegramError

from mexc_monitor.notifier.telegram import DeliveryError, TelegramNotifier
from mexc_monitor.storage.models import AlertEvent


@pytest.fixture
def mock_bot():
    with patch("mexc_monitor.notifier.telegram.Bot") as MockBot:
        bot = MagicMock()
        bot.send_message = AsyncMock()
        MockBot.return_value = bot
        yield bot


@pytest.fixture
def notifier(mock_bot) -> TelegramNotifier:
    return TelegramNotifier(bot_token="test", chat_id="123")


def make_update(text: str, chat_id: int = 123) -> MagicMock:
    update = MagicMock()
    update.message.text = text
    update.message.chat_id = chat_id
    update.message.reply_text = AsyncMock()
    return update


ALERT = AlertEvent(symbol="BTCUSDT", percent_change=Decimal("3"), volume=6000, fired_at=0)


async def test_send_message(notifier, mock_bot):
    await notifier.send_message("Hello")

    mock_bot.send_message.assert_called_once_with(
        chat_id="123",
        text="Hello",
        parse_mode="HTML",
    )


async def test_deliver_sends_to_every_chat(notifier, mock_bot):
    notifier.chat_ids.add("456")

    await notifier.deliver(ALERT)

    chats = [call.kwargs["chat_id"] for call in mock_bot.send_message.await_args_list]
    assert chats == ["123", "456"]
    assert "BTCUSDT" in mock_bot.send_message.await_args.kwargs["text"]


async def test_deliver_partial_failure_is_not_an_error(notifier, mock_bot):
    notifier.chat_ids.add("456")
    mock_bot.send_message.side_effect = [TelegramError("blocked"), None]

    await notifier.deliver(ALERT)

    assert mock_bot.send_message.await_count == 2


async def test_deliver_raises_when_no_chat_receives(notifier, mock_bot):
    mock_bot.send_message.side_effect = TelegramError("network")

    with pytest.raises(DeliveryError):
        await notifier.deliver(ALERT)


def test_normalize_symbol(notifier):
    assert notifier.normalize_symbol("doge") == "DOGEUSDT"
    assert notifier.normalize_symbol("DOGEUSDT") == "DOGEUSDT"
    assert notifier.normalize_symbol("btc/usdt") == "BTCUSDT"


def test_parse_set_command():
    assert TelegramNotifier._parse_set_command("/set time 10") == ("time_interval", "10")
    assert TelegramNotifier._parse_set_command("/set volume 8000") == ("min_volume", "8000")
    assert TelegramNotifier._parse_set_command("/set CHANGE 2.5") == ("price_change", "2.5")
    assert TelegramNotifier._parse_set_command("/set@mexc_bot change 1") == ("price_change", "1")

    assert TelegramNotifier._parse_set_command("/set cooldown 10") is None
    assert TelegramNotifier._parse_set_command("/set time") is None


def test_parse_blacklist_command():
    assert TelegramNotifier._parse_blacklist_command("/blacklist DOGE 1800") == ("DOGE", 1800)
    assert TelegramNotifier._parse_blacklist_command("/blacklist btc/usdt 60") == ("btc/usdt", 60)

    assert TelegramNotifier._parse_blacklist_command("/blacklist DOGE 0") is None
    assert TelegramNotifier._parse_blacklist_command("/blacklist DOGE soon") is None
    assert TelegramNotifier._parse_blacklist_command("/blacklist DOGE") is None


async def test_handle_set_invokes_callback(notifier):
    notifier.on_set = AsyncMock(return_value="✅ Updated")
    update = make_update("/set change 3")

    await notifier._handle_set(update, MagicMock())

    notifier.on_set.assert_awaited_once_with("price_change", "3")
    update.message.reply_text.assert_awaited_once_with("✅ Updated")


async def test_handle_set_usage(notifier):
    notifier.on_set = AsyncMock()
    update = make_update("/set speed 3")

    await notifier._handle_set(update, MagicMock())

    notifier.on_set.assert_not_awaited()
    assert "Usage" in update.message.reply_text.await_args.args[0]


async def test_handle_blacklist_add_normalizes_symbol(notifier):
    notifier.on_blacklist_add = AsyncMock(return_value="ok")
    update = make_update("/blacklist doge 1800")

    await notifier._handle_blacklist(update, MagicMock())

    notifier.on_blacklist_add.assert_awaited_once_with("DOGEUSDT", 1800)


async def test_handle_blacklist_lists_entries(notifier):
    notifier.on_blacklist = AsyncMock(return_value="Blacklist is empty")
    update = make_update("/blacklist")

    await notifier._handle_blacklist(update, MagicMock())

    update.message.reply_text.assert_awaited_once_with("Blacklist is empty")


async def test_handle_unblacklist(notifier):
    notifier.on_blacklist_remove = AsyncMock(return_value="removed")
    update = make_update("/unblacklist DOGE")

    await notifier._handle_unblacklist(update, MagicMock())

    notifier.on_blacklist_remove.assert_awaited_once_with("DOGEUSDT")


async def test_handle_start_registers_chat(notifier):
    update = make_update("/start", chat_id=789)

    await notifier._handle_start(update, MagicMock())

    assert notifier.chat_ids == {"123", "789"}
    update.message.reply_text.assert_awaited_once()


async def test_handle_test_sends_alert(notifier, mock_bot):
    update = make_update("/test")

    await notifier._handle_test(update, MagicMock())

    mock_bot.send_message.assert_awaited_once()
    assert "TESTUSDT" in mock_bot.send_message.await_args.kwargs["text"]
