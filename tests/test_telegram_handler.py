"""Tests for rendering outbound messages as Telegram calls."""

from telegram import InlineKeyboardMarkup, ReplyKeyboardMarkup

from drink_diary.bot.telegram_handler import TelegramTransport, build_application
from drink_diary.services.conversation import MENU_BACKUP, MENU_NEW_SUBJECT
from drink_diary.transport import Button, DocumentMessage, TextMessage


class RecordingBot:
    def __init__(self):
        self.calls = []

    async def send_message(self, **kwargs):
        self.calls.append(("message", kwargs))

    async def send_document(self, **kwargs):
        self.calls.append(("document", kwargs))


async def test_inline_buttons_become_inline_keyboard():
    bot = RecordingBot()
    message = TextMessage("Pick one:", buttons=[[Button("Cider", "current:open:1")], [Button("Mead", "current:open:2")]])

    await TelegramTransport(bot).deliver("1001", message)

    [(kind, kwargs)] = bot.calls
    markup = kwargs["reply_markup"]
    assert kind == "message"
    assert kwargs["chat_id"] == 1001
    assert isinstance(markup, InlineKeyboardMarkup)
    assert [[b.callback_data for b in row] for row in markup.inline_keyboard] == [["current:open:1"], ["current:open:2"]]


async def test_main_menu_is_persistent_reply_keyboard():
    bot = RecordingBot()

    await TelegramTransport(bot).deliver("1001", TextMessage("Hi", main_menu=True))

    markup = bot.calls[0][1]["reply_markup"]
    assert isinstance(markup, ReplyKeyboardMarkup)
    assert markup.keyboard[0][0].text == MENU_NEW_SUBJECT
    assert markup.keyboard[-1][0].text == MENU_BACKUP
    assert markup.resize_keyboard and markup.is_persistent


async def test_plain_text_has_no_markup():
    bot = RecordingBot()

    await TelegramTransport(bot).deliver("1001", TextMessage("Hi"))

    assert bot.calls[0][1]["reply_markup"] is None


async def test_document_is_sent_as_file():
    bot = RecordingBot()

    await TelegramTransport(bot).deliver("1001", DocumentMessage("backup.csv", b"a,b\n", caption="Backup"))

    kind, kwargs = bot.calls[0]
    assert kind == "document"
    assert kwargs["document"].filename == "backup.csv"
    assert kwargs["caption"] == "Backup"


def test_build_application_registers_handlers():
    app = build_application("123456:TEST-TOKEN")

    assert len(app.handlers[0]) == 3
    assert app.error_handlers
