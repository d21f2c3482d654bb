import logging
from typing import Optional

from telegram import (
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    InputFile,
    KeyboardButton,
    ReplyKeyboardMarkup,
    Update,
)
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from drink_diary.services.conversation import MAIN_MENU_ROWS, ConversationRouter
from drink_diary.transport import DocumentMessage, InboundEvent, OutboundMessage, TextMessage

logger = logging.getLogger(__name__)

ROUTER_KEY = "router"
COMMANDS = ("start", "help", "cancel")


def main_keyboard() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        [[KeyboardButton(label) for label in row] for row in MAIN_MENU_ROWS],
        resize_keyboard=True,
        is_persistent=True,
    )


def _markup(message: TextMessage):
    if message.buttons:
        return InlineKeyboardMarkup([
            [InlineKeyboardButton(b.label, callback_data=b.data) for b in row]
            for row in message.buttons
        ])
    if message.main_menu:
        return main_keyboard()
    return None


class TelegramTransport:
    """Delivers router/scheduler messages to the user's private chat.

    Telegram private chat ids equal user ids, so the owner key is the chat id.
    """

    def __init__(self, bot):
        self.bot = bot

    async def deliver(self, owner_key: str, message: OutboundMessage) -> None:
        chat_id = int(owner_key)
        if isinstance(message, DocumentMessage):
            await self.bot.send_document(
                chat_id=chat_id,
                document=InputFile(message.content, filename=message.file_name),
                caption=message.caption,
            )
            return
        await self.bot.send_message(chat_id=chat_id, text=message.text, reply_markup=_markup(message))


def _profile(update: Update) -> Optional[dict]:
    user = update.effective_user
    if user is None:
        return None
    return {"username": user.username, "first_name": user.first_name}


def _router(context: ContextTypes.DEFAULT_TYPE) -> ConversationRouter:
    return context.application.bot_data[ROUTER_KEY]


async def handle_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /start, /help and /cancel."""
    profile = _profile(update)
    if profile is None or not update.message:
        return
    name = (update.message.text or "").split()[0].split("@")[0]
    event = InboundEvent.command(str(update.effective_user.id), name, **profile)
    await _router(context).handle(event)


async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle plain text: menu buttons and answers to the current step."""
    profile = _profile(update)
    if profile is None or not update.message:
        return
    event = InboundEvent.text(str(update.effective_user.id), update.message.text or "", **profile)
    await _router(context).handle(event)


async def handle_callback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle inline button presses."""
    query = update.callback_query
    # stop the client's spinner before doing any work
    await query.answer()
    profile = _profile(update)
    if profile is None:
        return
    event = InboundEvent.callback(str(update.effective_user.id), query.data or "", **profile)
    await _router(context).handle(event)


async def handle_error(update: object, context: ContextTypes.DEFAULT_TYPE):
    logger.error("Telegram update %r failed", update, exc_info=context.error)


def build_application(token: str) -> Application:
    app = Application.builder().token(token).build()
    app.add_handler(CommandHandler(list(COMMANDS), handle_command))
    app.add_handler(CallbackQueryHandler(handle_callback))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))
    app.add_error_handler(handle_error)
    return app


def attach_router(app: Application, router: ConversationRouter) -> None:
    app.bot_data[ROUTER_KEY] = router
