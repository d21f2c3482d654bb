import logging

import uvicorn
from fastapi import FastAPI

from .background import cancel_all, spawn
from .bot.telegram_handler import TelegramTransport, attach_router, build_application
from .database import async_session_maker, init_db
from .llm_client import TextPolisher
from .models import BackupFrequency
from .routers.share import router as share_router
from .services.conversation import ConversationRouter
from .services.scheduler import BackupScheduler
from .settings.config import settings

logging.basicConfig(level=settings.LOG_LEVEL.upper())
logger = logging.getLogger(__name__)

app = FastAPI(title="Drink Diary")
app.include_router(share_router)

# Set on startup when a bot token is configured.
app.state.telegram = None
app.state.scheduler = None


def build_polisher() -> TextPolisher:
    return TextPolisher(
        settings.POLISH_API_KEY,
        settings.POLISH_BASE_URL,
        settings.POLISH_MODEL,
        timeout=settings.POLISH_TIMEOUT_SECONDS,
    )


async def _start_bot(telegram) -> None:
    await telegram.initialize()
    await telegram.start()
    await telegram.updater.start_polling(drop_pending_updates=True)
    logger.info("Telegram bot polling")


@app.on_event("startup")
async def on_startup():
    from . import models  # noqa: F401  Required for SQLAlchemy model detection
    await init_db()

    if not settings.TELEGRAM_BOT_TOKEN:
        logger.warning("TELEGRAM_BOT_TOKEN not set; bot and backup delivery disabled, serving HTTP only.")
        return

    telegram = build_application(settings.TELEGRAM_BOT_TOKEN)
    transport = TelegramTransport(telegram.bot)
    polisher = build_polisher()
    if not polisher.enabled:
        logger.info("POLISH_API_KEY not set; entries are stored without cleanup.")

    attach_router(telegram, ConversationRouter(
        async_session_maker,
        transport,
        polisher,
        public_base_url=settings.public_base_url,
        default_frequency=BackupFrequency(settings.DEFAULT_BACKUP_FREQUENCY),
    ))
    scheduler = BackupScheduler(
        async_session_maker,
        transport,
        interval_seconds=settings.BACKUP_POLL_INTERVAL_SECONDS,
        retry_minutes=settings.BACKUP_RETRY_MINUTES,
        batch_size=settings.BACKUP_BATCH_SIZE,
        tz_name=settings.APP_TZ,
    )

    app.state.telegram = telegram
    app.state.scheduler = scheduler
    spawn(_start_bot(telegram), name="telegram-start")
    scheduler.start()
    # first scan right away instead of after one interval
    spawn(scheduler.tick(), name="backup-initial-cycle")


@app.on_event("shutdown")
async def on_shutdown():
    scheduler = app.state.scheduler
    if scheduler:
        scheduler.shutdown()
    telegram = app.state.telegram
    if telegram:
        if telegram.updater and telegram.updater.running:
            await telegram.updater.stop()
        if telegram.running:
            await telegram.stop()
        await telegram.shutdown()
    await cancel_all()


def run() -> None:
    uvicorn.run("drink_diary.main:app", host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
