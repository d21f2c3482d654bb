# drink_diary/services/scheduler.py
import logging
from datetime import datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from drink_diary.services.backup import backup_document, build_backup_csv
from drink_diary.services.backup_settings import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_RETRY_MINUTES,
    list_due_backup_settings,
    mark_backup_sent,
    postpone_backup_run,
)
from drink_diary.transport import Transport
from drink_diary.utils import _now

logger = logging.getLogger(__name__)

SCHEDULED_BACKUP_TITLE = "Scheduled CSV backup."


def _resolve_tz(tz_name: Optional[str]):
    try:
        return ZoneInfo(tz_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown APP_TZ %r; falling back to UTC", tz_name)
        return timezone.utc


class BackupScheduler:
    """Periodic scan for due CSV backups.

    A cycle never overlaps another: a tick that fires while a cycle is still
    running is skipped. Each due setting is handled on its own, so one failed
    delivery only postpones that user.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        transport: Transport,
        *,
        interval_seconds: int = 60,
        retry_minutes: int = DEFAULT_RETRY_MINUTES,
        batch_size: int = DEFAULT_BATCH_SIZE,
        tz_name: Optional[str] = None,
        clock: Callable[[], datetime] = _now,
    ):
        self.session_maker = session_maker
        self.transport = transport
        self.interval_seconds = interval_seconds
        self.retry_minutes = retry_minutes
        self.batch_size = batch_size
        self.tz_name = tz_name
        self.clock = clock
        self._running = False
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return self._running

    async def tick(self) -> bool:
        """Run one cycle unless one is already in flight. False when skipped."""
        if self._running:
            logger.debug("Backup cycle still running; skipping tick")
            return False
        self._running = True
        try:
            await self.run_cycle()
        finally:
            self._running = False
        return True

    async def run_cycle(self, now: Optional[datetime] = None) -> int:
        """Deliver every due backup in one batch. Returns the number delivered.

        `now` pins the clock for the whole cycle; otherwise each send is
        stamped with the time it completed.
        """
        def stamp() -> datetime:
            return now or self.clock()

        async with self.session_maker.begin() as db:
            due = [(s.owner_key, s.frequency) for s in await list_due_backup_settings(db, stamp(), limit=self.batch_size)]
        if not due:
            return 0

        logger.info("Backup cycle: %d due", len(due))
        sent = 0
        for owner_key, frequency in due:
            try:
                async with self.session_maker.begin() as db:
                    backup = await build_backup_csv(db, owner_key, now=stamp())
                await self.transport.deliver(owner_key, backup_document(backup, SCHEDULED_BACKUP_TITLE))
            except Exception:
                logger.exception("Scheduled backup for %s failed; retrying in %d min", owner_key, self.retry_minutes)
                async with self.session_maker.begin() as db:
                    await postpone_backup_run(db, owner_key, frequency, minutes=self.retry_minutes, now=stamp())
                continue

            async with self.session_maker.begin() as db:
                if not await mark_backup_sent(db, owner_key, frequency, now=stamp()):
                    logger.info("Backup frequency for %s changed during delivery; keeping the new schedule", owner_key)
            sent += 1
        return sent

    def start(self) -> AsyncIOScheduler:
        if self._scheduler:
            return self._scheduler
        tz = _resolve_tz(self.tz_name)
        self._scheduler = AsyncIOScheduler(timezone=tz)
        self._scheduler.add_job(
            self.tick,
            IntervalTrigger(seconds=self.interval_seconds, timezone=tz),
            id="backup-scan",
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info("Backup scheduler started (every %ss)", self.interval_seconds)
        return self._scheduler

    def shutdown(self) -> None:
        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Backup scheduler stopped")
