# drink_diary/services/backup_settings.py
"""Per-user CSV backup schedule.

Every mutation is a single UPDATE/UPSERT so the conversation path and the
scheduler never lose each other's writes.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from drink_diary.models import BackupFrequency, BackupSetting
from drink_diary.services.upsert import insert_for
from drink_diary.utils import _now

logger = logging.getLogger(__name__)

DEFAULT_RETRY_MINUTES = 120
DEFAULT_BATCH_SIZE = 200


def parse_frequency(value: str) -> Optional[BackupFrequency]:
    try:
        return BackupFrequency((value or "").strip().lower())
    except ValueError:
        return None


def next_run_after(frequency: BackupFrequency, start: datetime) -> Optional[datetime]:
    if frequency == BackupFrequency.off:
        return None
    return start + timedelta(days=frequency.days)


def frequency_label(frequency: BackupFrequency) -> str:
    if frequency == BackupFrequency.off:
        return "off"
    return f"every {frequency.days} days"


async def get_backup_setting(db: AsyncSession, owner_key: str, *, now: Optional[datetime] = None) -> BackupSetting:
    """Stored setting, or a transient `off` setting when the user has none."""
    row = (await db.execute(
        select(BackupSetting)
        .where(BackupSetting.owner_key == owner_key)
        .execution_options(populate_existing=True)
    )).scalars().first()
    if row:
        return row
    return BackupSetting(
        owner_key=owner_key,
        frequency=BackupFrequency.off,
        next_run_at=None,
        last_sent_at=None,
        updated_at=now or _now(),
    )


async def set_frequency(
    db: AsyncSession,
    owner_key: str,
    frequency: BackupFrequency,
    *,
    now: Optional[datetime] = None,
) -> BackupSetting:
    """Change the frequency; the next run is counted from now. last_sent_at is kept."""
    now = now or _now()
    next_run = next_run_after(frequency, now)
    insert = insert_for(db)
    await db.execute(
        insert(BackupSetting)
        .values(owner_key=owner_key, frequency=frequency, next_run_at=next_run, last_sent_at=None, updated_at=now)
        .on_conflict_do_update(
            index_elements=[BackupSetting.owner_key],
            set_={"frequency": frequency, "next_run_at": next_run, "updated_at": now},
        )
    )
    logger.info("Backup frequency for %s set to %s", owner_key, frequency.value)
    return await get_backup_setting(db, owner_key, now=now)


async def list_due_backup_settings(
    db: AsyncSession,
    now: Optional[datetime] = None,
    *,
    limit: int = DEFAULT_BATCH_SIZE,
) -> Sequence[BackupSetting]:
    return (await db.execute(
        select(BackupSetting)
        .where(
            BackupSetting.frequency != BackupFrequency.off,
            BackupSetting.next_run_at.isnot(None),
            BackupSetting.next_run_at <= (now or _now()),
        )
        .order_by(BackupSetting.next_run_at.asc())
        .limit(limit)
        .execution_options(populate_existing=True)
    )).scalars().all()


async def mark_backup_sent(
    db: AsyncSession,
    owner_key: str,
    frequency: BackupFrequency,
    *,
    now: Optional[datetime] = None,
) -> bool:
    """Record a delivery made under `frequency`; next run counts from the send time.

    Returns False when the frequency changed meanwhile; that change already
    set its own next run.
    """
    now = now or _now()
    result = await db.execute(
        update(BackupSetting)
        .where(BackupSetting.owner_key == owner_key, BackupSetting.frequency == frequency)
        .values(last_sent_at=now, next_run_at=next_run_after(frequency, now), updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        # still record the send itself
        await db.execute(
            update(BackupSetting)
            .where(BackupSetting.owner_key == owner_key)
            .values(last_sent_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return False
    return True


async def postpone_backup_run(
    db: AsyncSession,
    owner_key: str,
    frequency: BackupFrequency,
    *,
    minutes: int = DEFAULT_RETRY_MINUTES,
    now: Optional[datetime] = None,
) -> bool:
    """Push the next attempt out by `minutes`; frequency and last_sent_at stay as they are."""
    now = now or _now()
    result = await db.execute(
        update(BackupSetting)
        .where(
            BackupSetting.owner_key == owner_key,
            BackupSetting.frequency == frequency,
            BackupSetting.frequency != BackupFrequency.off,
        )
        .values(next_run_at=now + timedelta(minutes=minutes), updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0
