"""Tests for backup schedule bookkeeping."""

from datetime import timedelta

from drink_diary.models import BackupFrequency
from drink_diary.services.backup_settings import (
    frequency_label,
    get_backup_setting,
    list_due_backup_settings,
    mark_backup_sent,
    parse_frequency,
    postpone_backup_run,
    set_frequency,
)
from drink_diary.services.subjects import ensure_user
from tests.conftest import T0


def test_parse_and_label():
    assert parse_frequency("Weekly") == BackupFrequency.weekly
    assert parse_frequency("daily") is None
    assert frequency_label(BackupFrequency.off) == "off"
    assert frequency_label(BackupFrequency.biweekly) == "every 14 days"


async def test_missing_setting_reads_as_off(db):
    setting = await get_backup_setting(db, "nobody", now=T0)

    assert setting.frequency == BackupFrequency.off
    assert setting.next_run_at is None


async def test_set_frequency_counts_from_now_and_keeps_last_sent(session_maker, owner):
    async with session_maker.begin() as db:
        await mark_backup_sent(db, owner, BackupFrequency.weekly, now=T0 + timedelta(days=1))
    async with session_maker.begin() as db:
        monthly = await set_frequency(db, owner, BackupFrequency.monthly, now=T0 + timedelta(days=2))

    assert monthly.next_run_at == T0 + timedelta(days=32)
    assert monthly.last_sent_at == T0 + timedelta(days=1)

    async with session_maker.begin() as db:
        off = await set_frequency(db, owner, BackupFrequency.off, now=T0 + timedelta(days=3))

    assert off.next_run_at is None


async def test_due_listing_order_and_limit(session_maker):
    async with session_maker.begin() as db:
        for i, key in enumerate(["a", "b", "c"]):
            await ensure_user(db, key, now=T0 - timedelta(hours=i))
        await ensure_user(db, "off", now=T0)
        await set_frequency(db, "off", BackupFrequency.off, now=T0)

    now = T0 + timedelta(days=8)
    async with session_maker() as db:
        due = [s.owner_key for s in await list_due_backup_settings(db, now, limit=2)]
        everything = [s.owner_key for s in await list_due_backup_settings(db, now)]
        early = await list_due_backup_settings(db, T0 + timedelta(days=1))

    assert due == ["c", "b"]
    assert everything == ["c", "b", "a"]
    assert early == []


async def test_mark_sent_skips_schedule_after_frequency_change(session_maker, owner):
    """A send made under weekly must not overwrite a monthly schedule chosen meanwhile."""
    async with session_maker.begin() as db:
        await set_frequency(db, owner, BackupFrequency.monthly, now=T0)
    async with session_maker.begin() as db:
        applied = await mark_backup_sent(db, owner, BackupFrequency.weekly, now=T0 + timedelta(hours=1))
        setting = await get_backup_setting(db, owner)

    assert applied is False
    assert setting.frequency == BackupFrequency.monthly
    assert setting.next_run_at == T0 + timedelta(days=30)
    assert setting.last_sent_at == T0 + timedelta(hours=1)


async def test_postpone_only_moves_next_run(session_maker, owner):
    async with session_maker.begin() as db:
        assert await postpone_backup_run(db, owner, BackupFrequency.weekly, minutes=120, now=T0)
        setting = await get_backup_setting(db, owner)

    assert setting.next_run_at == T0 + timedelta(minutes=120)
    assert setting.last_sent_at is None
    assert setting.frequency == BackupFrequency.weekly

    async with session_maker.begin() as db:
        await set_frequency(db, owner, BackupFrequency.off, now=T0)
        assert not await postpone_backup_run(db, owner, BackupFrequency.weekly, now=T0)
