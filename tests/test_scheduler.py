"""Tests for the backup scheduler cycle."""

import asyncio
from datetime import timedelta

from drink_diary.models import BackupFrequency
from drink_diary.services.backup_settings import get_backup_setting, set_frequency
from drink_diary.services.scheduler import SCHEDULED_BACKUP_TITLE, BackupScheduler
from drink_diary.services.subjects import ensure_user
from tests.conftest import T0


def _scheduler(session_maker, transport, clock, **kw):
    return BackupScheduler(session_maker, transport, retry_minutes=120, clock=clock, **kw)


async def test_next_run_carries_drift_forward(session_maker, transport, clock, owner):
    """Weekly at T0, delivered at T0+7d+2h: the next run is T0+14d+2h."""
    async with session_maker.begin() as db:
        setting = await set_frequency(db, owner, BackupFrequency.weekly, now=T0)
    assert setting.next_run_at == T0 + timedelta(days=7)

    sent = await _scheduler(session_maker, transport, clock).run_cycle(now=T0 + timedelta(days=7, hours=2))

    async with session_maker() as db:
        setting = await get_backup_setting(db, owner)
    assert sent == 1
    assert setting.last_sent_at == T0 + timedelta(days=7, hours=2)
    assert setting.next_run_at == T0 + timedelta(days=14, hours=2)


async def test_next_run_counts_from_send_time(session_maker, transport, clock, owner):
    """A slow delivery moves the base of the next run to when the send finished."""
    clock.now = T0 + timedelta(days=7)

    class SlowTransport(type(transport)):
        async def deliver(self, owner_key, message):
            clock.advance(minutes=5)
            await super().deliver(owner_key, message)

    await _scheduler(session_maker, SlowTransport(), clock).run_cycle()

    async with session_maker() as db:
        setting = await get_backup_setting(db, owner)
    assert setting.last_sent_at == T0 + timedelta(days=7, minutes=5)
    assert setting.next_run_at == T0 + timedelta(days=14, minutes=5)


async def test_delivers_csv_document(session_maker, transport, clock, owner, subject):
    await _scheduler(session_maker, transport, clock).run_cycle(now=T0 + timedelta(days=7))

    [doc] = transport.documents(owner)
    assert doc.file_name.startswith(f"backup-{owner}-")
    assert doc.caption.startswith(SCHEDULED_BACKUP_TITLE)
    assert b"Cherry mead" in doc.content


async def test_failed_delivery_postpones_only_that_user(session_maker, transport, clock):
    async with session_maker.begin() as db:
        await ensure_user(db, "bad", now=T0 - timedelta(hours=1))
        await ensure_user(db, "good", now=T0)
    transport.fail_for.add("bad")
    now = T0 + timedelta(days=7)

    sent = await _scheduler(session_maker, transport, clock).run_cycle(now=now)

    async with session_maker() as db:
        bad = await get_backup_setting(db, "bad")
        good = await get_backup_setting(db, "good")
    assert sent == 1
    assert bad.next_run_at == now + timedelta(minutes=120)
    assert bad.last_sent_at is None
    assert bad.frequency == BackupFrequency.weekly
    assert good.last_sent_at == now
    assert [o for o, _ in transport.sent] == ["good"]


async def test_nothing_due_sends_nothing(session_maker, transport, clock, owner):
    assert await _scheduler(session_maker, transport, clock).run_cycle(now=T0 + timedelta(days=1)) == 0
    assert transport.sent == []


async def test_overlapping_tick_is_skipped(session_maker, transport, clock, owner):
    """While one cycle is stuck in delivery, the next tick returns immediately."""
    clock.now = T0 + timedelta(days=7)
    transport.gate = asyncio.Event()
    scheduler = _scheduler(session_maker, transport, clock)

    first = asyncio.create_task(scheduler.tick())
    await asyncio.wait_for(transport.started.wait(), timeout=5)

    assert scheduler.running
    assert await scheduler.tick() is False

    transport.gate.set()
    assert await asyncio.wait_for(first, timeout=5) is True
    assert not scheduler.running
    assert len(transport.documents(owner)) == 1


async def test_batch_size_caps_a_cycle(session_maker, transport, clock):
    async with session_maker.begin() as db:
        for i in range(3):
            await ensure_user(db, f"u{i}", now=T0 + timedelta(minutes=i))

    sent = await _scheduler(session_maker, transport, clock, batch_size=2).run_cycle(now=T0 + timedelta(days=8))

    assert sent == 2
    assert [o for o, _ in transport.sent] == ["u0", "u1"]
