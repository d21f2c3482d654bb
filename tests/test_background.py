"""Tests for supervised background tasks."""

import asyncio
import logging

from drink_diary.background import cancel_all, spawn


async def test_failure_is_logged(caplog):
    async def boom():
        raise RuntimeError("bot crashed")

    with caplog.at_level(logging.ERROR, logger="drink_diary.background"):
        task = spawn(boom(), name="boom")
        await asyncio.gather(task, return_exceptions=True)
        await asyncio.sleep(0)

    assert "Background task boom failed" in caplog.text


async def test_cancel_all_stops_pending_tasks():
    task = spawn(asyncio.sleep(60), name="sleeper")

    await cancel_all()

    assert task.cancelled()
