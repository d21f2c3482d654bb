"""Shared fixtures: a throwaway SQLite database and recording collaborators."""

import asyncio
from datetime import datetime, timedelta

import pytest

from drink_diary import models  # noqa: F401  registers tables on Base
from drink_diary.database import Base, make_engine, make_session_maker
from drink_diary.services.subjects import create_subject, ensure_user
from drink_diary.transport import DocumentMessage, TextMessage

T0 = datetime(2026, 2, 24, 9, 0, 0)


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class FakeTransport:
    """Records deliveries; can fail or block for selected owners."""

    def __init__(self):
        self.sent = []
        self.fail_for = set()
        self.gate = None  # asyncio.Event that deliveries wait on when set
        self.started = asyncio.Event()

    async def deliver(self, owner_key, message):
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if owner_key in self.fail_for:
            raise ConnectionError(f"chat {owner_key} unreachable")
        self.sent.append((owner_key, message))

    def texts(self, owner_key=None):
        return [m.text for o, m in self.sent if isinstance(m, TextMessage) and owner_key in (None, o)]

    def documents(self, owner_key=None):
        return [m for o, m in self.sent if isinstance(m, DocumentMessage) and owner_key in (None, o)]

    def last(self):
        return self.sent[-1][1]


class FakePolisher:
    """Uppercases text; `during` runs inside polish to simulate concurrent turns."""

    def __init__(self, enabled=True):
        self._enabled = enabled
        self.calls = []
        self.during = None
        self.result = None

    @property
    def enabled(self):
        return self._enabled

    async def polish(self, subject_name, text):
        self.calls.append((subject_name, text))
        if not self._enabled:
            return None
        if self.during is not None:
            await self.during()
        if self.result is not None:
            return self.result
        return text.upper()


@pytest.fixture
async def engine(tmp_path):
    eng = make_engine(f"sqlite+aiosqlite:///{tmp_path}/test.sqlite")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_maker(engine):
    return make_session_maker(engine)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def polisher():
    return FakePolisher()


@pytest.fixture
async def owner(session_maker):
    async with session_maker.begin() as s:
        await ensure_user(s, "1001", username="brewer", first_name="Sam", now=T0)
    return "1001"


@pytest.fixture
async def subject(session_maker, owner):
    async with session_maker.begin() as s:
        return await create_subject(s, owner, "Cherry mead", now=T0)
