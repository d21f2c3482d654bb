"""Tests for the public HTTP surface."""

from datetime import date

import httpx
import pytest

from drink_diary.database import get_db
from drink_diary.main import app
from drink_diary.services.share_links import create_gift_link
from drink_diary.services.subjects import create_entry
from tests.conftest import T0


@pytest.fixture
async def client(session_maker):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def test_health(client):
    r = await client.get("/health")

    assert r.status_code == 200
    assert r.json() == {"ok": True}


async def test_resolve_gift_link(client, session_maker, owner, subject):
    async with session_maker.begin() as db:
        await create_entry(db, subject_id=subject.id, owner_key=owner, entry_date=date(2026, 2, 1),
                           raw_text="started", cleaned_text="Started.", now=T0)
        link = await create_gift_link(db, subject, owner, recipient="Ann", bottle_code="001",
                                      generate=lambda: "giftTokenBBBBB", now=T0)

    r = await client.get(f"/q/{link.token}")

    assert r.status_code == 200
    body = r.json()
    assert body["subject"]["name"] == "Cherry mead"
    assert body["link"]["kind"] == "gift"
    assert body["link"]["bottle_code"] == "001"
    assert body["link"]["gift_message"] is None
    assert [e["raw_text"] for e in body["entries"]] == ["started"]


async def test_unknown_token_is_404(client):
    r = await client.get("/q/doesNotExist00")

    assert r.status_code == 404
