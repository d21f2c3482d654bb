# drink_diary/services/share_links.py
"""Share-link tokens: plain (one per subject) and gift (one per bottle)."""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from drink_diary.models import Entry, ShareLink, ShareLinkKind, Subject
from drink_diary.services.subjects import get_subject, list_entries
from drink_diary.utils import _now, new_id

logger = logging.getLogger(__name__)

# No 0/O, 1/I/l: tokens end up printed next to QR codes.
TOKEN_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz23456789"
TOKEN_LENGTH = 14
MAX_TOKEN_ATTEMPTS = 20
BOTTLE_CODE_WIDTH = 3


class TokenSpaceExhausted(RuntimeError):
    """No free token after MAX_TOKEN_ATTEMPTS draws. Not retryable."""


def random_token(length: int = TOKEN_LENGTH) -> str:
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


async def token_exists(db: AsyncSession, token: str) -> bool:
    return (await db.scalar(select(ShareLink.id).where(ShareLink.token == token))) is not None


async def create_unique_token(
    db: AsyncSession,
    *,
    generate: Callable[[], str] = random_token,
    attempts: int = MAX_TOKEN_ATTEMPTS,
) -> str:
    for _ in range(attempts):
        token = generate()
        if not await token_exists(db, token):
            return token
    raise TokenSpaceExhausted(f"no unique share token after {attempts} attempts")


async def get_share_link_by_token(db: AsyncSession, token: str) -> Optional[ShareLink]:
    return (await db.execute(select(ShareLink).where(ShareLink.token == token))).scalars().first()


async def find_plain_link(db: AsyncSession, subject_id: str) -> Optional[ShareLink]:
    return (await db.execute(
        select(ShareLink)
        .where(ShareLink.subject_id == subject_id, ShareLink.kind == ShareLinkKind.plain)
        .order_by(ShareLink.created_at.desc())
        .limit(1)
    )).scalars().first()


async def get_or_create_plain_link(
    db: AsyncSession,
    subject: Subject,
    created_by: str,
    *,
    generate: Callable[[], str] = random_token,
    now: Optional[datetime] = None,
) -> ShareLink:
    existing = await find_plain_link(db, subject.id)
    if existing:
        return existing

    link = ShareLink(
        id=new_id(),
        token=await create_unique_token(db, generate=generate),
        subject_id=subject.id,
        kind=ShareLinkKind.plain,
        created_by=created_by,
        created_at=now or _now(),
    )
    # uq_share_links_plain_subject rejects a second plain link for the subject
    db.add(link)
    await db.flush()
    logger.info("Plain share link issued for subject %s", subject.id)
    return link


async def next_gift_bottle_code(db: AsyncSession, subject_id: str) -> str:
    # count+1 is not fenced against two gift flows on the same subject at once
    count = await db.scalar(
        select(func.count(ShareLink.id)).where(
            ShareLink.subject_id == subject_id, ShareLink.kind == ShareLinkKind.gift
        )
    )
    return str((count or 0) + 1).zfill(BOTTLE_CODE_WIDTH)


async def create_gift_link(
    db: AsyncSession,
    subject: Subject,
    created_by: str,
    *,
    recipient: str,
    bottle_code: str,
    message: Optional[str] = None,
    generate: Callable[[], str] = random_token,
    now: Optional[datetime] = None,
) -> ShareLink:
    link = ShareLink(
        id=new_id(),
        token=await create_unique_token(db, generate=generate),
        subject_id=subject.id,
        kind=ShareLinkKind.gift,
        gift_recipient=recipient,
        bottle_code=bottle_code,
        gift_message=message,
        created_by=created_by,
        created_at=now or _now(),
    )
    db.add(link)
    await db.flush()
    logger.info("Gift share link %s issued for subject %s", bottle_code, subject.id)
    return link


def share_url(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/q/{token}"


@dataclass(slots=True)
class ResolvedShareLink:
    subject: Subject
    link: ShareLink
    entries: Sequence[Entry]


async def resolve_share_link(db: AsyncSession, token: str) -> Optional[ResolvedShareLink]:
    """Read-only lookup backing the public share page."""
    link = await get_share_link_by_token(db, token)
    if not link:
        return None
    subject = await get_subject(db, link.subject_id)
    if not subject:
        return None
    return ResolvedShareLink(subject=subject, link=link, entries=await list_entries(db, subject.id))


@dataclass(slots=True)
class ShareLinkExportRow:
    link: ShareLink
    subject_name: str
    subject_archived_at: Optional[datetime]


async def list_share_links_for_backup(db: AsyncSession, owner_key: str) -> list[ShareLinkExportRow]:
    rows = (await db.execute(
        select(ShareLink, Subject.name, Subject.archived_at)
        .join(Subject, Subject.id == ShareLink.subject_id)
        .where(Subject.owner_key == owner_key)
        .order_by(ShareLink.created_at.desc())
    )).all()
    return [ShareLinkExportRow(link=link, subject_name=name, subject_archived_at=archived) for link, name, archived in rows]
