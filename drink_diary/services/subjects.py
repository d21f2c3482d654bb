# drink_diary/services/subjects.py
"""Owner-scoped access to users, subjects ("drinks") and journal entries.

Functions flush but never commit; the caller owns the transaction.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Literal, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from drink_diary.models import BackupFrequency, BackupSetting, Entry, Subject, User
from drink_diary.services.upsert import insert_for
from drink_diary.utils import _now, new_id

logger = logging.getLogger(__name__)

SubjectScope = Literal["all", "active", "archived"]


async def ensure_user(
    db: AsyncSession,
    owner_key: str,
    *,
    username: Optional[str] = None,
    first_name: Optional[str] = None,
    default_frequency: BackupFrequency = BackupFrequency.weekly,
    now: Optional[datetime] = None,
) -> None:
    """Upsert the profile and give first-time users a backup schedule."""
    now = now or _now()
    insert = insert_for(db)
    await db.execute(
        insert(User)
        .values(owner_key=owner_key, username=username, first_name=first_name, created_at=now, updated_at=now)
        .on_conflict_do_update(
            index_elements=[User.owner_key],
            set_={"username": username, "first_name": first_name, "updated_at": now},
        )
    )
    next_run = now + timedelta(days=default_frequency.days) if default_frequency != BackupFrequency.off else None
    await db.execute(
        insert(BackupSetting)
        .values(owner_key=owner_key, frequency=default_frequency, next_run_at=next_run, last_sent_at=None, updated_at=now)
        .on_conflict_do_nothing(index_elements=[BackupSetting.owner_key])
    )


# ---------- subjects ----------

async def create_subject(db: AsyncSession, owner_key: str, name: str, *, now: Optional[datetime] = None) -> Subject:
    now = now or _now()
    subject = Subject(id=new_id(), owner_key=owner_key, name=name, archived_at=None, created_at=now, updated_at=now)
    db.add(subject)
    await db.flush()
    logger.info("Subject %s created for %s", subject.id, owner_key)
    return subject


async def list_subjects(db: AsyncSession, owner_key: str, scope: SubjectScope = "all") -> Sequence[Subject]:
    stmt = select(Subject).where(Subject.owner_key == owner_key)
    if scope == "active":
        stmt = stmt.where(Subject.archived_at.is_(None))
    elif scope == "archived":
        stmt = stmt.where(Subject.archived_at.isnot(None))
    stmt = stmt.order_by(
        func.coalesce(Subject.archived_at, Subject.updated_at).desc(),
        Subject.updated_at.desc(),
    ).execution_options(populate_existing=True)
    return (await db.execute(stmt)).scalars().all()


async def get_subject(db: AsyncSession, subject_id: str) -> Optional[Subject]:
    """Unscoped lookup, only for the public share-link view."""
    return await db.get(Subject, subject_id)


async def get_subject_for_owner(db: AsyncSession, subject_id: Optional[str], owner_key: str) -> Optional[Subject]:
    if not subject_id:
        return None
    return (await db.execute(
        select(Subject)
        .where(Subject.id == subject_id, Subject.owner_key == owner_key)
        .execution_options(populate_existing=True)
    )).scalars().first()


async def archive_subject(db: AsyncSession, subject_id: str, owner_key: str, *, now: Optional[datetime] = None) -> bool:
    """Archive an active subject. False (and no change) if it is missing or already archived."""
    now = now or _now()
    result = await db.execute(
        update(Subject)
        .where(Subject.id == subject_id, Subject.owner_key == owner_key, Subject.archived_at.is_(None))
        .values(archived_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


async def unarchive_subject(db: AsyncSession, subject_id: str, owner_key: str, *, now: Optional[datetime] = None) -> bool:
    now = now or _now()
    result = await db.execute(
        update(Subject)
        .where(Subject.id == subject_id, Subject.owner_key == owner_key, Subject.archived_at.isnot(None))
        .values(archived_at=None, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


# ---------- entries ----------

async def create_entry(
    db: AsyncSession,
    *,
    subject_id: str,
    owner_key: str,
    entry_date: date,
    raw_text: str,
    cleaned_text: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Entry:
    """Insert an entry and bump the parent subject's updated_at in the same transaction."""
    now = now or _now()
    entry = Entry(
        id=new_id(),
        subject_id=subject_id,
        owner_key=owner_key,
        entry_date=entry_date,
        raw_text=raw_text,
        cleaned_text=cleaned_text,
        created_at=now,
        updated_at=now,
    )
    db.add(entry)
    await db.flush()
    await db.execute(
        update(Subject)
        .where(Subject.id == subject_id)
        .values(updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return entry


async def list_entries(db: AsyncSession, subject_id: str) -> Sequence[Entry]:
    # Newest entry date first; same-day entries newest-created first.
    return (await db.execute(
        select(Entry)
        .where(Entry.subject_id == subject_id)
        .order_by(Entry.entry_date.desc(), Entry.created_at.desc())
        .execution_options(populate_existing=True)
    )).scalars().all()


async def update_entry_cleaned_text(db: AsyncSession, entry_id: str, cleaned_text: str, *, now: Optional[datetime] = None) -> None:
    await db.execute(
        update(Entry)
        .where(Entry.id == entry_id)
        .values(cleaned_text=cleaned_text, updated_at=now or _now())
        .execution_options(synchronize_session=False)
    )


@dataclass(slots=True)
class EntryExportRow:
    entry: Entry
    subject_name: str
    subject_archived_at: Optional[datetime]


async def list_entries_for_backup(db: AsyncSession, owner_key: str) -> list[EntryExportRow]:
    rows = (await db.execute(
        select(Entry, Subject.name, Subject.archived_at)
        .join(Subject, Subject.id == Entry.subject_id)
        .where(Subject.owner_key == owner_key)
        .order_by(Entry.entry_date.desc(), Entry.created_at.desc())
    )).all()
    return [EntryExportRow(entry=e, subject_name=name, subject_archived_at=archived) for e, name, archived in rows]
