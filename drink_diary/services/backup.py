# drink_diary/services/backup.py
"""CSV export of everything one user owns.

One flat file: `record_type` says which columns of a row are in use, the
others are left empty.
"""
from __future__ import annotations

import csv
import enum
import io
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from drink_diary.services.share_links import list_share_links_for_backup
from drink_diary.services.subjects import list_entries_for_backup, list_subjects
from drink_diary.transport import DocumentMessage
from drink_diary.utils import _now, iso

CSV_HEADERS = (
    "record_type",
    "owner_id",
    "subject_id",
    "subject_name",
    "subject_archived_at",
    "entry_id",
    "entry_date",
    "raw_text",
    "cleaned_text",
    "share_link_id",
    "share_kind",
    "share_token",
    "gift_recipient",
    "bottle_code",
    "gift_message",
    "created_at",
    "updated_at",
    "generated_at",
)


@dataclass(slots=True)
class BackupCsv:
    owner_key: str
    csv: str
    rows: int
    subjects: int
    generated_at: datetime

    @property
    def file_name(self) -> str:
        return build_backup_file_name(self.owner_key, self.generated_at)

    @property
    def content(self) -> bytes:
        return self.csv.encode("utf-8")

    def summary(self) -> str:
        return f"Drinks: {self.subjects}\nRows in CSV: {self.rows}"


def _row(record_type: str, **values) -> list[str]:
    row = []
    for column in CSV_HEADERS:
        if column == "record_type":
            row.append(record_type)
            continue
        value = values.get(column)
        if value is None:
            row.append("")
        elif isinstance(value, enum.Enum):
            row.append(str(value.value))
        elif isinstance(value, str):
            row.append(value)
        else:
            row.append(iso(value))
    return row


async def build_backup_csv(db: AsyncSession, owner_key: str, *, now: Optional[datetime] = None) -> BackupCsv:
    generated_at = now or _now()
    subjects = await list_subjects(db, owner_key, "all")
    entries = await list_entries_for_backup(db, owner_key)
    links = await list_share_links_for_backup(db, owner_key)

    buf = io.StringIO()
    # every value quoted, embedded quotes doubled
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)

    for s in subjects:
        writer.writerow(_row(
            "subject",
            owner_id=owner_key,
            subject_id=s.id,
            subject_name=s.name,
            subject_archived_at=s.archived_at,
            created_at=s.created_at,
            updated_at=s.updated_at,
            generated_at=generated_at,
        ))

    for r in entries:
        e = r.entry
        writer.writerow(_row(
            "entry",
            owner_id=owner_key,
            subject_id=e.subject_id,
            subject_name=r.subject_name,
            subject_archived_at=r.subject_archived_at,
            entry_id=e.id,
            entry_date=e.entry_date,
            raw_text=e.raw_text,
            cleaned_text=e.cleaned_text,
            created_at=e.created_at,
            updated_at=e.updated_at,
            generated_at=generated_at,
        ))

    for r in links:
        link = r.link
        writer.writerow(_row(
            "share_link",
            owner_id=owner_key,
            subject_id=link.subject_id,
            subject_name=r.subject_name,
            subject_archived_at=r.subject_archived_at,
            share_link_id=link.id,
            share_kind=link.kind,
            share_token=link.token,
            gift_recipient=link.gift_recipient,
            bottle_code=link.bottle_code,
            gift_message=link.gift_message,
            created_at=link.created_at,
            generated_at=generated_at,
        ))

    return BackupCsv(
        owner_key=owner_key,
        csv=buf.getvalue(),
        rows=len(subjects) + len(entries) + len(links),
        subjects=len(subjects),
        generated_at=generated_at,
    )


def build_backup_file_name(owner_key: str, generated_at: datetime) -> str:
    stamp = generated_at.isoformat().replace(":", "-").replace(".", "-")
    return f"backup-{owner_key}-{stamp}.csv"


def backup_document(backup: BackupCsv, title: str) -> DocumentMessage:
    return DocumentMessage(
        file_name=backup.file_name,
        content=backup.content,
        caption=f"{title}\n{backup.summary()}",
    )
