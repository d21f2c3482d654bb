from sqlalchemy import (
    Column, String, ForeignKey, Text, DateTime, Date, Index, CheckConstraint, text
)
from sqlalchemy.orm import relationship
from sqlalchemy import Enum as SAEnum
import enum

from .database import Base


class ShareLinkKind(str, enum.Enum):
    plain = "plain"
    gift = "gift"


class BackupFrequency(str, enum.Enum):
    off = "off"
    weekly = "weekly"
    biweekly = "biweekly"
    monthly = "monthly"

    @property
    def days(self) -> int:
        return BACKUP_FREQUENCY_DAYS[self]


BACKUP_FREQUENCY_DAYS = {
    BackupFrequency.off: 0,
    BackupFrequency.weekly: 7,
    BackupFrequency.biweekly: 14,
    BackupFrequency.monthly: 30,
}


# ---------------------------
# USER MODEL
# ---------------------------
class User(Base):
    __tablename__ = "users"

    # Telegram user id, kept as text
    owner_key = Column(String(64), primary_key=True)
    username = Column(String, nullable=True)
    first_name = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    subjects = relationship("Subject", back_populates="owner", cascade="all, delete-orphan", passive_deletes=True)


# ---------------------------
# SUBJECTS ("drinks")
# ---------------------------
class Subject(Base):
    __tablename__ = "subjects"

    id = Column(String(36), primary_key=True)
    owner_key = Column(String(64), ForeignKey("users.owner_key", ondelete="CASCADE"), index=True, nullable=False)
    name = Column(Text, nullable=False)
    archived_at = Column(DateTime, nullable=True)  # null <=> active
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    owner = relationship("User", back_populates="subjects")
    entries = relationship("Entry", back_populates="subject", cascade="all, delete-orphan", passive_deletes=True)
    share_links = relationship("ShareLink", back_populates="subject", cascade="all, delete-orphan", passive_deletes=True)

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    def __repr__(self):
        return f"<Subject {self.name!r} archived={self.is_archived}>"


class Entry(Base):
    __tablename__ = "entries"

    id = Column(String(36), primary_key=True)
    subject_id = Column(String(36), ForeignKey("subjects.id", ondelete="CASCADE"), index=True, nullable=False)
    owner_key = Column(String(64), ForeignKey("users.owner_key", ondelete="CASCADE"), nullable=False)
    entry_date = Column(Date, nullable=False)
    raw_text = Column(Text, nullable=False)       # never rewritten after insert
    cleaned_text = Column(Text, nullable=True)    # filled by the polish service
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    subject = relationship("Subject", back_populates="entries")


# ---------------------------
# SHARE LINKS
# ---------------------------
class ShareLink(Base):
    __tablename__ = "share_links"
    __table_args__ = (
        # one canonical plain link per subject; gift links are unbounded
        Index(
            "uq_share_links_plain_subject",
            "subject_id",
            unique=True,
            sqlite_where=text("kind = 'plain'"),
            postgresql_where=text("kind = 'plain'"),
        ),
    )

    id = Column(String(36), primary_key=True)
    token = Column(String(32), unique=True, nullable=False)
    subject_id = Column(String(36), ForeignKey("subjects.id", ondelete="CASCADE"), index=True, nullable=False)
    kind = Column(SAEnum(ShareLinkKind, native_enum=False, length=16), nullable=False)
    gift_recipient = Column(Text, nullable=True)
    bottle_code = Column(String(16), nullable=True)
    gift_message = Column(Text, nullable=True)
    created_by = Column(String(64), ForeignKey("users.owner_key", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, nullable=False)

    subject = relationship("Subject", back_populates="share_links")


# ---------------------------
# CONVERSATION STATE (one row per user)
# ---------------------------
class ConversationState(Base):
    __tablename__ = "conversation_states"

    owner_key = Column(String(64), ForeignKey("users.owner_key", ondelete="CASCADE"), primary_key=True)
    step = Column(String(64), nullable=False)
    payload = Column(Text, nullable=True)  # JSON, shape depends on step
    # fresh on every write; lets a slow step tell whether it was overtaken
    revision = Column(String(36), nullable=False)
    updated_at = Column(DateTime, nullable=False)


# ---------------------------
# BACKUP SETTINGS
# ---------------------------
class BackupSetting(Base):
    __tablename__ = "backup_settings"
    __table_args__ = (
        CheckConstraint(
            "(frequency = 'off' AND next_run_at IS NULL) OR (frequency != 'off' AND next_run_at IS NOT NULL)",
            name="ck_backup_next_run_matches_frequency",
        ),
    )

    owner_key = Column(String(64), ForeignKey("users.owner_key", ondelete="CASCADE"), primary_key=True)
    frequency = Column(SAEnum(BackupFrequency, native_enum=False, length=16), nullable=False,
                       default=BackupFrequency.off, server_default=BackupFrequency.off.value)
    next_run_at = Column(DateTime, nullable=True, index=True)
    last_sent_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=False)
