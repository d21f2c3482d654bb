"""drink diary baseline

Revision ID: 3f0c9a51d2e4
Revises: 
Create Date: 2026-10-17 10:02:41.215377

"""
from typing import Sequence, Union

from alembic import op
from sqlalchemy.engine import Connection

from drink_diary.database import Base
from drink_diary import models  # noqa: F401

# revision identifiers, used by Alembic.
revision: str = "3f0c9a51d2e4"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create users, subjects, entries, share_links, conversation_states and backup_settings."""
    bind: Connection = op.get_bind()
    Base.metadata.create_all(bind)


def downgrade() -> None:
    bind: Connection = op.get_bind()
    Base.metadata.drop_all(bind)
