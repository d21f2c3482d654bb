import re
import uuid
from datetime import date, datetime, timezone


def _now() -> datetime:
    # Return naive UTC to match DB columns (TIMESTAMP WITHOUT TIME ZONE)
    # Store and compare consistently as UTC-naive
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today() -> date:
    return _now().date()


def new_id() -> str:
    return str(uuid.uuid4())


def iso(value: datetime | date | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def normalize_single_line(value: str) -> str:
    return re.sub(r"\s+", " ", value or "").strip()


def short_datetime(value: datetime | None) -> str:
    """Render a timestamp as `YYYY-MM-DD HH:MM` for chat messages."""
    if not value:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M")
