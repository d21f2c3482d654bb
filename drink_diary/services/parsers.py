# drink_diary/services/parsers.py
"""Parsing of free-text journal input.

An entry may start with a date prefix separated by a pipe:

    24.02.2026 | Racked, added 50 g honey
    2026-02-24 | Racked, added 50 g honey
    24.02 | Racked            (current year)
    24.02.26 | Racked         (20YY)

Anything that does not parse as a date is not an error: the whole input
becomes the entry text, dated today.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Optional

from drink_diary.utils import today as _today

ENTRY_FORMAT_HINT = "DD.MM.YYYY | text"

_SEPARATED = re.compile(r"^(.+?)\s*\|\s*(.+)$", re.S)
_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_SHORT_DATE = re.compile(r"^(\d{2})\.(\d{2})(?:\.(\d{2}|\d{4}))?$")


class EntryParseError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class ParsedEntry:
    entry_date: date
    text: str


def parse_flexible_date(value: str, *, today: Optional[date] = None) -> Optional[date]:
    """Return the date for an ISO or `DD.MM[.YY|.YYYY]` string, else None."""
    value = (value or "").strip()
    m = _ISO_DATE.match(value)
    if m:
        year, month, day = (int(g) for g in m.groups())
    else:
        m = _SHORT_DATE.match(value)
        if not m:
            return None
        day, month = int(m.group(1)), int(m.group(2))
        raw_year = m.group(3)
        if raw_year is None:
            year = (today or _today()).year
        elif len(raw_year) == 2:
            year = 2000 + int(raw_year)
        else:
            year = int(raw_year)
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_entry_input(raw: str, *, today: Optional[date] = None) -> ParsedEntry:
    text = (raw or "").strip()
    if not text:
        raise EntryParseError("empty entry")

    current = today or _today()
    m = _SEPARATED.match(text)
    if not m:
        return ParsedEntry(entry_date=current, text=text)

    parsed = parse_flexible_date(m.group(1), today=current)
    if parsed is None:
        return ParsedEntry(entry_date=current, text=text)
    return ParsedEntry(entry_date=parsed, text=m.group(2).strip())
