# drink_diary/services/formatting.py
"""Chat-facing text: entry history rendering and message splitting."""
from __future__ import annotations

import re
from typing import Optional, Sequence

from drink_diary.llm_client import cleanup_markdown
from drink_diary.models import Entry

TELEGRAM_CHUNK = 3800
MIN_SPLIT_AT = 500
CLEANED_SEPARATOR = "_____________________________"
CLEANED_HEADING = "Cleaned-up version:"
OBSERVATIONS_HEADING = "Observations, if any:"


def split_message(text: str, max_len: int = TELEGRAM_CHUNK) -> list[str]:
    """Split on the last line break inside each window; hard cut when there is none late enough."""
    if len(text) <= max_len:
        return [text]

    parts: list[str] = []
    remaining = text
    while len(remaining) > max_len:
        window = remaining[:max_len]
        last_break = window.rfind("\n")
        split_at = last_break if last_break > MIN_SPLIT_AT else max_len
        parts.append(remaining[:split_at].strip())
        remaining = remaining[split_at:].strip()
    if remaining:
        parts.append(remaining)
    return parts


def _normalize_raw(text: str) -> str:
    return (text or "").replace("\r\n", "\n").strip()


def normalize_cleaned_for_history(text: str) -> str:
    s = cleanup_markdown(text)
    s = re.sub(r"^Drink:\s*.*$", "", s, flags=re.I | re.M)
    s = re.sub(r"\n*Next step:\s*[\s\S]*$", "", s, flags=re.I)
    s = re.sub(r"^Observations:\s*$", OBSERVATIONS_HEADING, s, flags=re.I | re.M)
    s = re.sub(r"\n{3,}", "\n\n", s)
    return s.strip()


def _squash(text: str) -> str:
    return re.sub(r"\s+", " ", text.lower()).strip()


def should_show_cleaned(raw_text: str, cleaned_text: Optional[str]) -> bool:
    if not cleaned_text:
        return False
    cleaned = _squash(cleaned_text)
    if not cleaned or cleaned == _squash(raw_text):
        return False
    # a bare "Start: ..." restatement barely longer than the raw text adds nothing
    if re.match(r"^start:\s*", cleaned_text, flags=re.I) and len(cleaned_text) <= len(raw_text) + 20:
        return False
    return True


def format_history(subject_name: str, entries: Sequence[Entry]) -> str:
    blocks = []
    for index, entry in enumerate(entries, start=1):
        raw = _normalize_raw(entry.raw_text)
        cleaned = normalize_cleaned_for_history(entry.cleaned_text) if entry.cleaned_text else None
        lines = [f"{index}. {entry.entry_date.isoformat()}", raw]
        if should_show_cleaned(raw, cleaned):
            lines += [CLEANED_SEPARATOR, CLEANED_HEADING, cleaned]
            if "observations" not in cleaned.lower():
                lines += ["", OBSERVATIONS_HEADING]
        blocks.append("\n".join(lines))
    return "\n\n".join([f"History: {subject_name}", *blocks])
