"""Tests for history rendering and message splitting."""

from datetime import date

from drink_diary.models import Entry
from drink_diary.llm_client import _sanitize_llm_text, cleanup_markdown
from drink_diary.services.formatting import (
    CLEANED_HEADING,
    format_history,
    should_show_cleaned,
    split_message,
)


def test_short_message_is_not_split():
    assert split_message("hello") == ["hello"]


def test_long_message_splits_on_line_breaks():
    """Chunks stay under the limit and break between lines."""
    lines = [f"line {i:04d} " + "x" * 40 for i in range(300)]
    text = "\n".join(lines)

    chunks = split_message(text)

    assert len(chunks) > 1
    assert all(len(c) <= 3800 for c in chunks)
    assert all(c.splitlines()[-1] in lines for c in chunks)
    assert "\n".join(chunks) == text


def test_unbroken_text_is_hard_cut():
    chunks = split_message("y" * 9000)

    assert [len(c) for c in chunks] == [3800, 3800, 1400]


def test_cleaned_block_only_when_meaningfully_different():
    assert not should_show_cleaned("Racked the mead", None)
    assert not should_show_cleaned("Racked the mead", "racked   the MEAD")
    assert should_show_cleaned("racked mead", "- Racked the mead into secondary.")


def test_history_lists_entries_in_given_order():
    entries = [
        Entry(entry_date=date(2026, 2, 24), raw_text="added honey", cleaned_text="- Added **50 g** honey."),
        Entry(entry_date=date(2026, 2, 1), raw_text="started", cleaned_text=None),
    ]

    text = format_history("Cherry mead", entries)

    assert text.startswith("History: Cherry mead\n\n1. 2026-02-24\nadded honey")
    assert CLEANED_HEADING in text
    assert "- Added 50 g honey." in text
    assert "2. 2026-02-01\nstarted" in text


def test_sanitize_strips_preface_and_fences():
    out = _sanitize_llm_text("Here is the corrected entry:\n```\nRacked the mead.\n```")

    assert out == "Racked the mead."


def test_cleanup_markdown():
    assert cleanup_markdown("## Notes\n**bold** and `code` [link](http://x)") == "Notes\nbold and code link (http://x)"
