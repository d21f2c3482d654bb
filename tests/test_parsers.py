"""Tests for journal entry parsing."""

from datetime import date

import pytest

from drink_diary.services.parsers import EntryParseError, parse_entry_input, parse_flexible_date

TODAY = date(2026, 3, 10)


def test_dated_entry_splits_on_pipe():
    """A leading date before the pipe becomes the entry date."""
    parsed = parse_entry_input("24.02.2026 | Added 50g honey", today=TODAY)

    assert parsed.entry_date == date(2026, 2, 24)
    assert parsed.text == "Added 50g honey"


def test_undated_entry_is_dated_today():
    """Text without a date prefix is kept as is and dated today."""
    parsed = parse_entry_input("Tasted — sour", today=TODAY)

    assert parsed.entry_date == TODAY
    assert parsed.text == "Tasted — sour"


def test_date_formats():
    """ISO, DD.MM, DD.MM.YY and DD.MM.YYYY are all accepted."""
    assert parse_flexible_date("2026-02-24", today=TODAY) == date(2026, 2, 24)
    assert parse_flexible_date("24.02", today=TODAY) == date(2026, 2, 24)
    assert parse_flexible_date("24.02.25", today=TODAY) == date(2025, 2, 24)
    assert parse_flexible_date("24.02.2024", today=TODAY) == date(2024, 2, 24)
    assert parse_flexible_date("24/02/2024", today=TODAY) is None


def test_impossible_date_falls_back_to_whole_text():
    """31.02 is not a date, so the prefix stays part of the text."""
    parsed = parse_entry_input("31.02.2026 | Racked", today=TODAY)

    assert parsed.entry_date == TODAY
    assert parsed.text == "31.02.2026 | Racked"


def test_pipe_without_date_keeps_whole_text():
    parsed = parse_entry_input("gravity | 1.050", today=TODAY)

    assert parsed.entry_date == TODAY
    assert parsed.text == "gravity | 1.050"


@pytest.mark.parametrize("raw", [
    "24.02.2026 | a",
    "01.12 | b",
    "05.06.27 | c",
    "2025-11-30 | d",
])
def test_date_is_stable_under_iso_reparse(raw):
    """Re-parsing the ISO form of an extracted date yields the same date."""
    first = parse_entry_input(raw, today=TODAY)
    again = parse_entry_input(f"{first.entry_date.isoformat()} | {first.text}", today=TODAY)

    assert again.entry_date == first.entry_date
    assert again.text == first.text


def test_blank_input_is_rejected():
    with pytest.raises(EntryParseError):
        parse_entry_input("   \n ", today=TODAY)
