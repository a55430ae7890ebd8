from __future__ import annotations

from datetime import datetime, timedelta, timezone

from townsquare.utils import clean_text, to_naive_utc, truncate, utcnow


def test_utcnow_is_naive():
    assert utcnow().tzinfo is None


def test_to_naive_utc_converts_aware_values():
    aware = datetime(2030, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
    assert to_naive_utc(aware) == datetime(2030, 1, 1, 10, 0)
    naive = datetime(2030, 1, 1, 12, 0)
    assert to_naive_utc(naive) is naive
    assert to_naive_utc(None) is None


def test_clean_text_and_truncate():
    assert clean_text("  hi  ") == "hi"
    assert clean_text(None) == ""
    assert truncate("short", 10) == "short"
    assert truncate("abcdefghij", 5) == "abcd…"
