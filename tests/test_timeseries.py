from __future__ import annotations

"""Tests for date-keyed merge and retention."""

from datetime import date, timedelta
from operator import itemgetter

from trend100.logic.timeseries import merge_and_trim_time_series, merge_time_series, trim_time_series

_DATE = itemgetter("date")


def _daily(start: date, count: int) -> list[dict]:
    return [
        {"date": (start + timedelta(days=offset)).isoformat(), "value": offset}
        for offset in range(count)
    ]


def test_merge_time_series_incoming_wins_and_sorts() -> None:
    existing = [{"date": "2024-01-03", "value": 3}, {"date": "2024-01-01", "value": 1}]
    incoming = [{"date": "2024-01-03", "value": 30}, {"date": "2024-01-02", "value": 2}]

    merged = merge_time_series(existing, incoming, _DATE)

    assert merged == [
        {"date": "2024-01-01", "value": 1},
        {"date": "2024-01-02", "value": 2},
        {"date": "2024-01-03", "value": 30},
    ]


def test_merge_time_series_is_idempotent() -> None:
    points = _daily(date(2024, 1, 1), 5)

    once = merge_time_series(points, points, _DATE)

    assert merge_time_series(once, points, _DATE) == once == points


def test_trim_time_series_window_is_inclusive() -> None:
    points = _daily(date(2024, 1, 1), 100)

    trimmed = trim_time_series(points, _DATE, 30)

    assert len(trimmed) == 31
    assert trimmed[0]["date"] == (date(2024, 1, 1) + timedelta(days=69)).isoformat()
    assert trimmed[-1] == points[-1]


def test_trim_time_series_zero_keeps_everything() -> None:
    points = _daily(date(2024, 1, 1), 10)

    assert trim_time_series(points, _DATE, 0) == points
    assert trim_time_series([], _DATE, 30) == []


def test_merge_and_trim_time_series() -> None:
    existing = _daily(date(2024, 1, 1), 10)
    incoming = [{"date": "2024-01-20", "value": 99}]

    result = merge_and_trim_time_series(existing, incoming, _DATE, 10)

    assert [point["date"] for point in result] == ["2024-01-10", "2024-01-20"]
