from __future__ import annotations

"""Merge and retention helpers for date-keyed series."""

from datetime import date, timedelta
from typing import Callable, Iterable, Sequence, TypeVar

from toolz import last

T = TypeVar("T")


def merge_time_series(
    existing: Iterable[T],
    incoming: Iterable[T],
    date_key: Callable[[T], str],
) -> list[T]:
    """Merge two series by date, letting incoming points win on conflict.

    Args:
        existing (Iterable[T]): Points already persisted.
        incoming (Iterable[T]): Newly fetched or computed points.
        date_key (Callable[[T], str]): Returns a point's YYYY-MM-DD date.

    Returns:
        list[T]: Deduplicated points sorted ascending by date.
    """
    by_date = {date_key(point): point for point in existing}
    by_date.update((date_key(point), point) for point in incoming)
    return [by_date[key] for key in sorted(by_date)]


def trim_time_series(
    points: Sequence[T],
    date_key: Callable[[T], str],
    retention_days: int,
) -> list[T]:
    """Keep points within a calendar-day window of the latest point.

    Args:
        points (Sequence[T]): Points sorted ascending by date.
        date_key (Callable[[T], str]): Returns a point's YYYY-MM-DD date.
        retention_days (int): Window length; ``<= 0`` retains everything.

    Returns:
        list[T]: Points dated on or after ``latest - retention_days``.
    """
    if not points or retention_days <= 0:
        return list(points)
    latest = date.fromisoformat(date_key(last(points)))
    cutoff = (latest - timedelta(days=retention_days)).isoformat()
    return [point for point in points if date_key(point) >= cutoff]


def merge_and_trim_time_series(
    existing: Iterable[T],
    incoming: Iterable[T],
    date_key: Callable[[T], str],
    retention_days: int,
) -> list[T]:
    """Merge two series then apply the retention window."""
    merged = merge_time_series(existing, incoming, date_key)
    return trim_time_series(merged, date_key, retention_days)
