from __future__ import annotations

"""Moving averages and weekly resampling over daily closes."""

from datetime import date
from typing import Sequence

from more_itertools import pairwise

from trend100.domain.schemas import Bar

FRIDAY = 5


def calc_sma(values: Sequence[float], window: int) -> list[float | None]:
    """Compute a simple moving average aligned with the input.

    Args:
        values (Sequence[float]): Input series, oldest first.
        window (int): Number of trailing values per average.

    Returns:
        list[float | None]: Same-length series; the first ``window - 1``
        entries are None.
    """
    if window <= 0 or not values:
        return [None for _ in values]
    return [
        None if index < window - 1 else sum(values[index - window + 1 : index + 1]) / window
        for index in range(len(values))
    ]


def calc_ema(values: Sequence[float], window: int) -> list[float | None]:
    """Compute an exponential moving average seeded with the first value.

    Args:
        values (Sequence[float]): Input series, oldest first.
        window (int): Smoothing window; multiplier is ``2 / (window + 1)``.

    Returns:
        list[float | None]: Same-length series with no warm-up gap.
    """
    if window <= 0 or not values:
        return [None for _ in values]
    multiplier = 2 / (window + 1)
    result: list[float | None] = [values[0]]
    previous = values[0]
    for value in values[1:]:
        previous = (value - previous) * multiplier + previous
        result.append(previous)
    return result


def resample_daily_to_weekly(bars: Sequence[Bar]) -> list[Bar]:
    """Keep the last trading bar of each week.

    A bar closes its week when it falls on a Friday, when it is the final bar,
    or when the next bar's weekday index (Sunday = 0) is lower than its own.

    Args:
        bars (Sequence[Bar]): Daily bars sorted ascending.

    Returns:
        list[Bar]: Weekly bars sorted ascending.
    """
    if not bars:
        return []
    weekdays = [_weekday_index(bar.date) for bar in bars]
    closes_week = [
        current == FRIDAY or following < current
        for current, following in pairwise(weekdays)
    ]
    return [
        bar
        for bar, is_week_close in zip(bars, [*closes_week, True])
        if is_week_close
    ]


def _weekday_index(value: str) -> int:
    """Return the weekday index with Sunday as 0 and Saturday as 6."""
    return date.fromisoformat(value).isoweekday() % 7
