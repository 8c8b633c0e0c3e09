from __future__ import annotations

"""Trend classification and per-date ticker snapshots."""

import math
from bisect import bisect_right
from operator import attrgetter
from typing import Sequence

from trend100.domain.schemas import Bar, Coverage, TickerSnapshot, TrendStatus, UniverseItem
from trend100.logic.moving_averages import calc_ema, calc_sma, resample_daily_to_weekly

DAILY_SMA_WINDOW = 200
WEEKLY_MA_WINDOW = 50


def classify_trend(
    price: float,
    sma200: float | None = None,
    sma50w: float | None = None,
    ema50w: float | None = None,
) -> TrendStatus:
    """Classify a price against its 200-day average and 50-week band.

    Args:
        price (float): Latest close.
        sma200 (float | None): 200-day simple moving average.
        sma50w (float | None): 50-week simple moving average.
        ema50w (float | None): 50-week exponential moving average.

    Returns:
        TrendStatus: RED below the 200-day average, GREEN above the upper band,
        YELLOW in between, UNKNOWN when any average is missing.
    """
    if sma200 is None or sma50w is None or ema50w is None:
        return "UNKNOWN"
    upper = max(sma50w, ema50w)
    if price < sma200:
        return "RED"
    if price > upper:
        return "GREEN"
    return "YELLOW"


def round_half_up(value: float, digits: int = 0) -> float:
    """Round with ties toward positive infinity, as the dashboard does."""
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def compute_ticker_snapshot(
    item: UniverseItem,
    bars: Sequence[Bar],
    target_date: str,
) -> tuple[TickerSnapshot | None, Coverage]:
    """Derive a ticker's trend snapshot from bars on or before a date.

    Args:
        item (UniverseItem): Universe entry supplying display metadata.
        bars (Sequence[Bar]): Cached daily bars for the item's provider symbol.
        target_date (str): Evaluation date (YYYY-MM-DD), inclusive.

    Returns:
        tuple[TickerSnapshot | None, Coverage]: The snapshot (None when no
        bar exists up to the date) and its coverage class.
    """
    window = bars[: bisect_right(bars, target_date, key=attrgetter("date"))]
    if not window:
        return None, "MISSING"
    price = window[-1].close
    previous = window[-2].close if len(window) > 1 else None
    change_pct = (price - previous) / previous * 100 if previous else None
    sma200 = _latest_sma([bar.close for bar in window], DAILY_SMA_WINDOW)
    meta = {
        "ticker": item.ticker,
        "tags": item.tags,
        "section": item.section,
        "subtitle": item.subtitle,
        "name": item.name,
    }
    weekly = resample_daily_to_weekly(window)
    if len(weekly) < WEEKLY_MA_WINDOW:
        snapshot = TickerSnapshot(
            status="UNKNOWN",
            price=round_half_up(price, 2),
            change_pct=_round2(change_pct),
            sma200=_round2(sma200),
            **meta,
        )
        return snapshot, "INELIGIBLE"
    weekly_closes = [bar.close for bar in weekly]
    sma50w = _latest_sma(weekly_closes, WEEKLY_MA_WINDOW)
    ema50w = calc_ema(weekly_closes, WEEKLY_MA_WINDOW)[-1]
    status = classify_trend(price, sma200=sma200, sma50w=sma50w, ema50w=ema50w)
    upper = max(sma50w, ema50w) if sma50w is not None and ema50w is not None else None
    snapshot = TickerSnapshot(
        status=status,
        price=round_half_up(price, 2),
        change_pct=_round2(change_pct),
        sma200=_round2(sma200),
        sma50w=_round2(sma50w),
        ema50w=_round2(ema50w),
        distance_to_200d_pct=_distance_pct(price, sma200),
        distance_to_upper_band_pct=_distance_pct(price, upper),
        **meta,
    )
    return snapshot, "INELIGIBLE" if status == "UNKNOWN" else "KNOWN"


def _latest_sma(values: Sequence[float], window: int) -> float | None:
    """Return the final SMA value without computing the whole series."""
    if not values:
        return None
    return calc_sma(values[-window:], window)[-1]


def _distance_pct(price: float, reference: float | None) -> float | None:
    """Percent distance of price from a reference level, 2 decimals."""
    if not reference:
        return None
    return round_half_up((price - reference) / reference * 100, 2)


def _round2(value: float | None) -> float | None:
    return None if value is None else round_half_up(value, 2)
