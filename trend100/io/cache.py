from __future__ import annotations

"""Per-symbol cache freshness policy: backfill, extend, update or gap-fill."""

import logging
import math
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from typing import Literal, Sequence

from trend100.config import Settings
from trend100.domain.schemas import Bar, CacheMetadata
from trend100.io.providers import FetchErrorCode, PriceProvider
from trend100.io.storage import (
    load_cache_metadata,
    load_cached_bars,
    save_cache_metadata,
    save_cached_bars,
)

logger = logging.getLogger(__name__)

HistoryAction = Literal[
    "backfilled",
    "extended",
    "inception_limited",
    "updated",
    "gap_filled",
    "unchanged",
    "failed",
]

LATEST_STALE_TRADING_DAYS = 3
GAP_OVERLAP_DAYS = 5


@dataclass(frozen=True)
class HistoryResult:
    """Outcome of one cache operation; ``bars`` is what callers should use."""

    symbol: str
    bars: list[Bar]
    action: HistoryAction
    error_code: FetchErrorCode | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.action != "failed"


def trading_days_since(last_date: str, today: date) -> int:
    """Approximate trading days elapsed as ``ceil(calendar_days * 5 / 7)``."""
    days = (today - date.fromisoformat(last_date)).days
    return math.ceil(days * 5 / 7)


def backfill_history(
    symbol: str,
    provider: PriceProvider,
    settings: Settings,
    today: date,
) -> HistoryResult:
    """Fetch and persist the full cache window for an uncached symbol.

    Args:
        symbol (str): Provider symbol.
        provider (PriceProvider): Upstream client.
        settings (Settings): Cache window and fetch limits.
        today (date): Run date.

    Returns:
        HistoryResult: ``backfilled`` with the persisted bars, or ``failed``
        with a reason. No metadata is written either way.
    """
    start = today - timedelta(days=settings.cache_window_days)
    logger.info("Backfilling %s from %s", symbol, start.isoformat())
    result = provider.fetch_series(symbol, start, today, limit=settings.backfill_limit)
    if not result.ok:
        return HistoryResult(
            symbol=symbol,
            bars=[],
            action="failed",
            error_code=result.error_code,
            message=f"backfill failed: {result.message}",
        )
    if not result.bars:
        return HistoryResult(
            symbol=symbol,
            bars=[],
            action="failed",
            error_code="not_found",
            message="backfill returned no bars",
        )
    saved = save_cached_bars(settings.cache_dir, symbol, result.bars, settings.cache_window_days)
    logger.debug("Cached %d bars for %s", len(saved), symbol)
    return HistoryResult(symbol=symbol, bars=saved, action="backfilled")


def needs_extension(
    symbol: str,
    cached: Sequence[Bar],
    settings: Settings,
    metadata: CacheMetadata | None = None,
) -> bool:
    """Return True when a cache is shorter than its window and may grow back.

    Args:
        symbol (str): Provider symbol (used to load metadata when not given).
        cached (Sequence[Bar]): Cached bars sorted ascending.
        settings (Settings): Window, buffer and force-extend flag.
        metadata (CacheMetadata | None): Previously loaded metadata.

    Returns:
        bool: False for inception-limited symbols unless forced.
    """
    if not cached:
        return False
    if metadata is None:
        metadata = load_cache_metadata(settings.cache_dir, symbol)
    if metadata is not None and metadata.inception_limited and not settings.force_extend:
        return False
    return _span_days(cached) < settings.cache_window_days - settings.extension_buffer_days


def extend_history(
    symbol: str,
    cached: Sequence[Bar],
    provider: PriceProvider,
    settings: Settings,
) -> HistoryResult:
    """Fetch bars older than the cache and merge them in front.

    A fetch that yields nothing older than the earliest cached bar marks the
    symbol inception-limited so later runs skip it unless forced.

    Args:
        symbol (str): Provider symbol.
        cached (Sequence[Bar]): Cached bars sorted ascending.
        provider (PriceProvider): Upstream client.
        settings (Settings): Cache window and buffer.

    Returns:
        HistoryResult: ``extended``, ``inception_limited`` or ``unchanged``
        (fetch error, existing cache kept).
    """
    earliest = cached[0].date
    earliest_day = date.fromisoformat(earliest)
    missing_days = settings.cache_window_days - _span_days(cached)
    start = earliest_day - timedelta(days=missing_days + settings.extension_buffer_days)
    end = earliest_day - timedelta(days=1)
    logger.info("Extending %s backward from %s to %s", symbol, earliest, start.isoformat())
    result = provider.fetch_series(symbol, start, end, limit=settings.backfill_limit)
    # "No data" for a backward range means the symbol starts later.
    if not result.ok and result.error_code != "not_found":
        logger.warning("Extension failed for %s, keeping cache: %s", symbol, result.message)
        return HistoryResult(
            symbol=symbol,
            bars=list(cached),
            action="unchanged",
            error_code=result.error_code,
            message=f"extension failed: {result.message}",
        )
    older = [bar for bar in result.bars if bar.date < earliest]
    if not older:
        save_cache_metadata(
            settings.cache_dir,
            CacheMetadata(
                symbol=symbol,
                inception_limited=True,
                oldest_cached_date=earliest,
                checked_at=datetime.now(UTC).isoformat(timespec="seconds"),
            ),
        )
        logger.info("%s has no data before %s; marked inception-limited", symbol, earliest)
        return HistoryResult(symbol=symbol, bars=list(cached), action="inception_limited")
    saved = save_cached_bars(settings.cache_dir, symbol, [*older, *cached], settings.cache_window_days)
    if load_cache_metadata(settings.cache_dir, symbol) is not None:
        save_cache_metadata(
            settings.cache_dir,
            CacheMetadata(
                symbol=symbol,
                inception_limited=False,
                oldest_cached_date=saved[0].date,
                checked_at=datetime.now(UTC).isoformat(timespec="seconds"),
            ),
        )
        logger.info("%s extended past %s; cleared inception-limited flag", symbol, earliest)
    logger.debug("Extended %s with %d older bars", symbol, len(older))
    return HistoryResult(symbol=symbol, bars=saved, action="extended")


def apply_latest_bar(
    symbol: str,
    cached: Sequence[Bar],
    latest: Bar | None,
    settings: Settings,
    today: date | None = None,
) -> HistoryResult:
    """Merge a latest-bar fetch result into a recent cache.

    Bars dated after ``today`` are ignored so back-dated runs never see the
    future.
    """
    last = cached[-1].date
    if latest is not None and today is not None and latest.date > today.isoformat():
        logger.debug("Ignoring %s latest bar %s after run date %s", symbol, latest.date, today)
        latest = None
    if latest is None:
        logger.debug("No latest bar for %s; using cache (last %s)", symbol, last)
        return HistoryResult(
            symbol=symbol,
            bars=list(cached),
            action="unchanged",
            message="absent from latest batch",
        )
    if latest.date <= last:
        return HistoryResult(symbol=symbol, bars=list(cached), action="unchanged")
    saved = save_cached_bars(settings.cache_dir, symbol, [*cached, latest], settings.cache_window_days)
    logger.debug("Updated %s with latest bar %s", symbol, latest.date)
    return HistoryResult(symbol=symbol, bars=saved, action="updated")


def fill_gap(
    symbol: str,
    cached: Sequence[Bar],
    provider: PriceProvider,
    settings: Settings,
    today: date,
) -> HistoryResult:
    """Fetch ``[last - 5 days, today]`` for a stale cache and merge it."""
    last = cached[-1].date
    start = date.fromisoformat(last) - timedelta(days=GAP_OVERLAP_DAYS)
    logger.info("Filling gap for %s since %s", symbol, last)
    result = provider.fetch_series(symbol, start, today, limit=settings.gap_fetch_limit)
    if not result.ok:
        logger.warning("Gap fill failed for %s, keeping cache: %s", symbol, result.message)
        return HistoryResult(
            symbol=symbol,
            bars=list(cached),
            action="unchanged",
            error_code=result.error_code,
            message=f"gap fill failed: {result.message}",
        )
    if not result.bars:
        return HistoryResult(symbol=symbol, bars=list(cached), action="unchanged")
    saved = save_cached_bars(settings.cache_dir, symbol, [*cached, *result.bars], settings.cache_window_days)
    return HistoryResult(symbol=symbol, bars=saved, action="gap_filled")


def refresh_history(
    symbol: str,
    cached: Sequence[Bar],
    provider: PriceProvider,
    settings: Settings,
    today: date,
) -> HistoryResult:
    """Bring an existing cache up to date with a latest fetch or a gap fill."""
    stale = trading_days_since(cached[-1].date, today)
    if stale > LATEST_STALE_TRADING_DAYS:
        return fill_gap(symbol, cached, provider, settings, today)
    result = provider.fetch_latest_batch([symbol], as_of=today)
    if not result.ok:
        logger.warning("Latest fetch failed for %s, keeping cache: %s", symbol, result.message)
        return HistoryResult(
            symbol=symbol,
            bars=list(cached),
            action="unchanged",
            error_code=result.error_code,
            message=f"latest fetch failed: {result.message}",
        )
    return apply_latest_bar(symbol, cached, result.bars.get(symbol), settings, today)


def ensure_history(
    symbol: str,
    provider: PriceProvider,
    settings: Settings,
    today: date,
    allow_extension: bool = True,
) -> HistoryResult:
    """Run the full freshness policy for one symbol.

    Args:
        symbol (str): Provider symbol.
        provider (PriceProvider): Upstream client.
        settings (Settings): Cache settings.
        today (date): Run date.
        allow_extension (bool): False when the run's extension budget is spent.

    Returns:
        HistoryResult: The final state of the symbol's cache.
    """
    cached = load_cached_bars(settings.cache_dir, symbol)
    if not cached:
        return backfill_history(symbol, provider, settings, today)
    if allow_extension and needs_extension(symbol, cached, settings):
        cached = extend_history(symbol, cached, provider, settings).bars
    return refresh_history(symbol, cached, provider, settings, today)


def _span_days(bars: Sequence[Bar]) -> int:
    return (date.fromisoformat(bars[-1].date) - date.fromisoformat(bars[0].date)).days
