from __future__ import annotations

"""Multi-symbol cache refresh with an extension budget and chunked latest fetches."""

import logging
import sys
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Iterable

from toolz import partition_all, unique
from tqdm import tqdm  # type: ignore[import-untyped]

from trend100.config import Settings
from trend100.domain.schemas import Bar
from trend100.io.cache import (
    LATEST_STALE_TRADING_DAYS,
    HistoryResult,
    apply_latest_bar,
    backfill_history,
    extend_history,
    fill_gap,
    needs_extension,
    trading_days_since,
)
from trend100.io.providers import PriceProvider
from trend100.io.storage import load_cached_bars

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Bars for usable symbols plus per-symbol failures and run counters."""

    bars_by_symbol: dict[str, list[Bar]] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)
    deferred: list[str] = field(default_factory=list)
    summary: dict[str, int] = field(default_factory=dict)

    def record(self, result: HistoryResult) -> None:
        self.summary[result.action] = self.summary.get(result.action, 0) + 1
        if result.bars:
            self.bars_by_symbol[result.symbol] = result.bars
        if result.error_code is not None or not result.ok:
            self.failures[result.symbol] = result.message or result.error_code or "unknown error"


def ensure_history_batch(
    symbols: Iterable[str],
    provider: PriceProvider,
    settings: Settings,
    today: date,
    sleep: Callable[[float], None] = time.sleep,
) -> BatchResult:
    """Refresh the caches of many symbols without letting one failure stop the run.

    Args:
        symbols (Iterable[str]): Provider symbols, possibly repeated across
            universes.
        provider (PriceProvider): Upstream client.
        settings (Settings): Cache, budget and chunking settings.
        today (date): Run date.
        sleep (Callable[[float], None]): Delay between latest-bar chunks.

    Returns:
        BatchResult: Bars for every symbol that has data (prior cache kept on
        update failures), failures with reasons, and deferred extensions.
    """
    ordered = list(unique(symbols))
    batch = BatchResult(summary={"total": len(ordered)})
    cached: dict[str, list[Bar]] = {}
    backfill: list[str] = []
    extension: list[str] = []
    for symbol in ordered:
        bars = load_cached_bars(settings.cache_dir, symbol)
        if not bars:
            backfill.append(symbol)
            continue
        cached[symbol] = bars
        if needs_extension(symbol, bars, settings):
            extension.append(symbol)

    budget = settings.extend_max_symbols_per_run
    extension, batch.deferred = extension[:budget], extension[budget:]
    if batch.deferred:
        logger.info(
            "Deferring extension of %d symbols beyond the per-run budget of %d",
            len(batch.deferred),
            budget,
        )
    logger.info(
        "Cache plan: %d backfill, %d extension, %d update",
        len(backfill),
        len(extension),
        len(cached),
    )

    for symbol in _progress(backfill, "Backfill"):
        batch.record(backfill_history(symbol, provider, settings, today))

    for symbol in _progress(extension, "Extend"):
        result = extend_history(symbol, cached[symbol], provider, settings)
        cached[symbol] = result.bars
        key = "extension_failed" if result.error_code is not None else result.action
        batch.summary[key] = batch.summary.get(key, 0) + 1
        if result.error_code is not None:
            batch.failures[symbol] = result.message or result.error_code

    latest_symbols = [
        symbol
        for symbol, bars in cached.items()
        if trading_days_since(bars[-1].date, today) <= LATEST_STALE_TRADING_DAYS
    ]
    latest_set = set(latest_symbols)
    gap_symbols = [symbol for symbol in cached if symbol not in latest_set]

    chunks = list(partition_all(settings.latest_chunk_size, latest_symbols))
    for index, chunk in enumerate(chunks):
        if index:
            sleep(settings.latest_chunk_delay_seconds)
        result = provider.fetch_latest_batch(list(chunk), as_of=today)
        for symbol in chunk:
            if not result.ok:
                batch.record(
                    HistoryResult(
                        symbol=symbol,
                        bars=cached[symbol],
                        action="unchanged",
                        error_code=result.error_code,
                        message=f"latest fetch failed: {result.message}",
                    )
                )
                continue
            batch.record(apply_latest_bar(symbol, cached[symbol], result.bars.get(symbol), settings, today))

    for symbol in _progress(gap_symbols, "Gap fill"):
        batch.record(fill_gap(symbol, cached[symbol], provider, settings, today))

    _log_summary(batch)
    return batch


def _progress(symbols: list[str], label: str) -> Iterable[str]:
    return tqdm(
        symbols,
        total=len(symbols),
        desc=label,
        unit="symbol",
        ascii=True,
        disable=not sys.stderr.isatty(),
    )


def _log_summary(batch: BatchResult) -> None:
    counts = ", ".join(f"{key}={value}" for key, value in sorted(batch.summary.items()))
    logger.info("Cache refresh summary: %s", counts)
    if batch.failures:
        logger.error(
            "Cache refresh failures (%d): %s",
            len(batch.failures),
            "; ".join(f"{symbol}: {reason}" for symbol, reason in batch.failures.items()),
        )
