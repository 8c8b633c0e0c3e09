from __future__ import annotations

"""Tests for the per-symbol cache freshness policy."""

from datetime import date, timedelta

import pytest

from conftest import FakeProvider
from trend100.io import storage
from trend100.io.cache import (
    backfill_history,
    ensure_history,
    extend_history,
    fill_gap,
    needs_extension,
    refresh_history,
    trading_days_since,
)


@pytest.mark.parametrize(
    ("last_date", "expected"),
    [
        ("2024-06-28", 0),
        ("2024-06-27", 1),
        ("2024-06-24", 3),
        ("2024-06-21", 5),
        ("2024-06-14", 10),
    ],
)
def test_trading_days_since(last_date: str, expected: int, today: date) -> None:
    assert trading_days_since(last_date, today) == expected


def test_backfill_history_persists_sorted_bars(make_bars, settings_factory, today: date) -> None:
    settings = settings_factory()
    series = make_bars(today, 400)
    provider = FakeProvider({"AAA": list(reversed(series))})

    result = backfill_history("AAA", provider, settings, today)

    assert result.action == "backfilled"
    assert result.ok
    assert result.bars == series
    assert storage.load_cached_bars(settings.cache_dir, "AAA") == series
    assert not storage.metadata_path(settings.cache_dir, "AAA").exists()
    call = provider.series_calls[0]
    assert call["start"] == today - timedelta(days=settings.cache_window_days)
    assert call["limit"] == settings.backfill_limit


def test_backfill_history_failures(settings_factory, today: date) -> None:
    settings = settings_factory()
    provider = FakeProvider()
    provider.series_errors["BAD"] = "http_error"

    errored = backfill_history("BAD", provider, settings, today)
    empty = backfill_history("NONE", provider, settings, today)

    assert errored.action == "failed"
    assert errored.error_code == "http_error"
    assert empty.action == "failed"
    assert empty.error_code == "not_found"
    assert not storage.cache_path(settings.cache_dir, "NONE").exists()


def test_extend_history_merges_older_bars(make_bars, settings_factory, today: date) -> None:
    settings = settings_factory()
    series = make_bars(today, 600)
    cached = storage.save_cached_bars(settings.cache_dir, "AAA", series[-200:], 0)
    provider = FakeProvider({"AAA": series})

    assert needs_extension("AAA", cached, settings)
    result = extend_history("AAA", cached, provider, settings)

    assert result.action == "extended"
    assert result.bars == series
    assert storage.load_cached_bars(settings.cache_dir, "AAA") == series
    call = provider.series_calls[0]
    assert call["end"] == date.fromisoformat(cached[0].date) - timedelta(days=1)


def test_extend_history_marks_inception_limited(make_bars, settings_factory, today: date) -> None:
    settings = settings_factory()
    series = make_bars(today, 200)
    cached = storage.save_cached_bars(settings.cache_dir, "AAA", series, 0)
    provider = FakeProvider({"AAA": series})

    result = extend_history("AAA", cached, provider, settings)

    assert result.action == "inception_limited"
    assert result.bars == cached
    metadata = storage.load_cache_metadata(settings.cache_dir, "AAA")
    assert metadata is not None
    assert metadata.inception_limited
    assert metadata.oldest_cached_date == series[0].date
    assert not needs_extension("AAA", cached, settings)
    assert needs_extension("AAA", cached, settings_factory(force_extend=True))


def test_forced_extension_clears_inception_limited(make_bars, settings_factory, today: date) -> None:
    settings = settings_factory()
    series = make_bars(today, 400)
    cached = storage.save_cached_bars(settings.cache_dir, "AAA", series[-200:], 0)
    provider = FakeProvider({"AAA": series[-200:]})
    assert extend_history("AAA", cached, provider, settings).action == "inception_limited"

    provider.series["AAA"] = series
    forced = settings_factory(force_extend=True)
    result = extend_history("AAA", cached, provider, forced)

    assert result.action == "extended"
    assert result.bars[0].date < cached[0].date
    metadata = storage.load_cache_metadata(settings.cache_dir, "AAA")
    assert metadata is not None
    assert not metadata.inception_limited
    assert metadata.oldest_cached_date == result.bars[0].date


def test_extend_history_not_found_is_inception_limited(make_bars, settings_factory, today: date) -> None:
    settings = settings_factory()
    cached = storage.save_cached_bars(settings.cache_dir, "AAA", make_bars(today, 50), 0)
    provider = FakeProvider()
    provider.series_errors["AAA"] = "not_found"

    assert extend_history("AAA", cached, provider, settings).action == "inception_limited"


def test_extend_history_error_keeps_cache(make_bars, settings_factory, today: date) -> None:
    settings = settings_factory()
    cached = storage.save_cached_bars(settings.cache_dir, "AAA", make_bars(today, 50), 0)
    provider = FakeProvider()
    provider.series_errors["AAA"] = "network"

    result = extend_history("AAA", cached, provider, settings)

    assert result.action == "unchanged"
    assert result.error_code == "network"
    assert result.bars == cached
    assert storage.load_cache_metadata(settings.cache_dir, "AAA") is None


def test_needs_extension_respects_window(make_bars, settings_factory, today: date) -> None:
    bars = make_bars(today, 250)

    assert not needs_extension("AAA", bars, settings_factory(cache_window_days=300))
    assert needs_extension("AAA", bars, settings_factory(cache_window_days=400))
    assert not needs_extension("AAA", [], settings_factory())


def test_ensure_history_skips_inception_limited_symbols(make_bars, settings_factory, today: date) -> None:
    settings = settings_factory()
    series = make_bars(today, 200)
    storage.save_cached_bars(settings.cache_dir, "AAA", series[:-1], 0)
    provider = FakeProvider({"AAA": series[:-1]})

    first = ensure_history("AAA", provider, settings, today)
    provider.series = {"AAA": series}
    second = ensure_history("AAA", provider, settings, today)

    assert first.action == "unchanged"
    assert len(provider.series_calls) == 1
    assert second.action == "updated"
    assert second.bars == series


def test_ensure_history_backfills_missing_cache(make_bars, settings_factory, today: date) -> None:
    settings = settings_factory()
    provider = FakeProvider({"AAA": make_bars(today, 30)})

    result = ensure_history("AAA", provider, settings, today, allow_extension=False)

    assert result.action == "backfilled"
    assert provider.latest_calls == []


def test_refresh_history_applies_latest_bar(make_bars, settings_factory, today: date) -> None:
    settings = settings_factory()
    series = make_bars(today, 30)
    cached = storage.save_cached_bars(settings.cache_dir, "AAA", series[:-1], 0)
    provider = FakeProvider({"AAA": series})

    result = refresh_history("AAA", cached, provider, settings, today)

    assert result.action == "updated"
    assert result.bars == series
    assert provider.latest_calls == [["AAA"]]
    assert provider.latest_as_of == [today]


def test_refresh_history_absent_latest_keeps_cache(make_bars, settings_factory, today: date) -> None:
    settings = settings_factory()
    series = make_bars(today, 30)
    provider = FakeProvider({"AAA": series})
    provider.latest_missing.add("AAA")

    result = refresh_history("AAA", series[:-1], provider, settings, today)

    assert result.action == "unchanged"
    assert result.bars == series[:-1]
    assert result.error_code is None


def test_refresh_history_ignores_latest_bar_after_run_date(make_bars, settings_factory, today: date) -> None:
    settings = settings_factory()
    series = make_bars(today, 30)
    run_date = date.fromisoformat(series[-2].date)
    cached = storage.save_cached_bars(settings.cache_dir, "AAA", series[:-2], 0)
    provider = FakeProvider({"AAA": series})

    result = refresh_history("AAA", cached, provider, settings, run_date)

    assert result.action == "unchanged"
    assert result.bars == series[:-2]
    assert storage.load_cached_bars(settings.cache_dir, "AAA") == series[:-2]


def test_refresh_history_gap_fills_stale_cache(make_bars, settings_factory, today: date) -> None:
    settings = settings_factory()
    series = make_bars(today, 60)
    cached = [bar for bar in series if bar.date <= "2024-06-14"]
    provider = FakeProvider({"AAA": series})

    result = refresh_history("AAA", cached, provider, settings, today)

    assert result.action == "gap_filled"
    assert result.bars == series
    assert provider.latest_calls == []
    call = provider.series_calls[0]
    assert call["start"] == date(2024, 6, 9)
    assert call["end"] == today
    assert call["limit"] == settings.gap_fetch_limit


def test_fill_gap_error_keeps_cache(make_bars, settings_factory, today: date) -> None:
    settings = settings_factory()
    cached = make_bars(date(2024, 6, 14), 20)
    provider = FakeProvider()
    provider.series_errors["AAA"] = "http_error"

    result = fill_gap("AAA", cached, provider, settings, today)

    assert result.action == "unchanged"
    assert result.bars == cached
    assert result.error_code == "http_error"
