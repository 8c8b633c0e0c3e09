from __future__ import annotations

"""End-to-end tests for the update, history and verify commands."""

import json
from datetime import date, timedelta

import main
from conftest import FakeProvider, weekdays_ending
from trend100.domain.schemas import Universe, UniverseItem
from trend100.io import storage


def _universe() -> Universe:
    return Universe(
        id="TEST",
        label="Test",
        items=(
            UniverseItem(ticker="AAA", section="Alpha"),
            UniverseItem(ticker="BBB", section="Alpha"),
            UniverseItem(ticker="CCC", section="Beta Group", provider_symbol="CCC.X"),
        ),
    )


def _provider(make_bars, today: date) -> FakeProvider:
    return FakeProvider(
        {
            "AAA": make_bars(today, 300),
            "BBB": make_bars(today, 300, start=400.0, step=-1.0),
            "CCC.X": make_bars(today, 300),
        }
    )


def _expected_dates(today: date, window_days: int) -> list[str]:
    start = today - timedelta(days=window_days)
    return [day.isoformat() for day in weekdays_ending(today, 60) if day >= start]


def test_parse_args_defaults() -> None:
    args = main._parse_args([])
    assert args.command == "update"
    assert args.universes == []
    assert args.as_of is None

    args = main._parse_args(["MACRO", "--as-of", "2024-06-28"])
    assert args.command == "update"
    assert args.universes == ["MACRO"]
    assert args.as_of == "2024-06-28"

    assert main._parse_args(["history", "--refresh"]).refresh is True


def test_main_unknown_universe_returns_config_error() -> None:
    assert main.main(["update", "NOT_A_UNIVERSE"]) == 2


def test_run_update_writes_artifacts(make_bars, settings_factory, today: date) -> None:
    settings = settings_factory(history_window_days=30)
    provider = _provider(make_bars, today)
    universe = _universe()

    status = main.run_update([universe], settings, today, provider_factory=lambda name, _: provider)

    assert status == 0
    history = json.loads(storage.history_path(settings.public_dir, "TEST").read_text(encoding="utf-8"))
    assert [point["date"] for point in history] == _expected_dates(today, 30)
    latest = history[-1]
    assert latest["totalTickers"] == 3
    assert latest["knownCount"] == 3
    assert latest["regimeLabel"] == "TRANSITION"
    assert latest["diffusionTotalCompared"] == 3
    assert "eligibleCount" not in latest

    alpha = json.loads(storage.history_path(settings.public_dir, "TEST", "alpha").read_text(encoding="utf-8"))
    beta = json.loads(storage.history_path(settings.public_dir, "TEST", "beta-group").read_text(encoding="utf-8"))
    assert alpha[-1]["totalTickers"] == 2
    assert beta[-1]["totalTickers"] == 1
    assert beta[-1]["greenPct"] == 100.0

    snapshot = json.loads(storage.snapshot_path(settings.public_dir, "TEST").read_text(encoding="utf-8"))
    assert snapshot["asOfDate"] == today.isoformat()
    assert snapshot["universeSize"] == 3
    assert [ticker["ticker"] for ticker in snapshot["tickers"]] == ["AAA", "BBB", "CCC"]
    assert {"sma50w", "ema50w", "distanceTo200dPct"} <= set(snapshot["tickers"][0])

    assert storage.load_history_counts(settings.data_dir) == {"TEST": len(history)}
    assert storage.load_cached_bars(settings.cache_dir, "CCC.X")[-1].date == today.isoformat()


def test_run_update_is_idempotent(make_bars, settings_factory, today: date) -> None:
    settings = settings_factory(history_window_days=30)
    provider = _provider(make_bars, today)
    universe = _universe()
    factory = lambda name, _: provider  # noqa: E731

    main.run_update([universe], settings, today, provider_factory=factory)
    path = storage.history_path(settings.public_dir, "TEST")
    first = path.read_text(encoding="utf-8")
    main.run_update([universe], settings, today, provider_factory=factory)

    assert path.read_text(encoding="utf-8") == first


def test_run_update_appends_new_dates(make_bars, settings_factory, today: date) -> None:
    settings = settings_factory(history_window_days=30)
    universe = _universe()
    yesterday = date(2024, 6, 27)
    main.run_update(
        [universe], settings, yesterday, provider_factory=lambda name, _: _provider(make_bars, yesterday)
    )

    main.run_update([universe], settings, today, provider_factory=lambda name, _: _provider(make_bars, today))

    history = json.loads(storage.history_path(settings.public_dir, "TEST").read_text(encoding="utf-8"))
    dates = [point["date"] for point in history]
    assert dates[-2:] == ["2024-06-27", "2024-06-28"]
    assert len(dates) == len(set(dates))
    assert history[-1]["diffusionTotalCompared"] == 3


def test_run_history_rebuilds_from_cache(make_bars, settings_factory, today: date) -> None:
    settings = settings_factory(history_window_days=30)
    universe = _universe()
    provider = _provider(make_bars, today)
    main.run_update([universe], settings, today, provider_factory=lambda name, _: provider)
    path = storage.history_path(settings.public_dir, "TEST")
    full_history = json.loads(path.read_text(encoding="utf-8"))
    storage.save_health_history(path, full_history[:5])

    status = main.run_history([universe], settings, today)

    assert status == 0
    assert json.loads(path.read_text(encoding="utf-8")) == full_history


def test_run_verify_detects_shrinkage(make_bars, settings_factory, today: date) -> None:
    settings = settings_factory(history_window_days=30)
    universe = _universe()
    provider = _provider(make_bars, today)
    main.run_update([universe], settings, today, provider_factory=lambda name, _: provider)

    assert main.run_verify([universe], settings, today) == 0

    path = storage.history_path(settings.public_dir, "TEST")
    history = json.loads(path.read_text(encoding="utf-8"))
    storage.save_health_history(path, history[:10])

    assert main.run_verify([universe], settings, today) == 1


def test_run_coverage_writes_reports(make_bars, settings_factory, today: date, tmp_path) -> None:
    settings = settings_factory(history_window_days=30)
    universe = _universe()
    provider = _provider(make_bars, today)
    main.run_update([universe], settings, today, provider_factory=lambda name, _: provider)
    run_dir = tmp_path / "run"

    assert main.run_coverage([universe], settings, run_dir) == 0
    assert (run_dir / "cache_report.csv").exists()
    assert (run_dir / "history_report.csv").exists()
