from __future__ import annotations

"""Tests for building health history across trading dates."""

from datetime import date

from trend100.domain.schemas import Bar, UniverseItem
from trend100.logic.health import HealthGate
from trend100.logic.history import build_history_points, trading_dates


def test_trading_dates_unions_weekdays_in_range() -> None:
    bars = {
        "AAA": [Bar(date="2024-06-20", close=1.0), Bar(date="2024-06-21", close=1.0)],
        "BBB": [
            Bar(date="2024-06-21", close=1.0),
            Bar(date="2024-06-22", close=1.0),  # Saturday
            Bar(date="2024-06-24", close=1.0),
            Bar(date="2024-06-28", close=1.0),
        ],
    }

    assert trading_dates(bars, "2024-06-21", "2024-06-24") == ["2024-06-21", "2024-06-24"]


def test_build_history_points_first_point_without_baseline(make_bars, today: date) -> None:
    items = [UniverseItem(ticker="AAA"), UniverseItem(ticker="BBB")]
    bars = {"AAA": make_bars(today, 300), "BBB": make_bars(today, 300)}

    evaluations = build_history_points(items, bars, ["2024-06-27", "2024-06-28"], HealthGate())

    first, second = (evaluation.point for evaluation in evaluations)
    assert first.date == "2024-06-27"
    assert first.diffusion_total_compared == 0
    assert second.diffusion_total_compared == 2
    assert second.diffusion_pct == 0.0


def test_build_history_points_uses_previous_date_as_baseline(make_bars, today: date) -> None:
    items = [UniverseItem(ticker="AAA"), UniverseItem(ticker="BBB")]
    bars = {"AAA": make_bars(today, 300), "BBB": make_bars(today, 300)}

    evaluations = build_history_points(
        items, bars, ["2024-06-28"], HealthGate(), previous_date="2024-06-27"
    )

    assert len(evaluations) == 1
    assert evaluations[0].point.diffusion_total_compared == 2


def test_build_history_points_logs_unknown_points(caplog, today: date) -> None:
    items = [UniverseItem(ticker="AAA")]

    with caplog.at_level("INFO"):
        evaluations = build_history_points(items, {}, ["2024-06-27", "2024-06-28"], HealthGate())

    assert all(evaluation.is_unknown for evaluation in evaluations)
    assert "2 of 2 history points are UNKNOWN" in caplog.text
