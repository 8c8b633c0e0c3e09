from __future__ import annotations

"""Tests for health history sanitization."""

import math
from typing import Any

from trend100.domain.schemas import TotalHealthPoint, dump_artifact
from trend100.logic.validation import (
    has_full_health_schema,
    health_schema_warnings,
    is_weekend,
    sanitize_health_history,
    trim_health_history,
)


def _point(day: str, **overrides: Any) -> dict[str, Any]:
    point = TotalHealthPoint(
        date=day,
        green_pct=60.0,
        yellow_pct=20.0,
        red_pct=20.0,
        regime_label="TRANSITION",
        known_count=10,
        unknown_count=0,
        total_tickers=10,
        diffusion_pct=0.0,
        diffusion_count=0,
        diffusion_total_compared=0,
        pct_above_upper_band=10.0,
        median_distance_above_upper_band_pct=2.5,
        stretch200_median_pct=4.0,
        heat_score=8,
    )
    payload = dump_artifact(point)
    payload.update(overrides)
    return payload


def test_is_weekend() -> None:
    assert is_weekend("2024-06-29")
    assert is_weekend("2024-06-30")
    assert not is_weekend("2024-06-28")


def test_full_point_passes_schema() -> None:
    assert has_full_health_schema(_point("2024-06-28"))


def test_schema_rejects_missing_and_non_finite_fields() -> None:
    point = _point("2024-06-28", heatScore=math.nan, knownCount=True)
    del point["greenPct"]

    warnings = health_schema_warnings(point)

    assert "greenPct missing or not finite" in warnings
    assert "heatScore missing or not finite" in warnings
    assert "knownCount missing or not finite" in warnings
    assert not has_full_health_schema(_point("2024-06-28", regimeLabel=""))
    assert not has_full_health_schema(_point("28/06/2024"))


def test_sanitize_health_history_removes_weekend_and_partial(caplog) -> None:
    partial = _point("2024-06-26")
    del partial["diffusionPct"]
    history = [
        _point("2024-06-28"),
        _point("2024-06-29"),  # Saturday
        partial,
        "not a point",
        _point("2024-06-27"),
    ]

    with caplog.at_level("INFO"):
        result = sanitize_health_history(history)

    assert [point["date"] for point in result.points] == ["2024-06-27", "2024-06-28"]
    assert result.removed_weekend == 1
    assert result.removed_partial == 2
    assert "removed 1 weekend and 2 partial points" in caplog.text


def test_sanitize_health_history_last_duplicate_wins() -> None:
    history = [_point("2024-06-28", heatScore=1), _point("2024-06-28", heatScore=2)]

    result = sanitize_health_history(history)

    assert len(result.points) == 1
    assert result.points[0]["heatScore"] == 2
    assert result.removed_partial == 0


def test_trim_health_history() -> None:
    points = [_point("2024-01-02"), _point("2024-06-03"), _point("2024-06-28")]

    assert trim_health_history(points, 30) == points[1:]
    assert trim_health_history(points, 0) == points
