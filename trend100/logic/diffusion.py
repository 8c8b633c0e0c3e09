from __future__ import annotations

"""Status diffusion: the share of tickers whose trend flipped between dates."""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Mapping

from trend100.domain.schemas import HealthPoint, TrendStatus
from trend100.logic.trend import round_half_up

if TYPE_CHECKING:
    from trend100.logic.health import HealthEvaluation


@dataclass(frozen=True)
class Diffusion:
    pct: float
    count: int
    total_compared: int


def status_diffusion(
    previous: Mapping[str, TrendStatus],
    current: Mapping[str, TrendStatus],
) -> Diffusion | None:
    """Count status flips among tickers known on both dates.

    Args:
        previous (Mapping[str, TrendStatus]): Ticker statuses on the earlier date.
        current (Mapping[str, TrendStatus]): Ticker statuses on the later date.

    Returns:
        Diffusion | None: Flip percentage (one decimal), flip count and
        compared count; None when no ticker is known on both dates.
    """
    compared = [
        ticker
        for ticker, status in current.items()
        if status != "UNKNOWN" and previous.get(ticker, "UNKNOWN") != "UNKNOWN"
    ]
    if not compared:
        return None
    flips = sum(1 for ticker in compared if previous[ticker] != current[ticker])
    return Diffusion(
        pct=round_half_up(flips / len(compared) * 1000) / 10,
        count=flips,
        total_compared=len(compared),
    )


def compute_diffusion(
    previous: HealthEvaluation | None,
    current: HealthEvaluation,
) -> Diffusion | None:
    """Diffusion between two evaluations; None if either point is UNKNOWN."""
    if previous is None or previous.is_unknown or current.is_unknown:
        return None
    return status_diffusion(previous.statuses, current.statuses)


def apply_diffusion(point: HealthPoint, diffusion: Diffusion | None) -> HealthPoint:
    """Return the point with diffusion fields set (zeros when unavailable)."""
    if diffusion is None:
        return point.model_copy(
            update={"diffusion_pct": 0.0, "diffusion_count": 0, "diffusion_total_compared": 0}
        )
    return point.model_copy(
        update={
            "diffusion_pct": diffusion.pct,
            "diffusion_count": diffusion.count,
            "diffusion_total_compared": diffusion.total_compared,
        }
    )
