from __future__ import annotations

"""Build health history points across a range of trading dates."""

import logging
from dataclasses import replace
from datetime import date
from typing import Iterable, Mapping, Sequence

from trend100.domain.schemas import Bar, UniverseItem
from trend100.logic.diffusion import apply_diffusion, compute_diffusion
from trend100.logic.health import HealthEvaluation, HealthGate, evaluate_health

logger = logging.getLogger(__name__)


def trading_dates(
    bars_by_symbol: Mapping[str, Sequence[Bar]],
    start: str,
    end: str,
) -> list[str]:
    """Return weekday dates in ``[start, end]`` observed in any series.

    Args:
        bars_by_symbol (Mapping[str, Sequence[Bar]]): Cached bars by symbol.
        start (str): First date (inclusive).
        end (str): Last date (inclusive).

    Returns:
        list[str]: Sorted unique dates.
    """
    observed = {
        bar.date
        for bars in bars_by_symbol.values()
        for bar in bars
        if start <= bar.date <= end
    }
    return sorted(value for value in observed if date.fromisoformat(value).weekday() < 5)


def build_history_points(
    items: Sequence[UniverseItem],
    bars_by_symbol: Mapping[str, Sequence[Bar]],
    target_dates: Iterable[str],
    gate: HealthGate,
    previous_date: str | None = None,
) -> list[HealthEvaluation]:
    """Evaluate every target date with diffusion against the prior date.

    Args:
        items (Sequence[UniverseItem]): Universe roster.
        bars_by_symbol (Mapping[str, Sequence[Bar]]): Cached bars by symbol.
        target_dates (Iterable[str]): Ascending evaluation dates.
        gate (HealthGate): Validity thresholds for the universe.
        previous_date (str | None): Trading date preceding the first target,
            used as the diffusion baseline for it.

    Returns:
        list[HealthEvaluation]: One evaluation per target date, in order.
    """
    previous = (
        evaluate_health(items, bars_by_symbol, previous_date, gate) if previous_date else None
    )
    evaluations: list[HealthEvaluation] = []
    for target in target_dates:
        current = evaluate_health(items, bars_by_symbol, target, gate)
        diffusion = compute_diffusion(previous, current)
        evaluations.append(replace(current, point=apply_diffusion(current.point, diffusion)))
        previous = current
    unknown = sum(1 for evaluation in evaluations if evaluation.is_unknown)
    if unknown:
        logger.info("%d of %d history points are UNKNOWN", unknown, len(evaluations))
    return evaluations
