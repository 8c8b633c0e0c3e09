from __future__ import annotations

"""Per-date universe health: regime percentages, validity gates, heat."""

import logging
from collections import Counter
from dataclasses import dataclass
from statistics import median
from typing import Iterable, Mapping, Sequence

from trend100.domain.schemas import (
    Bar,
    DenominatorMode,
    EligibleHealthPoint,
    HealthPoint,
    HealthScore,
    TickerSnapshot,
    TotalHealthPoint,
    TrendStatus,
    UnknownHealthPoint,
    UniverseItem,
)
from trend100.logic.trend import compute_ticker_snapshot, round_half_up

logger = logging.getLogger(__name__)

RISK_ON_GREEN_PCT = 70.0
TRANSITION_GREEN_PCT = 45.0
STRETCH_SCALE_PCT = 60.0
HEAT_BREADTH_WEIGHT = 0.6
HEAT_STRETCH_WEIGHT = 0.4


@dataclass(frozen=True)
class HealthGate:
    """Per-universe validity thresholds."""

    min_known_pct: float = 0.9
    min_eligible_count: int = 0
    denominator_mode: DenominatorMode = "total"


@dataclass(frozen=True)
class HealthEvaluation:
    """A computed health point plus the ticker snapshots behind it."""

    point: HealthPoint
    snapshots: tuple[TickerSnapshot, ...]

    @property
    def statuses(self) -> dict[str, TrendStatus]:
        """Ticker to status map excluding UNKNOWN tickers."""
        return {
            snapshot.ticker: snapshot.status
            for snapshot in self.snapshots
            if snapshot.status != "UNKNOWN"
        }

    @property
    def is_unknown(self) -> bool:
        return self.point.regime_label == "UNKNOWN"


def compute_health_score(statuses: Iterable[TrendStatus]) -> HealthScore:
    """Compute regime percentages from known statuses.

    Args:
        statuses (Iterable[TrendStatus]): Ticker statuses; UNKNOWN entries are
            excluded from the denominator.

    Returns:
        HealthScore: Percentages rounded to one decimal and the regime label.
        With no known statuses the score is RISK_OFF with all zeros.
    """
    counts = Counter(status for status in statuses if status != "UNKNOWN")
    known = sum(counts.values())
    if known == 0:
        return HealthScore(green_pct=0.0, yellow_pct=0.0, red_pct=0.0, regime_label="RISK_OFF")
    green_pct, yellow_pct, red_pct = (
        round_half_up(counts[status] / known * 100, 1) for status in ("GREEN", "YELLOW", "RED")
    )
    if green_pct >= RISK_ON_GREEN_PCT:
        regime = "RISK_ON"
    elif green_pct >= TRANSITION_GREEN_PCT:
        regime = "TRANSITION"
    else:
        regime = "RISK_OFF"
    return HealthScore(
        green_pct=green_pct,
        yellow_pct=yellow_pct,
        red_pct=red_pct,
        regime_label=regime,
    )


def compute_overextension(known: Sequence[TickerSnapshot]) -> dict[str, float | int]:
    """Compute breadth above the upper band, stretch and the heat score.

    Args:
        known (Sequence[TickerSnapshot]): Snapshots with a non-UNKNOWN status.

    Returns:
        dict[str, float | int]: Keyword arguments for a health point.
    """
    above_band = [
        snapshot.distance_to_upper_band_pct
        for snapshot in known
        if snapshot.distance_to_upper_band_pct is not None
        and snapshot.distance_to_upper_band_pct > 0
    ]
    stretch = [
        snapshot.distance_to_200d_pct
        for snapshot in known
        if snapshot.distance_to_200d_pct is not None
    ]
    pct_above = round_half_up(len(above_band) / len(known) * 100, 1) if known else 0.0
    median_above = round_half_up(median(above_band), 2) if above_band else 0.0
    stretch_median = round_half_up(median(stretch), 2) if stretch else 0.0
    stretch_score = min(max(stretch_median / STRETCH_SCALE_PCT * 100, 0.0), 100.0)
    heat = round_half_up(HEAT_BREADTH_WEIGHT * pct_above + HEAT_STRETCH_WEIGHT * stretch_score)
    return {
        "pct_above_upper_band": pct_above,
        "median_distance_above_upper_band_pct": median_above,
        "stretch200_median_pct": stretch_median,
        "heat_score": int(heat),
    }


def evaluate_health(
    items: Sequence[UniverseItem],
    bars_by_symbol: Mapping[str, Sequence[Bar]],
    target_date: str,
    gate: HealthGate,
) -> HealthEvaluation:
    """Evaluate a universe's health on a single date.

    Diffusion fields are left at zero; see ``trend100.logic.diffusion``.

    Args:
        items (Sequence[UniverseItem]): Universe roster.
        bars_by_symbol (Mapping[str, Sequence[Bar]]): Cached bars keyed by
            provider symbol.
        target_date (str): Evaluation date (YYYY-MM-DD).
        gate (HealthGate): Denominator mode and validity thresholds.

    Returns:
        HealthEvaluation: UNKNOWN point when a validity gate fails, otherwise
        a valid point in the gate's denominator mode.
    """
    snapshots: list[TickerSnapshot] = []
    coverage = Counter()
    for item in items:
        snapshot, kind = compute_ticker_snapshot(item, bars_by_symbol.get(item.symbol, ()), target_date)
        coverage[kind] += 1
        snapshots.append(snapshot or _missing_snapshot(item))

    total = len(items)
    known = coverage["KNOWN"]
    ineligible = coverage["INELIGIBLE"]
    missing = coverage["MISSING"]
    eligible = total - missing
    eligible_mode = gate.denominator_mode == "eligible"
    denominator = eligible if eligible_mode else total
    counts = {
        "known_count": known,
        "unknown_count": ineligible if eligible_mode else total - known,
        "total_tickers": total,
    }
    mode_counts = {
        "eligible_count": eligible,
        "ineligible_count": ineligible,
        "missing_count": missing,
    }

    failure = _gate_failure(gate, eligible, known, denominator)
    if failure:
        logger.debug("Health for %s is UNKNOWN: %s", target_date, failure)
        point: HealthPoint = UnknownHealthPoint(
            date=target_date,
            regime_label="UNKNOWN",
            green_pct=0.0,
            yellow_pct=0.0,
            red_pct=0.0,
            pct_above_upper_band=0.0,
            median_distance_above_upper_band_pct=0.0,
            stretch200_median_pct=0.0,
            heat_score=0,
            **_no_diffusion(),
            **counts,
            **(mode_counts if eligible_mode else {}),
        )
        return HealthEvaluation(point=point, snapshots=tuple(snapshots))

    known_snapshots = [snapshot for snapshot in snapshots if snapshot.status != "UNKNOWN"]
    score = compute_health_score(snapshot.status for snapshot in known_snapshots)
    fields = {
        "date": target_date,
        **score.model_dump(),
        **compute_overextension(known_snapshots),
        **_no_diffusion(),
        **counts,
    }
    point = EligibleHealthPoint(**fields, **mode_counts) if eligible_mode else TotalHealthPoint(**fields)
    return HealthEvaluation(point=point, snapshots=tuple(snapshots))


def _gate_failure(gate: HealthGate, eligible: int, known: int, denominator: int) -> str | None:
    """Return the reason a validity gate fails, or None when all pass."""
    if gate.denominator_mode == "eligible":
        if eligible == 0:
            return "no eligible tickers"
        if eligible < gate.min_eligible_count:
            return f"{eligible} eligible < minimum {gate.min_eligible_count}"
    if denominator == 0:
        return "empty universe"
    known_pct = known / denominator
    if known_pct < gate.min_known_pct:
        return f"known {known_pct:.3f} < minimum {gate.min_known_pct}"
    return None


def _no_diffusion() -> dict[str, float | int]:
    return {"diffusion_pct": 0.0, "diffusion_count": 0, "diffusion_total_compared": 0}


def _missing_snapshot(item: UniverseItem) -> TickerSnapshot:
    """Placeholder for a ticker without any bar up to the date."""
    return TickerSnapshot(
        ticker=item.ticker,
        status="UNKNOWN",
        price=0.0,
        tags=item.tags,
        section=item.section,
        subtitle=item.subtitle,
        name=item.name,
    )
