from __future__ import annotations

"""Validation and sanitization of persisted health history entries."""

import logging
import math
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, Mapping

from trend100.logic.timeseries import merge_time_series, trim_time_series

logger = logging.getLogger(__name__)

REQUIRED_NUMERIC_FIELDS = (
    "greenPct",
    "yellowPct",
    "redPct",
    "pctAboveUpperBand",
    "medianDistanceAboveUpperBandPct",
    "stretch200MedianPct",
    "heatScore",
    "knownCount",
    "unknownCount",
    "totalTickers",
    "diffusionPct",
    "diffusionCount",
    "diffusionTotalCompared",
)


@dataclass(frozen=True)
class SanitizeResult:
    """Container for sanitized history and removal counts."""

    points: list[dict[str, Any]]
    removed_weekend: int
    removed_partial: int


def is_weekend(value: str) -> bool:
    """Return True when a YYYY-MM-DD date falls on Saturday or Sunday."""
    return date.fromisoformat(value).weekday() >= 5


def health_schema_warnings(point: Mapping[str, Any]) -> list[str]:
    """List the required fields a history entry is missing or has invalid.

    Args:
        point (Mapping[str, Any]): Raw JSON object from a history artifact.

    Returns:
        list[str]: Human-readable problems; empty when the entry is complete.
    """
    warnings = [
        *([] if _is_date_string(point.get("date")) else ["date missing or invalid"]),
        *([] if _is_non_empty_string(point.get("regimeLabel")) else ["regimeLabel missing"]),
    ]
    warnings.extend(
        f"{field} missing or not finite"
        for field in REQUIRED_NUMERIC_FIELDS
        if not _is_finite_number(point.get(field))
    )
    return warnings


def has_full_health_schema(point: Mapping[str, Any]) -> bool:
    """Return True when every required history field is present and valid."""
    return not health_schema_warnings(point)


def sanitize_health_history(history: Iterable[object]) -> SanitizeResult:
    """Drop weekend and partial-schema entries, then sort and dedupe by date.

    Args:
        history (Iterable[object]): Raw entries loaded from a history artifact.

    Returns:
        SanitizeResult: Entries sorted ascending with one entry per date (the
        last occurrence wins), plus removal counts.
    """
    removed_weekend = 0
    removed_partial = 0
    kept: list[dict[str, Any]] = []
    for point in history:
        if not isinstance(point, Mapping):
            removed_partial += 1
            continue
        point_date = point.get("date")
        if _is_date_string(point_date) and is_weekend(point_date):
            removed_weekend += 1
            continue
        if not has_full_health_schema(point):
            removed_partial += 1
            continue
        kept.append(dict(point))
    if removed_weekend or removed_partial:
        logger.info(
            "Sanitized health history: removed %d weekend and %d partial points",
            removed_weekend,
            removed_partial,
        )
    deduped = merge_time_series([], kept, _point_date)
    return SanitizeResult(
        points=deduped,
        removed_weekend=removed_weekend,
        removed_partial=removed_partial,
    )


def trim_health_history(points: list[Any], retention_days: int) -> list[Any]:
    """Apply the history retention window (``<= 0`` keeps all points)."""
    trimmed = trim_time_series(points, _point_date, retention_days)
    if len(trimmed) < len(points):
        logger.debug(
            "Trimmed %d health points older than %d days",
            len(points) - len(trimmed),
            retention_days,
        )
    return trimmed


def _point_date(point: Any) -> str:
    """Return the date of a raw mapping or a health point model."""
    if isinstance(point, Mapping):
        return str(point["date"])
    return str(point.date)


def _is_date_string(value: object) -> bool:
    if not isinstance(value, str) or not value:
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def _is_non_empty_string(value: object) -> bool:
    return isinstance(value, str) and bool(value)


def _is_finite_number(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)
