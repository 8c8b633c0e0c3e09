from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Mapping, Sequence

import pandas as pd


MAX_SHRINKAGE_PCT = 20.0
MIN_POINTS_THRESHOLD = 30
HISTORY_REPORT_COLUMNS = (
    "universe",
    "points",
    "earliest",
    "latest",
    "unknown_points",
    "zero_share_pct",
    "first_non_zero_date",
)
CACHE_REPORT_COLUMNS = ("symbol", "bars", "first_date", "last_date", "inception_limited")


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetentionCheck:
    """Outcome of the history retention guard for one artifact."""

    ok: bool
    message: str


def summarize_health_history(points: Sequence[Mapping[str, Any]]) -> dict[str, Any]:
    """Summarize a health history artifact.

    Args:
        points (Sequence[Mapping[str, Any]]): History entries sorted by date.

    Returns:
        dict[str, Any]: Point count, date range, UNKNOWN count, share of
        all-zero points and the first date with a non-zero reading.
    """
    if not points:
        return {
            "points": 0,
            "earliest": None,
            "latest": None,
            "unknown_points": 0,
            "zero_share_pct": 0.0,
            "first_non_zero_date": None,
        }
    frame = pd.DataFrame(list(points))
    pct_columns = [column for column in ("greenPct", "yellowPct", "redPct") if column in frame]
    values = frame[pct_columns].apply(pd.to_numeric, errors="coerce").fillna(0.0)
    zero_mask = (values == 0).all(axis=1)
    non_zero_dates = frame.loc[~zero_mask, "date"]
    regime = frame["regimeLabel"] if "regimeLabel" in frame else pd.Series(dtype=object)
    return {
        "points": int(len(frame)),
        "earliest": str(frame["date"].min()),
        "latest": str(frame["date"].max()),
        "unknown_points": int((regime == "UNKNOWN").sum()),
        "zero_share_pct": round(float(zero_mask.mean()) * 100, 1),
        "first_non_zero_date": str(non_zero_dates.min()) if not non_zero_dates.empty else None,
    }


def summarize_cache(cache_dir: Path) -> pd.DataFrame:
    """Tabulate every cached symbol with its bar count and date range.

    Args:
        cache_dir (Path): Directory holding per-symbol cache files.

    Returns:
        pd.DataFrame: One row per readable cache file.
    """
    rows = []
    for path in sorted(cache_dir.glob("*.json")):
        if path.name.endswith(".meta.json"):
            continue
        try:
            bars = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Skipping unreadable cache file %s: %s", path, exc)
            continue
        if not isinstance(bars, list):
            continue
        dates = sorted(str(bar.get("date")) for bar in bars if isinstance(bar, dict))
        meta_path = path.with_name(f"{path.stem}.meta.json")
        inception_limited = False
        if meta_path.exists():
            try:
                inception_limited = bool(
                    json.loads(meta_path.read_text(encoding="utf-8")).get("inceptionLimited")
                )
            except (OSError, ValueError, AttributeError):
                inception_limited = False
        rows.append(
            {
                "symbol": path.stem,
                "bars": len(dates),
                "first_date": dates[0] if dates else None,
                "last_date": dates[-1] if dates else None,
                "inception_limited": inception_limited,
            }
        )
    return pd.DataFrame(rows, columns=list(CACHE_REPORT_COLUMNS))


def build_history_report(histories: Mapping[str, Sequence[Mapping[str, Any]]]) -> pd.DataFrame:
    """Build a per-universe history summary table."""
    rows = [
        {"universe": universe_id, **summarize_health_history(points)}
        for universe_id, points in histories.items()
    ]
    return pd.DataFrame(rows, columns=list(HISTORY_REPORT_COLUMNS))


def write_report(frame: pd.DataFrame, output_path: Path) -> Path:
    """Write a report DataFrame to CSV.

    Args:
        frame (pd.DataFrame): Report rows.
        output_path (Path): Destination path.

    Returns:
        Path: The written file.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(output_path, index=False)
    logger.debug("Wrote %d report rows to %s", len(frame), output_path)
    return output_path


def check_history_retention(
    universe_id: str,
    current_count: int,
    previous_count: int | None = None,
    latest_date: str | None = None,
    today: date | None = None,
) -> RetentionCheck:
    """Flag history artifacts that lost points or stopped growing.

    Args:
        universe_id (str): Universe identifier, for messages.
        current_count (int): Points in the artifact now.
        previous_count (int | None): Points recorded by the previous run.
        latest_date (str | None): Latest point date in the artifact.
        today (date | None): Run date for the staleness check.

    Returns:
        RetentionCheck: Fails on more than 20% shrinkage, or on fewer than 30
        points when the latest point is over 30 days old.
    """
    if latest_date and today is not None and current_count < MIN_POINTS_THRESHOLD:
        days_since = (today - date.fromisoformat(latest_date)).days
        if days_since > MIN_POINTS_THRESHOLD:
            return RetentionCheck(
                ok=False,
                message=(
                    f"{universe_id}: only {current_count} points, latest {days_since} days ago "
                    f"(minimum {MIN_POINTS_THRESHOLD})"
                ),
            )
    if previous_count:
        shrinkage = (previous_count - current_count) / previous_count * 100
        if shrinkage > MAX_SHRINKAGE_PCT:
            return RetentionCheck(
                ok=False,
                message=(
                    f"{universe_id}: history shrank from {previous_count} to {current_count} points "
                    f"({shrinkage:.1f}% loss, max allowed {MAX_SHRINKAGE_PCT:.0f}%)"
                ),
            )
    return RetentionCheck(ok=True, message=f"{universe_id}: {current_count} points")
