from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

from pydantic import TypeAdapter, ValidationError

from trend100.domain.schemas import Bar, CacheMetadata, UniverseSnapshot, dump_artifact
from trend100.logic.timeseries import merge_time_series, trim_time_series


logger = logging.getLogger(__name__)

_BARS_ADAPTER = TypeAdapter(list[Bar])
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")
HISTORY_COUNTS_FILE = "history-counts.json"


def bar_date(bar: Bar) -> str:
    return bar.date


def load_cached_bars(cache_dir: Path, symbol: str) -> list[Bar]:
    """Load a symbol's cached bars, treating unreadable files as no cache.

    Args:
        cache_dir (Path): Directory holding per-symbol cache files.
        symbol (str): Provider symbol.

    Returns:
        list[Bar]: Bars sorted ascending; empty when the file is missing,
        unparseable or not a JSON array of bars.
    """
    path = cache_path(cache_dir, symbol)
    # No data on disk: treat as a cache miss.
    if not path.exists():
        logger.debug("No cached bars for %s", symbol)
        return []
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable cache for %s: %s", symbol, exc)
        return []
    if not isinstance(payload, list):
        logger.warning("Ignoring cache for %s: expected a JSON array", symbol)
        return []
    try:
        bars = _BARS_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        logger.warning("Ignoring malformed cache for %s: %d invalid entries", symbol, exc.error_count())
        return []
    return merge_time_series([], bars, bar_date)


def save_cached_bars(
    cache_dir: Path,
    symbol: str,
    bars: Iterable[Bar],
    retention_days: int,
) -> list[Bar]:
    """Sort, dedupe, trim and atomically persist a symbol's bars.

    Args:
        cache_dir (Path): Directory holding per-symbol cache files.
        symbol (str): Provider symbol.
        bars (Iterable[Bar]): Bars to persist.
        retention_days (int): Calendar-day retention window (``<= 0`` keeps all).

    Returns:
        list[Bar]: The bars as written.
    """
    ordered = trim_time_series(merge_time_series([], bars, bar_date), bar_date, retention_days)
    payload = [bar.model_dump(mode="json") for bar in ordered]
    path = cache_path(cache_dir, symbol)
    write_json_atomic(path, payload)
    logger.debug("Saved %d bars for %s to %s", len(ordered), symbol, path)
    return ordered


def load_cache_metadata(cache_dir: Path, symbol: str) -> Optional[CacheMetadata]:
    """Load a symbol's cache metadata, returning None when missing or invalid."""
    path = metadata_path(cache_dir, symbol)
    if not path.exists():
        return None
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
        return CacheMetadata.model_validate(payload)
    except (OSError, ValueError) as exc:
        # pydantic's ValidationError is a ValueError.
        logger.warning("Ignoring unreadable cache metadata for %s: %s", symbol, exc)
        return None


def save_cache_metadata(cache_dir: Path, metadata: CacheMetadata) -> Path:
    path = metadata_path(cache_dir, metadata.symbol)
    write_json_atomic(path, dump_artifact(metadata))
    logger.debug("Saved cache metadata to %s", path)
    return path


def load_json_array(path: Path) -> list[Any]:
    """Load a JSON array artifact; missing or invalid files yield []."""
    if not path.exists():
        return []
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable artifact %s: %s", path, exc)
        return []
    if not isinstance(payload, list):
        logger.warning("Ignoring artifact %s: expected a JSON array", path)
        return []
    return payload


def save_health_history(path: Path, points: Sequence[dict[str, Any]]) -> Path:
    """Persist a health history artifact sorted by date."""
    ordered = sorted(points, key=lambda point: point["date"])
    write_json_atomic(path, ordered)
    logger.debug("Saved %d health points to %s", len(ordered), path)
    return path


def save_snapshot(path: Path, snapshot: UniverseSnapshot) -> Path:
    write_json_atomic(path, dump_artifact(snapshot))
    logger.debug("Saved snapshot to %s", path)
    return path


def load_history_counts(data_dir: Path) -> dict[str, int]:
    """Load the point counts recorded by the last history update."""
    path = data_dir / HISTORY_COUNTS_FILE
    if not path.exists():
        return {}
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable history counts %s: %s", path, exc)
        return {}
    if not isinstance(payload, dict):
        return {}
    return {str(key): value for key, value in payload.items() if isinstance(value, int)}


def save_history_counts(data_dir: Path, counts: dict[str, int]) -> Path:
    path = data_dir / HISTORY_COUNTS_FILE
    write_json_atomic(path, counts)
    return path


def history_path(public_dir: Path, universe_id: str, section_key: str | None = None) -> Path:
    """Return the history artifact path for a universe or one of its sections."""
    suffix = f".{section_key}" if section_key else ""
    return public_dir / f"health-history.{universe_id}{suffix}.json"


def snapshot_path(public_dir: Path, universe_id: str) -> Path:
    return public_dir / f"snapshot.{universe_id}.json"


def cache_path(cache_dir: Path, symbol: str) -> Path:
    return cache_dir / f"{safe_symbol(symbol)}.json"


def metadata_path(cache_dir: Path, symbol: str) -> Path:
    return cache_dir / f"{safe_symbol(symbol)}.meta.json"


def safe_symbol(symbol: str) -> str:
    """Normalize a provider symbol into a filename stem.

    Args:
        symbol (str): Raw provider symbol such as ``BRK.B``.

    Returns:
        str: Symbol with ``.`` and other unsafe characters replaced by ``_``.
    """
    return _UNSAFE_CHARS.sub("_", symbol.strip().replace(".", "_"))


def build_run_dir(results_dir: Path, run_id: str) -> Path:
    """Create a timestamped directory for a run's logs and reports.

    Args:
        results_dir (Path): Root results directory.
        run_id (str): Timestamp identifier for the run.

    Returns:
        Path: Directory path for this run.
    """
    run_dir = results_dir / run_id
    run_dir.mkdir(parents=True, exist_ok=True)
    return run_dir


def write_json_atomic(path: Path, payload: object) -> None:
    """Write JSON through a temporary file then rename over the target."""
    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(payload, indent=2, sort_keys=True) + "\n"
    with tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False
    ) as handle:
        handle.write(text)
        tmp_name = handle.name
    try:
        os.replace(tmp_name, path)
    except OSError:
        Path(tmp_name).unlink(missing_ok=True)
        raise
