from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime, timedelta
from operator import itemgetter
from pathlib import Path
from typing import Callable, Iterable, Mapping, Sequence

from trend100.config import ConfigError, Settings, load_settings
from trend100.domain.schemas import Bar, Universe, UniverseItem, UniverseSnapshot, dump_artifact
from trend100.domain.universes import (
    all_universe_ids,
    get_universe,
    provider_symbols,
    to_section_key,
    universe_sections,
)
from trend100.io.batch import ensure_history_batch
from trend100.io.providers import PriceProvider, create_provider
from trend100.io.reporting import (
    build_history_report,
    check_history_retention,
    summarize_cache,
    write_report,
)
from trend100.io.storage import (
    build_run_dir,
    history_path,
    load_cached_bars,
    load_history_counts,
    load_json_array,
    save_health_history,
    save_history_counts,
    save_snapshot,
    snapshot_path,
)
from trend100.logic.health import HealthGate, compute_health_score, evaluate_health
from trend100.logic.history import build_history_points, trading_dates
from trend100.logic.timeseries import merge_time_series
from trend100.logic.validation import sanitize_health_history, trim_health_history


logger = logging.getLogger(__name__)

COMMANDS = ("update", "history", "coverage", "verify")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

ProviderFactory = Callable[[str, Settings], PriceProvider]


@dataclass(frozen=True)
class HistoryUpdate:
    """Point counts before and after one history artifact update."""

    path: Path
    previous_count: int
    count: int
    added: int


def _parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse CLI arguments for pipeline commands."""
    parser = argparse.ArgumentParser(description="Trend100 health pipeline runner")
    subparsers = parser.add_subparsers(dest="command")
    for command, help_text in (
        ("update", "Refresh caches, write snapshots and append new history points."),
        ("history", "Rebuild health history over the history window from cached bars."),
        ("coverage", "Write cache and history statistics to the run directory."),
        ("verify", "Check history artifacts for data loss."),
    ):
        sub = subparsers.add_parser(command, help=help_text)
        sub.add_argument("universes", nargs="*", help="Universe ids (default: all)")
        sub.add_argument("--as-of", dest="as_of", help="Run date (YYYY-MM-DD), default today (UTC)")
        if command == "history":
            sub.add_argument(
                "--refresh",
                action="store_true",
                help="Refresh caches from the provider before rebuilding.",
            )
    if not argv:
        argv = ["update"]
    elif argv[0] not in COMMANDS and argv[0] not in {"-h", "--help"}:
        argv = ["update", *argv]
    return parser.parse_args(argv)


def initialize(settings: Settings) -> Path:
    """Create working directories and configure logging for a run.

    Args:
        settings (Settings): Resolved settings.

    Returns:
        Path: The timestamped run directory holding ``run.log``.
    """
    for directory in (settings.data_dir, settings.cache_dir, settings.public_dir, settings.results_dir):
        directory.mkdir(parents=True, exist_ok=True)
    run_dir = build_run_dir(settings.results_dir, datetime.now().strftime("%Y%m%d-%H%M%S"))
    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)

    file_handler = logging.FileHandler(run_dir / "run.log")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    logging.basicConfig(level=logging.DEBUG, handlers=[console_handler, file_handler], force=True)
    logger.info("Using data directory: %s", settings.data_dir)
    logger.info("Using public directory: %s", settings.public_dir)
    logger.info("Run output directory: %s", run_dir)
    return run_dir


def _select_universes(ids: Iterable[str]) -> list[Universe]:
    requested = [value.strip() for value in ids if value.strip()]
    return [get_universe(universe_id) for universe_id in requested or all_universe_ids()]


def refresh_caches(
    universes: Sequence[Universe],
    settings: Settings,
    today: date,
    provider_factory: ProviderFactory = create_provider,
) -> tuple[dict[str, list[Bar]], dict[str, str]]:
    """Refresh every provider symbol behind the universes, grouped by provider.

    Args:
        universes (Sequence[Universe]): Universes to cover.
        settings (Settings): Resolved settings.
        today (date): Run date.
        provider_factory (ProviderFactory): Builds a provider by name.

    Returns:
        tuple[dict[str, list[Bar]], dict[str, str]]: Bars by symbol and
        failures by symbol.
    """
    groups: dict[str, list[str]] = {}
    claimed: set[str] = set()
    for universe in universes:
        name = settings.provider_for(universe.id)
        for symbol in provider_symbols([universe]):
            if symbol not in claimed:
                claimed.add(symbol)
                groups.setdefault(name, []).append(symbol)
    bars_by_symbol: dict[str, list[Bar]] = {}
    failures: dict[str, str] = {}
    for name, symbols in groups.items():
        provider = provider_factory(name, settings)
        logger.info("Refreshing %d symbols via %s", len(symbols), name)
        result = ensure_history_batch(symbols, provider, settings, today)
        bars_by_symbol.update(result.bars_by_symbol)
        failures.update(result.failures)
    return bars_by_symbol, failures


def load_cached_universe_bars(universes: Sequence[Universe], settings: Settings) -> dict[str, list[Bar]]:
    """Load cached bars for every symbol behind the universes."""
    return {
        symbol: bars
        for symbol in provider_symbols(universes)
        if (bars := load_cached_bars(settings.cache_dir, symbol))
    }


def write_universe_snapshot(
    universe: Universe,
    bars_by_symbol: Mapping[str, Sequence[Bar]],
    settings: Settings,
    today: date,
) -> Path | None:
    """Write the latest ticker snapshot artifact for a universe."""
    dates = trading_dates(_universe_bars(universe.items, bars_by_symbol), "0001-01-01", today.isoformat())
    if not dates:
        logger.warning("No cached bars for %s; skipping snapshot", universe.id)
        return None
    as_of = dates[-1]
    evaluation = evaluate_health(universe.items, bars_by_symbol, as_of, settings.health_gate(universe.id))
    snapshot = UniverseSnapshot(
        as_of_date=as_of,
        universe_size=len(universe.items),
        tickers=evaluation.snapshots,
        health=compute_health_score(ticker.status for ticker in evaluation.snapshots),
    )
    path = save_snapshot(snapshot_path(settings.public_dir, universe.id), snapshot)
    logger.info(
        "Snapshot for %s as of %s: %.1f%% green (%s)",
        universe.id,
        as_of,
        snapshot.health.green_pct,
        snapshot.health.regime_label,
    )
    return path


def update_history_file(
    path: Path,
    items: Sequence[UniverseItem],
    bars_by_symbol: Mapping[str, Sequence[Bar]],
    gate: HealthGate,
    settings: Settings,
    today: date,
    rebuild: bool = False,
) -> HistoryUpdate:
    """Sanitize, extend and trim one health history artifact.

    Args:
        path (Path): History artifact path.
        items (Sequence[UniverseItem]): Roster covered by the artifact.
        bars_by_symbol (Mapping[str, Sequence[Bar]]): Cached bars by symbol.
        gate (HealthGate): Validity thresholds.
        settings (Settings): History window and retention.
        today (date): Run date.
        rebuild (bool): Recompute every date in the window, not only new ones.

    Returns:
        HistoryUpdate: Point counts before and after.
    """
    raw = load_json_array(path)
    existing = sanitize_health_history(raw).points
    universe_bars = _universe_bars(items, bars_by_symbol)
    observed = trading_dates(universe_bars, "0001-01-01", today.isoformat())
    window_start = (today - timedelta(days=settings.history_window_days)).isoformat()
    targets = [value for value in observed if value >= window_start]
    if existing and not rebuild:
        targets = [value for value in targets if value > existing[-1]["date"]]

    incoming = []
    if targets:
        earlier = [value for value in observed if value < targets[0]]
        evaluations = build_history_points(
            items,
            universe_bars,
            targets,
            gate,
            previous_date=earlier[-1] if earlier else None,
        )
        incoming = [dump_artifact(evaluation.point) for evaluation in evaluations]
    merged = merge_time_series(existing, incoming, itemgetter("date"))
    trimmed = trim_health_history(merged, settings.history_retention_days)
    if incoming or len(trimmed) != len(raw):
        save_health_history(path, trimmed)
    check = check_history_retention(path.name, len(trimmed), previous_count=len(raw))
    if not check.ok:
        logger.warning("Retention guard: %s", check.message)
    logger.info("%s: %d -> %d points (%d computed)", path.name, len(raw), len(trimmed), len(incoming))
    return HistoryUpdate(path=path, previous_count=len(raw), count=len(trimmed), added=len(incoming))


def update_universe_history(
    universe: Universe,
    bars_by_symbol: Mapping[str, Sequence[Bar]],
    settings: Settings,
    today: date,
    rebuild: bool = False,
) -> list[HistoryUpdate]:
    """Update the universe artifact and one artifact per section."""
    gate = settings.health_gate(universe.id)
    updates = [
        update_history_file(
            history_path(settings.public_dir, universe.id),
            universe.items,
            bars_by_symbol,
            gate,
            settings,
            today,
            rebuild,
        )
    ]
    for section in universe_sections(universe):
        items = [item for item in universe.items if item.section == section]
        # Sections can be smaller than the universe-wide eligible minimum.
        section_gate = replace(gate, min_eligible_count=min(gate.min_eligible_count, len(items)))
        updates.append(
            update_history_file(
                history_path(settings.public_dir, universe.id, to_section_key(section)),
                items,
                bars_by_symbol,
                section_gate,
                settings,
                today,
                rebuild,
            )
        )
    return updates


def run_update(
    universes: Sequence[Universe],
    settings: Settings,
    today: date,
    provider_factory: ProviderFactory = create_provider,
) -> int:
    """Refresh caches, then write snapshots and new history points."""
    bars_by_symbol, failures = refresh_caches(universes, settings, today, provider_factory)
    if failures:
        logger.warning("%d symbols failed to refresh; using cached data where available", len(failures))
    counts = load_history_counts(settings.data_dir)
    for universe in universes:
        write_universe_snapshot(universe, bars_by_symbol, settings, today)
        updates = update_universe_history(universe, bars_by_symbol, settings, today)
        counts[universe.id] = updates[0].count
    save_history_counts(settings.data_dir, counts)
    return 0


def run_history(
    universes: Sequence[Universe],
    settings: Settings,
    today: date,
    refresh: bool = False,
    provider_factory: ProviderFactory = create_provider,
) -> int:
    """Rebuild every history point in the window from cached bars."""
    if refresh:
        bars_by_symbol, _ = refresh_caches(universes, settings, today, provider_factory)
    else:
        bars_by_symbol = load_cached_universe_bars(universes, settings)
    counts = load_history_counts(settings.data_dir)
    for universe in universes:
        updates = update_universe_history(universe, bars_by_symbol, settings, today, rebuild=True)
        counts[universe.id] = updates[0].count
    save_history_counts(settings.data_dir, counts)
    return 0


def run_coverage(universes: Sequence[Universe], settings: Settings, run_dir: Path) -> int:
    """Write cache and history statistics as CSV reports."""
    cache_frame = summarize_cache(settings.cache_dir)
    write_report(cache_frame, run_dir / "cache_report.csv")
    histories = {
        universe.id: sanitize_health_history(load_json_array(history_path(settings.public_dir, universe.id))).points
        for universe in universes
    }
    history_frame = build_history_report(histories)
    write_report(history_frame, run_dir / "history_report.csv")
    logger.info("Cache: %d symbols, %d bars", len(cache_frame), int(cache_frame["bars"].sum()))
    for row in history_frame.itertuples(index=False):
        logger.info(
            "%s: %d points (%s to %s), %.1f%% zero points, first non-zero %s",
            row.universe,
            row.points,
            row.earliest,
            row.latest,
            row.zero_share_pct,
            row.first_non_zero_date,
        )
    return 0


def run_verify(universes: Sequence[Universe], settings: Settings, today: date) -> int:
    """Run the retention guard over every universe history artifact."""
    counts = load_history_counts(settings.data_dir)
    failures = 0
    for universe in universes:
        path = history_path(settings.public_dir, universe.id)
        if not path.exists():
            logger.info("No history file for %s (OK for new universes)", universe.id)
            continue
        raw = load_json_array(path)
        sanitized = sanitize_health_history(raw)
        latest = sanitized.points[-1]["date"] if sanitized.points else None
        check = check_history_retention(
            universe.id,
            len(raw),
            previous_count=counts.get(universe.id),
            latest_date=latest,
            today=today,
        )
        if sanitized.removed_weekend or sanitized.removed_partial:
            logger.warning(
                "%s has %d weekend and %d partial points",
                universe.id,
                sanitized.removed_weekend,
                sanitized.removed_partial,
            )
        if check.ok:
            logger.info("OK %s", check.message)
        else:
            failures += 1
            logger.error("FAIL %s", check.message)
    if failures:
        logger.error("History retention check failed for %d universes", failures)
        return 1
    logger.info("All history retention checks passed")
    return 0


def _universe_bars(
    items: Iterable[UniverseItem],
    bars_by_symbol: Mapping[str, Sequence[Bar]],
) -> dict[str, Sequence[Bar]]:
    return {item.symbol: bars_by_symbol.get(item.symbol, ()) for item in items}


def _resolve_today(value: str | None) -> date:
    return date.fromisoformat(value) if value else datetime.now(UTC).date()


def main(argv: list[str]) -> int:
    args = _parse_args(argv)
    try:
        settings = load_settings()
        universes = _select_universes(getattr(args, "universes", []))
        today = _resolve_today(getattr(args, "as_of", None))
    except (ConfigError, ValueError) as exc:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
        logger.error("Configuration error: %s", exc)
        return 2
    run_dir = initialize(settings)
    try:
        if args.command == "history":
            return run_history(universes, settings, today, refresh=args.refresh)
        if args.command == "coverage":
            return run_coverage(universes, settings, run_dir)
        if args.command == "verify":
            return run_verify(universes, settings, today)
        return run_update(universes, settings, today)
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        return 2


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
