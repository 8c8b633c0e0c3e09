from __future__ import annotations

"""Configuration loader for the application."""

import os
import tomllib
from pathlib import Path
from typing import Any, Mapping, Tuple

from pydantic import BaseModel, ConfigDict, Field

from trend100.logic.health import HealthGate

ROOT = Path(__file__).resolve().parents[1]

DEFAULT_CACHE_WINDOW_DAYS = 1200
DEFAULT_EXTENSION_BUFFER_DAYS = 10
DEFAULT_EXTEND_MAX_SYMBOLS = 10
DEFAULT_GAP_FETCH_LIMIT = 30
DEFAULT_BACKFILL_LIMIT = 1000
DEFAULT_LATEST_CHUNK_SIZE = 50
DEFAULT_LATEST_CHUNK_DELAY_SECONDS = 0.25
DEFAULT_HISTORY_WINDOW_DAYS = 365
DEFAULT_HISTORY_RETENTION_DAYS = 0
DEFAULT_MIN_KNOWN_PCT = 0.9
DEFAULT_REQUEST_TIMEOUT_SECONDS = 28.0
DEFAULT_PROVIDER = "marketstack"
PROVIDERS = ("marketstack", "stooq")

# MACRO mixes asset classes with uneven provider coverage.
MACRO_UNIVERSE_ID = "MACRO"
DEFAULT_MACRO_GATE = HealthGate(min_known_pct=0.7, min_eligible_count=10, denominator_mode="eligible")


class ConfigError(Exception):
    """Raised when configuration is missing or cannot be used."""


class Settings(BaseModel):
    """Resolved runtime settings passed explicitly to every component."""

    model_config = ConfigDict(frozen=True)

    data_dir: Path = ROOT / "data"
    public_dir: Path = ROOT / "public"
    results_dir: Path = ROOT / "results"

    cache_window_days: int = DEFAULT_CACHE_WINDOW_DAYS
    extension_buffer_days: int = DEFAULT_EXTENSION_BUFFER_DAYS
    extend_max_symbols_per_run: int = DEFAULT_EXTEND_MAX_SYMBOLS
    force_extend: bool = False
    gap_fetch_limit: int = DEFAULT_GAP_FETCH_LIMIT
    backfill_limit: int = DEFAULT_BACKFILL_LIMIT
    latest_chunk_size: int = DEFAULT_LATEST_CHUNK_SIZE
    latest_chunk_delay_seconds: float = DEFAULT_LATEST_CHUNK_DELAY_SECONDS

    history_window_days: int = DEFAULT_HISTORY_WINDOW_DAYS
    history_retention_days: int = DEFAULT_HISTORY_RETENTION_DAYS
    min_known_pct: float = DEFAULT_MIN_KNOWN_PCT

    provider_name: str = DEFAULT_PROVIDER
    marketstack_api_key: str | None = None
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    stooq_universes: Tuple[str, ...] = ()

    universe_gates: dict[str, HealthGate] = Field(default_factory=dict)

    @property
    def cache_dir(self) -> Path:
        return self.data_dir / "eod"

    def health_gate(self, universe_id: str) -> HealthGate:
        """Return the validity gate for a universe.

        Args:
            universe_id (str): Universe identifier.

        Returns:
            HealthGate: Per-universe override, or the global known threshold
            in total mode.
        """
        return self.universe_gates.get(
            universe_id.upper(), HealthGate(min_known_pct=self.min_known_pct)
        )

    def provider_for(self, universe_id: str) -> str:
        """Return the provider name used for a universe's symbols."""
        return "stooq" if universe_id.upper() in self.stooq_universes else self.provider_name


def load_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration from the repository root config file.

    Args:
        path (Path | None): Explicit config file; defaults to ``config.toml``
            at the repository root.

    Returns:
        dict[str, Any]: Parsed configuration values (empty when no file).
    """
    config_path = path or ROOT / "config.toml"
    if not config_path.exists():
        return {}
    try:
        return tomllib.loads(config_path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid config file {config_path}: {exc}") from exc


def load_settings(path: Path | None = None, env: Mapping[str, str] | None = None) -> Settings:
    """Build settings from ``config.toml`` plus environment overrides.

    Args:
        path (Path | None): Config file to read.
        env (Mapping[str, str] | None): Environment; defaults to ``os.environ``.

    Returns:
        Settings: Validated settings.
    """
    env = os.environ if env is None else env
    config = load_config(path)
    base = (path or ROOT / "config.toml").resolve().parent
    cache = _section(config, "cache")
    history = _section(config, "history")
    provider = _section(config, "provider")
    paths = _section(config, "paths")

    provider_name = str(env.get("DATA_PROVIDER") or provider.get("name") or DEFAULT_PROVIDER).lower()
    if provider_name not in PROVIDERS:
        raise ConfigError(f"Unknown data provider '{provider_name}'; expected one of {PROVIDERS}")

    min_known_pct = _clamp_pct(
        _coerce_float(
            env.get("TREND100_MIN_KNOWN_PCT", history.get("min_known_pct")),
            DEFAULT_MIN_KNOWN_PCT,
        )
    )
    return Settings(
        data_dir=_resolve_path(base, paths.get("data_dir"), "data"),
        public_dir=_resolve_path(base, paths.get("public_dir"), "public"),
        results_dir=_resolve_path(base, paths.get("results_dir"), "results"),
        cache_window_days=max(
            1,
            _coerce_int(
                env.get("TREND100_CACHE_WINDOW_DAYS", cache.get("cache_window_days")),
                DEFAULT_CACHE_WINDOW_DAYS,
            ),
        ),
        extension_buffer_days=max(
            0, _coerce_int(cache.get("extension_buffer_days"), DEFAULT_EXTENSION_BUFFER_DAYS)
        ),
        extend_max_symbols_per_run=max(
            0,
            _coerce_int(
                env.get("TREND100_EXTEND_MAX_SYMBOLS", cache.get("extend_max_symbols_per_run")),
                DEFAULT_EXTEND_MAX_SYMBOLS,
            ),
        ),
        force_extend=_coerce_bool(env.get("TREND100_FORCE_EXTEND", cache.get("force_extend")), False),
        gap_fetch_limit=max(1, _coerce_int(cache.get("gap_fetch_limit"), DEFAULT_GAP_FETCH_LIMIT)),
        backfill_limit=max(1, _coerce_int(cache.get("backfill_limit"), DEFAULT_BACKFILL_LIMIT)),
        latest_chunk_size=max(
            1, _coerce_int(cache.get("latest_chunk_size"), DEFAULT_LATEST_CHUNK_SIZE)
        ),
        latest_chunk_delay_seconds=max(
            0.0,
            _coerce_float(
                cache.get("latest_chunk_delay_seconds"), DEFAULT_LATEST_CHUNK_DELAY_SECONDS
            ),
        ),
        history_window_days=max(
            1,
            _coerce_int(
                env.get("TREND100_HISTORY_WINDOW_DAYS", history.get("history_window_days")),
                DEFAULT_HISTORY_WINDOW_DAYS,
            ),
        ),
        history_retention_days=max(
            0,
            _coerce_int(
                env.get("TREND100_HISTORY_RETENTION_DAYS", history.get("history_retention_days")),
                DEFAULT_HISTORY_RETENTION_DAYS,
            ),
        ),
        min_known_pct=min_known_pct,
        provider_name=provider_name,
        marketstack_api_key=env.get("MARKETSTACK_API_KEY") or None,
        request_timeout_seconds=max(
            1.0,
            _coerce_float(provider.get("request_timeout_seconds"), DEFAULT_REQUEST_TIMEOUT_SECONDS),
        ),
        stooq_universes=tuple(str(value).upper() for value in provider.get("stooq_universes", ())),
        universe_gates=_universe_gates(config, env, min_known_pct),
    )


def _universe_gates(
    config: Mapping[str, Any], env: Mapping[str, str], global_min_known_pct: float
) -> dict[str, HealthGate]:
    """Resolve per-universe validity gates, including MACRO defaults."""
    raw = _section(config, "universes")
    gates: dict[str, HealthGate] = {}
    for universe_id, values in raw.items():
        if not isinstance(values, Mapping):
            raise ConfigError(f"[universes.{universe_id}] must be a table")
        gates[universe_id.upper()] = _gate_from_table(
            universe_id, values, _base_gate(universe_id, global_min_known_pct)
        )

    macro = gates.get(MACRO_UNIVERSE_ID, DEFAULT_MACRO_GATE)
    gates[MACRO_UNIVERSE_ID] = HealthGate(
        min_known_pct=_clamp_pct(
            _coerce_float(env.get("TREND100_MACRO_MIN_KNOWN_PCT"), macro.min_known_pct)
        ),
        min_eligible_count=max(
            0, _coerce_int(env.get("TREND100_MACRO_MIN_ELIGIBLE"), macro.min_eligible_count)
        ),
        denominator_mode=macro.denominator_mode,
    )
    return gates


def _base_gate(universe_id: str, global_min_known_pct: float) -> HealthGate:
    if universe_id.upper() == MACRO_UNIVERSE_ID:
        return DEFAULT_MACRO_GATE
    return HealthGate(min_known_pct=global_min_known_pct)


def _gate_from_table(universe_id: str, values: Mapping[str, Any], base: HealthGate) -> HealthGate:
    mode = str(values.get("denominator_mode", base.denominator_mode)).lower()
    if mode not in ("total", "eligible"):
        raise ConfigError(
            f"[universes.{universe_id}] denominator_mode must be 'total' or 'eligible', got '{mode}'"
        )
    return HealthGate(
        min_known_pct=_clamp_pct(_coerce_float(values.get("min_known_pct"), base.min_known_pct)),
        min_eligible_count=max(
            0, _coerce_int(values.get("min_eligible_count"), base.min_eligible_count)
        ),
        denominator_mode=mode,
    )


def _section(config: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = config.get(name, {}) if isinstance(config, Mapping) else {}
    return value if isinstance(value, Mapping) else {}


def _resolve_path(base: Path, value: object, default: str) -> Path:
    path = Path(str(value)) if value else Path(default)
    return path if path.is_absolute() else base / path


def _clamp_pct(value: float) -> float:
    return min(max(value, 0.0), 1.0)


def _coerce_float(value: object, default: float) -> float:
    """Coerce a value to float with a default fallback.

    Args:
        value (object): Raw value to convert.
        default (float): Default to return on error.

    Returns:
        float: Parsed float or default.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return default
    return default


def _coerce_int(value: object, default: int) -> int:
    """Coerce a value to int with a default fallback."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return default
    return default


def _coerce_bool(value: object, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("1", "true", "yes", "on"):
            return True
        if text in ("0", "false", "no", "off", ""):
            return False
    return default
