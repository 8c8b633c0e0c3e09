from __future__ import annotations

from datetime import date, timedelta
from pathlib import Path
import sys
from typing import Any, Callable, Sequence

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

import main  # noqa: E402
from trend100.config import Settings  # noqa: E402
from trend100.domain.schemas import Bar  # noqa: E402
from trend100.io.providers import LatestFetchResult, PriceFetchResult  # noqa: E402


def weekdays_ending(end: date, count: int) -> list[date]:
    """Return ``count`` weekdays ending on (or before) ``end``, ascending."""
    days: list[date] = []
    current = end
    while len(days) < count:
        if current.weekday() < 5:
            days.append(current)
        current -= timedelta(days=1)
    return days[::-1]


class FakeProvider:
    """In-memory price provider recording every call."""

    name = "fake"

    def __init__(self, series: dict[str, list[Bar]] | None = None) -> None:
        self.series: dict[str, list[Bar]] = dict(series or {})
        self.series_errors: dict[str, str] = {}
        self.latest_error: str | None = None
        self.latest_missing: set[str] = set()
        self.series_calls: list[dict[str, Any]] = []
        self.latest_calls: list[list[str]] = []
        self.latest_as_of: list[date | None] = []

    def fetch_series(
        self,
        symbol: str,
        start_date: date,
        end_date: date | None = None,
        limit: int = 1000,
    ) -> PriceFetchResult:
        self.series_calls.append(
            {"symbol": symbol, "start": start_date, "end": end_date, "limit": limit}
        )
        if symbol in self.series_errors:
            return PriceFetchResult(bars=[], error_code=self.series_errors[symbol], message="boom")  # type: ignore[arg-type]
        end = (end_date or date.max).isoformat()
        bars = [
            bar
            for bar in self.series.get(symbol, [])
            if start_date.isoformat() <= bar.date <= end
        ]
        return PriceFetchResult(bars=bars[-limit:])

    def fetch_latest_batch(self, symbols: Sequence[str], as_of: date | None = None) -> LatestFetchResult:
        self.latest_calls.append(list(symbols))
        self.latest_as_of.append(as_of)
        if self.latest_error is not None:
            return LatestFetchResult(error_code=self.latest_error, message="latest boom")  # type: ignore[arg-type]
        return LatestFetchResult(
            bars={
                symbol: self.series[symbol][-1]
                for symbol in symbols
                if self.series.get(symbol) and symbol not in self.latest_missing
            }
        )


@pytest.fixture
def today() -> date:
    """A Friday used as the run date."""
    return date(2024, 6, 28)


@pytest.fixture
def make_bars() -> Callable[..., list[Bar]]:
    """Build weekday bars ending at a date with a linear price path."""

    def _make(end: date, count: int, start: float = 100.0, step: float = 0.5) -> list[Bar]:
        return [
            Bar(date=day.isoformat(), close=start + step * index)
            for index, day in enumerate(weekdays_ending(end, count))
        ]

    return _make


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def settings_factory(tmp_path: Path) -> Callable[..., Settings]:
    """Build settings rooted in a temporary directory."""

    def _make(**overrides: Any) -> Settings:
        values: dict[str, Any] = {
            "data_dir": tmp_path / "data",
            "public_dir": tmp_path / "public",
            "results_dir": tmp_path / "results",
            "latest_chunk_delay_seconds": 0.0,
        }
        values.update(overrides)
        return Settings(**values)

    return _make
