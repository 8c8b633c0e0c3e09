from __future__ import annotations

"""Upstream end-of-day price clients (network I/O happens here)."""

import io
import logging
import math
import time
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from typing import Any, Callable, Literal, Mapping, Protocol, Sequence

import pandas as pd
import requests  # type: ignore[import-untyped]

from trend100.config import ConfigError, Settings
from trend100.domain.schemas import Bar

logger = logging.getLogger(__name__)

FetchErrorCode = Literal["network", "not_found", "validation", "http_error"]

MAX_ATTEMPTS = 3
RETRY_DELAYS_SECONDS = (1.0, 2.0, 4.0)
USER_AGENT = "Trend100/1.0"
MARKETSTACK_BASE_URL = "https://api.marketstack.com/v1"
STOOQ_BASE_URL = "https://stooq.com/q/d/l/"
# Calendar days fetched per symbol when Stooq stands in for a latest-bar batch.
STOOQ_LATEST_LOOKBACK_DAYS = 10


@dataclass(frozen=True)
class PriceFetchResult:
    """Container for price series fetch results."""

    bars: list[Bar]
    error_code: FetchErrorCode | None = None
    message: str | None = None
    http_status: int | None = None

    @property
    def ok(self) -> bool:
        return self.error_code is None


@dataclass(frozen=True)
class LatestFetchResult:
    """Container for latest-bar batch results; absent symbols had no bar."""

    bars: dict[str, Bar] = field(default_factory=dict)
    error_code: FetchErrorCode | None = None
    message: str | None = None
    http_status: int | None = None

    @property
    def ok(self) -> bool:
        return self.error_code is None


class PriceProvider(Protocol):
    name: str

    def fetch_series(
        self,
        symbol: str,
        start_date: date,
        end_date: date | None = None,
        limit: int = 1000,
    ) -> PriceFetchResult: ...

    def fetch_latest_batch(
        self, symbols: Sequence[str], as_of: date | None = None
    ) -> LatestFetchResult: ...


class FetchError(Exception):
    """Raised internally when a request fails after retries."""

    def __init__(self, code: FetchErrorCode, message: str, http_status: int | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.http_status = http_status


def request_with_retry(
    url: str,
    params: Mapping[str, str],
    timeout: float,
    sleep: Callable[[float], None] = time.sleep,
) -> requests.Response:
    """GET a URL, retrying rate limits, server errors and network failures.

    Args:
        url (str): Endpoint URL.
        params (Mapping[str, str]): Query parameters.
        timeout (float): Per-attempt timeout in seconds.
        sleep (Callable[[float], None]): Delay function between attempts.

    Returns:
        requests.Response: The successful response.

    Raises:
        FetchError: On a non-retryable status or once attempts are exhausted.
    """
    for attempt in range(MAX_ATTEMPTS):
        last_attempt = attempt == MAX_ATTEMPTS - 1
        try:
            response = requests.get(
                url,
                params=dict(params),
                headers={"User-Agent": USER_AGENT},
                timeout=timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            if last_attempt:
                raise FetchError("network", f"Request failed after {MAX_ATTEMPTS} attempts: {exc}") from exc
            delay = RETRY_DELAYS_SECONDS[attempt]
            logger.warning("Request to %s failed (%s); retrying in %.0fs", url, exc, delay)
            sleep(delay)
            continue
        except requests.RequestException as exc:
            raise FetchError("network", str(exc)) from exc

        status = response.status_code
        if status == 429 or status >= 500:
            if last_attempt:
                raise FetchError(
                    "http_error",
                    f"HTTP {status} after {MAX_ATTEMPTS} attempts",
                    http_status=status,
                )
            delay = _retry_after(response, RETRY_DELAYS_SECONDS[attempt])
            logger.warning("HTTP %d from %s; retrying in %.0fs", status, url, delay)
            sleep(delay)
            continue
        if status == 404:
            raise FetchError("not_found", f"HTTP 404 for {url}", http_status=status)
        if status >= 400:
            raise FetchError("http_error", f"HTTP {status} {response.reason}", http_status=status)
        return response
    raise FetchError("network", "Request retries exhausted")


class MarketstackProvider:
    """Marketstack EOD client using adjusted closes when present."""

    name = "marketstack"

    def __init__(
        self,
        api_key: str | None,
        timeout: float = 28.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not api_key:
            raise ConfigError("MARKETSTACK_API_KEY is not set")
        self._api_key = api_key
        self._timeout = timeout
        self._sleep = sleep

    def fetch_series(
        self,
        symbol: str,
        start_date: date,
        end_date: date | None = None,
        limit: int = 1000,
    ) -> PriceFetchResult:
        """Fetch daily bars for a symbol between two dates.

        Args:
            symbol (str): Provider symbol.
            start_date (date): First date requested.
            end_date (date | None): Last date requested; open-ended when None.
            limit (int): Maximum number of bars.

        Returns:
            PriceFetchResult: Bars sorted ascending, or error details.
        """
        params = {
            "access_key": self._api_key,
            "symbols": symbol,
            "limit": str(limit),
            "date_from": start_date.isoformat(),
        }
        if end_date is not None:
            params["date_to"] = end_date.isoformat()
        try:
            rows = self._get_rows(f"{MARKETSTACK_BASE_URL}/eod", params)
        except FetchError as exc:
            return PriceFetchResult(bars=[], error_code=exc.code, message=str(exc), http_status=exc.http_status)
        bars = sorted(
            (bar for bar in (_marketstack_bar(row) for row in rows) if bar is not None),
            key=lambda bar: bar.date,
        )
        logger.debug("Marketstack returned %d bars for %s", len(bars), symbol)
        return PriceFetchResult(bars=bars)

    def fetch_latest_batch(
        self, symbols: Sequence[str], as_of: date | None = None
    ) -> LatestFetchResult:
        """Fetch the latest bar for several symbols in one request.

        The endpoint has no date parameter; callers drop bars newer than
        ``as_of``.
        """
        if not symbols:
            return LatestFetchResult()
        params = {
            "access_key": self._api_key,
            "symbols": ",".join(symbols),
            "limit": str(len(symbols)),
        }
        try:
            rows = self._get_rows(f"{MARKETSTACK_BASE_URL}/eod/latest", params)
        except FetchError as exc:
            return LatestFetchResult(error_code=exc.code, message=str(exc), http_status=exc.http_status)
        latest: dict[str, Bar] = {}
        for row in rows:
            bar = _marketstack_bar(row)
            symbol = row.get("symbol") if isinstance(row, Mapping) else None
            if bar is not None and isinstance(symbol, str):
                latest[symbol] = bar
        return LatestFetchResult(bars=latest)

    def _get_rows(self, url: str, params: Mapping[str, str]) -> list[Any]:
        response = request_with_retry(url, params, self._timeout, self._sleep)
        try:
            payload = response.json()
        except ValueError as exc:
            raise FetchError("validation", f"Failed to decode JSON: {exc}") from exc
        if isinstance(payload, dict) and "error" in payload:
            raise FetchError("validation", f"Marketstack error payload: {payload['error']}")
        rows = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(rows, list):
            raise FetchError("validation", "Invalid Marketstack response format")
        return rows


class StooqProvider:
    """Stooq CSV client; US tickers map to ``<ticker>.us``."""

    name = "stooq"

    def __init__(
        self,
        timeout: float = 28.0,
        sleep: Callable[[float], None] = time.sleep,
        today: Callable[[], date] | None = None,
    ) -> None:
        self._timeout = timeout
        self._sleep = sleep
        self._today = today or (lambda: datetime.now(UTC).date())

    def fetch_series(
        self,
        symbol: str,
        start_date: date,
        end_date: date | None = None,
        limit: int = 1000,
    ) -> PriceFetchResult:
        """Download a daily CSV for a symbol and parse it with pandas."""
        stooq_symbol = to_stooq_symbol(symbol)
        params = {
            "s": stooq_symbol,
            "d1": start_date.strftime("%Y%m%d"),
            "d2": (end_date or self._today()).strftime("%Y%m%d"),
            "i": "d",
        }
        try:
            response = request_with_retry(STOOQ_BASE_URL, params, self._timeout, self._sleep)
            bars = parse_stooq_csv(response.text)
        except FetchError as exc:
            return PriceFetchResult(bars=[], error_code=exc.code, message=f"{symbol} ({stooq_symbol}): {exc}", http_status=exc.http_status)
        if limit > 0:
            bars = bars[-limit:]
        logger.debug("Stooq returned %d bars for %s", len(bars), symbol)
        return PriceFetchResult(bars=bars)

    def fetch_latest_batch(
        self, symbols: Sequence[str], as_of: date | None = None
    ) -> LatestFetchResult:
        """Emulate a latest-bar batch with short downloads ending at ``as_of``."""
        end = as_of or self._today()
        start = end - timedelta(days=STOOQ_LATEST_LOOKBACK_DAYS)
        latest: dict[str, Bar] = {}
        last_error: PriceFetchResult | None = None
        for symbol in symbols:
            result = self.fetch_series(symbol, start, end)
            if result.bars:
                latest[symbol] = result.bars[-1]
            elif not result.ok:
                logger.debug("No latest Stooq bar for %s: %s", symbol, result.message)
                last_error = result
        if not latest and last_error is not None and last_error.error_code != "not_found":
            return LatestFetchResult(
                error_code=last_error.error_code,
                message=last_error.message,
                http_status=last_error.http_status,
            )
        return LatestFetchResult(bars=latest)


def create_provider(name: str, settings: Settings) -> PriceProvider:
    """Build the named provider from settings (raises ConfigError)."""
    if name == "marketstack":
        return MarketstackProvider(settings.marketstack_api_key, timeout=settings.request_timeout_seconds)
    if name == "stooq":
        return StooqProvider(timeout=settings.request_timeout_seconds)
    raise ConfigError(f"Unknown data provider '{name}'")


def to_stooq_symbol(symbol: str) -> str:
    """Map a provider symbol to Stooq's form, e.g. ``BRK_B`` to ``brk.b.us``."""
    return f"{symbol.strip().lower().replace('_', '.')}.us"


def parse_stooq_csv(text: str) -> list[Bar]:
    """Parse a Stooq daily CSV into bars sorted ascending.

    Args:
        text (str): Raw CSV body.

    Returns:
        list[Bar]: Bars with finite closes.

    Raises:
        FetchError: ``not_found`` for "No data" bodies, ``validation`` when
            the Date or Close column is missing.
    """
    trimmed = text.strip()
    if not trimmed or "no data" in trimmed.lower():
        raise FetchError("not_found", "Stooq returned no data")
    try:
        frame = pd.read_csv(io.StringIO(trimmed))
    except (ValueError, pd.errors.ParserError) as exc:
        raise FetchError("validation", f"Unreadable Stooq CSV: {exc}") from exc
    frame.columns = [str(column).strip().lower() for column in frame.columns]
    if "date" not in frame.columns or "close" not in frame.columns:
        raise FetchError("validation", f"Stooq CSV missing Date or Close column: {list(frame.columns)}")
    frame = frame.assign(close=pd.to_numeric(frame["close"], errors="coerce")).dropna(subset=["date", "close"])
    bars = [
        Bar(date=str(row_date), close=float(close))
        for row_date, close in zip(frame["date"], frame["close"])
        if math.isfinite(close)
    ]
    return sorted(bars, key=lambda bar: bar.date)


def _marketstack_bar(row: object) -> Bar | None:
    """Convert a Marketstack row, preferring ``adjusted_close``."""
    if not isinstance(row, Mapping):
        return None
    raw_close = row.get("adjusted_close")
    if raw_close is None:
        raw_close = row.get("close")
    try:
        close = float(raw_close)
        bar_date = str(row["date"])
    except (KeyError, TypeError, ValueError):
        return None
    if not math.isfinite(close):
        return None
    try:
        return Bar(date=bar_date, close=close)
    except ValueError:
        return None


def _retry_after(response: requests.Response, default: float) -> float:
    """Read a Retry-After header in seconds, capped at the longest backoff delay."""
    value = response.headers.get("Retry-After")
    if value is None:
        return default
    try:
        return min(max(float(value), 0.0), RETRY_DELAYS_SECONDS[-1])
    except ValueError:
        return default
