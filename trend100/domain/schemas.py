from __future__ import annotations

from datetime import date as calendar_date
from typing import Annotated, Any, Literal, Mapping, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

TrendStatus = Literal["GREEN", "YELLOW", "RED", "UNKNOWN"]
RegimeLabel = Literal["RISK_ON", "TRANSITION", "RISK_OFF"]
DenominatorMode = Literal["total", "eligible"]
Coverage = Literal["KNOWN", "INELIGIBLE", "MISSING"]

# Artifacts are read by the dashboard, which expects camelCase keys.
ARTIFACT_CONFIG = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class Bar(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: str
    close: float

    @field_validator("date", mode="before")
    @classmethod
    def _normalize_date(cls, value: object) -> str:
        """Reduce provider timestamps to a YYYY-MM-DD string.

        Args:
            value (object): Raw date value (string, date or datetime).

        Returns:
            str: ISO calendar date.
        """
        if isinstance(value, calendar_date):
            return value.isoformat()[:10]
        text = str(value).strip()[:10]
        calendar_date.fromisoformat(text)
        return text


class CacheMetadata(BaseModel):
    model_config = ARTIFACT_CONFIG

    symbol: str
    inception_limited: bool
    oldest_cached_date: str
    checked_at: str


class UniverseItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    ticker: str
    provider_symbol: str | None = None
    tags: Tuple[str, ...] = ()
    section: str | None = None
    subtitle: str | None = None
    name: str | None = None

    @property
    def symbol(self) -> str:
        """Return the upstream provider symbol, defaulting to the ticker."""
        return self.provider_symbol or self.ticker


class Universe(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    items: Tuple[UniverseItem, ...]


class TickerSnapshot(BaseModel):
    model_config = ARTIFACT_CONFIG

    ticker: str
    status: TrendStatus
    price: float
    change_pct: float | None = None
    sma200: float | None = None
    sma50w: float | None = Field(default=None, alias="sma50w")
    ema50w: float | None = Field(default=None, alias="ema50w")
    distance_to_200d_pct: float | None = Field(default=None, alias="distanceTo200dPct")
    distance_to_upper_band_pct: float | None = None
    tags: Tuple[str, ...] = ()
    section: str | None = None
    subtitle: str | None = None
    name: str | None = None


class HealthScore(BaseModel):
    model_config = ARTIFACT_CONFIG

    green_pct: float
    yellow_pct: float
    red_pct: float
    regime_label: RegimeLabel


class HealthPointBase(BaseModel):
    model_config = ARTIFACT_CONFIG

    date: str
    green_pct: float
    yellow_pct: float
    red_pct: float
    known_count: int
    unknown_count: int
    total_tickers: int
    diffusion_pct: float
    diffusion_count: int
    diffusion_total_compared: int
    pct_above_upper_band: float
    median_distance_above_upper_band_pct: float
    stretch200_median_pct: float = Field(alias="stretch200MedianPct")
    heat_score: int


class UnknownHealthPoint(HealthPointBase):
    """A date whose population coverage failed a validity gate."""

    regime_label: Literal["UNKNOWN"]
    eligible_count: int | None = None
    ineligible_count: int | None = None
    missing_count: int | None = None


class EligibleHealthPoint(HealthPointBase):
    """A valid point computed against tickers that have any data."""

    regime_label: RegimeLabel
    eligible_count: int
    ineligible_count: int
    missing_count: int


class TotalHealthPoint(HealthPointBase):
    """A valid point computed against the whole roster."""

    regime_label: RegimeLabel


HealthPoint = Union[UnknownHealthPoint, EligibleHealthPoint, TotalHealthPoint]

_HEALTH_POINT_ADAPTER: TypeAdapter[HealthPoint] = TypeAdapter(
    Annotated[HealthPoint, Field(union_mode="left_to_right")]
)


class UniverseSnapshot(BaseModel):
    model_config = ARTIFACT_CONFIG

    as_of_date: str
    universe_size: int
    tickers: Tuple[TickerSnapshot, ...]
    health: HealthScore


def parse_health_point(payload: Mapping[str, Any]) -> HealthPoint:
    """Validate a persisted health history entry into its variant.

    Args:
        payload (Mapping[str, Any]): Raw JSON object from a history artifact.

    Returns:
        HealthPoint: Unknown, eligible-mode or total-mode point.
    """
    return _HEALTH_POINT_ADAPTER.validate_python(dict(payload))


def dump_artifact(model: BaseModel) -> dict[str, Any]:
    """Serialize an artifact model with camelCase keys and no empty fields."""
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)
