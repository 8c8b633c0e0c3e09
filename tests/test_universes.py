from __future__ import annotations

"""Tests for the universe registry and section keys."""

import pytest

from trend100.domain.schemas import Universe, UniverseItem
from trend100.domain.universes import (
    UNIVERSES,
    all_universe_ids,
    get_universe,
    provider_symbols,
    to_section_key,
    universe_sections,
    validate_universe,
)


@pytest.mark.parametrize(
    ("label", "expected"),
    [
        ("Quality/LowVol", "quality-lowvol"),
        ("Global ex-US", "global-ex-us"),
        ("Loans/BDC", "loans-bdc"),
        ("EM Debt", "em-debt"),
        ("Commodities/Resources", "commodities-resources"),
        ("S&P 500", "sandp-500"),
        ("  Rates  ", "rates"),
        ("", "all"),
        ("///", "all"),
    ],
)
def test_to_section_key(label: str, expected: str) -> None:
    assert to_section_key(label) == expected


def test_registry_universes_are_valid() -> None:
    assert all_universe_ids() == ["US_SECTORS", "US_FACTORS", "GLOBAL_EQUITIES", "FIXED_INCOME", "MACRO"]
    for universe in UNIVERSES.values():
        assert universe.items
        assert all(item.section for item in universe.items)


def test_validate_universe_rejects_empty_and_duplicates() -> None:
    with pytest.raises(ValueError, match="no tickers"):
        validate_universe(Universe(id="EMPTY", label="Empty", items=()))

    duplicate = Universe(
        id="DUP",
        label="Dup",
        items=(UniverseItem(ticker="AAA"), UniverseItem(ticker="BBB"), UniverseItem(ticker="AAA")),
    )
    with pytest.raises(ValueError, match="duplicate tickers: AAA"):
        validate_universe(duplicate)


def test_get_universe_is_case_insensitive() -> None:
    assert get_universe("macro").id == "MACRO"

    with pytest.raises(ValueError, match="Unknown universe"):
        get_universe("NOPE")


def test_macro_crypto_uses_proxy_symbols() -> None:
    macro = get_universe("MACRO")
    bitcoin = next(item for item in macro.items if item.ticker == "Bitcoin")

    assert bitcoin.symbol == "FBTC"
    assert "FBTC" in provider_symbols([macro])
    assert "Bitcoin" not in provider_symbols([macro])


def test_provider_symbols_dedupes_across_universes() -> None:
    first = Universe(id="A", label="A", items=(UniverseItem(ticker="SPY"), UniverseItem(ticker="QQQ")))
    second = Universe(id="B", label="B", items=(UniverseItem(ticker="QQQ"), UniverseItem(ticker="TLT")))

    assert provider_symbols([first, second]) == ["SPY", "QQQ", "TLT"]


def test_universe_sections_in_roster_order() -> None:
    universe = Universe(
        id="A",
        label="A",
        items=(
            UniverseItem(ticker="AAA", section="Rates"),
            UniverseItem(ticker="BBB", section="Credit"),
            UniverseItem(ticker="CCC", section="Rates"),
            UniverseItem(ticker="DDD"),
        ),
    )

    assert universe_sections(universe) == ["Rates", "Credit"]
