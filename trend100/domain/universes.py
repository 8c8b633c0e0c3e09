from __future__ import annotations

"""Registry of curated universes and their section keys."""

import re
from collections import Counter
from typing import Iterable

from trend100.domain.schemas import Universe, UniverseItem

# Rows are (ticker, section, subtitle, name, tags) with optional provider symbol.
_US_SECTORS = (
    ("SPY", "Sectors", "S&P 500", "SPDR S&P 500 ETF Trust", ("etf", "index", "broad-us")),
    ("XLB", "Sectors", "Materials", "Materials Select Sector SPDR Fund", ("etf", "sector", "materials")),
    ("XLC", "Sectors", "Comm Svcs", "Communication Services Select Sector SPDR Fund", ("etf", "sector", "communications")),
    ("XLE", "Sectors", "Energy", "Energy Select Sector SPDR Fund", ("etf", "sector", "energy")),
    ("XLF", "Sectors", "Financials", "Financial Select Sector SPDR Fund", ("etf", "sector", "financials")),
    ("XLI", "Sectors", "Industrials", "Industrial Select Sector SPDR Fund", ("etf", "sector", "industrials")),
    ("XLK", "Sectors", "Technology", "Technology Select Sector SPDR Fund", ("etf", "sector", "tech")),
    ("XLP", "Sectors", "Staples", "Consumer Staples Select Sector SPDR Fund", ("etf", "sector", "staples")),
    ("XLRE", "Sectors", "Real Estate", "Real Estate Select Sector SPDR Fund", ("etf", "sector", "real-estate")),
    ("XLU", "Sectors", "Utilities", "Utilities Select Sector SPDR Fund", ("etf", "sector", "utilities")),
    ("XLV", "Sectors", "Health Care", "Health Care Select Sector SPDR Fund", ("etf", "sector", "healthcare")),
    ("XLY", "Sectors", "Discretionary", "Consumer Discretionary Select Sector SPDR Fund", ("etf", "sector", "discretionary")),
)

_US_FACTORS = (
    ("IWB", "Size", "Large Cap", "iShares Russell 1000 ETF", ("etf", "factor", "us", "broad")),
    ("IWD", "Style", "Value", "iShares Russell 1000 Value ETF", ("etf", "factor", "us", "value")),
    ("IWF", "Style", "Growth", "iShares Russell 1000 Growth ETF", ("etf", "factor", "us", "growth")),
    ("IWM", "Size", "Small Cap", "iShares Russell 2000 ETF", ("etf", "factor", "us", "smallcap")),
    ("IWR", "Size", "Mid Cap", "iShares Russell Mid-Cap ETF", ("etf", "factor", "us", "midcap")),
    ("MTUM", "Momentum", "Momentum", "iShares MSCI USA Momentum Factor ETF", ("etf", "factor", "us", "momentum")),
    ("QQQ", "Size", "Nasdaq 100", "Invesco QQQ Trust", ("etf", "factor", "us", "nasdaq100")),
    ("QUAL", "Quality/LowVol", "Quality", "iShares MSCI USA Quality Factor ETF", ("etf", "factor", "us", "quality")),
    ("SPHD", "Quality/LowVol", "HiDiv LowVol", "Invesco S&P 500 High Dividend Low Volatility ETF", ("etf", "factor", "us", "dividend")),
    ("SPLV", "Quality/LowVol", "Low Vol", "Invesco S&P 500 Low Volatility ETF", ("etf", "factor", "us", "low-vol")),
)

_GLOBAL_EQUITIES = (
    ("ACWX", "Global ex-US", "ACWI ex-US", "iShares MSCI ACWI ex US ETF", ("etf", "global", "ex-us")),
    ("EEM", "Emerging", "Emerging", "iShares MSCI Emerging Markets ETF", ("etf", "global", "emerging")),
    ("EWA", "Developed", "Australia", "iShares MSCI Australia ETF", ("etf", "global", "australia")),
    ("EWC", "Developed", "Canada", "iShares MSCI Canada ETF", ("etf", "global", "canada")),
    ("EWJ", "Developed", "Japan", "iShares MSCI Japan ETF", ("etf", "global", "japan")),
    ("EWU", "Developed", "UK", "iShares MSCI United Kingdom ETF", ("etf", "global", "uk")),
    ("EWZ", "Emerging", "Brazil", "iShares MSCI Brazil ETF", ("etf", "global", "brazil")),
    ("EZU", "Developed", "Eurozone", "iShares MSCI Eurozone ETF", ("etf", "global", "europe")),
    ("FXI", "Emerging", "China LC", "iShares China Large-Cap ETF", ("etf", "global", "china")),
    ("GNR", "Commodities/Resources", "Nat Resources", "SPDR S&P Global Natural Resources ETF", ("etf", "global", "natural-resources")),
    ("INDA", "Emerging", "India", "iShares MSCI India ETF", ("etf", "global", "india")),
)

_FIXED_INCOME = (
    ("AGG", "Rates", "Agg Bond", "iShares Core U.S. Aggregate Bond ETF", ("etf", "rates", "aggregate")),
    ("BILS", "Cash", "T-Bills", "SPDR Bloomberg 3-12 Month T-Bill ETF", ("etf", "rates", "short-term")),
    ("BIZD", "Loans/BDC", "BDCs", "VanEck Business Development Company ETF", ("etf", "credit", "business-dev")),
    ("BKLN", "Loans/BDC", "Bank Loans", "Invesco Senior Loan ETF", ("etf", "credit", "bank-loan")),
    ("BNDX", "Rates", "Intl Bond", "Vanguard Total International Bond ETF", ("etf", "rates", "international")),
    ("CWB", "Credit", "Convertibles", "SPDR Bloomberg Convertible Securities ETF", ("etf", "credit", "convertible")),
    ("EMB", "EM Debt", "EM USD Debt", "iShares J.P. Morgan USD Emerging Markets Bond ETF", ("etf", "credit", "emerging")),
    ("EMLC", "EM Debt", "EM Local", "VanEck J.P. Morgan EM Local Currency Bond ETF", ("etf", "credit", "emerging-local")),
    ("HYG", "Credit", "High Yield", "iShares iBoxx $ High Yield Corporate Bond ETF", ("etf", "credit", "high-yield")),
    ("IEF", "Rates", "7-10y Tsy", "iShares 7-10 Year Treasury Bond ETF", ("etf", "rates", "intermediate")),
    ("LQD", "Credit", "IG Credit", "iShares iBoxx $ Investment Grade Corporate Bond ETF", ("etf", "credit", "investment-grade")),
    ("MBB", "Securitized", "MBS", "iShares MBS ETF", ("etf", "rates", "mortgage")),
    ("PFF", "Preferreds", "Preferreds", "iShares Preferred & Income Securities ETF", ("etf", "credit", "preferred")),
    ("SHY", "Rates", "1-3y Tsy", "iShares 1-3 Year Treasury Bond ETF", ("etf", "rates", "short-term")),
    ("TIP", "Rates", "TIPS", "iShares TIPS Bond ETF", ("etf", "rates", "tips")),
    ("TLT", "Rates", "20y+ Tsy", "iShares 20+ Year Treasury Bond ETF", ("etf", "rates", "long-term")),
)

_MACRO = (
    ("DBA", "Commodities", "Agriculture", "Invesco DB Agriculture Fund", ("etf", "commodities", "agriculture")),
    ("DBB", "Commodities", "Base Metals", "Invesco DB Base Metals Fund", ("etf", "commodities", "metals")),
    ("PDBC", "Commodities", "Commodities", "Invesco Optimum Yield Diversified Commodity Strategy No K-1 ETF", ("etf", "commodities", "diversified")),
    ("USO", "Energy", "Oil", "United States Oil Fund LP", ("etf", "commodities", "energy", "oil")),
    ("FXA", "FX", "AUD", "Invesco CurrencyShares Australian Dollar Trust", ("etf", "fx", "australia")),
    ("FXB", "FX", "GBP", "Invesco CurrencyShares British Pound Sterling Trust", ("etf", "fx", "uk")),
    ("FXC", "FX", "CAD", "Invesco CurrencyShares Canadian Dollar Trust", ("etf", "fx", "canada")),
    ("FXE", "FX", "EUR", "Invesco CurrencyShares Euro Trust", ("etf", "fx", "euro")),
    ("FXY", "FX", "JPY", "Invesco CurrencyShares Japanese Yen Trust", ("etf", "fx", "japan")),
    ("UUP", "Dollar", "Dollar", "Invesco DB US Dollar Index Bullish Fund", ("etf", "fx", "dollar")),
    ("GDX", "Metals", "Gold Miners", "VanEck Gold Miners ETF", ("etf", "metals", "gold-miners")),
    ("GLDM", "Metals", "Gold", "SPDR Gold MiniShares Trust", ("etf", "metals", "gold")),
    ("SIL", "Metals", "Silver Miners", "Global X Silver Miners ETF", ("etf", "metals", "silver-miners")),
    ("SLV", "Metals", "Silver", "iShares Silver Trust", ("etf", "metals", "silver")),
    ("SRUUF", "Uranium", "Uranium", "Sprott Physical Uranium Trust", ("etf", "uranium", "energy")),
    # Spot ETF proxies stand in for the coins.
    ("Bitcoin", "Crypto", "FBTC", "Fidelity Wise Origin Bitcoin Fund", ("crypto",), "FBTC"),
    ("Ethereum", "Crypto", "FETH", "Fidelity Ethereum Fund", ("crypto",), "FETH"),
)

_REGISTRY = {
    "US_SECTORS": ("US Sectors", _US_SECTORS),
    "US_FACTORS": ("US Equity Factors", _US_FACTORS),
    "GLOBAL_EQUITIES": ("Global Equities", _GLOBAL_EQUITIES),
    "FIXED_INCOME": ("Fixed Income Sectors", _FIXED_INCOME),
    "MACRO": ("Macro Exposure", _MACRO),
}


def _build_item(row: tuple) -> UniverseItem:
    ticker, section, subtitle, name, tags, *provider = row
    return UniverseItem(
        ticker=ticker,
        provider_symbol=provider[0] if provider else None,
        tags=tags,
        section=section,
        subtitle=subtitle,
        name=name,
    )


def validate_universe(universe: Universe) -> Universe:
    """Reject empty universes and duplicate tickers.

    Args:
        universe (Universe): Universe to check.

    Returns:
        Universe: The same universe, for chaining.

    Raises:
        ValueError: When the universe is empty or repeats a ticker.
    """
    if not universe.items:
        raise ValueError(f"Universe {universe.id} has no tickers")
    duplicates = sorted(
        ticker for ticker, count in Counter(item.ticker for item in universe.items).items() if count > 1
    )
    if duplicates:
        raise ValueError(f"Universe {universe.id} has duplicate tickers: {', '.join(duplicates)}")
    return universe


UNIVERSES = {
    universe_id: validate_universe(
        Universe(id=universe_id, label=label, items=tuple(_build_item(row) for row in rows))
    )
    for universe_id, (label, rows) in _REGISTRY.items()
}


def all_universe_ids() -> list[str]:
    return list(UNIVERSES)


def get_universe(universe_id: str) -> Universe:
    """Look up a universe by id (case-insensitive)."""
    try:
        return UNIVERSES[universe_id.upper()]
    except KeyError:
        raise ValueError(
            f"Unknown universe '{universe_id}'; expected one of {', '.join(UNIVERSES)}"
        ) from None


def universe_sections(universe: Universe) -> list[str]:
    """Return the distinct section labels in roster order."""
    return list(dict.fromkeys(item.section for item in universe.items if item.section))


def provider_symbols(universes: Iterable[Universe]) -> list[str]:
    """Return provider symbols across universes, deduplicated in order."""
    return list(
        dict.fromkeys(item.symbol for universe in universes for item in universe.items)
    )


def to_section_key(label: str) -> str:
    """Filesystem-safe key for a section label.

    ``"Quality/LowVol"`` becomes ``"quality-lowvol"`` and ``"Global ex-US"``
    becomes ``"global-ex-us"``; an empty result becomes ``"all"``.
    """
    key = str(label).strip().lower().replace("&", "and")
    key = re.sub(r"[/\s]+", "-", key)
    key = re.sub(r"[^a-z0-9-]", "", key)
    key = re.sub(r"-+", "-", key)
    return key.strip("-") or "all"
