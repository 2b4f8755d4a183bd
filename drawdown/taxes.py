"""UK income tax calculation utilities.

This module implements a progressive band model of UK income tax as used for
pension drawdown planning.  The defaults embed HMRC rates for 2024/25 with the
2023/24 table kept alongside.  Bands are contiguous and ascending, the first
band is the zero-rate Personal Allowance and the top band is unbounded.  The
Personal Allowance tapers away above £100 000 of income (£1 lost for every £2
over the threshold).  National Insurance, dividend and savings allowances and
the Scottish rates are not modelled.

Example
-------

>>> bands = default_tax_bands()
>>> # Tax on £30 000 of pension income
>>> round(total_tax(30000, bands), 2)
3486.0

>>> # Gross withdrawal needed to net £10 000 on top of £50 000 of income
>>> gross, tax = gross_up_for_tax(10000, 50000, bands)
>>> round(gross - tax)
10000

The bands can be customised by passing a list of :class:`TaxBand` objects or by
pointing :func:`load_tax_tables` at a JSON file matching the schema in
``data/uk_tax_bands.json``.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

_DEFAULT_TAX_TABLE_PATH = Path(__file__).resolve().parent / "data" / "uk_tax_bands.json"

DEFAULT_YEAR = 2024
DEFAULT_PERSONAL_ALLOWANCE = 12570.0
DEFAULT_BASIC_RATE_LIMIT = 50270.0
DEFAULT_BASIC_RATE = 0.20


@dataclass(frozen=True)
class TaxBand:
    """One band of the progressive scale.  ``upper`` may be ``math.inf``."""

    name: str
    lower: float
    upper: float
    rate: float


@dataclass(frozen=True)
class TaxConfig:
    """Personal Allowance taper settings."""

    tapering_threshold: float = 100000.0
    tapering_rate: float = 0.5


DEFAULT_TAX_CONFIG = TaxConfig()


def load_tax_tables(path: Optional[Path] = None) -> Dict[str, Dict]:
    """Load tax tables from JSON.  If ``path`` is not provided, load the
    default file shipped with the package.

    Parameters
    ----------
    path : Path, optional
        Path to a JSON file containing the tax tables keyed by tax year.

    Returns
    -------
    dict
        The parsed tax tables.
    """
    p = path or _DEFAULT_TAX_TABLE_PATH
    with open(p, "r", encoding="utf-8") as f:
        tables = json.load(f)
    return tables


def bands_from_dicts(rows: Sequence[Dict]) -> List[TaxBand]:
    """Build bands from ``{"name", "lower", "upper", "rate"}`` rows; a null upper is unbounded."""
    bands = []
    for row in rows:
        upper = row.get("upper")
        bands.append(
            TaxBand(
                name=str(row.get("name", "")),
                lower=float(row["lower"]),
                upper=float(upper) if upper is not None else math.inf,
                rate=float(row["rate"]),
            )
        )
    return bands


def default_tax_bands(year: int = DEFAULT_YEAR, tax_tables: Optional[Dict[str, Dict]] = None) -> List[TaxBand]:
    tables = tax_tables or load_tax_tables()
    return bands_from_dicts(tables[str(year)]["bands"])


def default_tax_config(year: int = DEFAULT_YEAR, tax_tables: Optional[Dict[str, Dict]] = None) -> TaxConfig:
    tables = tax_tables or load_tax_tables()
    year_table = tables[str(year)]
    return TaxConfig(
        tapering_threshold=float(year_table.get("tapering_threshold", DEFAULT_TAX_CONFIG.tapering_threshold)),
        tapering_rate=float(year_table.get("tapering_rate", DEFAULT_TAX_CONFIG.tapering_rate)),
    )


def personal_allowance(bands: Sequence[TaxBand]) -> float:
    """Upper bound of the zero-rate band, or the UK default when there is none."""
    if bands and bands[0].rate == 0:
        return bands[0].upper
    return DEFAULT_PERSONAL_ALLOWANCE


def basic_rate_band(bands: Sequence[TaxBand]) -> Tuple[float, float, float]:
    """Return ``(lower, upper, rate)`` of the lowest non-zero band at or below 25%."""
    for band in bands:
        if 0 < band.rate <= 0.25:
            return band.lower, band.upper, band.rate
    return DEFAULT_PERSONAL_ALLOWANCE, DEFAULT_BASIC_RATE_LIMIT, DEFAULT_BASIC_RATE


def apply_allowance_taper(
    bands: Sequence[TaxBand],
    income: float,
    tax_config: Optional[TaxConfig] = None,
) -> List[TaxBand]:
    """Return bands adjusted for a tapered Personal Allowance.

    Above the threshold the allowance falls by ``tapering_rate`` for every
    pound of income over it, down to zero.  The zero-rate band shrinks and the
    band that follows it starts where the reduced allowance ends.  The input
    bands are left untouched.
    """
    cfg = tax_config or DEFAULT_TAX_CONFIG
    if income <= cfg.tapering_threshold:
        return list(bands)

    adjusted = list(bands)
    for i, band in enumerate(bands):
        if band.lower == 0 and band.rate == 0:
            reduction = (income - cfg.tapering_threshold) * cfg.tapering_rate
            reduced = max(0.0, band.upper - reduction)
            adjusted[i] = replace(band, upper=reduced)
            if i + 1 < len(bands):
                adjusted[i + 1] = replace(bands[i + 1], lower=reduced)
            break
    return adjusted


def tax_on_income(income: float, bands: Sequence[TaxBand]) -> float:
    """Progressive tax on ``income`` without any allowance taper."""
    if income <= 0:
        return 0.0
    tax = 0.0
    for band in bands:
        if income <= band.lower:
            break
        in_band = min(income, band.upper) - band.lower
        if in_band > 0:
            tax += in_band * band.rate
    return tax


def total_tax(income: float, bands: Sequence[TaxBand], tax_config: Optional[TaxConfig] = None) -> float:
    """Tax due on a year's total taxable income, including the allowance taper."""
    if income <= 0:
        return 0.0
    return tax_on_income(income, apply_allowance_taper(bands, income, tax_config))


def marginal_tax(
    amount: float,
    existing_income: float,
    bands: Sequence[TaxBand],
    tax_config: Optional[TaxConfig] = None,
) -> float:
    """Extra tax caused by adding ``amount`` on top of ``existing_income``."""
    return total_tax(existing_income + amount, bands, tax_config) - total_tax(existing_income, bands, tax_config)


def gross_up_for_tax(
    net_needed: float,
    existing_income: float,
    bands: Sequence[TaxBand],
    tax_config: Optional[TaxConfig] = None,
) -> Tuple[float, float]:
    """Find the fully taxable gross amount that nets ``net_needed``.

    Parameters
    ----------
    net_needed : float
        After-tax amount required.
    existing_income : float
        Taxable income already received this year.
    bands : sequence of TaxBand
        Bands for the year.

    Returns
    -------
    tuple
        ``(gross, tax)`` where ``tax`` is the marginal tax on ``gross``.
    """
    if net_needed <= 0:
        return 0.0, 0.0

    low = net_needed
    high = net_needed * 2.5
    for _ in range(100):
        mid = (low + high) / 2
        tax = marginal_tax(mid, existing_income, bands, tax_config)
        net = mid - tax
        if abs(net - net_needed) < 0.01:
            return mid, tax
        if net < net_needed:
            low = mid
        else:
            high = mid

    return high, marginal_tax(high, existing_income, bands, tax_config)


def person_tax(
    base_income: float,
    taxable_withdrawal: float,
    bands: Sequence[TaxBand],
    tax_config: Optional[TaxConfig] = None,
) -> float:
    return total_tax(base_income + taxable_withdrawal, bands, tax_config)


def marginal_rate(income: float, bands: Sequence[TaxBand]) -> float:
    for band in bands:
        if band.lower <= income < band.upper:
            return band.rate
    if bands:
        return bands[-1].rate
    return 0.0


def next_band_threshold(income: float, bands: Sequence[TaxBand]) -> float:
    """Upper edge of the band ``income`` falls in; ``income + 100000`` in the top band."""
    for band in bands:
        if band.lower <= income < band.upper:
            if math.isinf(band.upper):
                break
            return band.upper
    return income + 100000.0


def inflate_tax_bands(
    bands: Sequence[TaxBand],
    start_year: int,
    year: int,
    inflation_rate: float,
) -> List[TaxBand]:
    """Inflate band edges from ``start_year`` to ``year``; rates stay fixed."""
    if inflation_rate == 0 or year <= start_year:
        return list(bands)
    multiplier = (1.0 + inflation_rate) ** (year - start_year)
    return [replace(b, lower=b.lower * multiplier, upper=b.upper * multiplier) for b in bands]


__all__ = [
    "TaxBand",
    "TaxConfig",
    "DEFAULT_TAX_CONFIG",
    "load_tax_tables",
    "bands_from_dicts",
    "default_tax_bands",
    "default_tax_config",
    "personal_allowance",
    "basic_rate_band",
    "apply_allowance_taper",
    "tax_on_income",
    "total_tax",
    "marginal_tax",
    "gross_up_for_tax",
    "person_tax",
    "marginal_rate",
    "next_band_threshold",
    "inflate_tax_bands",
]
