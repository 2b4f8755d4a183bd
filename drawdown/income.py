"""Yearly spending requirement: age tiers and variable-percentage withdrawal.

Without ``tiers`` the requirement is ``monthly_before_age`` until the
reference person reaches ``age_threshold`` and ``monthly_after_age`` after.
With tiers, the first tier covering the age applies (the last tier when none
does).  A tier's ``monthly_amount`` is

* an absolute monthly amount,
* with ``is_percentage``, an annual percentage of the starting portfolio,
* ignored with ``is_investment_gains``; the requirement is then the year's
  real return on the current balances.

Absolute and percentage amounts are in retirement-year money and inflate
from then on.  VPW replaces all of these with an age-based share of the
current portfolio, optionally between an inflated floor and a ceiling set as
a multiple of that floor.

Example
-------

>>> tiers = tiers_from_config({"income_requirements": {"tiers": [
...     {"end_age": 75, "monthly_amount": 3000},
...     {"start_age": 75, "monthly_amount": 2000},
... ]}})
>>> annual_income_for_age({}, tiers, 70, 0.0)
36000.0
>>> vpw_rate(70)
0.05
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

VPW_MIN_AGE = 55
VPW_MAX_AGE = 100

# one rate per age from VPW_MIN_AGE to VPW_MAX_AGE inclusive
_VPW_RATES = np.array([
    0.030, 0.031, 0.032, 0.033, 0.034,
    0.035, 0.036, 0.037, 0.039, 0.040,
    0.042, 0.043, 0.045, 0.047, 0.048,
    0.050, 0.052, 0.054, 0.056, 0.058,
    0.061, 0.064, 0.067, 0.070, 0.073,
    0.077, 0.081, 0.085, 0.089, 0.094,
    0.100, 0.106, 0.113, 0.120, 0.128,
    0.137, 0.147, 0.159, 0.172, 0.187,
    0.204, 0.224, 0.247, 0.274, 0.307,
    0.350,
])


@dataclass(frozen=True)
class IncomeTier:
    monthly_amount: float = 0.0
    start_age: Optional[int] = None
    end_age: Optional[int] = None
    is_percentage: bool = False
    is_investment_gains: bool = False

    @classmethod
    def from_dict(cls, row: Dict) -> "IncomeTier":
        start, end = row.get("start_age"), row.get("end_age")
        return cls(
            monthly_amount=float(row.get("monthly_amount", 0.0)),
            start_age=int(start) if start is not None else None,
            end_age=int(end) if end is not None else None,
            is_percentage=bool(row.get("is_percentage", False)),
            is_investment_gains=bool(row.get("is_investment_gains", False)),
        )

    def covers(self, age: int) -> bool:
        if self.start_age is not None and age < self.start_age:
            return False
        return self.end_age is None or age < self.end_age

    def annual_amount(self, initial_portfolio: float) -> float:
        if self.is_percentage:
            return initial_portfolio * self.monthly_amount / 100.0
        return self.monthly_amount * 12


def tiers_from_config(config: Dict) -> List[IncomeTier]:
    return [IncomeTier.from_dict(row) for row in config.get("income_requirements", {}).get("tiers") or []]


def tier_for_age(tiers: Sequence[IncomeTier], age: int) -> Optional[IncomeTier]:
    for tier in tiers:
        if tier.covers(age):
            return tier
    return tiers[-1] if tiers else None


def annual_income_for_age(
    income_cfg: Dict,
    tiers: Sequence[IncomeTier],
    age: int,
    initial_portfolio: float,
) -> Optional[float]:
    """Uninflated annual requirement at ``age``.

    Parameters
    ----------
    income_cfg : dict
        The ``income_requirements`` section; only read when there are no tiers.
    tiers : sequence of IncomeTier
        Age tiers, in priority order.
    age : int
        Age of the income reference person.
    initial_portfolio : float
        Household wealth at the start of the plan, for percentage tiers.

    Returns
    -------
    float or None
        ``None`` when an investment-gains tier applies, since that amount
        depends on the year's balances and growth rates.
    """
    if not tiers:
        threshold = int(income_cfg.get("age_threshold", 75))
        key = "monthly_before_age" if age < threshold else "monthly_after_age"
        return float(income_cfg.get(key, 0.0)) * 12
    tier = tier_for_age(tiers, age)
    if tier.is_investment_gains:
        return None
    return tier.annual_amount(initial_portfolio)


def investment_gains_income(
    pension: float,
    savings: float,
    pension_rate: float,
    savings_rate: float,
    inflation: float,
) -> float:
    """Nominal growth on both pots less the inflation loss on their total, floored at zero."""
    gains = pension * pension_rate + savings * savings_rate
    return max(0.0, gains - (pension + savings) * inflation)


def vpw_rate(age: int) -> float:
    """Share of the portfolio to draw at ``age``, clamped to the table's ends."""
    index = int(np.clip(age, VPW_MIN_AGE, VPW_MAX_AGE)) - VPW_MIN_AGE
    return float(_VPW_RATES[index])


@dataclass
class VPWState:
    initial_floor: float = 0.0
    ceiling_multiplier: float = 0.0
    current_floor: float = 0.0

    @classmethod
    def from_config(cls, config: Dict) -> Optional["VPWState"]:
        """``None`` unless ``income_requirements.vpw_enabled`` is set."""
        income = config.get("income_requirements", {})
        if not income.get("vpw_enabled"):
            return None
        floor = max(0.0, float(income.get("vpw_floor", 0.0) or 0.0))
        return cls(
            initial_floor=floor,
            ceiling_multiplier=max(0.0, float(income.get("vpw_ceiling", 0.0) or 0.0)),
            current_floor=floor,
        )

    def withdrawal(self, portfolio: float, age: int, inflation_multiplier: float) -> float:
        amount = portfolio * vpw_rate(age)
        if self.initial_floor <= 0:
            # the ceiling is a multiple of the floor, so it needs one
            return amount
        self.current_floor = self.initial_floor * inflation_multiplier
        amount = max(amount, self.current_floor)
        if self.ceiling_multiplier > 0:
            amount = min(amount, self.current_floor * self.ceiling_multiplier)
        return amount


__all__ = [
    "VPW_MIN_AGE",
    "VPW_MAX_AGE",
    "IncomeTier",
    "tiers_from_config",
    "tier_for_age",
    "annual_income_for_age",
    "investment_gains_income",
    "vpw_rate",
    "VPWState",
]
