"""Mortgage payments and payoff amounts.

A mortgage is a list of parts in ``config["mortgage"]["parts"]``, each a dict
with ``principal``, ``interest_rate`` (annual, e.g. ``0.0389``),
``is_repayment``, ``term_years`` and ``start_year``.  Interest-only parts pay
interest every month and owe the full principal at the end.

Example
-------

>>> part = {"principal": 120000, "interest_rate": 0.0, "is_repayment": True, "term_years": 20, "start_year": 2020}
>>> annual_payment(part)
6000.0
>>> remaining_balance(part, 2030)
60000.0
"""

from __future__ import annotations

from typing import Dict

from .config import extended_end_year
from .params import MortgageOption


def monthly_payment(part: Dict) -> float:
    """Standard amortisation ``P * r(1+r)^n / ((1+r)^n - 1)``, or interest only."""
    principal = float(part.get("principal", 0.0))
    rate = float(part.get("interest_rate", 0.0))
    term = int(part.get("term_years", 0) or 0)
    if not part.get("is_repayment", False) or term == 0:
        return principal * rate / 12

    monthly_rate = rate / 12
    payments = term * 12
    if monthly_rate == 0:
        return principal / payments
    factor = (1 + monthly_rate) ** payments
    return principal * monthly_rate * factor / (factor - 1)


def annual_payment(part: Dict) -> float:
    return monthly_payment(part) * 12


def remaining_balance(part: Dict, year: int) -> float:
    """Outstanding principal at the start of ``year``."""
    principal = float(part.get("principal", 0.0))
    if not part.get("is_repayment", False):
        return principal

    start = int(part.get("start_year", 0) or 0)
    term = int(part.get("term_years", 0) or 0)
    elapsed = year - start
    if elapsed <= 0:
        return principal
    if year >= start + term:
        return 0.0

    monthly_rate = float(part.get("interest_rate", 0.0)) / 12
    total = term * 12
    made = elapsed * 12
    if monthly_rate == 0:
        return principal * (1 - made / total)
    factor_n = (1 + monthly_rate) ** total
    factor_p = (1 + monthly_rate) ** made
    return principal * (factor_n - factor_p) / (factor_n - 1)


def total_annual_payment(config: Dict) -> float:
    return sum(annual_payment(part) for part in config.get("mortgage", {}).get("parts", []))


def total_payoff_amount(config: Dict, year: int) -> float:
    return sum(remaining_balance(part, year) for part in config.get("mortgage", {}).get("parts", []))


def payoff_year(config: Dict, option: MortgageOption) -> int:
    """Year the outstanding balance is cleared under ``option``.

    Early and lump-sum payoff use ``early_payoff_year``, falling back to the
    normal end year when none is set.
    """
    mortgage = config.get("mortgage", {})
    end_year = int(mortgage.get("end_year", 0) or 0)
    option = MortgageOption(option)
    if option in (MortgageOption.EARLY, MortgageOption.PCLS):
        return int(mortgage.get("early_payoff_year", 0) or 0) or end_year
    if option == MortgageOption.EXTENDED:
        return extended_end_year(config)
    return end_year


__all__ = [
    "monthly_payment",
    "annual_payment",
    "remaining_balance",
    "total_annual_payment",
    "total_payoff_amount",
    "payoff_year",
]
