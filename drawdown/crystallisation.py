"""Crystallisation and single-bucket withdrawal primitives.

Three ways to release money from an uncrystallised pension pot:

* **Full lump sum (PCLS)** - the whole pot is crystallised at once; 25% goes
  tax-free into savings, 75% into the crystallised pot and the ``pcls_taken``
  flag is set for good.
* **Gradual crystallisation** - only what is needed is crystallised; 25/75
  while the lump sum has not been taken, 0/100 afterwards.
* **UFPLS** - taken straight from the uncrystallised pot, always 25/75, and
  what is left keeps its full tax-free entitlement.

Every primitive returns a zero-effect result for a non-positive amount or an
empty pot instead of raising, and never takes more than the bucket holds.

Example
-------

>>> from drawdown.ledger import Person
>>> p = Person(name="Alex", birth_year=1960, uncrystallised_pot=100000.0)
>>> r = gradual_crystallise(p, 20000)
>>> (r.tax_free, r.taxable, p.uncrystallised_pot)
(5000.0, 15000.0, 80000.0)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .ledger import Person
from .params import Crystallisation

TAX_FREE_FRACTION = 0.25


@dataclass(frozen=True)
class CrystallisationResult:
    amount: float = 0.0
    tax_free: float = 0.0
    taxable: float = 0.0


def take_pcls_lump_sum(person: Person) -> CrystallisationResult:
    """Crystallise the whole pot: 25% to savings, 75% to the crystallised pot."""
    if person.uncrystallised_pot <= 0 or person.pcls_taken:
        return CrystallisationResult()

    amount = person.uncrystallised_pot
    tax_free = amount * TAX_FREE_FRACTION
    taxable = amount - tax_free

    person.tax_free_savings += tax_free
    person.crystallised_pot += taxable
    person.uncrystallised_pot = 0.0
    person.pcls_taken = True
    return CrystallisationResult(amount, tax_free, taxable)


def gradual_crystallise(person: Person, amount: float) -> CrystallisationResult:
    """Crystallise up to ``amount`` and hand both portions straight to the caller.

    The taxable portion is paid out as income rather than parked in the
    crystallised pot, so the pot simply shrinks by the amount crystallised.
    """
    if amount <= 0 or person.uncrystallised_pot <= 0:
        return CrystallisationResult()

    taken = min(person.uncrystallised_pot, amount)
    tax_free = 0.0 if person.pcls_taken else taken * TAX_FREE_FRACTION
    person.uncrystallised_pot -= taken
    return CrystallisationResult(taken, tax_free, taken - tax_free)


def ufpls_withdraw(person: Person, amount: float) -> CrystallisationResult:
    """Uncrystallised funds pension lump sum: always 25% tax-free, 75% taxable."""
    if amount <= 0 or person.uncrystallised_pot <= 0:
        return CrystallisationResult()

    taken = min(person.uncrystallised_pot, amount)
    tax_free = taken * TAX_FREE_FRACTION
    person.uncrystallised_pot -= taken
    return CrystallisationResult(taken, tax_free, taken - tax_free)


def tax_free_fraction(person: Person, crystallisation: Crystallisation) -> float:
    """Share of a fresh pension withdrawal that comes out tax-free."""
    if crystallisation == Crystallisation.UFPLS:
        return TAX_FREE_FRACTION
    return 0.0 if person.pcls_taken else TAX_FREE_FRACTION


def release_uncrystallised(person: Person, amount: float, crystallisation: Crystallisation) -> CrystallisationResult:
    """Take ``amount`` from the uncrystallised pot under the given policy."""
    if crystallisation == Crystallisation.UFPLS:
        return ufpls_withdraw(person, amount)
    return gradual_crystallise(person, amount)


def withdraw_from_isa(person: Person, amount: float) -> float:
    """Withdraw from savings without dipping below the emergency minimum."""
    if amount <= 0:
        return 0.0
    available = person.available_isa()
    if available <= 0:
        return 0.0
    taken = min(amount, available)
    person.tax_free_savings -= taken
    return taken


def withdraw_from_crystallised(person: Person, amount: float) -> float:
    if amount <= 0 or person.crystallised_pot <= 0:
        return 0.0
    taken = min(amount, person.crystallised_pot)
    person.crystallised_pot -= taken
    return taken


def apply_growth(person: Person, savings_rate: float, pension_rate: float) -> None:
    person.tax_free_savings *= 1.0 + savings_rate
    person.crystallised_pot *= 1.0 + pension_rate
    person.uncrystallised_pot *= 1.0 + pension_rate


def growth_rate_for_year(
    start_rate: float,
    end_rate: float,
    start_age: int,
    current_age: int,
    target_age: int,
) -> float:
    """Glide-path growth rate: ``start_rate`` until ``start_age``, ``end_rate``
    from ``target_age``, linear in between."""
    if current_age >= target_age:
        return end_rate
    if current_age <= start_age:
        return start_rate
    return float(np.interp(current_age, [start_age, target_age], [start_rate, end_rate]))


def proportional_split(total: float, first_available: float, second_available: float) -> Tuple[float, float]:
    """Split ``total`` between two sources in proportion to what each holds."""
    available = np.array([first_available, second_available], dtype=float)
    pool = available.sum()
    if pool <= 0:
        return 0.0, 0.0
    if total >= pool:
        return float(available[0]), float(available[1])
    shares = total * available / pool
    return float(shares[0]), float(shares[1])


__all__ = [
    "TAX_FREE_FRACTION",
    "CrystallisationResult",
    "take_pcls_lump_sum",
    "gradual_crystallise",
    "ufpls_withdraw",
    "tax_free_fraction",
    "release_uncrystallised",
    "withdraw_from_isa",
    "withdraw_from_crystallised",
    "apply_growth",
    "growth_rate_for_year",
    "proportional_split",
]
