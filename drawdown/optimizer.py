"""Multi-person tax-band optimizer behind the ``tax_optimized`` policy.

The optimizer plans a year's withdrawals against a snapshot of every
person's balances, then :func:`execute_optimized_drawdown` applies the plan
to the real ledgers.  Planning runs in four ordered phases over shared
per-person running state:

1. Fill every accessible person's personal allowance, proportionally by the
   headroom each has left after base income.
2. Fill the basic-rate band proportionally by remaining band headroom.  The
   net still needed is turned into a gross figure using the retention of a
   basic-rate withdrawal: ``0.25 + 0.75 * (1 - rate)`` (0.85 at 20%) while a
   tax-free portion is available, ``1 - rate`` otherwise.
3. Split any residual need by each person's remaining pension.  The shares
   come from one snapshot taken at the start of the phase and are applied to
   the shrinking remainder person by person, the way Pension First drains
   people in turn.
4. Draw anything still outstanding from ISAs in proportion to balance.

Total tax is computed once at the end from each person's base income plus
realised taxable withdrawals.

Example
-------

>>> from drawdown.ledger import Person
>>> from drawdown.params import Crystallisation
>>> from drawdown.taxes import default_tax_bands
>>> people = [Person("A", 1960, uncrystallised_pot=200000.0), Person("B", 1960, uncrystallised_pot=200000.0)]
>>> plan = calculate_optimized_withdrawals(people, 20000, 2025, {}, default_tax_bands(), Crystallisation.GRADUAL)
>>> round(plan.total_tax)
0
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from . import solver, taxes
from .crystallisation import (
    TAX_FREE_FRACTION,
    release_uncrystallised,
    withdraw_from_crystallised,
    withdraw_from_isa,
)
from .ledger import Person, WithdrawalBreakdown
from .params import Crystallisation

logger = logging.getLogger(__name__)

# amounts below a penny are treated as nothing
THRESHOLD = 0.01

Bands = Sequence[taxes.TaxBand]


@dataclass
class PersonTaxState:
    name: str
    base_income: float
    taxable_income: float
    available_crystallised: float
    available_uncrystallised: float
    available_isa: float
    can_access: bool
    pcls_taken: bool

    @classmethod
    def from_person(cls, person: Person, year: int, base_income: Dict[str, float]) -> "PersonTaxState":
        base = base_income.get(person.name, 0.0)
        return cls(
            name=person.name,
            base_income=base,
            taxable_income=base,
            available_crystallised=person.crystallised_pot,
            available_uncrystallised=person.uncrystallised_pot,
            available_isa=person.available_isa(),
            can_access=person.can_access_pension(year),
            pcls_taken=person.pcls_taken,
        )

    def available_pension(self) -> float:
        return self.available_crystallised + self.available_uncrystallised

    def tax_free_fraction(self, crystallisation: Crystallisation) -> float:
        """Tax-free share of the next pound drawn, 0 once only taxable money is left."""
        if self.available_uncrystallised <= THRESHOLD:
            return 0.0
        if crystallisation == Crystallisation.UFPLS or not self.pcls_taken:
            return TAX_FREE_FRACTION
        return 0.0


@dataclass
class OptimizedWithdrawalPlan:
    """Per-person amounts the optimizer wants drawn this year."""

    taxable_from_pension: Dict[str, float] = field(default_factory=dict)
    tax_free_from_pension: Dict[str, float] = field(default_factory=dict)
    tax_free_from_isa: Dict[str, float] = field(default_factory=dict)
    uncrystallised_used: Dict[str, float] = field(default_factory=dict)
    crystallised_used: Dict[str, float] = field(default_factory=dict)
    total_tax: float = 0.0

    def _add(self, bucket: Dict[str, float], name: str, amount: float) -> None:
        bucket[name] = bucket.get(name, 0.0) + amount


def _take_uncrystallised(
    state: PersonTaxState,
    gross: float,
    fraction: float,
    bands: Bands,
    plan: OptimizedWithdrawalPlan,
) -> float:
    tax_free = gross * fraction
    taxable = gross - tax_free
    net = tax_free + taxable - taxes.marginal_tax(taxable, state.taxable_income, bands)

    state.available_uncrystallised -= gross
    state.taxable_income += taxable
    plan._add(plan.uncrystallised_used, state.name, gross)
    plan._add(plan.taxable_from_pension, state.name, taxable)
    if tax_free > 0:
        plan._add(plan.tax_free_from_pension, state.name, tax_free)
    return net


def _take_crystallised(state: PersonTaxState, gross: float, bands: Bands, plan: OptimizedWithdrawalPlan) -> float:
    net = gross - taxes.marginal_tax(gross, state.taxable_income, bands)
    state.available_crystallised -= gross
    state.taxable_income += gross
    plan._add(plan.crystallised_used, state.name, gross)
    plan._add(plan.taxable_from_pension, state.name, gross)
    return net


def simple_withdraw_pension(
    state: PersonTaxState,
    net_needed: float,
    bands: Bands,
    plan: OptimizedWithdrawalPlan,
    crystallisation: Crystallisation,
) -> float:
    """Plan a pension withdrawal for one person netting ``net_needed``.

    UFPLS takes from the uncrystallised pot first and falls back to the
    crystallised pot.  Gradual takes the crystallised pot first, then
    crystallises more: fully taxable once the lump sum has gone, otherwise
    bisecting on the 25/75 split.  Returns the net actually planned.
    """
    if net_needed <= 0:
        return 0.0
    received = 0.0

    if crystallisation == Crystallisation.UFPLS and state.available_uncrystallised > THRESHOLD:
        result = solver.bisect_split_gross(
            net_needed, state.taxable_income, state.available_uncrystallised, bands, TAX_FREE_FRACTION
        )
        gross = min(result.gross, state.available_uncrystallised)
        if gross > THRESHOLD:
            received += _take_uncrystallised(state, gross, TAX_FREE_FRACTION, bands, plan)

    if state.available_crystallised > THRESHOLD and received < net_needed:
        result = solver.solve_taxable_gross(
            net_needed - received, state.taxable_income, state.available_crystallised, bands
        )
        if result.gross > THRESHOLD:
            received += _take_crystallised(state, result.gross, bands, plan)

    if (
        crystallisation == Crystallisation.GRADUAL
        and state.available_uncrystallised > THRESHOLD
        and received < net_needed
    ):
        still_needed = net_needed - received
        if state.pcls_taken:
            result = solver.solve_taxable_gross(
                still_needed, state.taxable_income, state.available_uncrystallised, bands
            )
            fraction = 0.0
        else:
            result = solver.bisect_split_gross(
                still_needed, state.taxable_income, state.available_uncrystallised, bands, TAX_FREE_FRACTION
            )
            fraction = TAX_FREE_FRACTION
        gross = min(result.gross, state.available_uncrystallised)
        if gross > THRESHOLD:
            received += _take_uncrystallised(state, gross, fraction, bands, plan)

    return received


def fill_personal_allowances(
    states: Sequence[PersonTaxState],
    remaining: float,
    bands: Bands,
    plan: OptimizedWithdrawalPlan,
    crystallisation: Crystallisation,
) -> float:
    """Phase 1: use up every allowance before anyone pays tax."""
    if remaining <= 0:
        return 0.0
    allowance = taxes.personal_allowance(bands)

    spaces = []
    for state in states:
        if not state.can_access:
            continue
        headroom = max(0.0, allowance - state.taxable_income)
        available = state.available_pension()
        if headroom <= 0 or available <= 0:
            continue
        spaces.append((state, min(headroom, available)))

    total_space = sum(space for _, space in spaces)
    if total_space <= 0:
        return remaining

    to_withdraw = min(remaining, total_space)
    for state, space in spaces:
        if remaining <= THRESHOLD:
            break
        amount = min(to_withdraw * space / total_space, space, remaining)
        if amount > THRESHOLD:
            remaining -= simple_withdraw_pension(state, amount, bands, plan, crystallisation)
    return remaining


def fill_basic_rate_band(
    states: Sequence[PersonTaxState],
    remaining: float,
    bands: Bands,
    plan: OptimizedWithdrawalPlan,
    crystallisation: Crystallisation,
) -> float:
    """Phase 2: spread the basic-rate band across people so nobody tips into higher rate early."""
    if remaining <= 0:
        return 0.0
    lower, upper, rate = taxes.basic_rate_band(bands)

    infos = []
    for state in states:
        if not state.can_access or state.taxable_income >= upper:
            continue
        headroom = upper - max(state.taxable_income, lower)
        available = state.available_pension()
        if headroom <= 0 or available <= 0:
            continue
        fraction = state.tax_free_fraction(crystallisation)
        gross_space = min(headroom / (1.0 - fraction), available)
        retention = fraction + (1.0 - fraction) * (1.0 - rate)
        infos.append((state, gross_space, retention))

    total_space = sum(space for _, space, _ in infos)
    if total_space <= 0:
        return remaining

    retention = sum(space * kept for _, space, kept in infos) / total_space
    to_withdraw = min(remaining / retention, total_space)
    for state, space, kept in infos:
        if remaining <= THRESHOLD:
            break
        gross = min(to_withdraw * space / total_space, space)
        net = min(gross * kept, remaining)
        if net > THRESHOLD:
            remaining -= simple_withdraw_pension(state, net, bands, plan, crystallisation)
    return remaining


def proportional_pension_withdrawals(
    states: Sequence[PersonTaxState],
    remaining: float,
    bands: Bands,
    plan: OptimizedWithdrawalPlan,
    crystallisation: Crystallisation,
) -> float:
    """Phase 3: residual need split by remaining pension.

    Shares are fixed from a single snapshot at the start of the phase but
    applied to whatever is still outstanding when each person's turn comes.
    """
    if remaining <= 0:
        return 0.0
    snapshot = [(state, state.available_pension()) for state in states if state.can_access]
    total = sum(available for _, available in snapshot)
    if total <= THRESHOLD:
        return remaining

    for state, available in snapshot:
        if remaining <= THRESHOLD:
            break
        if available <= THRESHOLD:
            continue
        target = remaining * available / total
        if target > THRESHOLD:
            remaining -= simple_withdraw_pension(state, target, bands, plan, crystallisation)
    return remaining


def withdraw_isas_optimized(states: Sequence[PersonTaxState], remaining: float, plan: OptimizedWithdrawalPlan) -> float:
    """Phase 4: ISAs in proportion to what each person can draw."""
    if remaining <= 0:
        return 0.0
    total = sum(state.available_isa for state in states)
    if total <= 0:
        return remaining

    wanted = min(remaining, total)
    for state in states:
        if state.available_isa <= 0:
            continue
        amount = min(wanted * state.available_isa / total, state.available_isa)
        state.available_isa -= amount
        plan._add(plan.tax_free_from_isa, state.name, amount)
        remaining -= amount
    return remaining


def calculate_optimized_withdrawals(
    people: Sequence[Person],
    net_needed: float,
    year: int,
    base_income: Dict[str, float],
    bands: Bands,
    crystallisation: Crystallisation,
) -> OptimizedWithdrawalPlan:
    """Plan the lowest-tax mix of withdrawals netting ``net_needed``.

    Parameters
    ----------
    people : sequence of Person
        Ledgers to plan against.  They are read, not modified.
    net_needed : float
        After-tax income required this year.
    year : int
        Simulated year, used for pension access.
    base_income : dict
        Taxable base income (state pension and the like) per person name.
    bands : sequence of TaxBand
        The year's tax bands.
    crystallisation : Crystallisation
        How uncrystallised money is released.

    Returns
    -------
    OptimizedWithdrawalPlan
        Per-person withdrawals, pot consumption and total tax.
    """
    plan = OptimizedWithdrawalPlan()
    if net_needed <= 0:
        return plan

    states = [PersonTaxState.from_person(p, year, base_income) for p in people]
    remaining = fill_personal_allowances(states, net_needed, bands, plan, crystallisation)
    logger.debug("optimizer allowance phase: %.2f still needed", remaining)
    if remaining > THRESHOLD:
        remaining = fill_basic_rate_band(states, remaining, bands, plan, crystallisation)
        logger.debug("optimizer basic-rate phase: %.2f still needed", remaining)
    if remaining > THRESHOLD:
        remaining = proportional_pension_withdrawals(states, remaining, bands, plan, crystallisation)
        logger.debug("optimizer proportional phase: %.2f still needed", remaining)
    remaining = withdraw_isas_optimized(states, remaining, plan)
    if remaining > 1:
        logger.debug("optimizer left %.2f unfunded", remaining)

    plan.total_tax = sum(
        taxes.person_tax(state.base_income, plan.taxable_from_pension.get(state.name, 0.0), bands)
        for state in states
    )
    return plan


def execute_optimized_drawdown(
    people: List[Person],
    net_needed: float,
    crystallisation: Crystallisation,
    year: int,
    base_income: Dict[str, float],
    bands: Bands,
) -> WithdrawalBreakdown:
    """Plan with :func:`calculate_optimized_withdrawals`, then apply the plan to the ledgers."""
    plan = calculate_optimized_withdrawals(people, net_needed, year, base_income, bands, crystallisation)
    breakdown = WithdrawalBreakdown()

    for person in people:
        used = plan.uncrystallised_used.get(person.name, 0.0)
        if used > 0:
            released = release_uncrystallised(person, used, crystallisation)
            breakdown.add_pension_tax_free(person.name, released.tax_free)
            breakdown.add_taxable(person.name, released.taxable)

        used = plan.crystallised_used.get(person.name, 0.0)
        if used > 0:
            breakdown.add_taxable(person.name, withdraw_from_crystallised(person, used))

        wanted = plan.tax_free_from_isa.get(person.name, 0.0)
        if wanted > 0:
            breakdown.add_isa_withdrawal(person.name, withdraw_from_isa(person, wanted))

    return breakdown


__all__ = [
    "PersonTaxState",
    "OptimizedWithdrawalPlan",
    "simple_withdraw_pension",
    "fill_personal_allowances",
    "fill_basic_rate_band",
    "proportional_pension_withdrawals",
    "withdraw_isas_optimized",
    "calculate_optimized_withdrawals",
    "execute_optimized_drawdown",
]
