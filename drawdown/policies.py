"""Drawdown policies: turning one year's net income target into withdrawals.

Every policy receives the people's ledgers, the net (after-tax) income still
needed this year, the execution parameters, the simulated year, each person's
taxable base income (state pension, DB pension, part-time pay) and the year's
tax bands.  It mutates the ledgers in place and returns a
:class:`~drawdown.ledger.WithdrawalBreakdown`.

Policies
--------

``savings_first``
    ISAs proportionally (down to the preserved minimum), then pension
    grossed up for tax.
``pension_first``
    Pension grossed up for tax, then ISAs.
``tax_optimized``
    The four-phase band optimizer in :mod:`drawdown.optimizer`.
``pension_only``
    Pension only; ISAs are never touched, even on a shortfall.
``pension_to_isa``
    Fill each person's allowance and basic-rate band from pension and pour
    the surplus into ISAs; optionally over-draw to fill every ISA ceiling.
``pension_to_isa_proactive``
    As ``pension_to_isa``, and still band-fills into ISAs in years with
    nothing to spend.
``fill_basic_rate``
    Draw exactly up to the basic-rate limit; surplus to ISAs person by person.
``state_pension_bridge``
    Fill the basic-rate band while nobody has any base income yet, then
    pension first for just what is needed.

Nothing here raises for lack of money: when the buckets run dry the
breakdown is simply smaller than the requirement and the caller decides
whether that means the plan ran out.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Sequence

import numpy as np

from . import solver, taxes
from .crystallisation import (
    CrystallisationResult,
    release_uncrystallised,
    tax_free_fraction,
    withdraw_from_crystallised,
    withdraw_from_isa,
)
from .ledger import Person, WithdrawalBreakdown
from .optimizer import execute_optimized_drawdown
from .params import Crystallisation, DrawdownOrder, SimulationParams

logger = logging.getLogger(__name__)

# Assumed marginal rate for the couple ISA top-up.  The top-up size is an
# estimate only: the surplus is re-measured with real tax before depositing.
ASSUMED_COUPLE_TOPUP_RATE = 0.40

Bands = Sequence[taxes.TaxBand]
Policy = Callable[[List[Person], float, SimulationParams, int, Dict[str, float], Bands], WithdrawalBreakdown]


def _existing_income(person: Person, breakdown: WithdrawalBreakdown, base_income: Dict[str, float]) -> float:
    return base_income.get(person.name, 0.0) + breakdown.taxable_for(person.name)


def _record(breakdown: WithdrawalBreakdown, name: str, result: CrystallisationResult) -> None:
    breakdown.add_pension_tax_free(name, result.tax_free)
    breakdown.add_taxable(name, result.taxable)


# --- shared withdrawal passes ---

def withdraw_from_isas(people: Sequence[Person], remaining: float, breakdown: WithdrawalBreakdown) -> float:
    """Draw ``remaining`` from ISAs in proportion to each person's available balance."""
    if remaining <= 0:
        return 0.0
    available = np.array([p.available_isa() for p in people], dtype=float)
    pool = available.sum()
    if pool <= 0:
        return remaining

    wanted = min(remaining, pool)
    for person, avail in zip(people, available):
        if avail <= 0:
            continue
        taken = withdraw_from_isa(person, min(wanted * avail / pool, avail))
        breakdown.add_isa_withdrawal(person.name, taken)
        remaining -= taken
    return remaining


def withdraw_from_isas_sequential(people: Sequence[Person], remaining: float, breakdown: WithdrawalBreakdown) -> float:
    """Draw ``remaining`` from each person's ISA in turn."""
    for person in people:
        if remaining <= 0 or person.tax_free_savings <= 0:
            continue
        taken = withdraw_from_isa(person, remaining)
        breakdown.add_isa_withdrawal(person.name, taken)
        remaining -= taken
    return remaining


def _withdraw_crystallised_grossed_up(
    people: Sequence[Person],
    remaining: float,
    year: int,
    breakdown: WithdrawalBreakdown,
    base_income: Dict[str, float],
    bands: Bands,
) -> float:
    while remaining > 1:
        progressed = False
        for person in people:
            if remaining <= 1:
                break
            if not person.can_access_pension(year) or person.crystallised_pot <= 0:
                continue
            existing = _existing_income(person, breakdown, base_income)
            result = solver.solve_taxable_gross(remaining, existing, person.crystallised_pot, bands)
            if result.gross < 1:
                continue
            taken = withdraw_from_crystallised(person, result.gross)
            breakdown.add_taxable(person.name, taken)
            remaining -= taken - taxes.marginal_tax(taken, existing, bands)
            progressed = True
        if not progressed:
            break
    return remaining


def _withdraw_uncrystallised_grossed_up(
    people: Sequence[Person],
    remaining: float,
    crystallisation: Crystallisation,
    year: int,
    breakdown: WithdrawalBreakdown,
    base_income: Dict[str, float],
    bands: Bands,
) -> float:
    while remaining > 1:
        progressed = False
        for person in people:
            if remaining <= 1:
                break
            if not person.can_access_pension(year) or person.uncrystallised_pot <= 0:
                continue
            existing = _existing_income(person, breakdown, base_income)
            fraction = tax_free_fraction(person, crystallisation)
            result = solver.solve_pension_gross(remaining, existing, person.uncrystallised_pot, bands, fraction)
            if result.gross < 1:
                continue
            released = release_uncrystallised(person, result.gross, crystallisation)
            _record(breakdown, person.name, released)
            remaining -= released.tax_free + released.taxable - taxes.marginal_tax(released.taxable, existing, bands)
            progressed = True
        if not progressed:
            break
    return remaining


def withdraw_from_pension_grossed_up(
    people: Sequence[Person],
    remaining: float,
    crystallisation: Crystallisation,
    year: int,
    breakdown: WithdrawalBreakdown,
    base_income: Dict[str, float],
    bands: Bands,
) -> float:
    """Draw pension until ``remaining`` net has been raised or the pots are empty.

    Gradual: crystallised pots first, then crystallise more.  UFPLS: the
    uncrystallised pots first, then anything already crystallised.  Returns
    the net still outstanding.
    """
    if remaining <= 0:
        return 0.0
    if crystallisation == Crystallisation.UFPLS:
        remaining = _withdraw_uncrystallised_grossed_up(people, remaining, crystallisation, year, breakdown, base_income, bands)
        return _withdraw_crystallised_grossed_up(people, remaining, year, breakdown, base_income, bands)
    remaining = _withdraw_crystallised_grossed_up(people, remaining, year, breakdown, base_income, bands)
    return _withdraw_uncrystallised_grossed_up(people, remaining, crystallisation, year, breakdown, base_income, bands)


# --- band filling ---

def band_fill_target(base_income: float, allowance: float, basic_rate_limit: float) -> float:
    """Taxable amount that fills what is left of the allowance and the basic-rate band."""
    return max(0.0, allowance - base_income) + max(0.0, basic_rate_limit - max(base_income, allowance))


def _fill_band(
    person: Person,
    target_taxable: float,
    crystallisation: Crystallisation,
    breakdown: WithdrawalBreakdown,
) -> None:
    if target_taxable <= 0:
        return
    fraction = tax_free_fraction(person, crystallisation)
    amount = min(target_taxable / (1.0 - fraction), person.uncrystallised_pot)
    drawn = 0.0
    if amount > 0:
        released = release_uncrystallised(person, amount, crystallisation)
        _record(breakdown, person.name, released)
        drawn = released.taxable
    if person.crystallised_pot > 0 and drawn < target_taxable:
        taken = withdraw_from_crystallised(person, target_taxable - drawn)
        breakdown.add_taxable(person.name, taken)


def net_from_pension(breakdown: WithdrawalBreakdown, base_income: Dict[str, float], bands: Bands) -> float:
    """Everything withdrawn so far less the tax those withdrawals add on top of base income."""
    extra_tax = sum(
        taxes.marginal_tax(taxable, base_income.get(name, 0.0), bands)
        for name, taxable in breakdown.taxable_from_pension.items()
    )
    return breakdown.total_withdrawn() - extra_tax


def deposit_evenly(people: Sequence[Person], excess: float, breakdown: WithdrawalBreakdown) -> float:
    """Split ``excess`` evenly across ISAs, each capped at its ceiling, then fill remaining headroom.

    Returns whatever no ISA could take.
    """
    if excess <= 0 or not people:
        return 0.0
    share = excess / len(people)
    for person in people:
        deposit = min(share, person.isa_annual_limit)
        if deposit <= 0:
            continue
        person.tax_free_savings += deposit
        breakdown.add_isa_deposit(person.name, deposit)
        excess -= deposit
    for person in people:
        if excess <= 0:
            break
        headroom = person.isa_annual_limit - breakdown.isa_deposits.get(person.name, 0.0)
        if headroom > 0:
            deposit = min(excess, headroom)
            person.tax_free_savings += deposit
            breakdown.add_isa_deposit(person.name, deposit)
            excess -= deposit
    if excess > 1:
        logger.debug("%.2f of surplus exceeds every ISA ceiling", excess)
    return max(0.0, excess)


def deposit_sequential(people: Sequence[Person], excess: float, breakdown: WithdrawalBreakdown) -> float:
    """Fill each person's ISA ceiling in turn."""
    for person in people:
        if excess <= 0:
            break
        deposit = min(excess, person.isa_annual_limit)
        if deposit <= 0:
            continue
        person.tax_free_savings += deposit
        breakdown.add_isa_deposit(person.name, deposit)
        excess -= deposit
    return max(0.0, excess)


def _couple_topup(
    people: Sequence[Person],
    gap: float,
    crystallisation: Crystallisation,
    year: int,
    breakdown: WithdrawalBreakdown,
) -> None:
    """Over-draw from the first person with accessible pension to fill the ISA ceilings."""
    rate = ASSUMED_COUPLE_TOPUP_RATE
    for person in people:
        if not person.can_access_pension(year) or person.total_pension() <= 0:
            continue
        fraction = tax_free_fraction(person, crystallisation)
        gross = gap / (fraction + (1.0 - fraction) * (1.0 - rate))
        if person.uncrystallised_pot > 0:
            released = release_uncrystallised(person, min(gross, person.uncrystallised_pot), crystallisation)
            _record(breakdown, person.name, released)
            gross -= released.amount
        if gross > 0 and person.crystallised_pot > 0:
            breakdown.add_taxable(person.name, withdraw_from_crystallised(person, gross))
        return


def _cover_shortfall(
    people: Sequence[Person],
    shortfall: float,
    params: SimulationParams,
    year: int,
    breakdown: WithdrawalBreakdown,
    base_income: Dict[str, float],
    bands: Bands,
    proportional: bool,
) -> float:
    if proportional:
        shortfall = withdraw_from_isas(people, shortfall, breakdown)
    else:
        shortfall = withdraw_from_isas_sequential(people, shortfall, breakdown)
    if shortfall > 1:
        shortfall = withdraw_from_pension_grossed_up(
            people, shortfall, params.crystallisation, year, breakdown, base_income, bands
        )
    return shortfall


def _proactive_deposits(
    people: Sequence[Person],
    crystallisation: Crystallisation,
    year: int,
    base_income: Dict[str, float],
    bands: Bands,
) -> WithdrawalBreakdown:
    """Band-fill into ISAs in a year with nothing to spend, up to what the ceilings absorb."""
    breakdown = WithdrawalBreakdown()
    room = sum(max(0.0, p.isa_annual_limit) for p in people)
    if room <= 1:
        return breakdown

    allowance = taxes.personal_allowance(bands)
    _, basic_limit, _ = taxes.basic_rate_band(bands)
    for person in people:
        if room <= 1:
            break
        if not person.can_access_pension(year):
            continue
        base = base_income.get(person.name, 0.0)
        target = band_fill_target(base, allowance, basic_limit)
        if target <= 0:
            continue

        drawn = 0.0
        if person.uncrystallised_pot > 0:
            fraction = tax_free_fraction(person, crystallisation)
            wanted = solver.solve_pension_gross(room, base, person.uncrystallised_pot, bands, fraction)
            amount = min(target / (1.0 - fraction), wanted.gross)
            released = release_uncrystallised(person, amount, crystallisation)
            _record(breakdown, person.name, released)
            drawn = released.taxable
            room -= released.tax_free + released.taxable - taxes.marginal_tax(released.taxable, base, bands)

        if room > 1 and person.crystallised_pot > 0 and drawn < target:
            wanted = solver.solve_taxable_gross(room, base + drawn, person.crystallised_pot, bands)
            taken = withdraw_from_crystallised(person, min(target - drawn, wanted.gross))
            breakdown.add_taxable(person.name, taken)
            room -= taken - taxes.marginal_tax(taken, base + drawn, bands)

    deposit_evenly(people, net_from_pension(breakdown, base_income, bands), breakdown)
    return breakdown


# --- policies ---

def savings_first(people, net_needed, params, year, base_income, bands) -> WithdrawalBreakdown:
    breakdown = WithdrawalBreakdown()
    remaining = withdraw_from_isas(people, net_needed, breakdown)
    withdraw_from_pension_grossed_up(people, remaining, params.crystallisation, year, breakdown, base_income, bands)
    return breakdown


def pension_first(people, net_needed, params, year, base_income, bands) -> WithdrawalBreakdown:
    breakdown = WithdrawalBreakdown()
    remaining = withdraw_from_pension_grossed_up(
        people, net_needed, params.crystallisation, year, breakdown, base_income, bands
    )
    withdraw_from_isas(people, remaining, breakdown)
    return breakdown


def pension_only(people, net_needed, params, year, base_income, bands) -> WithdrawalBreakdown:
    breakdown = WithdrawalBreakdown()
    withdraw_from_pension_grossed_up(people, net_needed, params.crystallisation, year, breakdown, base_income, bands)
    return breakdown


def tax_optimized(people, net_needed, params, year, base_income, bands) -> WithdrawalBreakdown:
    return execute_optimized_drawdown(people, net_needed, params.crystallisation, year, base_income, bands)


def pension_to_isa(people, net_needed, params, year, base_income, bands) -> WithdrawalBreakdown:
    """Fill allowance and basic-rate band from pension; surplus to ISAs, shortfall from ISAs then pension."""
    breakdown = WithdrawalBreakdown()
    if net_needed <= 0:
        return breakdown

    allowance = taxes.personal_allowance(bands)
    _, basic_limit, _ = taxes.basic_rate_band(bands)
    for person in people:
        if not person.can_access_pension(year):
            continue
        target = band_fill_target(base_income.get(person.name, 0.0), allowance, basic_limit)
        _fill_band(person, target, params.crystallisation, breakdown)

    net = net_from_pension(breakdown, base_income, bands)
    ceilings = sum(p.isa_annual_limit for p in people)
    surplus = net - net_needed
    if params.maximize_couple_isa and len(people) > 1 and 0 <= surplus < ceilings:
        _couple_topup(people, ceilings - surplus, params.crystallisation, year, breakdown)
        net = net_from_pension(breakdown, base_income, bands)

    if net > net_needed:
        deposit_evenly(people, net - net_needed, breakdown)
    elif net < net_needed:
        _cover_shortfall(people, net_needed - net, params, year, breakdown, base_income, bands, proportional=True)
    return breakdown


def pension_to_isa_proactive(people, net_needed, params, year, base_income, bands) -> WithdrawalBreakdown:
    if net_needed <= 0:
        return _proactive_deposits(people, params.crystallisation, year, base_income, bands)
    return pension_to_isa(people, net_needed, params, year, base_income, bands)


def _fill_then_settle(people, net_needed, params, year, base_income, bands, targets) -> WithdrawalBreakdown:
    breakdown = WithdrawalBreakdown()
    for person in people:
        if person.can_access_pension(year):
            _fill_band(person, targets(person), params.crystallisation, breakdown)

    net = net_from_pension(breakdown, base_income, bands)
    if net > net_needed:
        deposit_sequential(people, net - net_needed, breakdown)
    elif net < net_needed:
        _cover_shortfall(people, net_needed - net, params, year, breakdown, base_income, bands, proportional=False)
    return breakdown


def fill_basic_rate(people, net_needed, params, year, base_income, bands) -> WithdrawalBreakdown:
    """Draw up to, never past, the basic-rate limit net of each person's base income."""
    if net_needed <= 0:
        return WithdrawalBreakdown()
    allowance = taxes.personal_allowance(bands)
    _, basic_limit, _ = taxes.basic_rate_band(bands)
    return _fill_then_settle(
        people, net_needed, params, year, base_income, bands,
        lambda p: band_fill_target(base_income.get(p.name, 0.0), allowance, basic_limit),
    )


def state_pension_bridge(people, net_needed, params, year, base_income, bands) -> WithdrawalBreakdown:
    """Fill the basic-rate band from pensions until anyone has taxable base income.

    Any base income counts, not only the state pension: a DB pension or
    part-time pay for either person also switches to pension first.
    """
    if net_needed <= 0:
        return WithdrawalBreakdown()
    if any(base_income.get(p.name, 0.0) > 0 for p in people):
        return pension_first(people, net_needed, params, year, base_income, bands)
    _, basic_limit, _ = taxes.basic_rate_band(bands)
    return _fill_then_settle(people, net_needed, params, year, base_income, bands, lambda p: basic_limit)


POLICIES: Dict[DrawdownOrder, Policy] = {
    DrawdownOrder.SAVINGS_FIRST: savings_first,
    DrawdownOrder.PENSION_FIRST: pension_first,
    DrawdownOrder.TAX_OPTIMIZED: tax_optimized,
    DrawdownOrder.PENSION_TO_ISA: pension_to_isa,
    DrawdownOrder.PENSION_TO_ISA_PROACTIVE: pension_to_isa_proactive,
    DrawdownOrder.PENSION_ONLY: pension_only,
    DrawdownOrder.FILL_BASIC_RATE: fill_basic_rate,
    DrawdownOrder.STATE_PENSION_BRIDGE: state_pension_bridge,
}


def execute_drawdown(
    people: List[Person],
    net_needed: float,
    params: SimulationParams,
    year: int,
    base_income_by_person: Dict[str, float],
    bands: Bands,
) -> WithdrawalBreakdown:
    """Run the policy named by ``params.drawdown`` for one year.

    Parameters
    ----------
    people : list of Person
        Ledgers, mutated in place.
    net_needed : float
        After-tax income still required this year.
    params : SimulationParams
        Crystallisation policy, drawdown order and options.
    year : int
        Simulated calendar year (drives pension access).
    base_income_by_person : dict
        Taxable income each person already has this year.
    bands : sequence of TaxBand
        The year's (possibly inflated) tax bands.

    Returns
    -------
    WithdrawalBreakdown
        What was drawn from where, plus any ISA deposits.
    """
    policy = POLICIES[DrawdownOrder(params.drawdown)]
    if net_needed <= 0 and params.drawdown is not DrawdownOrder.PENSION_TO_ISA_PROACTIVE:
        return WithdrawalBreakdown()
    return policy(people, net_needed, params, year, base_income_by_person, bands)


__all__ = [
    "ASSUMED_COUPLE_TOPUP_RATE",
    "POLICIES",
    "withdraw_from_isas",
    "withdraw_from_isas_sequential",
    "withdraw_from_pension_grossed_up",
    "band_fill_target",
    "net_from_pension",
    "deposit_evenly",
    "deposit_sequential",
    "savings_first",
    "pension_first",
    "pension_only",
    "tax_optimized",
    "pension_to_isa",
    "pension_to_isa_proactive",
    "fill_basic_rate",
    "state_pension_bridge",
    "execute_drawdown",
]
