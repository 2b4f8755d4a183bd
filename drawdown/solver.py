"""Gross-up solvers for pension withdrawals.

The question every policy asks is "what gross withdrawal, taxed on top of the
income already received this year, nets exactly N?"  For a fully taxable
withdrawal the tax engine answers it directly (:func:`solve_taxable_gross`).
When 25% of the withdrawal is tax-free the net is
``0.25 G + 0.75 G - tax(0.75 G | existing)``, which has no closed form, so it
is solved numerically:

* :func:`solve_split_gross` - fixed-point iteration.  Seed ``G = N * 1.3``,
  then rescale ``G`` by ``target / net(G)`` until within £1, the pot is
  exhausted, or 20 iterations have run.
* :func:`bisect_split_gross` - bisection over ``[0, available]``.

Both cap ``G`` at the available pot and return the (possibly short) net that
the capped amount produces.  Hitting the iteration cap is not an error: the
best effort so far is returned with ``converged=False``.

Example
-------

>>> from drawdown.taxes import default_tax_bands
>>> result = solve_split_gross(10000, 0, 500000, default_tax_bands())
>>> round(result.net)
10000
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from . import taxes

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 20
TOLERANCE = 1.0
SEED_MULTIPLIER = 1.3

BISECT_ITERATIONS = 50
BISECT_TOLERANCE = 0.01


@dataclass(frozen=True)
class SolverResult:
    gross: float
    net: float
    iterations: int
    converged: bool


_NOTHING = SolverResult(gross=0.0, net=0.0, iterations=0, converged=True)


def split_net_yield(
    gross: float,
    existing_income: float,
    bands: Sequence[taxes.TaxBand],
    tax_free_fraction: float = 0.25,
) -> float:
    """Net received from ``gross`` when ``tax_free_fraction`` of it is tax-free."""
    tax_free = gross * tax_free_fraction
    taxable = gross - tax_free
    return tax_free + taxable - taxes.marginal_tax(taxable, existing_income, bands)


def solve_split_gross(
    net_target: float,
    existing_income: float,
    available: float,
    bands: Sequence[taxes.TaxBand],
    tax_free_fraction: float = 0.25,
    max_iterations: int = MAX_ITERATIONS,
    tolerance: float = TOLERANCE,
) -> SolverResult:
    """Fixed-point search for the gross withdrawal netting ``net_target``.

    Parameters
    ----------
    net_target : float
        After-tax amount wanted.
    existing_income : float
        Taxable income already received this year.
    available : float
        Size of the pot the withdrawal comes from; the answer never exceeds it.
    bands : sequence of TaxBand
        Bands for the year.
    tax_free_fraction : float, optional
        Share of the gross that is tax-free (0.25 for UFPLS and for gradual
        crystallisation before the lump sum is taken).

    Returns
    -------
    SolverResult
        ``gross`` to withdraw and the ``net`` it yields.
    """
    if net_target <= 0 or available <= 0:
        return _NOTHING

    gross = net_target * SEED_MULTIPLIER
    net = 0.0
    for i in range(1, max_iterations + 1):
        gross = min(gross, available)
        net = split_net_yield(gross, existing_income, bands, tax_free_fraction)
        close = abs(net - net_target) < tolerance
        if close or gross >= available or net <= 0:
            return SolverResult(gross, net, i, close)
        gross *= net_target / net

    gross = min(gross, available)
    net = split_net_yield(gross, existing_income, bands, tax_free_fraction)
    logger.debug("split gross-up stopped after %d iterations: target %.2f, net %.2f", max_iterations, net_target, net)
    return SolverResult(gross, net, max_iterations, abs(net - net_target) < tolerance)


def bisect_split_gross(
    net_target: float,
    existing_income: float,
    available: float,
    bands: Sequence[taxes.TaxBand],
    tax_free_fraction: float = 0.25,
    max_iterations: int = BISECT_ITERATIONS,
    tolerance: float = BISECT_TOLERANCE,
) -> SolverResult:
    """Bisection over ``[0, available]``; same contract as :func:`solve_split_gross`."""
    if net_target <= 0 or available <= 0:
        return _NOTHING

    low, high = 0.0, available
    mid = 0.0
    for i in range(1, max_iterations + 1):
        mid = (low + high) / 2
        net = split_net_yield(mid, existing_income, bands, tax_free_fraction)
        if abs(net - net_target) < tolerance:
            return SolverResult(mid, net, i, True)
        if net < net_target:
            low = mid
        else:
            high = mid

    net = split_net_yield(mid, existing_income, bands, tax_free_fraction)
    return SolverResult(mid, net, max_iterations, abs(net - net_target) < tolerance)


def solve_taxable_gross(
    net_target: float,
    existing_income: float,
    available: float,
    bands: Sequence[taxes.TaxBand],
) -> SolverResult:
    """Gross-up for a fully taxable withdrawal, capped at ``available``."""
    if net_target <= 0 or available <= 0:
        return _NOTHING
    gross, _ = taxes.gross_up_for_tax(net_target, existing_income, bands)
    gross = min(gross, available)
    net = gross - taxes.marginal_tax(gross, existing_income, bands)
    return SolverResult(gross, net, 1, abs(net - net_target) < TOLERANCE)


def solve_pension_gross(
    net_target: float,
    existing_income: float,
    available: float,
    bands: Sequence[taxes.TaxBand],
    tax_free_fraction: float,
) -> SolverResult:
    """Pick the taxable gross-up when nothing is tax-free, else the split solver."""
    if tax_free_fraction <= 0:
        return solve_taxable_gross(net_target, existing_income, available, bands)
    return solve_split_gross(net_target, existing_income, available, bands, tax_free_fraction)


__all__ = [
    "MAX_ITERATIONS",
    "TOLERANCE",
    "SEED_MULTIPLIER",
    "BISECT_ITERATIONS",
    "BISECT_TOLERANCE",
    "SolverResult",
    "split_net_yield",
    "solve_split_gross",
    "bisect_split_gross",
    "solve_taxable_gross",
    "solve_pension_gross",
]
