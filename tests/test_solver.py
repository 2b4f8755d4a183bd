"""Tests for the gross-up solvers."""

import math

import pytest

from drawdown import solver, taxes


def _flat(rate):
    return [taxes.TaxBand("Flat", 0.0, math.inf, rate)]


def test_taxable_gross_flat_rate():
    result = solver.solve_taxable_gross(8000, 0, 1e6, _flat(0.2))
    assert result.gross == pytest.approx(10000.0, abs=0.1)
    assert result.converged


def test_split_gross_flat_rate():
    """25% tax-free at a flat 20% keeps 85p of every pound."""
    result = solver.solve_split_gross(8500, 0, 1e6, _flat(0.2))
    assert result.gross == pytest.approx(10000.0, abs=2)
    assert result.net == pytest.approx(8500.0, abs=solver.TOLERANCE)
    assert result.converged


def test_split_gross_capped_at_pot():
    result = solver.solve_split_gross(8500, 0, 5000, _flat(0.2))
    assert result.gross == 5000
    assert result.net == pytest.approx(4250.0)
    assert not result.converged


@pytest.mark.parametrize("target", [500, 5000, 20000, 45000, 90000, 150000])
@pytest.mark.parametrize("existing", [0, 11502, 60000, 110000])
def test_split_gross_terminates(target, existing):
    result = solver.solve_split_gross(target, existing, 1e7, taxes.default_tax_bands())
    assert 1 <= result.iterations <= solver.MAX_ITERATIONS
    assert result.net == pytest.approx(target, abs=solver.TOLERANCE)


def test_bisection_agrees_with_fixed_point():
    bands = taxes.default_tax_bands()
    fixed = solver.solve_split_gross(30000, 20000, 1e6, bands)
    bisect = solver.bisect_split_gross(30000, 20000, 1e6, bands)
    assert bisect.gross == pytest.approx(fixed.gross, abs=2)
    assert bisect.net == pytest.approx(30000, abs=solver.BISECT_TOLERANCE)


@pytest.mark.parametrize("target,available", [(0, 1000), (-5, 1000), (1000, 0)])
def test_nothing_to_do(target, available):
    result = solver.solve_split_gross(target, 0, available, taxes.default_tax_bands())
    assert result.gross == 0.0
    assert result.net == 0.0


def test_pension_gross_without_tax_free_part():
    bands = taxes.default_tax_bands()
    direct = solver.solve_pension_gross(10000, 20000, 1e6, bands, 0.0)
    taxable = solver.solve_taxable_gross(10000, 20000, 1e6, bands)
    assert direct == taxable
    assert direct.gross > solver.solve_pension_gross(10000, 20000, 1e6, bands, 0.25).gross
