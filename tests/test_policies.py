"""Tests for the drawdown policies.

People are born in 1960 and simulated in 2025 (age 65, pension accessible
from 55) against the default 2024/25 bands unless a test says otherwise.
"""

import pytest

from drawdown import policies, taxes
from drawdown.ledger import Person, WithdrawalBreakdown
from drawdown.params import Crystallisation, DrawdownOrder, SimulationParams

YEAR = 2025


def _person(name="Alex", **kwargs):
    defaults = dict(name=name, birth_year=1960)
    defaults.update(kwargs)
    return Person(**defaults)


def _run(order, people, need, base=None, **params):
    p = SimulationParams(drawdown=order, **params)
    return policies.execute_drawdown(people, need, p, YEAR, base or {}, taxes.default_tax_bands())


def test_savings_first_uses_isa_only_when_enough():
    p = _person(tax_free_savings=30000.0, uncrystallised_pot=100000.0)
    b = _run(DrawdownOrder.SAVINGS_FIRST, [p], 20000)
    assert b.tax_free_from_isa["Alex"] == pytest.approx(20000.0)
    assert b.total_taxable == 0.0
    assert p.uncrystallised_pot == 100000.0


def test_savings_first_falls_back_to_pension():
    p = _person(tax_free_savings=5000.0, uncrystallised_pot=200000.0)
    b = _run(DrawdownOrder.SAVINGS_FIRST, [p], 20000)
    assert p.tax_free_savings == 0.0
    assert b.total_taxable > 0
    assert b.net_income({}, taxes.default_tax_bands()) == pytest.approx(20000.0, abs=1.5)


def test_savings_first_respects_preserved_minimum():
    p = _person(tax_free_savings=10000.0, emergency_fund_minimum=8000.0, uncrystallised_pot=50000.0)
    b = _run(DrawdownOrder.SAVINGS_FIRST, [p], 5000)
    assert b.tax_free_from_isa["Alex"] == pytest.approx(2000.0)
    assert p.tax_free_savings == pytest.approx(8000.0)


def test_isas_drawn_in_proportion():
    a = _person("A", tax_free_savings=30000.0)
    b = _person("B", tax_free_savings=10000.0)
    breakdown = _run(DrawdownOrder.SAVINGS_FIRST, [a, b], 8000)
    assert breakdown.tax_free_from_isa == pytest.approx({"A": 6000.0, "B": 2000.0})


def test_pension_first_leaves_isa_alone():
    p = _person(tax_free_savings=50000.0, uncrystallised_pot=200000.0)
    b = _run(DrawdownOrder.PENSION_FIRST, [p], 20000)
    assert p.tax_free_savings == pytest.approx(50000.0, abs=1.0)
    assert b.tax_free_from_pension["Alex"] == pytest.approx(b.total_taxable / 3)
    assert b.net_income({}, taxes.default_tax_bands()) == pytest.approx(20000.0, abs=1.5)


def test_pension_first_skips_people_without_access():
    young = _person("Young", birth_year=1980, uncrystallised_pot=500000.0)
    old = _person("Old", uncrystallised_pot=500000.0)
    b = _run(DrawdownOrder.PENSION_FIRST, [young, old], 10000)
    assert young.uncrystallised_pot == 500000.0
    assert "Young" not in b.taxable_from_pension


def test_pension_first_crystallised_before_fresh_crystallisation():
    p = _person(crystallised_pot=50000.0, uncrystallised_pot=50000.0)
    _run(DrawdownOrder.PENSION_FIRST, [p], 10000)
    assert p.uncrystallised_pot == 50000.0
    assert p.crystallised_pot < 50000.0


def test_ufpls_uses_uncrystallised_first():
    p = _person(crystallised_pot=50000.0, uncrystallised_pot=50000.0)
    b = _run(DrawdownOrder.PENSION_FIRST, [p], 10000, crystallisation=Crystallisation.UFPLS)
    assert p.crystallised_pot == 50000.0
    assert b.tax_free_from_pension["Alex"] > 0


def test_pension_only_never_touches_isa():
    p = _person(tax_free_savings=50000.0, uncrystallised_pot=1000.0)
    b = _run(DrawdownOrder.PENSION_ONLY, [p], 20000)
    assert p.tax_free_savings == 50000.0
    assert b.total_tax_free + b.total_taxable == pytest.approx(1000.0)
    assert b.tax_free_from_isa == {}


def test_fill_basic_rate_caps_at_band_and_saves_excess():
    """Taxable drawdown stops at the basic-rate limit less existing income; the surplus goes to the ISA."""
    base = {"Alex": 11502.0}
    p = _person(uncrystallised_pot=500000.0)
    b = _run(DrawdownOrder.FILL_BASIC_RATE, [p], 30000, base)
    assert b.total_taxable == pytest.approx(50270 - 11502)
    # 51,690.67 drawn, 7,540 tax, 30,000 spent
    assert b.isa_deposits["Alex"] == pytest.approx(14150.67, abs=0.01)
    assert p.tax_free_savings == pytest.approx(14150.67, abs=0.01)
    assert b.net_income(base, taxes.default_tax_bands()) == pytest.approx(30000.0, abs=0.01)


def test_fill_basic_rate_shortfall_from_isa():
    p = _person(uncrystallised_pot=4000.0, tax_free_savings=20000.0)
    b = _run(DrawdownOrder.FILL_BASIC_RATE, [p], 10000)
    assert p.uncrystallised_pot == 0.0
    assert b.tax_free_from_isa["Alex"] == pytest.approx(6000.0)


def test_pension_to_isa_deposits_surplus_up_to_ceiling():
    p = _person(uncrystallised_pot=500000.0)
    b = _run(DrawdownOrder.PENSION_TO_ISA, [p], 10000)
    assert b.total_taxable == pytest.approx(50270.0)
    assert b.isa_deposits["Alex"] == pytest.approx(20000.0)
    assert p.tax_free_savings == pytest.approx(20000.0)


def _couple():
    return [_person("A", uncrystallised_pot=100000.0), _person("B", uncrystallised_pot=100000.0)]


def test_pension_to_isa_splits_surplus_evenly():
    base = {"A": 45000.0, "B": 45000.0}
    b = _run(DrawdownOrder.PENSION_TO_ISA, _couple(), 10000, base)
    # each fills 5,270 of basic-rate band: 7,026.67 gross, 1,054 tax
    assert b.total_isa_deposits == pytest.approx(1945.33, abs=0.01)
    assert b.isa_deposits["A"] == pytest.approx(b.isa_deposits["B"])


def test_maximize_couple_fills_both_isas():
    base = {"A": 45000.0, "B": 45000.0}
    people = _couple()
    b = _run(DrawdownOrder.PENSION_TO_ISA, people, 10000, base, maximize_couple_isa=True)
    assert b.total_isa_deposits == pytest.approx(40000.0, abs=0.5)
    assert b.isa_deposits == pytest.approx({"A": 20000.0, "B": 20000.0}, abs=0.5)
    assert people[0].uncrystallised_pot < people[1].uncrystallised_pot


def test_pension_to_isa_shortfall_from_isa():
    p = _person(uncrystallised_pot=2000.0, tax_free_savings=30000.0)
    b = _run(DrawdownOrder.PENSION_TO_ISA, [p], 10000)
    assert b.tax_free_from_isa["Alex"] == pytest.approx(8000.0)
    assert b.total_isa_deposits == 0.0


def test_proactive_deposits_with_nothing_to_spend():
    p = _person(uncrystallised_pot=500000.0)
    b = _run(DrawdownOrder.PENSION_TO_ISA_PROACTIVE, [p], 0)
    assert b.total_isa_deposits == pytest.approx(20000.0, abs=1.5)
    assert b.net_income({}, taxes.default_tax_bands()) == pytest.approx(0.0, abs=1.5)


def test_proactive_behaves_like_pension_to_isa_with_need():
    a, b = _person(uncrystallised_pot=500000.0), _person(uncrystallised_pot=500000.0)
    plain = _run(DrawdownOrder.PENSION_TO_ISA, [a], 10000)
    proactive = _run(DrawdownOrder.PENSION_TO_ISA_PROACTIVE, [b], 10000)
    assert proactive.total_taxable == pytest.approx(plain.total_taxable)
    assert proactive.total_isa_deposits == pytest.approx(plain.total_isa_deposits)


def test_bridge_fills_band_before_state_pension():
    p = _person(uncrystallised_pot=500000.0)
    b = _run(DrawdownOrder.STATE_PENSION_BRIDGE, [p], 10000)
    assert b.total_taxable == pytest.approx(50270.0)
    assert b.total_isa_deposits > 0


def test_bridge_draws_only_what_is_needed_once_state_pension_starts():
    base = {"Alex": 11502.0}
    p = _person(uncrystallised_pot=500000.0, tax_free_savings=10000.0)
    b = _run(DrawdownOrder.STATE_PENSION_BRIDGE, [p], 10000, base)
    assert b.total_isa_deposits == 0.0
    assert p.tax_free_savings == pytest.approx(10000.0, abs=1.0)
    assert b.net_income(base, taxes.default_tax_bands()) == pytest.approx(10000.0, abs=1.5)


def test_bridge_stops_for_non_state_pension_base_income():
    # only the partner has income, a DB pension, and nobody gets a state pension yet
    base = {"Alex": 0.0, "Jo": 8000.0}

    def household():
        return [_person(uncrystallised_pot=500000.0), _person("Jo", uncrystallised_pot=50000.0)]

    bridge = _run(DrawdownOrder.STATE_PENSION_BRIDGE, household(), 10000, base)
    first = _run(DrawdownOrder.PENSION_FIRST, household(), 10000, base)
    assert bridge.total_isa_deposits == 0.0
    assert bridge.total_taxable == pytest.approx(first.total_taxable)
    assert bridge.taxable_from_pension == pytest.approx(first.taxable_from_pension)
    assert bridge.total_taxable < 50270.0


@pytest.mark.parametrize("order", [o for o in DrawdownOrder if o is not DrawdownOrder.PENSION_TO_ISA_PROACTIVE])
def test_nothing_needed_means_nothing_drawn(order):
    p = _person(uncrystallised_pot=100000.0, tax_free_savings=10000.0)
    b = _run(order, [p], 0)
    assert b == WithdrawalBreakdown()
    assert p.uncrystallised_pot == 100000.0


@pytest.mark.parametrize("order", list(DrawdownOrder))
def test_balances_never_negative(order):
    people = [
        _person("A", uncrystallised_pot=3000.0, crystallised_pot=1000.0, tax_free_savings=500.0),
        _person("B", uncrystallised_pot=2000.0, tax_free_savings=1500.0, emergency_fund_minimum=1000.0),
    ]
    _run(order, people, 50000)
    for p in people:
        assert min(p.uncrystallised_pot, p.crystallised_pot, p.tax_free_savings) >= 0
    assert people[1].tax_free_savings >= 1000.0
