"""Tests for the Person ledger and the withdrawal breakdown."""

import pytest

from drawdown.ledger import DEFAULT_ISA_LIMIT, Person, WithdrawalBreakdown, clone_people, people_from_config
from drawdown.taxes import default_tax_bands


def _person(**kwargs):
    defaults = dict(name="Alex", birth_year=1960)
    defaults.update(kwargs)
    return Person(**defaults)


@pytest.mark.parametrize(
    "birth_year, year, expected",
    [(1960, 2015, True), (1960, 2014, False), (1800, 2025, False), (2030, 2025, False)],
)
def test_pension_access(birth_year, year, expected):
    assert _person(birth_year=birth_year).can_access_pension(year) is expected


def test_state_pension_deferral():
    p = _person(state_pension_defer_years=2)
    assert p.effective_state_pension_age() == 69
    assert not p.receives_state_pension(2028)
    assert p.receives_state_pension(2029)
    assert p.deferred_state_pension(10000) == pytest.approx(10000 * 1.058 ** 2)
    assert _person().deferred_state_pension(10000) == 10000


def test_db_pension_and_part_time_windows():
    p = _person(db_pension_amount=5000.0, db_pension_start_age=60,
                part_time_income=10000.0, part_time_start_age=60, part_time_end_age=66)
    assert p.receives_db_pension(2020)
    assert not p.receives_db_pension(2019)
    assert p.receiving_part_time_income(2025)
    assert not p.receiving_part_time_income(2026)
    assert not _person(db_pension_start_age=60).receives_db_pension(2030)


@pytest.mark.parametrize(
    "start_age, expected",
    [(60, 10000.0 * (1 - 5 * 0.04)), (65, 10000.0), (67, 10000.0 * (1 + 2 * 0.05)), (0, 10000.0)],
)
def test_db_pension_early_and_late_adjustment(start_age, expected):
    p = _person(db_pension_amount=10000.0, db_pension_start_age=start_age, db_pension_normal_age=65,
                db_pension_early_factor=0.04, db_pension_late_factor=0.05)
    assert p.effective_db_pension() == pytest.approx(expected)


def test_db_pension_commutation():
    p = _person(db_pension_amount=10000.0, db_pension_start_age=63, db_pension_normal_age=65,
                db_pension_early_factor=0.04, db_pension_commutation=0.2, db_pension_commute_factor=15.0)
    # 9200 after two years early, a fifth of it given up at 15 to 1
    assert p.effective_db_pension() == pytest.approx(7360.0)
    assert p.db_pension_lump_sum() == pytest.approx(1840.0 * 15)


def test_db_pension_commute_factor_defaults_to_twelve():
    p = _person(db_pension_amount=10000.0, db_pension_start_age=65, db_pension_commutation=0.25,
                db_pension_commute_factor=0.0)
    assert p.db_pension_lump_sum() == pytest.approx(2500.0 * 12)
    assert _person(db_pension_amount=10000.0, db_pension_start_age=65).db_pension_lump_sum() == 0.0


def test_db_lump_sum_paid_into_isa_once_in_first_year():
    p = _person(tax_free_savings=1000.0, db_pension_amount=10000.0, db_pension_start_age=65,
                db_pension_commutation=0.25)
    assert p.take_db_pension_lump_sum(2024) == 0.0
    assert p.take_db_pension_lump_sum(2025) == pytest.approx(30000.0)
    assert p.tax_free_savings == pytest.approx(31000.0)
    assert p.db_pension_lump_sum_taken
    assert p.take_db_pension_lump_sum(2025) == 0.0
    assert p.tax_free_savings == pytest.approx(31000.0)


def test_db_lump_sum_not_paid_when_plan_starts_after_first_year():
    p = _person(db_pension_amount=10000.0, db_pension_start_age=60, db_pension_commutation=0.25)
    assert p.take_db_pension_lump_sum(2025) == 0.0
    assert p.tax_free_savings == 0.0


def test_balances():
    p = _person(tax_free_savings=10000.0, emergency_fund_minimum=12000.0,
                uncrystallised_pot=50000.0, crystallised_pot=5000.0)
    assert p.available_isa() == 0.0
    assert p.total_pension() == 55000.0
    assert p.total_wealth() == 65000.0


def test_clone_is_independent():
    people = [_person(uncrystallised_pot=1000.0)]
    copies = clone_people(people)
    copies[0].uncrystallised_pot = 0.0
    assert people[0].uncrystallised_pot == 1000.0


def test_people_from_config():
    config = {
        "people": [
            {"name": "Alex", "birth_date": "1962-03-01", "pension": 250000, "tax_free_savings": 40000, "isa_annual_limit": 0},
            {"name": "Jo", "birth_year": 1964, "retirement_age": 57, "isa_annual_limit": 15000,
             "db_pension_amount": 8000, "db_pension_start_age": 62, "db_pension_normal_age": 65,
             "db_pension_early_factor": 0.05, "db_pension_commutation": 0.1},
        ],
        "financial": {"state_pension_deferral_rate": 0.05},
    }
    alex, jo = people_from_config(config)
    assert (alex.birth_year, alex.uncrystallised_pot, alex.tax_free_savings) == (1962, 250000.0, 40000.0)
    assert alex.isa_annual_limit == DEFAULT_ISA_LIMIT
    assert jo.isa_annual_limit == 15000.0
    assert jo.retirement_age == 57
    assert (jo.db_pension_normal_age, jo.db_pension_early_factor, jo.db_pension_commutation) == (65, 0.05, 0.1)
    assert jo.db_pension_commute_factor == 12.0
    assert alex.state_pension_deferral_rate == 0.05
    assert people_from_config({"people": [{"name": "Sam", "birth_year": 1960}]})[0].state_pension_deferral_rate == 0.058


def test_breakdown_totals_and_net_income():
    bands = default_tax_bands()
    base = {"A": 11502.0, "B": 0.0}
    b = WithdrawalBreakdown()
    b.add_taxable("A", 18498.0)
    b.add_pension_tax_free("A", 6166.0)
    b.add_isa_withdrawal("B", 1000.0)
    b.add_isa_deposit("B", 500.0)

    assert b.total_taxable == 18498.0
    assert b.total_tax_free == 7166.0
    assert b.total_withdrawn() == 25664.0
    assert b.tax_by_person(base, bands) == pytest.approx({"A": 3486.0, "B": 0.0})
    # tax on the base income alone is not charged against the withdrawals
    assert b.net_income(base, bands) == pytest.approx(25664.0 - 3486.0 - 500.0)
