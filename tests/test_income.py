"""Tests for the income tiers and variable-percentage withdrawal."""

import pytest

from drawdown.income import (
    IncomeTier,
    VPWState,
    annual_income_for_age,
    investment_gains_income,
    tier_for_age,
    tiers_from_config,
    vpw_rate,
)


def _tiers(*rows):
    return tiers_from_config({"income_requirements": {"tiers": list(rows)}})


def test_tiers_read_from_config():
    tiers = _tiers({"end_age": 70, "monthly_amount": 3000}, {"start_age": 70, "monthly_amount": 4, "is_percentage": True})
    assert tiers == [
        IncomeTier(monthly_amount=3000.0, end_age=70),
        IncomeTier(monthly_amount=4.0, start_age=70, is_percentage=True),
    ]
    assert tiers_from_config({}) == []


@pytest.mark.parametrize("age, expected", [(60, 3000.0), (69, 3000.0), (70, 2500.0), (79, 2500.0), (80, 2000.0), (99, 2000.0)])
def test_first_covering_tier_wins(age, expected):
    tiers = _tiers(
        {"end_age": 70, "monthly_amount": 3000},
        {"start_age": 70, "end_age": 80, "monthly_amount": 2500},
        {"start_age": 80, "monthly_amount": 2000},
    )
    assert tier_for_age(tiers, age).monthly_amount == expected


def test_last_tier_when_none_covers():
    tiers = _tiers({"start_age": 60, "end_age": 65, "monthly_amount": 1000}, {"start_age": 70, "monthly_amount": 500})
    assert tier_for_age(tiers, 67).monthly_amount == 500.0
    assert tier_for_age([], 67) is None


@pytest.mark.parametrize("age, expected", [(74, 24000.0), (75, 18000.0)])
def test_two_phase_amounts_without_tiers(age, expected):
    income_cfg = {"monthly_before_age": 2000, "monthly_after_age": 1500, "age_threshold": 75}
    assert annual_income_for_age(income_cfg, [], age, 1_000_000.0) == expected


def test_percentage_tier_uses_initial_portfolio():
    tiers = _tiers({"monthly_amount": 3.5, "is_percentage": True})
    assert annual_income_for_age({}, tiers, 66, 1_000_000.0) == pytest.approx(35000.0)


def test_investment_gains_tier_has_no_fixed_amount():
    tiers = _tiers({"end_age": 75, "monthly_amount": 2000}, {"start_age": 75, "is_investment_gains": True})
    assert annual_income_for_age({}, tiers, 70, 0.0) == 24000.0
    assert annual_income_for_age({}, tiers, 75, 0.0) is None


def test_investment_gains_income():
    # 5% on 400k pension plus 4% on 100k ISA, less 3% of 500k
    assert investment_gains_income(400000.0, 100000.0, 0.05, 0.04, 0.03) == pytest.approx(9000.0)
    assert investment_gains_income(400000.0, 100000.0, 0.01, 0.01, 0.03) == 0.0


@pytest.mark.parametrize("age, expected", [(40, 0.030), (55, 0.030), (65, 0.042), (80, 0.077), (100, 0.350), (104, 0.350)])
def test_vpw_rate(age, expected):
    assert vpw_rate(age) == pytest.approx(expected)


def test_vpw_rates_rise_with_age():
    rates = [vpw_rate(age) for age in range(55, 101)]
    assert rates == sorted(rates)


def test_vpw_disabled_by_default():
    assert VPWState.from_config({}) is None
    assert VPWState.from_config({"income_requirements": {"vpw_enabled": False, "vpw_floor": 20000}}) is None


def test_vpw_without_floor_is_plain_percentage():
    vpw = VPWState.from_config({"income_requirements": {"vpw_enabled": True, "vpw_ceiling": 1.5}})
    assert vpw.withdrawal(1_000_000.0, 70, 1.2) == pytest.approx(50000.0)


@pytest.mark.parametrize(
    "portfolio, expected",
    [
        (200_000.0, 22000.0),      # 10000 from the rate, lifted to the inflated floor
        (600_000.0, 30000.0),      # 30000 from the rate, inside the band
        (1_000_000.0, 33000.0),    # 50000 from the rate, capped at 1.5x the floor
    ],
)
def test_vpw_floor_and_ceiling(portfolio, expected):
    vpw = VPWState.from_config({"income_requirements": {"vpw_enabled": True, "vpw_floor": 20000, "vpw_ceiling": 1.5}})
    assert vpw.withdrawal(portfolio, 70, 1.1) == pytest.approx(expected)
    assert vpw.current_floor == pytest.approx(22000.0)
