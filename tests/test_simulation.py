"""Tests for the year-by-year simulation and strategy comparison.

The household is Sam, born 1960 and retired at 55, simulated from 2025 (age
65) to age 70.
"""

import copy

import numpy as np
import pytest

from drawdown.config import ConfigError
from drawdown.params import DrawdownOrder, MortgageOption, SimulationParams
from drawdown.simulation import (
    LEDGER_KEYS,
    compare_strategies,
    ledger_frame,
    results_table,
    run_simulation,
)


def _config(**overrides):
    config = {
        "people": [{"name": "Sam", "birth_year": 1960, "pension": 400000, "tax_free_savings": 50000}],
        "income_requirements": {"monthly_before_age": 2000, "monthly_after_age": 1500},
        "simulation": {"start_year": 2025, "end_age": 70},
    }
    config.update(overrides)
    return config


def _mortgage():
    return {
        "parts": [{"principal": 50000, "interest_rate": 0.0, "is_repayment": True, "term_years": 20, "start_year": 2016}],
        "end_year": 2036,
        "early_payoff_year": 2026,
    }


def test_basic_run():
    result = run_simulation(SimulationParams(), _config())
    assert result["years"] == list(range(2025, 2031))
    assert set(result["ledger"]) == set(LEDGER_KEYS)
    assert all(len(v) == 6 for v in result["ledger"].values())
    assert isinstance(result["acct_series"]["net_worth"], np.ndarray)
    assert len(result["acct_series"]["isa"]) == 6
    assert not result["ran_out"]
    assert result["ran_out_year"] is None
    assert result["total_tax"] == pytest.approx(sum(result["ledger"]["tax"]))


def test_requirement_inflated_from_retirement():
    result = run_simulation(SimulationParams(), _config())
    # ten years retired at the start, 3% a year
    assert result["ledger"]["required_income"][0] == pytest.approx(24000 * 1.03 ** 10)


def test_requirement_met_each_year():
    result = run_simulation(SimulationParams(drawdown=DrawdownOrder.PENSION_FIRST), _config())
    ledger = result["ledger"]
    for required, state_pension, net in zip(ledger["total_required"], ledger["state_pension"], ledger["net_income"]):
        assert net == pytest.approx(required, abs=2.0)
        assert net >= state_pension - 1e-6


def test_running_out():
    config = _config(people=[{"name": "Sam", "birth_year": 1960, "pension": 10000}])
    result = run_simulation(SimulationParams(), config)
    assert result["ran_out"]
    assert result["ran_out_year"] == 2025


def test_no_people_rejected():
    with pytest.raises(ConfigError):
        run_simulation(SimulationParams(), {"people": []})


def test_config_not_modified():
    config = _config(mortgage=_mortgage())
    original = copy.deepcopy(config)
    run_simulation(SimulationParams(mortgage=MortgageOption.PCLS), config)
    assert config == original


def test_mortgage_paid_monthly_then_cleared():
    result = run_simulation(SimulationParams(mortgage=MortgageOption.EARLY), _config(mortgage=_mortgage()))
    costs = result["ledger"]["mortgage_cost"]
    assert costs[0] == pytest.approx(2500.0)
    assert costs[1] == pytest.approx(25000.0)
    assert costs[2:] == [0.0] * 4


def test_pcls_pays_off_mortgage():
    result = run_simulation(SimulationParams(mortgage=MortgageOption.PCLS), _config(mortgage=_mortgage()))
    ledger = result["ledger"]
    assert ledger["mortgage_cost"][1] == pytest.approx(25000.0)
    assert ledger["net_required"][1] == 0.0
    assert ledger["uncrystallised"][1] == 0.0
    assert ledger["crystallised"][1] > 0
    assert ledger["tax_free_withdrawn"][1] > 25000
    assert result["final_balances"]["Sam"]["uncrystallised_pot"] == 0.0


def test_state_pension_deferral():
    plain = run_simulation(SimulationParams(), _config())["ledger"]["state_pension"]
    deferred = run_simulation(SimulationParams(state_pension_defer_years=2), _config())["ledger"]["state_pension"]
    assert plain[2] == pytest.approx(11502.0)
    assert deferred[2] == 0.0
    assert deferred[4] == pytest.approx(11502.0 * 1.058 ** 2)


def test_tax_bands_inflate():
    config = _config(financial={"tax_band_inflation": 0.02})
    allowance = run_simulation(SimulationParams(), config)["ledger"]["personal_allowance"]
    assert allowance[0] == pytest.approx(12570.0)
    assert allowance[1] == pytest.approx(12570.0 * 1.02)


def test_guardrails_run():
    result = run_simulation(SimulationParams(guardrails_enabled=True), _config())
    assert result["ledger"]["guardrails_triggered"][0] == 0
    assert set(result["ledger"]["guardrails_triggered"]) <= {-1, 0, 1}


def test_income_tiers_by_age():
    tiers = [{"end_age": 67, "monthly_amount": 2000}, {"start_age": 67, "monthly_amount": 1000}]
    required = run_simulation(SimulationParams(), _config(income_requirements={"tiers": tiers}))["ledger"]["required_income"]
    assert required[0] == pytest.approx(24000 * 1.03 ** 10)
    assert required[1] == pytest.approx(24000 * 1.03 ** 11)
    assert required[2] == pytest.approx(12000 * 1.03 ** 12)


def test_percentage_tier_of_starting_wealth():
    tiers = [{"monthly_amount": 4, "is_percentage": True}]
    required = run_simulation(SimulationParams(), _config(income_requirements={"tiers": tiers}))["ledger"]["required_income"]
    # 4% of the 450000 held at the start, inflated like any other amount
    assert required[0] == pytest.approx(18000 * 1.03 ** 10)
    assert required[1] == pytest.approx(18000 * 1.03 ** 11)


def test_investment_gains_tier():
    tiers = [{"is_investment_gains": True}]
    result = run_simulation(SimulationParams(), _config(income_requirements={"tiers": tiers}))
    # 5% growth on 450000 less 3% inflation
    assert result["ledger"]["required_income"][0] == pytest.approx(9000.0)
    assert all(r >= 0 for r in result["ledger"]["required_income"])


def test_vpw_replaces_fixed_income():
    config = _config(income_requirements={"monthly_before_age": 2000, "vpw_enabled": True})
    ledger = run_simulation(SimulationParams(), config)["ledger"]
    assert ledger["vpw_rate"][0] == pytest.approx(0.042)
    assert ledger["required_income"][0] == pytest.approx(450000 * 0.042)
    assert ledger["vpw_rate"][1] == pytest.approx(0.043)


def test_vpw_off_records_no_rate():
    assert set(run_simulation(SimulationParams(), _config())["ledger"]["vpw_rate"]) == {0.0}


def test_db_pension_commuted_and_reduced_for_early_start():
    person = {
        "name": "Sam", "birth_year": 1960, "pension": 400000, "tax_free_savings": 50000,
        "db_pension_amount": 10000, "db_pension_start_age": 66, "db_pension_normal_age": 68,
        "db_pension_early_factor": 0.04, "db_pension_commutation": 0.25,
    }
    ledger = run_simulation(SimulationParams(), _config(people=[person]))["ledger"]
    # 9200 after two years early; a quarter commuted at 12 to 1
    assert ledger["db_lump_sum"] == [0.0, pytest.approx(2300.0 * 12), 0.0, 0.0, 0.0, 0.0]
    assert ledger["db_pension"][0] == 0.0
    assert ledger["db_pension"][1] == pytest.approx(6900.0)
    assert ledger["db_pension"][2] == pytest.approx(6900.0 * 1.03)


def test_compare_strategies_ranked():
    results = compare_strategies(_config())
    assert len(results) == 11
    keys = [(r["ran_out"], r["total_tax"], -r["final_wealth"]) for r in results]
    assert keys == sorted(keys)


def test_results_table():
    results = compare_strategies(_config(), depth="quick")
    table = results_table(results)
    assert list(table.columns) == [
        "strategy", "crystallisation", "drawdown", "mortgage",
        "total_tax", "total_withdrawn", "final_wealth", "ran_out", "ran_out_year",
    ]
    assert len(table) == 4
    assert table["strategy"].tolist() == [r["label"] for r in results]


def test_ledger_frame():
    frame = ledger_frame(run_simulation(SimulationParams(), _config()))
    assert list(frame.index) == list(range(2025, 2031))
    assert "net_worth" in frame.columns
