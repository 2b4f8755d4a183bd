"""Deterministic year-by-year drawdown simulation and strategy comparison.

:func:`run_simulation` walks one household from the configured start year to
the simulation reference person's end age.  Each year it

1. applies growth (from the second year on), optionally on a glide path,
2. works out the spending requirement from the two-phase amounts or the
   age tiers, inflated from the income reference person's retirement,
   optionally moderated by guardrails or replaced by VPW,
3. adds mortgage costs for the chosen payoff option, taking the pension
   lump sum to clear the balance under the PCLS option,
4. counts state pension (deferred and inflated), DB pension (adjusted for
   early or late start, less any commuted part, whose lump sum goes into
   the ISA) and part-time income as taxable base income,
5. calls :func:`~drawdown.policies.execute_drawdown` once for whatever is
   still needed, with the year's inflated tax bands,
6. records tax per person, balances and whether the withdrawals fell short.

The result mirrors the ledger-of-lists layout used for single paths elsewhere
in the planner: parallel per-year lists under ``"ledger"``, numpy balance
series under ``"acct_series"`` and run totals at the top level.

Example
-------

>>> from drawdown.params import SimulationParams
>>> config = {
...     "people": [{"name": "Sam", "birth_year": 1960, "pension": 400000, "tax_free_savings": 50000}],
...     "income_requirements": {"monthly_before_age": 2000, "monthly_after_age": 1500},
...     "simulation": {"start_year": 2025, "end_age": 70},
... }
>>> result = run_simulation(SimulationParams(), config)
>>> result["ledger"]["year"][:2]
[2025, 2026]
>>> result["ran_out"]
False
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from . import income, mortgage, taxes
from .config import ConfigError, merge_config, reference_person
from .crystallisation import apply_growth, growth_rate_for_year, take_pcls_lump_sum
from .factors import apply_params_to_config, get_strategies_for_config, get_strategies_for_config_v2
from .guardrails import GuardrailsState
from .ledger import Person, WithdrawalBreakdown, people_from_config
from .params import MortgageOption, SimulationParams
from .policies import execute_drawdown

logger = logging.getLogger(__name__)

# withdrawals more than this short of the requirement count as running out
SHORTFALL_TOLERANCE = 1.0

LEDGER_KEYS = (
    "year", "age", "required_income", "mortgage_cost", "total_required",
    "state_pension", "db_pension", "db_lump_sum", "part_time_income", "net_required",
    "tax_free_withdrawn", "taxable_withdrawn", "isa_deposits", "tax", "net_income",
    "guardrails_triggered", "vpw_rate", "pension_growth_rate", "savings_growth_rate",
    "personal_allowance", "basic_rate_limit", "isa", "uncrystallised", "crystallised", "net_worth",
)


def _find(people: List[Person], name: str) -> Person:
    for p in people:
        if p.name == name:
            return p
    return people[0]


def _tax_bands(config: Dict) -> List[taxes.TaxBand]:
    rows = config.get("tax_bands")
    if rows:
        return taxes.bands_from_dicts(rows)
    return taxes.default_tax_bands()


def _base_requirement(
    config: Dict,
    tiers: List[income.IncomeTier],
    ref: Person,
    year: int,
    inflation: float,
    initial_portfolio: float,
) -> Optional[float]:
    """Inflated requirement for ``year``; ``None`` when an investment-gains tier applies."""
    age = ref.age(year)
    if age < ref.retirement_age:
        return 0.0
    annual = income.annual_income_for_age(config["income_requirements"], tiers, age, initial_portfolio)
    if annual is None:
        return None
    years_retired = max(0, year - (ref.birth_year + ref.retirement_age))
    return annual * (1.0 + inflation) ** years_retired


def run_simulation(params: SimulationParams, config: Dict) -> Dict:
    """Simulate one strategy over the whole plan.

    Parameters
    ----------
    params : SimulationParams
        Crystallisation policy, drawdown order, mortgage option and flags.
    config : dict
        Planner configuration; missing keys take the defaults from
        :func:`~drawdown.config.default_config`.  Not modified.

    Returns
    -------
    dict
        ``ledger`` (per-year lists), ``acct_series`` (numpy arrays of
        balances), ``breakdowns`` (one WithdrawalBreakdown per year),
        ``tax_by_person``, ``total_tax``, ``total_withdrawn``, ``ran_out``,
        ``ran_out_year``, ``final_balances`` and ``final_wealth``.
    """
    config = merge_config(config)
    financial = config["financial"]
    income_cfg = config["income_requirements"]
    sim = config["simulation"]

    people = people_from_config(config)
    if not people:
        raise ConfigError("cannot simulate a plan with no people")
    if params.state_pension_defer_years > 0:
        for p in people:
            p.state_pension_defer_years = params.state_pension_defer_years

    start_year = int(sim["start_year"])
    sim_ref = _find(people, reference_person(config, "simulation").get("name", ""))
    income_ref = _find(people, reference_person(config, "income_requirements").get("name", ""))
    end_year = sim_ref.birth_year + int(sim["end_age"])

    income_inflation = float(financial["income_inflation_rate"])
    sp_inflation = float(financial["state_pension_inflation"])
    base_bands = _tax_bands(config)

    guardrails = None
    if params.guardrails_enabled or income_cfg.get("guardrails_enabled"):
        guardrails = GuardrailsState.from_config(config)
    vpw = income.VPWState.from_config(config)
    tiers = income.tiers_from_config(config)
    initial_portfolio = sum(p.total_wealth() for p in people)

    glide_ref = None
    if financial.get("growth_decline_enabled"):
        name = financial.get("growth_decline_reference_person") or sim_ref.name
        glide_ref = _find(people, name)
    glide_start_age = glide_ref.age(start_year) if glide_ref is not None else 0

    annual_mortgage = mortgage.total_annual_payment(config)
    payoff = mortgage.payoff_year(config, params.mortgage)

    ledger: Dict[str, list] = {k: [] for k in LEDGER_KEYS}
    breakdowns: List[WithdrawalBreakdown] = []
    tax_history: List[Dict[str, float]] = []
    total_tax = 0.0
    total_withdrawn = 0.0
    ran_out_year: Optional[int] = None

    for year in range(start_year, end_year + 1):
        years_from_start = year - start_year

        # --- growth ---
        pension_rate = float(financial["pension_growth_rate"])
        savings_rate = float(financial["savings_growth_rate"])
        if glide_ref is not None:
            target_age = int(financial["growth_decline_target_age"])
            age_now = glide_ref.age(year)
            pension_rate = growth_rate_for_year(
                pension_rate, float(financial["pension_growth_end_rate"]), glide_start_age, age_now, target_age
            )
            savings_rate = growth_rate_for_year(
                savings_rate, float(financial["savings_growth_end_rate"]), glide_start_age, age_now, target_age
            )
        if year > start_year:
            for p in people:
                apply_growth(p, savings_rate, pension_rate)
        portfolio = sum(p.total_wealth() for p in people)

        # --- spending requirement ---
        required = _base_requirement(config, tiers, income_ref, year, income_inflation, initial_portfolio)
        if required is None:
            required = income.investment_gains_income(
                sum(p.total_pension() for p in people),
                sum(p.tax_free_savings for p in people),
                pension_rate,
                savings_rate,
                income_inflation,
            )
        retired = income_ref.age(year) >= income_ref.retirement_age
        years_retired = max(0, year - (income_ref.birth_year + income_ref.retirement_age))
        triggered = 0
        if guardrails is not None and retired:
            if years_retired == 0 or guardrails.initial_rate <= 0:
                guardrails.initialize(portfolio, required)
            else:
                triggered = guardrails.triggered(portfolio)
                guardrails.inflate(income_inflation)
                required = guardrails.adjusted_withdrawal(portfolio, required)
        year_vpw_rate = 0.0
        if vpw is not None and retired:
            # VPW overrides the tiered or guardrailed amount
            year_vpw_rate = income.vpw_rate(income_ref.age(year))
            required = vpw.withdrawal(portfolio, income_ref.age(year), (1.0 + income_inflation) ** years_retired)

        months = int(financial.get("emergency_fund_months", 0) or 0)
        if months > 0:
            minimum = required / 12 * months / len(people)
            for p in people:
                p.emergency_fund_minimum = minimum

        # --- mortgage ---
        mortgage_cost = 0.0
        pcls_breakdown = WithdrawalBreakdown()
        if year < payoff:
            mortgage_cost = annual_mortgage
        elif year == payoff:
            mortgage_cost = mortgage.total_payoff_amount(config, year)
            if params.mortgage == MortgageOption.PCLS:
                for p in people:
                    if not p.can_access_pension(year):
                        continue
                    lump = take_pcls_lump_sum(p)
                    if lump.tax_free > 0:
                        # the tax-free cash clears the mortgage instead of landing in the ISA
                        p.tax_free_savings -= lump.tax_free
                        pcls_breakdown.add_pension_tax_free(p.name, lump.tax_free)

        # --- base income ---
        state_pension: Dict[str, float] = {}
        db_pension: Dict[str, float] = {}
        db_lump_sum = 0.0
        part_time: Dict[str, float] = {}
        for p in people:
            if p.receives_state_pension(year):
                started = p.birth_year + p.effective_state_pension_age()
                amount = p.deferred_state_pension(float(financial["state_pension_amount"]))
                state_pension[p.name] = amount * (1.0 + sp_inflation) ** max(0, year - started)
            if p.receives_db_pension(year):
                db_lump_sum += p.take_db_pension_lump_sum(year)
                started = p.birth_year + p.db_pension_start_age
                db_pension[p.name] = p.effective_db_pension() * (1.0 + sp_inflation) ** max(0, year - started)
            if p.receiving_part_time_income(year):
                part_time[p.name] = p.part_time_income * (1.0 + income_inflation) ** years_from_start
        base_income = {
            p.name: state_pension.get(p.name, 0.0) + db_pension.get(p.name, 0.0) + part_time.get(p.name, 0.0)
            for p in people
        }

        total_required = required + mortgage_cost
        other_income = sum(base_income.values()) + pcls_breakdown.total_tax_free
        net_required = max(0.0, total_required - other_income)

        # --- drawdown ---
        bands = taxes.inflate_tax_bands(base_bands, start_year, year, float(financial["tax_band_inflation"]))
        breakdown = execute_drawdown(people, net_required, params, year, base_income, bands)
        drawn_net = breakdown.net_income(base_income, bands)
        if net_required > 0 and drawn_net < net_required - SHORTFALL_TOLERANCE:
            if ran_out_year is None:
                ran_out_year = year
                logger.info("%s ran out of money in %d: needed %.0f, drew %.0f",
                            params.describe(), year, net_required, drawn_net)
        for name, amount in pcls_breakdown.tax_free_from_pension.items():
            breakdown.add_pension_tax_free(name, amount)

        tax_by_person = breakdown.tax_by_person(base_income, bands)
        year_tax = sum(tax_by_person.values())
        withdrawn = breakdown.total_withdrawn()
        net_income = sum(base_income.values()) + withdrawn - year_tax - breakdown.total_isa_deposits
        total_tax += year_tax
        total_withdrawn += withdrawn

        isa = sum(p.tax_free_savings for p in people)
        uncrystallised = sum(p.uncrystallised_pot for p in people)
        crystallised = sum(p.crystallised_pot for p in people)

        row = {
            "year": year,
            "age": income_ref.age(year),
            "required_income": required,
            "mortgage_cost": mortgage_cost,
            "total_required": total_required,
            "state_pension": sum(state_pension.values()),
            "db_pension": sum(db_pension.values()),
            "db_lump_sum": db_lump_sum,
            "part_time_income": sum(part_time.values()),
            "net_required": net_required,
            "tax_free_withdrawn": breakdown.total_tax_free,
            "taxable_withdrawn": breakdown.total_taxable,
            "isa_deposits": breakdown.total_isa_deposits,
            "tax": year_tax,
            "net_income": net_income,
            "guardrails_triggered": triggered,
            "vpw_rate": year_vpw_rate,
            "pension_growth_rate": pension_rate,
            "savings_growth_rate": savings_rate,
            "personal_allowance": taxes.personal_allowance(bands),
            "basic_rate_limit": taxes.basic_rate_band(bands)[1],
            "isa": isa,
            "uncrystallised": uncrystallised,
            "crystallised": crystallised,
            "net_worth": isa + uncrystallised + crystallised,
        }
        for key in LEDGER_KEYS:
            ledger[key].append(row[key])
        breakdowns.append(breakdown)
        tax_history.append(tax_by_person)

    final_balances = {
        p.name: {
            "tax_free_savings": p.tax_free_savings,
            "uncrystallised_pot": p.uncrystallised_pot,
            "crystallised_pot": p.crystallised_pot,
        }
        for p in people
    }
    return {
        "params": params,
        "label": params.describe(),
        "years": list(ledger["year"]),
        "ledger": ledger,
        "acct_series": {k: np.array(ledger[k]) for k in ("isa", "uncrystallised", "crystallised", "net_worth")},
        "breakdowns": breakdowns,
        "tax_by_person": tax_history,
        "total_tax": total_tax,
        "total_withdrawn": total_withdrawn,
        "ran_out": ran_out_year is not None,
        "ran_out_year": ran_out_year,
        "final_balances": final_balances,
        "final_wealth": float(sum(p.total_wealth() for p in people)),
    }


def _rank_key(result: Dict):
    return (result["ran_out"], result["total_tax"], -result["final_wealth"])


def compare_strategies(config: Dict, depth: Optional[str] = None) -> List[Dict]:
    """Run every strategy and rank them.

    With ``depth=None`` the fixed strategy list is used, otherwise the
    factor combinations for that depth.  Each run gets its own deep copy of
    the configuration.  Solvent plans rank first, then lowest total tax, then
    highest final wealth.
    """
    if depth is None:
        strategies = get_strategies_for_config(config)
    else:
        strategies = get_strategies_for_config_v2(config, depth)
    results = [run_simulation(params, apply_params_to_config(params, config)) for params in strategies]
    return sorted(results, key=_rank_key)


def results_table(results: List[Dict]) -> pd.DataFrame:
    """One row per simulation result, in the given order."""
    rows = []
    for r in results:
        params = r["params"]
        rows.append({
            "strategy": r["label"],
            "crystallisation": params.crystallisation.value,
            "drawdown": params.drawdown.value,
            "mortgage": params.mortgage.value,
            "total_tax": r["total_tax"],
            "total_withdrawn": r["total_withdrawn"],
            "final_wealth": r["final_wealth"],
            "ran_out": r["ran_out"],
            "ran_out_year": r["ran_out_year"],
        })
    return pd.DataFrame(rows, columns=[
        "strategy", "crystallisation", "drawdown", "mortgage",
        "total_tax", "total_withdrawn", "final_wealth", "ran_out", "ran_out_year",
    ])


def ledger_frame(result: Dict) -> pd.DataFrame:
    """Per-year ledger of one run as a DataFrame indexed by year."""
    return pd.DataFrame(result["ledger"]).set_index("year")


__all__ = [
    "SHORTFALL_TOLERANCE",
    "LEDGER_KEYS",
    "run_simulation",
    "compare_strategies",
    "results_table",
    "ledger_frame",
]
