"""Strategy factors and the combination generator.

A *factor* is one independent axis of a strategy (crystallisation, drawdown
order, mortgage option, ...) with an ordered list of values and a default.
The generator keeps the factors that apply to a configuration, trims their
values for the requested analysis depth, takes the cartesian product and
drops every combination that fails a constraint.  Each surviving
:class:`StrategyCombo` converts to exactly one
:class:`~drawdown.params.SimulationParams`.

Depths, from coarse to exhaustive:

* ``quick`` - gradual only, four core drawdown orders, normal or early
  mortgage payoff, nothing else.
* ``standard`` - both crystallisations, five drawdown orders, every mortgage
  option and guardrails on or off.
* ``thorough`` - everything but the proactive drawdown; deferral 0 or 2 years.
* ``comprehensive`` - every value of every applicable factor.

Example
-------

>>> config = {"people": [{"name": "Sam", "birth_year": 1965}]}
>>> len(generate_combinations(config, "quick"))
4
"""

from __future__ import annotations

import copy
import itertools
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .config import (
    extended_end_year,
    has_mortgage,
    should_include_extended_mortgage,
    should_maximize_couple_isa,
)
from .params import (
    PENSION_TO_ISA_ORDERS,
    Crystallisation,
    DrawdownOrder,
    MortgageOption,
    SimulationParams,
)

CRYSTALLISATION = "crystallisation"
DRAWDOWN = "drawdown"
MORTGAGE = "mortgage"
MAXIMIZE_COUPLE_ISA = "maximize_couple_isa"
ISA_TO_SIPP = "isa_to_sipp"
GUARDRAILS = "guardrails"
STATE_PENSION_DEFER = "state_pension_defer"

DEPTHS = ("quick", "standard", "thorough", "comprehensive")


@dataclass(frozen=True)
class FactorValue:
    id: str
    name: str
    short_name: str
    value: Any


@dataclass(frozen=True)
class Factor:
    id: str
    name: str
    description: str
    values: Tuple[FactorValue, ...]
    default_id: str
    depends_on: Tuple[str, ...] = ()

    def value(self, value_id: str) -> FactorValue:
        for v in self.values:
            if v.id == value_id:
                return v
        raise KeyError(f"factor {self.id!r} has no value {value_id!r}")

    def default(self) -> FactorValue:
        return self.value(self.default_id)

    def only(self, value_ids: Iterable[str]) -> "Factor":
        """Copy keeping just ``value_ids``, in registration order."""
        keep = set(value_ids)
        return replace(self, values=tuple(v for v in self.values if v.id in keep))


def _switch(factor_id: str, name: str, description: str, default_id: str, depends_on: Tuple[str, ...] = ()) -> Factor:
    return Factor(
        id=factor_id,
        name=name,
        description=description,
        values=(
            FactorValue("off", "Disabled", "Off", False),
            FactorValue("on", "Enabled", "On", True),
        ),
        default_id=default_id,
        depends_on=depends_on,
    )


class FactorRegistry:
    """Ordered, read-only once built, collection of factors."""

    def __init__(self):
        self._factors: Dict[str, Factor] = {}
        self._order: List[str] = []

    def register(self, factor: Factor) -> None:
        if factor.id not in self._factors:
            self._order.append(factor.id)
        self._factors[factor.id] = factor

    def get(self, factor_id: str) -> Factor:
        return self._factors[factor_id]

    def all(self) -> List[Factor]:
        return [self._factors[fid] for fid in self._order]

    def applicable_factors(self, config: Dict) -> List[Factor]:
        """Factors that apply to ``config``, skipping any whose dependencies were skipped.

        Dependencies must be registered before the factors naming them.
        """
        result = []
        kept = set()
        for factor in self.all():
            if not _is_applicable(factor, config):
                continue
            if any(dep not in kept for dep in factor.depends_on):
                continue
            kept.add(factor.id)
            if factor.id == MORTGAGE:
                factor = _mortgage_values_for(factor, config)
            result.append(factor)
        return result

    def factors_by_depth(self, config: Dict, depth: str) -> List[Factor]:
        if depth not in _DEPTH_FILTERS:
            raise ValueError(f"unknown analysis depth {depth!r}; expected one of {DEPTHS}")
        trim = _DEPTH_FILTERS[depth]
        result = []
        for factor in self.applicable_factors(config):
            trimmed = trim(factor)
            if trimmed is not None and trimmed.values:
                result.append(trimmed)
        return result

    def default_combo(self) -> "StrategyCombo":
        return StrategyCombo.from_values({f.id: f.default() for f in self.all()})


def build_registry() -> FactorRegistry:
    registry = FactorRegistry()
    registry.register(Factor(
        id=CRYSTALLISATION,
        name="Crystallisation Strategy",
        description="How pension pots are crystallised for tax purposes",
        values=(
            FactorValue("gradual", "Gradual Crystallisation", "Grad", Crystallisation.GRADUAL),
            FactorValue("ufpls", "UFPLS", "UFPLS", Crystallisation.UFPLS),
        ),
        default_id="gradual",
    ))
    registry.register(Factor(
        id=DRAWDOWN,
        name="Drawdown Order",
        description="Order in which to withdraw from different account types",
        values=(
            FactorValue("savings_first", "Savings First", "ISAFirst", DrawdownOrder.SAVINGS_FIRST),
            FactorValue("pension_first", "Pension First", "PenFirst", DrawdownOrder.PENSION_FIRST),
            FactorValue("tax_optimized", "Tax Optimized", "TaxOpt", DrawdownOrder.TAX_OPTIMIZED),
            FactorValue("pension_to_isa", "Pension to ISA", "Pen2ISA", DrawdownOrder.PENSION_TO_ISA),
            FactorValue(
                "pension_to_isa_proactive", "Pension to ISA (Proactive)", "Pen2ISA+",
                DrawdownOrder.PENSION_TO_ISA_PROACTIVE,
            ),
            FactorValue("pension_only", "Pension Only", "PenOnly", DrawdownOrder.PENSION_ONLY),
            FactorValue("fill_basic_rate", "Fill Basic Rate", "FillBasic", DrawdownOrder.FILL_BASIC_RATE),
            FactorValue("state_pension_bridge", "State Pension Bridge", "SPBridge", DrawdownOrder.STATE_PENSION_BRIDGE),
        ),
        default_id="tax_optimized",
    ))
    registry.register(Factor(
        id=MORTGAGE,
        name="Mortgage Option",
        description="How the mortgage is paid off",
        values=(
            FactorValue("early", "Early Payoff", "Early", MortgageOption.EARLY),
            FactorValue("normal", "Normal Payoff", "Normal", MortgageOption.NORMAL),
            FactorValue("extended", "Extended +10y", "Ext+10", MortgageOption.EXTENDED),
            FactorValue("pcls", "PCLS Payoff", "PCLS", MortgageOption.PCLS),
        ),
        default_id="normal",
    ))
    registry.register(_switch(
        MAXIMIZE_COUPLE_ISA, "Maximize Couple ISA",
        "Fill both people's ISA allowances from one pension", "on", depends_on=(DRAWDOWN,),
    ))
    registry.register(_switch(ISA_TO_SIPP, "ISA to SIPP Transfers", "Move ISA money into a pension while working", "off"))
    registry.register(_switch(GUARDRAILS, "Guardrails", "Guyton-Klinger dynamic withdrawal adjustments", "off"))
    registry.register(Factor(
        id=STATE_PENSION_DEFER,
        name="State Pension Deferral",
        description="Years to defer state pension (5.8%/year enhancement)",
        values=(
            FactorValue("0y", "No Deferral", "0y", 0),
            FactorValue("2y", "2 Years", "2y", 2),
            FactorValue("5y", "5 Years", "5y", 5),
        ),
        default_id="0y",
    ))
    return registry


def _is_applicable(factor: Factor, config: Dict) -> bool:
    people = config.get("people", [])
    if factor.id == MORTGAGE:
        return has_mortgage(config)
    if factor.id == ISA_TO_SIPP:
        return any(float(pc.get("work_income", 0.0)) > 0 for pc in people)
    if factor.id == MAXIMIZE_COUPLE_ISA:
        return len(people) >= 2
    return True


def _mortgage_values_for(factor: Factor, config: Dict) -> Factor:
    if not should_include_extended_mortgage(config):
        return factor.only(v.id for v in factor.values if v.id != "extended")
    year = extended_end_year(config)
    values = tuple(
        replace(v, name=f"Extended to {year}", short_name=f"Ext{year}") if v.id == "extended" else v
        for v in factor.values
    )
    return replace(factor, values=values)


def _quick(factor: Factor) -> Optional[Factor]:
    if factor.id == CRYSTALLISATION:
        return factor.only(["gradual"])
    if factor.id == DRAWDOWN:
        return factor.only(["savings_first", "pension_first", "tax_optimized", "pension_to_isa"])
    if factor.id == MORTGAGE:
        return factor.only(["normal", "early"])
    return None


def _standard(factor: Factor) -> Optional[Factor]:
    if factor.id == DRAWDOWN:
        return factor.only(["savings_first", "pension_first", "tax_optimized", "pension_to_isa", "fill_basic_rate"])
    if factor.id == ISA_TO_SIPP:
        return factor.only(["off"])
    if factor.id == MAXIMIZE_COUPLE_ISA:
        return None
    if factor.id == STATE_PENSION_DEFER:
        return factor.only(["0y"])
    return factor


def _thorough(factor: Factor) -> Optional[Factor]:
    if factor.id == DRAWDOWN:
        return factor.only(v.id for v in factor.values if v.id != "pension_to_isa_proactive")
    if factor.id == STATE_PENSION_DEFER:
        return factor.only(["0y", "2y"])
    return factor


_DEPTH_FILTERS: Dict[str, Callable[[Factor], Optional[Factor]]] = {
    "quick": _quick,
    "standard": _standard,
    "thorough": _thorough,
    "comprehensive": lambda factor: factor,
}


@dataclass(frozen=True)
class StrategyCombo:
    """One value per factor.  Immutable; factors absent from the combo take defaults."""

    items: Tuple[Tuple[str, FactorValue], ...] = ()

    @classmethod
    def from_values(cls, values: Dict[str, FactorValue]) -> "StrategyCombo":
        return cls(tuple(values.items()))

    def as_dict(self) -> Dict[str, FactorValue]:
        return dict(self.items)

    def get(self, factor_id: str) -> Optional[FactorValue]:
        return self.as_dict().get(factor_id)

    def value_id(self, factor_id: str) -> Optional[str]:
        v = self.get(factor_id)
        return v.id if v is not None else None

    def _value(self, factor_id: str, registry: "FactorRegistry") -> Any:
        v = self.get(factor_id)
        return v.value if v is not None else registry.get(factor_id).default().value

    def to_params(self, registry: Optional["FactorRegistry"] = None) -> SimulationParams:
        registry = registry or REGISTRY
        return SimulationParams(
            crystallisation=self._value(CRYSTALLISATION, registry),
            drawdown=self._value(DRAWDOWN, registry),
            mortgage=self._value(MORTGAGE, registry),
            maximize_couple_isa=bool(self._value(MAXIMIZE_COUPLE_ISA, registry)),
            guardrails_enabled=bool(self._value(GUARDRAILS, registry)),
            state_pension_defer_years=int(self._value(STATE_PENSION_DEFER, registry)),
            isa_to_sipp_enabled=bool(self._value(ISA_TO_SIPP, registry)),
        )

    def short_name(self) -> str:
        return "/".join(v.short_name for _, v in self.items)


@dataclass(frozen=True)
class Constraint:
    name: str
    predicate: Callable[[StrategyCombo], bool] = field(compare=False)

    def allows(self, combo: StrategyCombo) -> bool:
        return self.predicate(combo)


def _couple_isa_needs_pension_to_isa(combo: StrategyCombo) -> bool:
    if combo.value_id(MAXIMIZE_COUPLE_ISA) != "on" or combo.get(DRAWDOWN) is None:
        return True
    return combo.get(DRAWDOWN).value in PENSION_TO_ISA_ORDERS


def _isa_to_sipp_conflicts_with_pension_to_isa(combo: StrategyCombo) -> bool:
    if combo.value_id(ISA_TO_SIPP) != "on" or combo.get(DRAWDOWN) is None:
        return True
    return combo.get(DRAWDOWN).value not in PENSION_TO_ISA_ORDERS


def _ufpls_conflicts_with_pcls_payoff(combo: StrategyCombo) -> bool:
    return not (combo.value_id(CRYSTALLISATION) == "ufpls" and combo.value_id(MORTGAGE) == "pcls")


DEFAULT_CONSTRAINTS: Tuple[Constraint, ...] = (
    Constraint("maximize couple ISA requires a pension-to-ISA drawdown", _couple_isa_needs_pension_to_isa),
    Constraint("ISA to SIPP is incompatible with pension-to-ISA drawdowns", _isa_to_sipp_conflicts_with_pension_to_isa),
    Constraint("UFPLS is incompatible with lump-sum mortgage payoff", _ufpls_conflicts_with_pcls_payoff),
)

REGISTRY = build_registry()


def is_valid(combo: StrategyCombo, constraints: Iterable[Constraint] = DEFAULT_CONSTRAINTS) -> bool:
    return all(c.allows(combo) for c in constraints)


def generate_combinations(
    config: Dict,
    depth: str = "standard",
    registry: Optional[FactorRegistry] = None,
    constraints: Iterable[Constraint] = DEFAULT_CONSTRAINTS,
) -> List[StrategyCombo]:
    """Every valid combination of the applicable factors at ``depth``.

    Parameters
    ----------
    config : dict
        Planner configuration; decides which factors apply.
    depth : str
        One of ``quick``, ``standard``, ``thorough`` or ``comprehensive``.
    registry : FactorRegistry, optional
        Defaults to the module-level registry.
    constraints : iterable of Constraint, optional
        Combinations failing any of these are dropped.

    Returns
    -------
    list of StrategyCombo
        In factor registration order, first factor varying slowest.
    """
    registry = registry or REGISTRY
    constraints = tuple(constraints)
    factors = registry.factors_by_depth(config, depth)
    combos = []
    for values in itertools.product(*(f.values for f in factors)):
        combo = StrategyCombo(tuple(zip((f.id for f in factors), values)))
        if is_valid(combo, constraints):
            combos.append(combo)
    return combos


def get_strategies_for_config_v2(config: Dict, depth: str = "standard") -> List[SimulationParams]:
    """Parameters for every combination at ``depth``.

    When the depth leaves out the couple-ISA factor, ``strategy.maximize_couple_isa``
    from the configuration decides it, as for the fixed list.
    """
    maximize = should_maximize_couple_isa(config)
    strategies = []
    for combo in generate_combinations(config, depth):
        params = combo.to_params()
        if combo.get(MAXIMIZE_COUPLE_ISA) is None:
            params = replace(params, maximize_couple_isa=maximize)
        strategies.append(params)
    return strategies


def combination_counts(config: Dict) -> Dict[str, int]:
    return {depth: len(generate_combinations(config, depth)) for depth in DEPTHS}


_GRADUAL_ORDERS = (
    DrawdownOrder.SAVINGS_FIRST,
    DrawdownOrder.PENSION_FIRST,
    DrawdownOrder.TAX_OPTIMIZED,
    DrawdownOrder.PENSION_TO_ISA,
    DrawdownOrder.FILL_BASIC_RATE,
    DrawdownOrder.STATE_PENSION_BRIDGE,
)
_UFPLS_ORDERS = tuple(o for o in _GRADUAL_ORDERS if o is not DrawdownOrder.PENSION_TO_ISA)
_ALL_MORTGAGE_OPTIONS = (MortgageOption.EARLY, MortgageOption.NORMAL, MortgageOption.EXTENDED, MortgageOption.PCLS)


def get_strategies_for_config(config: Dict) -> List[SimulationParams]:
    """The fixed comparison list: 29 strategies with a mortgage, 11 without.

    Gradual strategies run through every drawdown order for one mortgage
    option before moving to the next.  Every strategy carries the configured
    ``strategy.maximize_couple_isa`` flag.
    """
    mortgage_options = _ALL_MORTGAGE_OPTIONS if has_mortgage(config) else (MortgageOption.NORMAL,)
    maximize = should_maximize_couple_isa(config)
    strategies = [
        SimulationParams(Crystallisation.GRADUAL, order, option, maximize_couple_isa=maximize)
        for option in mortgage_options
        for order in _GRADUAL_ORDERS
    ]
    strategies.extend(
        SimulationParams(Crystallisation.UFPLS, order, MortgageOption.NORMAL, maximize_couple_isa=maximize)
        for order in _UFPLS_ORDERS
    )
    return strategies


def _gradual_over_mortgage_options(config: Dict, order: DrawdownOrder) -> List[SimulationParams]:
    mortgage_options = _ALL_MORTGAGE_OPTIONS if has_mortgage(config) else (MortgageOption.NORMAL,)
    maximize = should_maximize_couple_isa(config)
    return [
        SimulationParams(Crystallisation.GRADUAL, order, option, maximize_couple_isa=maximize)
        for option in mortgage_options
    ]


def get_pension_only_strategies(config: Dict) -> List[SimulationParams]:
    return _gradual_over_mortgage_options(config, DrawdownOrder.PENSION_ONLY)


def get_pension_to_isa_strategies(config: Dict) -> List[SimulationParams]:
    return _gradual_over_mortgage_options(config, DrawdownOrder.PENSION_TO_ISA)


def apply_params_to_config(params: SimulationParams, config: Dict) -> Dict:
    """Deep copy of ``config`` with the guardrails flag and deferral years from ``params``."""
    updated = copy.deepcopy(config)
    updated.setdefault("income_requirements", {})["guardrails_enabled"] = params.guardrails_enabled
    for pc in updated.get("people", []):
        pc["state_pension_defer_years"] = params.state_pension_defer_years
    return updated


__all__ = [
    "CRYSTALLISATION",
    "DRAWDOWN",
    "MORTGAGE",
    "MAXIMIZE_COUPLE_ISA",
    "ISA_TO_SIPP",
    "GUARDRAILS",
    "STATE_PENSION_DEFER",
    "DEPTHS",
    "FactorValue",
    "Factor",
    "FactorRegistry",
    "build_registry",
    "StrategyCombo",
    "Constraint",
    "DEFAULT_CONSTRAINTS",
    "REGISTRY",
    "is_valid",
    "generate_combinations",
    "get_strategies_for_config",
    "get_strategies_for_config_v2",
    "get_pension_only_strategies",
    "get_pension_to_isa_strategies",
    "combination_counts",
    "apply_params_to_config",
]
