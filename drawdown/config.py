"""Planner configuration.

A configuration is a plain nested dictionary, usually loaded from JSON:

* ``people`` - one or two entries with ``name``, ``birth_date`` (ISO) or
  ``birth_year``, ``retirement_age``, ``state_pension_age``, ``pension``
  (uncrystallised pot), ``tax_free_savings`` and optional ``isa_annual_limit``,
  ``work_income``, ``state_pension_defer_years``, DB pension and part-time
  income fields.  A DB pension may set ``db_pension_normal_age`` with early
  and late adjustment factors and commute part of it (``db_pension_commutation``
  at ``db_pension_commute_factor``) for a tax-free lump sum.
* ``financial`` - growth, inflation and state pension assumptions.
* ``income_requirements`` - monthly spending before/after an age threshold
  or a list of age ``tiers``, the reference person, guardrail settings and
  the VPW switch with its optional floor and ceiling.  A tier has optional
  ``start_age``/``end_age`` (end exclusive) and a ``monthly_amount`` that is
  read as an annual percentage of the starting portfolio when
  ``is_percentage`` is set; an ``is_investment_gains`` tier spends the
  year's real investment return instead.
* ``mortgage`` - ``parts`` plus ``end_year``, ``early_payoff_year``,
  ``allow_extension`` and ``extended_end_year``.
* ``simulation`` - ``start_year``, ``end_age`` and the reference person.
* ``strategy`` - ``maximize_couple_isa`` (default true) for the fixed
  strategy list.
* ``tax_bands`` - optional list of ``{"name", "lower", "upper", "rate"}``.

Missing sections and keys fall back to :func:`default_config`.
"""

from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised for a configuration the planner cannot run."""


def default_config() -> Dict:
    return {
        "people": [],
        "financial": {
            "pension_growth_rate": 0.05,
            "savings_growth_rate": 0.05,
            "growth_decline_enabled": False,
            "pension_growth_end_rate": 0.05,
            "savings_growth_end_rate": 0.05,
            "growth_decline_target_age": 80,
            "growth_decline_reference_person": "",
            "income_inflation_rate": 0.03,
            "state_pension_amount": 11502.0,
            "state_pension_inflation": 0.03,
            "state_pension_deferral_rate": 0.058,
            "tax_band_inflation": 0.0,
            "emergency_fund_months": 0,
        },
        "income_requirements": {
            "monthly_before_age": 0.0,
            "monthly_after_age": 0.0,
            "age_threshold": 75,
            "reference_person": "",
            "guardrails_enabled": False,
            "guardrails_upper_limit": 1.20,
            "guardrails_lower_limit": 0.80,
            "guardrails_adjustment": 0.10,
            "tiers": [],
            "vpw_enabled": False,
            "vpw_floor": 0.0,
            "vpw_ceiling": 0.0,
        },
        "mortgage": {
            "parts": [],
            "end_year": 0,
            "early_payoff_year": 0,
            "allow_extension": False,
            "extended_end_year": 0,
        },
        "simulation": {
            "start_year": 2025,
            "end_age": 95,
            "reference_person": "",
        },
        "strategy": {
            "maximize_couple_isa": True,
        },
    }


def merge_config(overrides: Dict, base: Optional[Dict] = None) -> Dict:
    """Deep-merge ``overrides`` over ``base`` (defaults when omitted) without mutating either."""
    merged = copy.deepcopy(base if base is not None else default_config())
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(value, merged[key])
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_config(path: Path) -> Dict:
    """Load a JSON configuration and merge it over the defaults."""
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    config = merge_config(raw)
    validate_config(config)
    return config


def validate_config(config: Dict) -> None:
    people = config.get("people") or []
    if not people:
        raise ConfigError("configuration has no people")
    names = set()
    for pc in people:
        if not pc.get("name"):
            raise ConfigError("every person needs a name")
        birth_year(pc)
        names.add(pc["name"])
    for tier in config.get("income_requirements", {}).get("tiers") or []:
        start, end = tier.get("start_age"), tier.get("end_age")
        if start is not None and end is not None and int(end) <= int(start):
            raise ConfigError(f"income tier ending at {end} does not start before it ({start})")
    for section, key in (("income_requirements", "reference_person"), ("simulation", "reference_person")):
        ref = config.get(section, {}).get(key)
        if ref and ref not in names:
            raise ConfigError(f"{section}.{key} {ref!r} is not one of {sorted(names)}")


def birth_year(person_config: Dict) -> int:
    """Birth year from ``birth_year`` or the year part of an ISO ``birth_date``."""
    if person_config.get("birth_year"):
        return int(person_config["birth_year"])
    birth_date = str(person_config.get("birth_date", ""))
    try:
        return int(birth_date[:4])
    except ValueError:
        raise ConfigError(f"person {person_config.get('name')!r} has no usable birth date") from None


def reference_person(config: Dict, section: str = "simulation") -> Dict:
    """The person named as reference in ``section``, else the first person."""
    people = config.get("people", [])
    name = config.get(section, {}).get("reference_person")
    for pc in people:
        if pc.get("name") == name:
            return pc
    if name:
        logger.warning("reference person %r not found, using %r", name, people[0].get("name") if people else None)
    return people[0] if people else {}


def has_mortgage(config: Dict) -> bool:
    return any(float(part.get("principal", 0.0)) > 0 for part in config.get("mortgage", {}).get("parts", []))


def should_include_extended_mortgage(config: Dict) -> bool:
    return has_mortgage(config) and bool(config.get("mortgage", {}).get("allow_extension", False))


def extended_end_year(config: Dict) -> int:
    mortgage = config.get("mortgage", {})
    extended = int(mortgage.get("extended_end_year", 0) or 0)
    if extended > 0:
        return extended
    return int(mortgage.get("end_year", 0) or 0) + 10


def should_maximize_couple_isa(config: Dict) -> bool:
    """``strategy.maximize_couple_isa``, true unless explicitly switched off."""
    value = config.get("strategy", {}).get("maximize_couple_isa")
    return True if value is None else bool(value)


__all__ = [
    "ConfigError",
    "default_config",
    "merge_config",
    "load_config",
    "validate_config",
    "birth_year",
    "reference_person",
    "has_mortgage",
    "should_include_extended_mortgage",
    "extended_end_year",
    "should_maximize_couple_isa",
]
