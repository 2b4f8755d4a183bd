"""UK pension drawdown planner.

The `drawdown` package contains small, focused modules that each implement
one piece of the withdrawal engine:

* ``taxes`` - progressive UK income tax bands, allowance taper and gross-up.
* ``config`` - configuration defaults, JSON loading and validation.
* ``ledger`` - per-person pension/ISA balances and the yearly withdrawal breakdown.
* ``crystallisation`` - lump sum, gradual crystallisation, UFPLS and growth.
* ``solver`` - gross-up solvers for part tax-free pension withdrawals.
* ``params`` - crystallisation, drawdown order and mortgage option enums.
* ``policies`` - the eight drawdown policies and the ``execute_drawdown`` entry point.
* ``optimizer`` - the four-phase multi-person tax-band optimizer.
* ``factors`` - strategy factors, constraints and the combination generator.
* ``mortgage`` - repayment and interest-only mortgage maths.
* ``guardrails`` - Guyton-Klinger withdrawal guardrails.
* ``income`` - spending requirement tiers and variable-percentage withdrawal.
* ``simulation`` - the yearly simulation loop and strategy comparison.

Each module exposes a few public functions with clear parameters and returns.  See
individual docstrings for details.
"""

from . import (  # noqa: F401
    config,
    crystallisation,
    factors,
    guardrails,
    income,
    ledger,
    mortgage,
    optimizer,
    params,
    policies,
    simulation,
    solver,
    taxes,
)
from .params import Crystallisation, DrawdownOrder, MortgageOption, SimulationParams  # noqa: F401
from .policies import execute_drawdown  # noqa: F401
from .factors import get_strategies_for_config, get_strategies_for_config_v2  # noqa: F401

__all__ = [
    "config",
    "crystallisation",
    "factors",
    "guardrails",
    "income",
    "ledger",
    "mortgage",
    "optimizer",
    "params",
    "policies",
    "simulation",
    "solver",
    "taxes",
    "Crystallisation",
    "DrawdownOrder",
    "MortgageOption",
    "SimulationParams",
    "execute_drawdown",
    "get_strategies_for_config",
    "get_strategies_for_config_v2",
]
