"""Execution policy tuples.

The enum values double as factor value ids, so plain strings read from a
configuration or a saved plan convert directly, e.g.
``DrawdownOrder("fill_basic_rate")``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Crystallisation(str, Enum):
    GRADUAL = "gradual"
    UFPLS = "ufpls"


class DrawdownOrder(str, Enum):
    SAVINGS_FIRST = "savings_first"
    PENSION_FIRST = "pension_first"
    TAX_OPTIMIZED = "tax_optimized"
    PENSION_TO_ISA = "pension_to_isa"
    PENSION_TO_ISA_PROACTIVE = "pension_to_isa_proactive"
    PENSION_ONLY = "pension_only"
    FILL_BASIC_RATE = "fill_basic_rate"
    STATE_PENSION_BRIDGE = "state_pension_bridge"


class MortgageOption(str, Enum):
    EARLY = "early"
    NORMAL = "normal"
    EXTENDED = "extended"
    PCLS = "pcls"


PENSION_TO_ISA_ORDERS = frozenset({DrawdownOrder.PENSION_TO_ISA, DrawdownOrder.PENSION_TO_ISA_PROACTIVE})

_SHORT_NAMES = {
    Crystallisation.GRADUAL: "Grad",
    Crystallisation.UFPLS: "UFPLS",
    DrawdownOrder.SAVINGS_FIRST: "ISAFirst",
    DrawdownOrder.PENSION_FIRST: "PenFirst",
    DrawdownOrder.TAX_OPTIMIZED: "TaxOpt",
    DrawdownOrder.PENSION_TO_ISA: "Pen2ISA",
    DrawdownOrder.PENSION_TO_ISA_PROACTIVE: "Pen2ISA+",
    DrawdownOrder.PENSION_ONLY: "PenOnly",
    DrawdownOrder.FILL_BASIC_RATE: "FillBasic",
    DrawdownOrder.STATE_PENSION_BRIDGE: "SPBridge",
    MortgageOption.EARLY: "Early",
    MortgageOption.NORMAL: "Normal",
    MortgageOption.EXTENDED: "Ext",
    MortgageOption.PCLS: "PCLS",
}


@dataclass(frozen=True)
class SimulationParams:
    crystallisation: Crystallisation = Crystallisation.GRADUAL
    drawdown: DrawdownOrder = DrawdownOrder.TAX_OPTIMIZED
    mortgage: MortgageOption = MortgageOption.NORMAL
    maximize_couple_isa: bool = False
    guardrails_enabled: bool = False
    state_pension_defer_years: int = 0
    isa_to_sipp_enabled: bool = False

    def __post_init__(self):
        # accept raw ids so callers can pass strings from JSON
        object.__setattr__(self, "crystallisation", Crystallisation(self.crystallisation))
        object.__setattr__(self, "drawdown", DrawdownOrder(self.drawdown))
        object.__setattr__(self, "mortgage", MortgageOption(self.mortgage))

    def describe(self) -> str:
        parts = [_SHORT_NAMES[self.crystallisation], _SHORT_NAMES[self.drawdown], _SHORT_NAMES[self.mortgage]]
        if self.maximize_couple_isa and self.drawdown in PENSION_TO_ISA_ORDERS:
            parts.append("MaxISA")
        if self.isa_to_sipp_enabled:
            parts.append("ISA2SIPP")
        if self.guardrails_enabled:
            parts.append("GR")
        if self.state_pension_defer_years:
            parts.append(f"Defer{self.state_pension_defer_years}y")
        return "/".join(parts)


__all__ = [
    "Crystallisation",
    "DrawdownOrder",
    "MortgageOption",
    "PENSION_TO_ISA_ORDERS",
    "SimulationParams",
]
