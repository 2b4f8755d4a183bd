"""Guyton-Klinger withdrawal guardrails.

The withdrawal rate in the first retirement year is the reference.  In every
later year the (inflated) withdrawal is compared with the portfolio: when
its rate exceeds ``upper_limit`` times the reference the withdrawal is cut by
``adjustment``; below ``lower_limit`` times the reference it is raised by the
same amount.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

DEFAULT_UPPER_LIMIT = 1.20
DEFAULT_LOWER_LIMIT = 0.80
DEFAULT_ADJUSTMENT = 0.10


@dataclass
class GuardrailsState:
    upper_limit: float = DEFAULT_UPPER_LIMIT
    lower_limit: float = DEFAULT_LOWER_LIMIT
    adjustment: float = DEFAULT_ADJUSTMENT
    initial_rate: float = 0.0
    initial_portfolio: float = 0.0
    current_withdrawal: float = 0.0

    @classmethod
    def from_config(cls, config: Dict) -> "GuardrailsState":
        """Limits from ``income_requirements``; non-positive values mean the default."""
        income = config.get("income_requirements", {})

        def _positive(key, default):
            value = float(income.get(key, 0.0) or 0.0)
            return value if value > 0 else default

        return cls(
            upper_limit=_positive("guardrails_upper_limit", DEFAULT_UPPER_LIMIT),
            lower_limit=_positive("guardrails_lower_limit", DEFAULT_LOWER_LIMIT),
            adjustment=_positive("guardrails_adjustment", DEFAULT_ADJUSTMENT),
        )

    def initialize(self, portfolio: float, withdrawal: float) -> None:
        self.initial_portfolio = portfolio
        self.current_withdrawal = withdrawal
        if portfolio > 0:
            self.initial_rate = withdrawal / portfolio

    def inflate(self, rate: float) -> None:
        self.current_withdrawal *= 1.0 + rate

    def _ratio(self, portfolio: float) -> float:
        return (self.current_withdrawal / portfolio) / self.initial_rate

    def triggered(self, portfolio: float) -> int:
        """-1 when the withdrawal will be cut, 1 when raised, 0 otherwise."""
        if self.initial_rate <= 0 or portfolio <= 0:
            return 0
        ratio = self._ratio(portfolio)
        if ratio > self.upper_limit:
            return -1
        if ratio < self.lower_limit:
            return 1
        return 0

    def adjusted_withdrawal(self, portfolio: float, base_withdrawal: float) -> float:
        """Apply the guardrails to this year's withdrawal and remember the result.

        Before :meth:`initialize` has run, or with an empty portfolio,
        ``base_withdrawal`` is returned unchanged.
        """
        if self.initial_rate <= 0 or portfolio <= 0:
            return base_withdrawal
        if self.current_withdrawal <= 0:
            self.current_withdrawal = base_withdrawal

        direction = self.triggered(portfolio)
        if direction < 0:
            self.current_withdrawal *= 1.0 - self.adjustment
        elif direction > 0:
            self.current_withdrawal *= 1.0 + self.adjustment
        return self.current_withdrawal

    def current_rate(self, portfolio: float) -> float:
        if portfolio <= 0:
            return 0.0
        return self.current_withdrawal / portfolio


__all__ = [
    "DEFAULT_UPPER_LIMIT",
    "DEFAULT_LOWER_LIMIT",
    "DEFAULT_ADJUSTMENT",
    "GuardrailsState",
]
