"""Per-person account ledger and the yearly withdrawal breakdown.

Each person holds three buckets:

* ``uncrystallised_pot`` - pension not yet crystallised; 25% of anything taken
  from it can be tax-free.
* ``crystallised_pot`` - pension already crystallised; fully taxable when drawn.
* ``tax_free_savings`` - ISA savings, drawn tax-free down to a preserved
  emergency minimum and topped up each year within an annual ceiling.

The ledger is built once per run from the configuration and mutated in place
every simulated year by growth and withdrawals.  Balances never go negative.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from . import taxes
from .config import birth_year

DEFAULT_ISA_LIMIT = 20000.0
DEFAULT_DEFERRAL_RATE = 0.058
DEFAULT_COMMUTE_FACTOR = 12.0


@dataclass
class Person:
    name: str
    birth_year: int
    retirement_age: int = 55
    state_pension_age: int = 67
    tax_free_savings: float = 0.0
    uncrystallised_pot: float = 0.0
    crystallised_pot: float = 0.0
    pcls_taken: bool = False
    isa_annual_limit: float = DEFAULT_ISA_LIMIT
    emergency_fund_minimum: float = 0.0
    state_pension_defer_years: int = 0
    state_pension_deferral_rate: float = DEFAULT_DEFERRAL_RATE
    db_pension_amount: float = 0.0
    db_pension_start_age: int = 0
    db_pension_normal_age: int = 0
    db_pension_early_factor: float = 0.0
    db_pension_late_factor: float = 0.0
    db_pension_commutation: float = 0.0
    db_pension_commute_factor: float = DEFAULT_COMMUTE_FACTOR
    db_pension_lump_sum_taken: bool = False
    part_time_income: float = 0.0
    part_time_start_age: int = 0
    part_time_end_age: int = 0

    def _valid_year(self, year: int) -> bool:
        # guard against nonsense birth years producing huge or negative ages
        return 1900 <= self.birth_year <= year

    def age(self, year: int) -> int:
        return year - self.birth_year

    def can_access_pension(self, year: int) -> bool:
        return self._valid_year(year) and self.age(year) >= self.retirement_age

    def effective_state_pension_age(self) -> int:
        return self.state_pension_age + self.state_pension_defer_years

    def receives_state_pension(self, year: int) -> bool:
        return self._valid_year(year) and self.age(year) >= self.effective_state_pension_age()

    def deferred_state_pension(self, base_amount: float) -> float:
        """State pension enhanced by compounding the deferral rate over the deferred years."""
        if self.state_pension_defer_years <= 0 or self.state_pension_deferral_rate <= 0:
            return base_amount
        return base_amount * (1.0 + self.state_pension_deferral_rate) ** self.state_pension_defer_years

    def receives_db_pension(self, year: int) -> bool:
        if self.db_pension_amount <= 0 or self.db_pension_start_age <= 0:
            return False
        return self._valid_year(year) and self.age(year) >= self.db_pension_start_age

    def _adjusted_db_pension(self) -> float:
        amount = self.db_pension_amount
        if self.db_pension_normal_age <= 0 or self.db_pension_start_age <= 0:
            return amount
        years = self.db_pension_start_age - self.db_pension_normal_age
        if years < 0 and self.db_pension_early_factor > 0:
            return amount * (1.0 + years * self.db_pension_early_factor)
        if years > 0 and self.db_pension_late_factor > 0:
            return amount * (1.0 + years * self.db_pension_late_factor)
        return amount

    def effective_db_pension(self) -> float:
        """Annual DB pension after the early/late adjustment and any commutation.

        Each year taken before ``db_pension_normal_age`` cuts the scheme amount
        by ``db_pension_early_factor`` and each year after raises it by
        ``db_pension_late_factor`` (simple, not compounded).  The commuted
        fraction is then given up for the lump sum.
        """
        if self.db_pension_amount <= 0:
            return 0.0
        return self._adjusted_db_pension() * (1.0 - max(0.0, self.db_pension_commutation))

    def db_pension_lump_sum(self) -> float:
        """Tax-free cash for the commuted pension, ``commute_factor`` pounds per pound given up."""
        if self.db_pension_amount <= 0 or self.db_pension_commutation <= 0:
            return 0.0
        factor = self.db_pension_commute_factor if self.db_pension_commute_factor > 0 else DEFAULT_COMMUTE_FACTOR
        return self._adjusted_db_pension() * self.db_pension_commutation * factor

    def take_db_pension_lump_sum(self, year: int) -> float:
        """Pay the commutation lump sum into the ISA in the first DB pension year.

        Returns the amount paid, zero in any other year or once already taken.
        """
        if self.db_pension_lump_sum_taken or not self.receives_db_pension(year):
            return 0.0
        if year != self.birth_year + self.db_pension_start_age:
            return 0.0
        lump = self.db_pension_lump_sum()
        if lump > 0:
            self.tax_free_savings += lump
            self.db_pension_lump_sum_taken = True
        return lump

    def receiving_part_time_income(self, year: int) -> bool:
        if self.part_time_income <= 0:
            return False
        age = self.age(year)
        return self._valid_year(year) and self.part_time_start_age <= age < self.part_time_end_age

    def available_isa(self) -> float:
        return max(0.0, self.tax_free_savings - self.emergency_fund_minimum)

    def total_pension(self) -> float:
        return self.crystallised_pot + self.uncrystallised_pot

    def total_wealth(self) -> float:
        return self.tax_free_savings + self.total_pension()

    def clone(self) -> "Person":
        return copy.copy(self)


@dataclass
class WithdrawalBreakdown:
    """Where one year's withdrawals came from, per person and in total."""

    tax_free_from_isa: Dict[str, float] = field(default_factory=dict)
    tax_free_from_pension: Dict[str, float] = field(default_factory=dict)
    taxable_from_pension: Dict[str, float] = field(default_factory=dict)
    isa_deposits: Dict[str, float] = field(default_factory=dict)
    total_tax_free: float = 0.0
    total_taxable: float = 0.0
    total_isa_deposits: float = 0.0

    def add_isa_withdrawal(self, name: str, amount: float) -> None:
        self.tax_free_from_isa[name] = self.tax_free_from_isa.get(name, 0.0) + amount
        self.total_tax_free += amount

    def add_pension_tax_free(self, name: str, amount: float) -> None:
        self.tax_free_from_pension[name] = self.tax_free_from_pension.get(name, 0.0) + amount
        self.total_tax_free += amount

    def add_taxable(self, name: str, amount: float) -> None:
        self.taxable_from_pension[name] = self.taxable_from_pension.get(name, 0.0) + amount
        self.total_taxable += amount

    def add_isa_deposit(self, name: str, amount: float) -> None:
        self.isa_deposits[name] = self.isa_deposits.get(name, 0.0) + amount
        self.total_isa_deposits += amount

    def taxable_for(self, name: str) -> float:
        return self.taxable_from_pension.get(name, 0.0)

    def total_withdrawn(self) -> float:
        return self.total_tax_free + self.total_taxable

    def tax_by_person(
        self,
        base_income_by_person: Dict[str, float],
        bands: Sequence[taxes.TaxBand],
    ) -> Dict[str, float]:
        names = set(base_income_by_person) | set(self.taxable_from_pension)
        return {
            name: taxes.person_tax(base_income_by_person.get(name, 0.0), self.taxable_for(name), bands)
            for name in names
        }

    def net_income(
        self,
        base_income_by_person: Dict[str, float],
        bands: Sequence[taxes.TaxBand],
    ) -> float:
        """Spendable withdrawals after tax, net of anything redeposited into ISAs.

        Tax on the base income itself is excluded so the figure compares
        directly with a net requirement that already counts base income.
        """
        extra_tax = 0.0
        for name, taxable in self.taxable_from_pension.items():
            base = base_income_by_person.get(name, 0.0)
            extra_tax += taxes.marginal_tax(taxable, base, bands)
        return self.total_withdrawn() - extra_tax - self.total_isa_deposits


def people_from_config(config: Dict, deferral_rate: Optional[float] = None) -> List[Person]:
    """Build ledgers from the ``people`` section of a configuration."""
    financial = config.get("financial", {})
    rate = deferral_rate if deferral_rate is not None else float(financial.get("state_pension_deferral_rate", 0.0))
    if rate <= 0:
        rate = DEFAULT_DEFERRAL_RATE

    people = []
    for pc in config.get("people", []):
        isa_limit = float(pc.get("isa_annual_limit", 0.0))
        if isa_limit <= 0:
            isa_limit = DEFAULT_ISA_LIMIT
        people.append(
            Person(
                name=pc["name"],
                birth_year=birth_year(pc),
                retirement_age=int(pc.get("retirement_age", 55)),
                state_pension_age=int(pc.get("state_pension_age", 67)),
                tax_free_savings=float(pc.get("tax_free_savings", 0.0)),
                uncrystallised_pot=float(pc.get("pension", 0.0)),
                isa_annual_limit=isa_limit,
                state_pension_defer_years=int(pc.get("state_pension_defer_years", 0)),
                state_pension_deferral_rate=rate,
                db_pension_amount=float(pc.get("db_pension_amount", 0.0)),
                db_pension_start_age=int(pc.get("db_pension_start_age", 0)),
                db_pension_normal_age=int(pc.get("db_pension_normal_age", 0)),
                db_pension_early_factor=float(pc.get("db_pension_early_factor", 0.0)),
                db_pension_late_factor=float(pc.get("db_pension_late_factor", 0.0)),
                db_pension_commutation=float(pc.get("db_pension_commutation", 0.0)),
                db_pension_commute_factor=float(pc.get("db_pension_commute_factor", DEFAULT_COMMUTE_FACTOR)),
                part_time_income=float(pc.get("part_time_income", 0.0)),
                part_time_start_age=int(pc.get("part_time_start_age", 0)),
                part_time_end_age=int(pc.get("part_time_end_age", 0)),
            )
        )
    return people


def clone_people(people: Sequence[Person]) -> List[Person]:
    return [p.clone() for p in people]


__all__ = [
    "DEFAULT_ISA_LIMIT",
    "DEFAULT_DEFERRAL_RATE",
    "DEFAULT_COMMUTE_FACTOR",
    "Person",
    "WithdrawalBreakdown",
    "people_from_config",
    "clone_people",
]
