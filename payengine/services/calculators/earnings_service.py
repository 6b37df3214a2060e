"""
PayEngine - Fixed Earnings Calculator

Seniority bonus and allowance ceilings applied to the fixed part of gross pay.

Seniority bonus = scale rate x base salary, where the rate depends on the
completed years of service at the end of the payroll period.
"""

from collections import OrderedDict
from datetime import date
from decimal import Decimal
from typing import Any, Dict

from dateutil.relativedelta import relativedelta

from payengine.schemas.rules import ALLOWANCE_NAMES, RuleSet
from payengine.utils.error_handling import InvalidAmountException
from payengine.utils.money import ZERO, percent_of, round_money


class EarningsCalculator:
    """Seniority and allowance rules from the period's rule set."""

    def __init__(self, rule_set: RuleSet):
        self.rule_set = rule_set

    @staticmethod
    def completed_years(hire_date: date, as_of: date) -> int:
        if as_of < hire_date:
            return 0
        return relativedelta(as_of, hire_date).years

    def seniority_rate(self, years: int) -> Decimal:
        for step in self.rule_set.seniority_scale:
            if years >= step.min_years and (step.max_years is None or years < step.max_years):
                return step.rate
        return Decimal("0")

    def seniority_bonus(self, base_salary: Any, hire_date: date, as_of: date) -> Decimal:
        rate = self.seniority_rate(self.completed_years(hire_date, as_of))
        if rate == 0:
            return ZERO
        return percent_of(base_salary, rate)

    def cap_allowance(self, name: str, amount: Any, base_salary: Any) -> Decimal:
        """Apply the configured ceiling, if any, to one allowance."""
        amount = round_money(amount)
        if amount < 0:
            raise InvalidAmountException(amount, field=f"{name}_allowance",
                                         message=f"{name.title()} allowance cannot be negative")

        ceiling = self.rule_set.allowance_ceilings.get(name)
        if ceiling is None:
            return amount
        if ceiling.max_percentage is not None:
            amount = min(amount, percent_of(base_salary, ceiling.max_percentage))
        if ceiling.absolute_ceiling is not None:
            amount = min(amount, round_money(ceiling.absolute_ceiling))
        return amount

    def allowances(self, employee) -> Dict[str, Decimal]:
        """Capped allowances of an employee, keyed by name."""
        result = OrderedDict()
        for name in ALLOWANCE_NAMES:
            value = getattr(employee, f"{name}_allowance")
            if value is None:
                continue
            result[name] = self.cap_allowance(name, value, employee.base_salary)
        return result
