"""
PayEngine - Payroll Periods

A payroll period is a calendar month, always passed explicitly.
"""

import calendar
from dataclasses import dataclass
from datetime import date

from payengine.utils.error_handling import InvalidPeriodException


@dataclass(frozen=True, order=True)
class PayPeriod:
    """One calendar month of payroll."""

    year: int
    month: int

    def __post_init__(self):
        if not isinstance(self.year, int) or not isinstance(self.month, int):
            raise InvalidPeriodException(self.year, self.month)
        if not 1 <= self.month <= 12 or not 1900 <= self.year <= 9999:
            raise InvalidPeriodException(self.year, self.month)

    @classmethod
    def parse(cls, value: str) -> "PayPeriod":
        """Parse a 'YYYY-MM' string."""
        try:
            year_str, month_str = value.split("-")
            return cls(int(year_str), int(month_str))
        except ValueError:
            raise InvalidPeriodException(value, "")

    @classmethod
    def containing(cls, day: date) -> "PayPeriod":
        return cls(day.year, day.month)

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        return date(self.year, self.month, calendar.monthrange(self.year, self.month)[1])

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"
