"""
PayEngine - Payroll Calculators

Pure, synchronous calculators used by the net pay resolver.
"""

from payengine.services.calculators.contribution_service import (
    ContributionCalculator,
    ContributionLine,
    ContributionResult,
)
from payengine.services.calculators.earnings_service import EarningsCalculator
from payengine.services.calculators.income_tax_service import (
    ProgressiveTaxCalculator,
    TaxBracket,
    TaxComputation,
    validate_brackets,
)
from payengine.services.calculators.variable_elements import (
    AggregatedElements,
    VariableElementAggregator,
)

__all__ = [
    "ContributionCalculator",
    "ContributionLine",
    "ContributionResult",
    "EarningsCalculator",
    "ProgressiveTaxCalculator",
    "TaxBracket",
    "TaxComputation",
    "validate_brackets",
    "AggregatedElements",
    "VariableElementAggregator",
]
