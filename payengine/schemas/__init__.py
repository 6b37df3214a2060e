"""
PayEngine - Schemas Package

Pydantic schemas for statutory rule tables and request/response validation.
"""

from payengine.schemas.rules import (
    ALLOWANCE_NAMES,
    AllowanceCeiling,
    ContributionRule,
    ProfessionalExpenseRule,
    RuleSet,
    SeniorityStep,
    TaxBracketRule,
)
from payengine.schemas.payroll import (
    ContributionItem,
    InstallmentDeductionItem,
    PayslipResult,
)

__all__ = [
    "ALLOWANCE_NAMES",
    "AllowanceCeiling",
    "ContributionRule",
    "ProfessionalExpenseRule",
    "RuleSet",
    "SeniorityStep",
    "TaxBracketRule",
    "ContributionItem",
    "InstallmentDeductionItem",
    "PayslipResult",
]
