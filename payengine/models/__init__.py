"""
PayEngine - Database Models
"""

from payengine.models.base import BaseModel, PeriodMixin, TimestampMixin
from payengine.models.payroll import (
    Employee,
    EmployeeStatus,
    Installment,
    InstallmentStatus,
    Loan,
    LoanStatus,
    LoanType,
    MaritalStatus,
    PayslipRecord,
    PayslipStatus,
    StatutoryRuleSet,
    VariableElement,
    VariableElementType,
)

__all__ = [
    "BaseModel",
    "PeriodMixin",
    "TimestampMixin",
    "Employee",
    "EmployeeStatus",
    "Installment",
    "InstallmentStatus",
    "Loan",
    "LoanStatus",
    "LoanType",
    "MaritalStatus",
    "PayslipRecord",
    "PayslipStatus",
    "StatutoryRuleSet",
    "VariableElement",
    "VariableElementType",
]
