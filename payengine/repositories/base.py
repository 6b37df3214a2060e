"""
PayEngine - Repository Interface

Persistence boundary of the payroll engine. Every await in the engine
happens behind this interface; the computational core never does I/O.
"""

import uuid
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from payengine.models.payroll import (
    Employee,
    Installment,
    Loan,
    PayslipRecord,
    VariableElement,
)
from payengine.schemas.rules import RuleSet
from payengine.utils.periods import PayPeriod


class PayrollRepository(ABC):
    """Read and write access to payroll records."""

    # Employees & variable elements

    @abstractmethod
    async def get_employee(self, employee_id: uuid.UUID) -> Optional[Employee]:
        ...

    @abstractmethod
    async def list_active_employee_ids(self) -> List[uuid.UUID]:
        ...

    @abstractmethod
    async def list_variable_elements(
        self, employee_id: uuid.UUID, period: PayPeriod
    ) -> List[VariableElement]:
        ...

    # Loans & installments

    @abstractmethod
    async def list_loans(self, employee_id: uuid.UUID) -> List[Loan]:
        """All loans of an employee, installments loaded."""

    @abstractmethod
    async def get_loan(self, loan_id: uuid.UUID, for_update: bool = False) -> Optional[Loan]:
        """A loan with its installments; for_update takes a row lock where supported."""

    @abstractmethod
    async def get_installment(self, installment_id: uuid.UUID) -> Optional[Installment]:
        ...

    @abstractmethod
    async def add_installments(self, loan: Loan, installments: Sequence[Installment]) -> None:
        ...

    # Payslips

    @abstractmethod
    async def get_latest_payslip(
        self, employee_id: uuid.UUID, period: PayPeriod
    ) -> Optional[PayslipRecord]:
        """Highest-version payslip of the employee for the period."""

    @abstractmethod
    async def add_payslip(self, record: PayslipRecord) -> None:
        ...

    # Rule tables

    @abstractmethod
    async def get_rule_set(self, period: PayPeriod) -> Optional[RuleSet]:
        """Latest rule set effective on or before the period start."""

    # Unit of work

    @abstractmethod
    async def commit(self) -> None:
        """
        Persist pending changes.

        Raises:
            VersionConflictException: a loan was modified concurrently
        """

    @abstractmethod
    async def rollback(self) -> None:
        ...
