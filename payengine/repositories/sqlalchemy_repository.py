"""
PayEngine - SQLAlchemy Payroll Repository

Async SQLAlchemy 2.0 implementation of PayrollRepository.
"""

import logging
import uuid
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from payengine.models.payroll import (
    Employee,
    EmployeeStatus,
    Installment,
    Loan,
    PayslipRecord,
    StatutoryRuleSet,
    VariableElement,
)
from payengine.repositories.base import PayrollRepository
from payengine.schemas.rules import RuleSet
from payengine.services.rule_set_service import parse_rule_set
from payengine.utils.error_handling import VersionConflictException
from payengine.utils.periods import PayPeriod

logger = logging.getLogger(__name__)


class SQLAlchemyPayrollRepository(PayrollRepository):
    """Repository over an AsyncSession."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_employee(self, employee_id: uuid.UUID) -> Optional[Employee]:
        return await self.db.get(Employee, employee_id)

    async def list_active_employee_ids(self) -> List[uuid.UUID]:
        result = await self.db.execute(
            select(Employee.id)
            .where(Employee.status == EmployeeStatus.ACTIVE)
            .order_by(Employee.employee_code)
        )
        return list(result.scalars().all())

    async def list_variable_elements(
        self, employee_id: uuid.UUID, period: PayPeriod
    ) -> List[VariableElement]:
        result = await self.db.execute(
            select(VariableElement)
            .where(
                VariableElement.employee_id == employee_id,
                VariableElement.in_period(period),
            )
            .order_by(VariableElement.created_at, VariableElement.id)
        )
        return list(result.scalars().all())

    async def list_loans(self, employee_id: uuid.UUID) -> List[Loan]:
        result = await self.db.execute(
            select(Loan)
            .where(Loan.employee_id == employee_id)
            .options(selectinload(Loan.installments))
            .order_by(Loan.start_date, Loan.reference)
        )
        return list(result.scalars().all())

    async def get_loan(self, loan_id: uuid.UUID, for_update: bool = False) -> Optional[Loan]:
        query = (
            select(Loan)
            .where(Loan.id == loan_id)
            .options(selectinload(Loan.installments))
        )
        if for_update:
            query = query.with_for_update(of=Loan).execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_installment(self, installment_id: uuid.UUID) -> Optional[Installment]:
        return await self.db.get(Installment, installment_id)

    async def add_installments(self, loan: Loan, installments: Sequence[Installment]) -> None:
        for installment in installments:
            loan.installments.append(installment)
        await self.db.flush()

    async def get_latest_payslip(
        self, employee_id: uuid.UUID, period: PayPeriod
    ) -> Optional[PayslipRecord]:
        result = await self.db.execute(
            select(PayslipRecord)
            .where(
                PayslipRecord.employee_id == employee_id,
                PayslipRecord.in_period(period),
            )
            .order_by(PayslipRecord.version.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def add_payslip(self, record: PayslipRecord) -> None:
        self.db.add(record)
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(
                f"Payslip v{record.version} for employee {record.employee_id} in "
                f"{record.period} already stored by another run: {e.orig}"
            )
            raise VersionConflictException("Payslip", record.employee_id)

    async def get_rule_set(self, period: PayPeriod) -> Optional[RuleSet]:
        result = await self.db.execute(
            select(StatutoryRuleSet)
            .where(StatutoryRuleSet.effective_from <= period.start)
            .order_by(StatutoryRuleSet.effective_from.desc(), StatutoryRuleSet.created_at.desc())
            .limit(1)
        )
        stored = result.scalar_one_or_none()
        if stored is None:
            return None
        return parse_rule_set(stored.payload)

    async def commit(self) -> None:
        try:
            await self.db.commit()
        except StaleDataError as e:
            await self.db.rollback()
            logger.warning(f"Concurrent loan update rejected: {e}")
            raise VersionConflictException("Loan")
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(f"Concurrent insert rejected: {e.orig}")
            raise VersionConflictException("Payslip")

    async def rollback(self) -> None:
        await self.db.rollback()
