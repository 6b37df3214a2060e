"""
PayEngine - Payroll Run Coordinator

Computes payslips for many employees in one period. Each employee is
computed fully in memory and committed on its own, so a failure for one
employee is recorded and the run moves on, and an aborted run leaves the
payslips already committed intact.
"""

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Sequence

from payengine.schemas.payroll import PayslipResult
from payengine.utils.error_handling import AppException
from payengine.utils.money import sum_money
from payengine.utils.periods import PayPeriod

logger = logging.getLogger(__name__)


@dataclass
class EmployeeFailure:
    """An employee whose payslip could not be computed."""
    employee_id: uuid.UUID
    code: str
    message: str


@dataclass
class PayrollRunReport:
    """Outcome of a payroll run; failures form the partial failure report."""
    period: PayPeriod
    succeeded: List[PayslipResult] = field(default_factory=list)
    failures: List[EmployeeFailure] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.failures)

    @property
    def total_gross(self) -> Decimal:
        return sum_money(result.gross_pay for result in self.succeeded)

    @property
    def total_net(self) -> Decimal:
        return sum_money(result.net_pay for result in self.succeeded)

    @property
    def total_tax(self) -> Decimal:
        return sum_money(result.tax_due for result in self.succeeded)


class PayrollRunCoordinator:
    """Drives payslip computation across employees."""

    def __init__(self, engine):
        self.engine = engine

    async def run(
        self,
        period: PayPeriod,
        employee_ids: Optional[Sequence[uuid.UUID]] = None,
    ) -> PayrollRunReport:
        """
        Run payroll for the period.

        The rule set is resolved once; a missing rule set aborts the run
        before any employee is processed.
        """
        repository = self.engine.repository
        rule_set = await self.engine.rule_set_for(period)
        if employee_ids is None:
            employee_ids = await repository.list_active_employee_ids()

        report = PayrollRunReport(period=period)
        logger.info(f"Starting payroll run for {period}: {len(employee_ids)} employees")

        for employee_id in employee_ids:
            try:
                result = await self.engine.compute_payslip(employee_id, period, rule_set=rule_set)
            except AppException as e:
                await repository.rollback()
                logger.warning(f"Payroll run {period}: employee {employee_id} failed with {e.code.value}: {e.message}")
                report.failures.append(EmployeeFailure(
                    employee_id=employee_id,
                    code=e.code.value,
                    message=e.message,
                ))
                continue
            report.succeeded.append(result)

        logger.info(
            f"Payroll run {period} finished: {len(report.succeeded)} succeeded, "
            f"{len(report.failures)} failed, net total {report.total_net}"
        )
        return report
