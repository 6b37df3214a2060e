"""
PayEngine - Payroll Engine Service

Operations exposed to the API layer and batch jobs:
- compute_payslip / finalize_payslip / correct_payslip
- generate_schedule / preview_schedule / get_schedule_statistics
- record_payment
- get_progress / refresh_delinquency
- run_payroll

All computation is delegated to the pure calculators; this service loads
inputs through the repository, applies the results and commits.
"""

import asyncio
import logging
import uuid
import weakref
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from payengine.config import Settings, get_settings
from payengine.models.payroll import (
    Installment,
    InstallmentStatus,
    Loan,
    LoanStatus,
    PayslipRecord,
    PayslipStatus,
)
from payengine.repositories.base import PayrollRepository
from payengine.schemas.payroll import PayslipResult
from payengine.schemas.rules import RuleSet
from payengine.services.amortization_service import (
    AmortizationScheduler,
    ScheduledInstallment,
    ScheduleStatistics,
)
from payengine.services.net_pay_service import NetPayResolver
from payengine.services.payroll_run_service import PayrollRunCoordinator, PayrollRunReport
from payengine.services.progress_service import ProgressInfo, ProgressTracker
from payengine.services.rule_set_service import default_rule_set
from payengine.utils.error_handling import (
    AlreadyProcessedException,
    BusinessRuleException,
    ConfigurationException,
    EmployeeNotFoundException,
    ImmutabilityViolationException,
    InstallmentNotFoundException,
    InvalidAmountException,
    LoanNotFoundException,
    PayrollPeriodClosedException,
    PayslipNotFoundException,
    ValidationException,
)
from payengine.utils.money import ZERO, round_money
from payengine.utils.periods import PayPeriod

logger = logging.getLogger(__name__)


class LoanLockRegistry:
    """
    One asyncio.Lock per loan id, shared by every service instance of the
    process. Locks are dropped once nobody holds or awaits them.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock_for(self, loan_id: uuid.UUID) -> asyncio.Lock:
        lock = self._locks.get(loan_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[loan_id] = lock
        return lock


loan_locks = LoanLockRegistry()


@dataclass
class PaymentResult:
    """Installment and loan after a recorded payment."""
    installment: Installment
    loan: Loan


class PayrollEngineService:
    """Service for payroll computation and loan repayment tracking."""

    def __init__(
        self,
        repository: PayrollRepository,
        locks: Optional[LoanLockRegistry] = None,
        settings: Optional[Settings] = None,
    ):
        self.repository = repository
        self.locks = locks or loan_locks
        self.settings = settings or get_settings()
        self.scheduler = AmortizationScheduler()
        self.tracker = ProgressTracker(self.settings.delinquency_suspension_months)

    # ===========================================
    # RULE SETS
    # ===========================================

    async def rule_set_for(self, period: PayPeriod) -> RuleSet:
        """Rule set in force for the period, falling back to the configured file."""
        rule_set = await self.repository.get_rule_set(period)
        if rule_set is None:
            rule_set = default_rule_set(self.settings.default_rule_set_file)
        if rule_set is None:
            raise ConfigurationException(f"No statutory rule set in force for period {period}")
        return rule_set

    # ===========================================
    # PAYSLIPS
    # ===========================================

    async def _resolve(
        self,
        employee_id: uuid.UUID,
        period: PayPeriod,
        version: int,
        rule_set: RuleSet,
    ) -> PayslipResult:
        employee = await self.repository.get_employee(employee_id)
        if employee is None:
            raise EmployeeNotFoundException(employee_id)

        elements = await self.repository.list_variable_elements(employee_id, period)
        loans = await self.repository.list_loans(employee_id)
        return NetPayResolver(rule_set).resolve(employee, period, elements, loans, version=version)

    @staticmethod
    def _apply_result(record: PayslipRecord, result: PayslipResult) -> None:
        record.rule_set_version = result.rule_set_version
        record.gross_pay = result.gross_pay
        record.tax_due = result.tax_due
        record.net_pay = result.net_pay
        record.payload = result.model_dump(mode="json")

    async def compute_payslip(
        self,
        employee_id: uuid.UUID,
        period: PayPeriod,
        rule_set: Optional[RuleSet] = None,
    ) -> PayslipResult:
        """
        Compute (or recompute) the open payslip of an employee for a period.

        Recomputing a COMPUTED payslip replaces it in place; a FINALIZED one
        is never recomputed.

        Raises:
            PayrollPeriodClosedException: the latest payslip is finalized
        """
        latest = await self.repository.get_latest_payslip(employee_id, period)
        if latest is not None and latest.status == PayslipStatus.FINALIZED:
            raise PayrollPeriodClosedException(employee_id, str(period), latest.version)

        if rule_set is None:
            rule_set = await self.rule_set_for(period)
        version = latest.version if latest is not None else 1
        result = await self._resolve(employee_id, period, version, rule_set)

        if latest is None:
            record = PayslipRecord(
                id=uuid.uuid4(),
                employee_id=employee_id,
                period_year=period.year,
                period_month=period.month,
                version=version,
                status=PayslipStatus.COMPUTED,
            )
            self._apply_result(record, result)
            await self.repository.add_payslip(record)
        else:
            self._apply_result(latest, result)

        await self.repository.commit()
        logger.info(
            f"Computed payslip v{version} for employee {employee_id} in {period}: "
            f"gross {result.gross_pay}, net {result.net_pay}"
        )
        return result

    async def finalize_payslip(self, employee_id: uuid.UUID, period: PayPeriod) -> PayslipRecord:
        """Mark the latest payslip of the period as final."""
        latest = await self.repository.get_latest_payslip(employee_id, period)
        if latest is None:
            raise PayslipNotFoundException(employee_id, str(period))
        if latest.status == PayslipStatus.FINALIZED:
            raise AlreadyProcessedException("Payslip", latest.id, "finalized")

        latest.status = PayslipStatus.FINALIZED
        latest.finalized_at = datetime.now(timezone.utc)
        await self.repository.commit()
        logger.info(f"Finalized payslip v{latest.version} for employee {employee_id} in {period}")
        return latest

    async def correct_payslip(
        self,
        employee_id: uuid.UUID,
        period: PayPeriod,
        reason: str,
    ) -> PayslipResult:
        """
        Issue a new payslip version superseding a finalized one.

        Raises:
            BusinessRuleException: the latest payslip is not finalized
        """
        latest = await self.repository.get_latest_payslip(employee_id, period)
        if latest is None:
            raise PayslipNotFoundException(employee_id, str(period))
        if latest.status != PayslipStatus.FINALIZED:
            raise BusinessRuleException(
                "Only finalized payslips are corrected; recompute the open payslip instead",
                rule="CORRECT_FINALIZED_ONLY",
                details={"status": latest.status.value, "version": latest.version},
            )

        rule_set = await self.rule_set_for(period)
        version = latest.version + 1
        result = await self._resolve(employee_id, period, version, rule_set)

        latest.status = PayslipStatus.SUPERSEDED
        record = PayslipRecord(
            id=uuid.uuid4(),
            employee_id=employee_id,
            period_year=period.year,
            period_month=period.month,
            version=version,
            status=PayslipStatus.COMPUTED,
            correction_reason=reason,
        )
        self._apply_result(record, result)
        await self.repository.add_payslip(record)
        await self.repository.commit()
        logger.info(f"Issued payslip correction v{version} for employee {employee_id} in {period}")
        return result

    async def run_payroll(
        self,
        period: PayPeriod,
        employee_ids: Optional[Sequence[uuid.UUID]] = None,
    ) -> PayrollRunReport:
        """Compute payslips for every active employee (or the given ones)."""
        return await PayrollRunCoordinator(self).run(period, employee_ids)

    # ===========================================
    # SCHEDULES
    # ===========================================

    async def _get_loan(self, loan_id: uuid.UUID, for_update: bool = False) -> Loan:
        loan = await self.repository.get_loan(loan_id, for_update=for_update)
        if loan is None:
            raise LoanNotFoundException(loan_id)
        return loan

    async def generate_schedule(self, loan_id: uuid.UUID) -> List[Installment]:
        """
        Create the installment schedule of a loan.

        Raises:
            ImmutabilityViolationException: the loan already has a schedule
            RoundingInvariantException: generation broke money conservation
        """
        async with self.locks.lock_for(loan_id):
            loan = await self._get_loan(loan_id, for_update=True)
            if loan.installments:
                raise ImmutabilityViolationException(
                    f"Loan {loan.reference} already has a schedule; restructuring is required to change it",
                    details={"loan_id": str(loan.id), "installments": len(loan.installments)},
                )
            if loan.status != LoanStatus.ACTIVE:
                raise BusinessRuleException(
                    f"Cannot schedule loan {loan.reference} in status {loan.status.value}",
                    rule="LOAN_ACTIVE",
                )

            scheduled = self.scheduler.generate_for_loan(loan)
            installments = [
                Installment(
                    id=uuid.uuid4(),
                    loan_id=loan.id,
                    sequence=item.sequence,
                    due_date=item.due_date,
                    principal=item.principal,
                    interest=item.interest,
                    interest_tax=item.interest_tax,
                    insurance=item.insurance,
                    total_payment=item.total_payment,
                    remaining_balance=item.remaining_balance,
                    status=InstallmentStatus.PENDING,
                    amount_paid=ZERO,
                )
                for item in scheduled
            ]
            await self.repository.add_installments(loan, installments)
            await self.repository.commit()

        logger.info(f"Generated {len(installments)} installments for loan {loan.reference}")
        return installments

    def preview_schedule(
        self,
        principal: Decimal,
        start_date: date,
        annual_rate: Decimal = ZERO,
        installment_count: Optional[int] = None,
        payment: Optional[Decimal] = None,
        amounts: Optional[Sequence[Decimal]] = None,
        insurance_rate: Decimal = ZERO,
        interest_tax_rate: Decimal = ZERO,
    ) -> List[ScheduledInstallment]:
        """Generate a schedule without storing anything."""
        if amounts is not None:
            if round_money(sum(amounts, ZERO)) != round_money(principal):
                raise ValidationException(
                    "Custom installment amounts must add up to the principal",
                    field="amounts",
                )
            return self.scheduler.generate_custom(amounts, start_date)
        if payment is not None:
            return self.scheduler.generate_from_payment(
                principal, payment, start_date,
                annual_rate=annual_rate,
                insurance_rate=insurance_rate,
                interest_tax_rate=interest_tax_rate,
            )
        if installment_count is None:
            raise ValidationException("Installment count is required", field="installment_count")
        return self.scheduler.generate(
            principal, annual_rate, installment_count, start_date,
            insurance_rate=insurance_rate,
            interest_tax_rate=interest_tax_rate,
        )

    async def get_schedule_statistics(self, loan_id: uuid.UUID, as_of: date) -> ScheduleStatistics:
        loan = await self._get_loan(loan_id)
        return self.scheduler.statistics(loan.installments, as_of)

    # ===========================================
    # PAYMENTS
    # ===========================================

    async def record_payment(
        self,
        installment_id: uuid.UUID,
        amount_paid: Decimal,
        payment_date: date,
        notes: Optional[str] = None,
    ) -> PaymentResult:
        """
        Record a payment against an installment.

        Partial payments accumulate; the installment becomes PAID, and the
        loan's remaining principal drops, once its total is covered.
        Payments on one loan are serialized.
        """
        amount = round_money(amount_paid)
        if amount <= 0:
            raise InvalidAmountException(amount_paid, field="amount_paid")

        found = await self.repository.get_installment(installment_id)
        if found is None:
            raise InstallmentNotFoundException(installment_id)

        async with self.locks.lock_for(found.loan_id):
            loan = await self._get_loan(found.loan_id, for_update=True)
            installment = next((i for i in loan.installments if i.id == installment_id), None)
            if installment is None:
                raise InstallmentNotFoundException(installment_id)

            if installment.status in (InstallmentStatus.PAID, InstallmentStatus.CANCELLED):
                raise AlreadyProcessedException("Installment", installment.id, installment.status.value)
            if loan.status != LoanStatus.ACTIVE:
                raise BusinessRuleException(
                    f"Cannot record payments on loan {loan.reference} in status {loan.status.value}",
                    rule="LOAN_ACTIVE",
                )
            if amount > installment.outstanding:
                raise InvalidAmountException(
                    amount, field="amount_paid",
                    message=f"Payment {amount} exceeds the outstanding {installment.outstanding} on installment {installment.sequence}",
                )
            if payment_date < loan.start_date:
                raise ValidationException("Payment date precedes the loan start date", field="payment_date")

            installment.amount_paid = installment.amount_paid + amount
            installment.payment_date = payment_date
            if notes is not None:
                installment.notes = notes
            loan.amount_repaid = loan.amount_repaid + amount

            if installment.amount_paid == installment.total_payment:
                installment.status = InstallmentStatus.PAID
                loan.remaining_balance = max(ZERO, loan.remaining_balance - installment.principal)

            if not any(i.is_open for i in loan.installments):
                loan.status = LoanStatus.PAID_OFF
                loan.remaining_balance = ZERO

            await self.repository.commit()

        logger.info(
            f"Recorded payment {amount} on installment {installment.sequence} of loan {loan.reference}; "
            f"remaining balance {loan.remaining_balance}"
        )
        return PaymentResult(installment=installment, loan=loan)

    # ===========================================
    # PROGRESS
    # ===========================================

    async def get_progress(self, loan_id: uuid.UUID, as_of: date) -> ProgressInfo:
        loan = await self._get_loan(loan_id)
        return self.tracker.progress(loan, as_of)

    async def refresh_delinquency(self, loan_id: uuid.UUID, as_of: date) -> Tuple[Loan, int]:
        """
        Mark past-due installments OVERDUE and apply the suggested status.

        Returns:
            Tuple of (loan, number of installments newly marked overdue)
        """
        async with self.locks.lock_for(loan_id):
            loan = await self._get_loan(loan_id, for_update=True)
            marked = 0
            for installment in loan.installments:
                if installment.status == InstallmentStatus.PENDING and installment.due_date < as_of:
                    installment.status = InstallmentStatus.OVERDUE
                    marked += 1

            info = self.tracker.progress(loan, as_of)
            if info.suggested_status != loan.status:
                logger.warning(
                    f"Loan {loan.reference} status {loan.status.value} -> {info.suggested_status.value} "
                    f"({info.months_late} installments late)"
                )
                loan.status = info.suggested_status
                if loan.status == LoanStatus.PAID_OFF:
                    loan.remaining_balance = ZERO

            await self.repository.commit()

        return loan, marked
