"""
PayEngine - Engine Service Tests

Payslip lifecycle, schedule creation, payments, delinquency and payroll
runs through PayrollEngineService with an in-memory repository.
"""

import asyncio
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from payengine.models.payroll import InstallmentStatus, LoanStatus, PayslipStatus
from payengine.utils.error_handling import (
    AlreadyProcessedException,
    BusinessRuleException,
    ConfigurationException,
    EmployeeNotFoundException,
    ErrorCode,
    ImmutabilityViolationException,
    InstallmentNotFoundException,
    InvalidAmountException,
    LoanNotFoundException,
    PayrollPeriodClosedException,
    PayslipNotFoundException,
    ValidationException,
    VersionConflictException,
)
from payengine.utils.periods import PayPeriod


class TestPayslipLifecycle:
    """COMPUTED -> FINALIZED -> SUPERSEDED."""

    @pytest.mark.asyncio
    async def test_compute_stores_payslip(self, service, repository, employee_factory, period):
        employee = repository.add_employee(employee_factory())

        result = await service.compute_payslip(employee.id, period)

        assert result.net_pay == Decimal("4397.07")
        assert len(repository.payslips) == 1
        record = repository.payslips[0]
        assert record.status == PayslipStatus.COMPUTED
        assert record.version == 1
        assert record.net_pay == Decimal("4397.07")
        assert record.payload["net_pay"] == "4397.07"
        assert repository.commits == 1

    @pytest.mark.asyncio
    async def test_recompute_replaces_open_payslip(
        self, service, repository, employee_factory, element_factory, period
    ):
        from payengine.models.payroll import VariableElementType

        employee = repository.add_employee(employee_factory())
        await service.compute_payslip(employee.id, period)
        repository.add_element(
            element_factory(employee, VariableElementType.BONUS, period, amount=Decimal("200"))
        )

        result = await service.compute_payslip(employee.id, period)

        assert len(repository.payslips) == 1
        assert repository.payslips[0].version == 1
        assert repository.payslips[0].gross_pay == result.gross_pay == Decimal("5200.00")

    @pytest.mark.asyncio
    async def test_finalized_payslip_is_never_recomputed(self, service, repository, employee_factory, period):
        employee = repository.add_employee(employee_factory())
        await service.compute_payslip(employee.id, period)
        record = await service.finalize_payslip(employee.id, period)

        assert record.status == PayslipStatus.FINALIZED
        assert record.finalized_at is not None
        with pytest.raises(PayrollPeriodClosedException):
            await service.compute_payslip(employee.id, period)

    @pytest.mark.asyncio
    async def test_finalize_twice(self, service, repository, employee_factory, period):
        employee = repository.add_employee(employee_factory())
        await service.compute_payslip(employee.id, period)
        await service.finalize_payslip(employee.id, period)

        with pytest.raises(AlreadyProcessedException):
            await service.finalize_payslip(employee.id, period)

    @pytest.mark.asyncio
    async def test_finalize_missing_payslip(self, service, repository, employee_factory, period):
        employee = repository.add_employee(employee_factory())

        with pytest.raises(PayslipNotFoundException):
            await service.finalize_payslip(employee.id, period)

    @pytest.mark.asyncio
    async def test_correction_creates_new_version(self, service, repository, employee_factory, period):
        employee = repository.add_employee(employee_factory())
        await service.compute_payslip(employee.id, period)
        await service.finalize_payslip(employee.id, period)
        employee.base_salary = Decimal("5500.00")

        result = await service.correct_payslip(employee.id, period, "Backdated raise")

        assert result.version == 2
        assert result.gross_pay == Decimal("5500.00")
        versions = {r.version: r for r in repository.payslips}
        assert versions[1].status == PayslipStatus.SUPERSEDED
        assert versions[1].gross_pay == Decimal("5000.00")
        assert versions[2].status == PayslipStatus.COMPUTED
        assert versions[2].correction_reason == "Backdated raise"

    @pytest.mark.asyncio
    async def test_correction_requires_finalized_payslip(self, service, repository, employee_factory, period):
        employee = repository.add_employee(employee_factory())
        await service.compute_payslip(employee.id, period)

        with pytest.raises(BusinessRuleException):
            await service.correct_payslip(employee.id, period, "Not yet final")

    @pytest.mark.asyncio
    async def test_unknown_employee(self, service, period):
        with pytest.raises(EmployeeNotFoundException):
            await service.compute_payslip(uuid4(), period)

    @pytest.mark.asyncio
    async def test_missing_rule_set(self, service, repository, employee_factory):
        employee = repository.add_employee(employee_factory())

        with pytest.raises(ConfigurationException):
            await service.compute_payslip(employee.id, PayPeriod(2025, 12))


class TestScheduleGeneration:
    """Schedules are created once per loan."""

    @pytest.mark.asyncio
    async def test_generate_schedule(self, service, repository, employee_factory, loan_factory):
        loan = repository.add_loan(loan_factory(employee_factory()))

        installments = await service.generate_schedule(loan.id)

        assert len(installments) == 6
        assert loan.installments == installments
        assert all(i.status == InstallmentStatus.PENDING for i in installments)
        assert installments[0].due_date == date(2026, 2, 15)

    @pytest.mark.asyncio
    async def test_existing_schedule_is_immutable(self, service, repository, employee_factory, loan_factory):
        loan = repository.add_loan(loan_factory(employee_factory()))
        await service.generate_schedule(loan.id)

        with pytest.raises(ImmutabilityViolationException):
            await service.generate_schedule(loan.id)

    @pytest.mark.asyncio
    async def test_inactive_loan(self, service, repository, employee_factory, loan_factory):
        loan = repository.add_loan(loan_factory(employee_factory(), status=LoanStatus.CANCELLED))

        with pytest.raises(BusinessRuleException):
            await service.generate_schedule(loan.id)

    @pytest.mark.asyncio
    async def test_unknown_loan(self, service):
        with pytest.raises(LoanNotFoundException):
            await service.generate_schedule(uuid4())

    def test_preview_custom_amounts_must_match_principal(self, service):
        with pytest.raises(ValidationException):
            service.preview_schedule(
                principal=Decimal("1000"),
                start_date=date(2026, 1, 1),
                amounts=[Decimal("400"), Decimal("500")],
            )

    def test_preview(self, service):
        installments = service.preview_schedule(
            principal=Decimal("12000"),
            start_date=date(2026, 1, 15),
            installment_count=6,
        )

        assert [i.principal for i in installments] == [Decimal("2000.00")] * 6


class TestPayments:
    """Recording payments against installments."""

    @pytest.fixture
    def scheduled(self, service, repository, employee_factory, loan_factory):
        async def _make(**overrides):
            loan = repository.add_loan(loan_factory(employee_factory(), **overrides))
            await service.generate_schedule(loan.id)
            return loan
        return _make

    @pytest.mark.asyncio
    async def test_full_payment(self, service, scheduled):
        loan = await scheduled()
        first = loan.installments[0]

        result = await service.record_payment(first.id, Decimal("2000.00"), date(2026, 2, 14), "Payroll")

        assert result.installment.status == InstallmentStatus.PAID
        assert result.installment.payment_date == date(2026, 2, 14)
        assert result.installment.notes == "Payroll"
        assert result.loan.remaining_balance == Decimal("10000.00")
        assert result.loan.amount_repaid == Decimal("2000.00")
        assert result.loan.status == LoanStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_partial_payments_accumulate(self, service, scheduled):
        loan = await scheduled()
        first = loan.installments[0]

        await service.record_payment(first.id, Decimal("800.00"), date(2026, 2, 14))
        assert first.status == InstallmentStatus.PENDING
        assert loan.remaining_balance == Decimal("12000.00")

        await service.record_payment(first.id, Decimal("1200.00"), date(2026, 2, 20))
        assert first.status == InstallmentStatus.PAID
        assert first.amount_paid == Decimal("2000.00")
        assert loan.remaining_balance == Decimal("10000.00")

    @pytest.mark.asyncio
    async def test_overpayment_rejected(self, service, scheduled):
        loan = await scheduled()

        with pytest.raises(InvalidAmountException):
            await service.record_payment(loan.installments[0].id, Decimal("2000.01"), date(2026, 2, 14))

    @pytest.mark.asyncio
    async def test_non_positive_amount(self, service, scheduled):
        loan = await scheduled()

        with pytest.raises(InvalidAmountException):
            await service.record_payment(loan.installments[0].id, Decimal("0"), date(2026, 2, 14))

    @pytest.mark.asyncio
    async def test_paid_installment_rejected(self, service, scheduled):
        loan = await scheduled()
        first = loan.installments[0]
        await service.record_payment(first.id, Decimal("2000.00"), date(2026, 2, 14))

        with pytest.raises(AlreadyProcessedException):
            await service.record_payment(first.id, Decimal("1.00"), date(2026, 2, 15))

    @pytest.mark.asyncio
    async def test_payment_before_loan_start(self, service, scheduled):
        loan = await scheduled()

        with pytest.raises(ValidationException):
            await service.record_payment(loan.installments[0].id, Decimal("100.00"), date(2026, 1, 1))

    @pytest.mark.asyncio
    async def test_unknown_installment(self, service):
        with pytest.raises(InstallmentNotFoundException):
            await service.record_payment(uuid4(), Decimal("100.00"), date(2026, 2, 1))

    @pytest.mark.asyncio
    async def test_last_payment_pays_off_loan(self, service, scheduled):
        loan = await scheduled(principal_amount="3000.00", installment_count=3,
                               installment_amount=Decimal("1000.00"))

        for installment in list(loan.installments):
            await service.record_payment(installment.id, installment.total_payment, installment.due_date)

        assert loan.status == LoanStatus.PAID_OFF
        assert loan.remaining_balance == Decimal("0.00")
        assert loan.amount_repaid == Decimal("3000.00")

        with pytest.raises(AlreadyProcessedException):
            await service.record_payment(loan.installments[0].id, Decimal("1.00"), date(2026, 5, 1))

    @pytest.mark.asyncio
    async def test_concurrent_payments_are_serialized(self, service, scheduled):
        loan = await scheduled()
        first = loan.installments[0]

        results = await asyncio.gather(
            service.record_payment(first.id, Decimal("2000.00"), date(2026, 2, 14)),
            service.record_payment(first.id, Decimal("2000.00"), date(2026, 2, 14)),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], AlreadyProcessedException)
        assert first.amount_paid == Decimal("2000.00")
        assert loan.amount_repaid == Decimal("2000.00")


class TestProgressAndDelinquency:

    @pytest.mark.asyncio
    async def test_get_progress(self, service, repository, employee_factory, loan_factory):
        loan = repository.add_loan(loan_factory(employee_factory()))
        await service.generate_schedule(loan.id)
        await service.record_payment(loan.installments[0].id, Decimal("2000.00"), date(2026, 2, 15))

        info = await service.get_progress(loan.id, date(2026, 3, 20))

        assert info.percentage == Decimal("16.66")
        assert info.is_late is True
        assert info.months_late == 1
        assert info.next_due_date == date(2026, 3, 15)

    @pytest.mark.asyncio
    async def test_refresh_keeps_last_cent_outstanding(self, service, repository, employee_factory, loan_factory):
        loan = repository.add_loan(loan_factory(
            employee_factory(),
            principal_amount="100000.00",
            installment_amount=Decimal("16666.67"),
            amount_repaid=Decimal("99999.99"),
            remaining_balance=Decimal("0.01"),
        ))

        refreshed, _ = await service.refresh_delinquency(loan.id, date(2026, 6, 1))

        assert refreshed.status == LoanStatus.ACTIVE
        assert refreshed.remaining_balance == Decimal("0.01")

    @pytest.mark.asyncio
    async def test_refresh_delinquency_suspends_loan(self, service, repository, employee_factory, loan_factory):
        loan = repository.add_loan(loan_factory(employee_factory()))
        await service.generate_schedule(loan.id)

        refreshed, marked = await service.refresh_delinquency(loan.id, date(2026, 6, 20))

        assert marked == 5
        assert refreshed.status == LoanStatus.SUSPENDED
        assert [i.status for i in loan.installments].count(InstallmentStatus.OVERDUE) == 5

    @pytest.mark.asyncio
    async def test_overdue_installment_can_still_be_paid(self, service, repository, employee_factory, loan_factory):
        loan = repository.add_loan(loan_factory(employee_factory()))
        await service.generate_schedule(loan.id)
        await service.refresh_delinquency(loan.id, date(2026, 3, 1))

        result = await service.record_payment(loan.installments[0].id, Decimal("2000.00"), date(2026, 3, 2))

        assert result.installment.status == InstallmentStatus.PAID

    @pytest.mark.asyncio
    async def test_schedule_statistics(self, service, repository, employee_factory, loan_factory):
        loan = repository.add_loan(loan_factory(employee_factory()))
        await service.generate_schedule(loan.id)

        stats = await service.get_schedule_statistics(loan.id, date(2026, 1, 20))

        assert stats.total_installments == 6
        assert stats.amount_remaining == Decimal("12000.00")
        assert stats.next_payment_amount == Decimal("2000.00")


class TestPayrollRun:
    """One employee's failure does not block the others."""

    @pytest.mark.asyncio
    async def test_partial_failure(self, service, repository, employee_factory, loan_factory, period):
        healthy = repository.add_employee(employee_factory(employee_code="EMP-001"))
        broken = repository.add_employee(employee_factory(employee_code="EMP-002"))
        repository.add_loan(loan_factory(broken, remaining_balance=Decimal("0.00")))

        report = await service.run_payroll(period)

        assert report.is_partial
        assert [r.employee_id for r in report.succeeded] == [healthy.id]
        assert len(report.failures) == 1
        assert report.failures[0].employee_id == broken.id
        assert report.failures[0].code == ErrorCode.DATA_INTEGRITY_ERROR.value
        assert report.total_net == Decimal("4397.07")
        assert repository.rollbacks == 1
        assert len(repository.payslips) == 1

    @pytest.mark.asyncio
    async def test_concurrent_payslip_insert_fails_one_employee(
        self, service, repository, employee_factory, period, monkeypatch
    ):
        first = repository.add_employee(employee_factory(employee_code="EMP-001"))
        raced = repository.add_employee(employee_factory(employee_code="EMP-002"))
        store = repository.add_payslip

        async def add_payslip(record):
            if record.employee_id == raced.id:
                raise VersionConflictException("Payslip", record.employee_id)
            await store(record)

        monkeypatch.setattr(repository, "add_payslip", add_payslip)

        report = await service.run_payroll(period)

        assert [r.employee_id for r in report.succeeded] == [first.id]
        assert report.failures[0].employee_id == raced.id
        assert report.failures[0].code == ErrorCode.VERSION_CONFLICT.value

    @pytest.mark.asyncio
    async def test_inactive_employees_are_skipped(self, service, repository, employee_factory, period):
        from payengine.models.payroll import EmployeeStatus

        repository.add_employee(employee_factory(employee_code="EMP-001"))
        repository.add_employee(employee_factory(employee_code="EMP-002", status=EmployeeStatus.TERMINATED))

        report = await service.run_payroll(period)

        assert not report.is_partial
        assert len(report.succeeded) == 1

    @pytest.mark.asyncio
    async def test_missing_rule_set_aborts_run(self, service, repository, employee_factory):
        repository.add_employee(employee_factory())

        with pytest.raises(ConfigurationException):
            await service.run_payroll(PayPeriod(2025, 1))
        assert repository.payslips == []
