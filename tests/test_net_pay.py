"""
PayEngine - Net Pay Resolver Tests

Gross-to-net payslip computation against the test rule set:
social security 4.48% capped at 6000, health insurance 2.26%,
annual brackets 0 / 10 / 20 / 30%.
"""

from datetime import date
from decimal import Decimal

import pytest

from payengine.models.payroll import (
    InstallmentStatus,
    LoanStatus,
    LoanType,
    MaritalStatus,
    VariableElementType,
)
from payengine.schemas.rules import RuleSet
from payengine.services.net_pay_service import NetPayResolver
from payengine.utils.error_handling import DataIntegrityException, ValidationException
from payengine.utils.periods import PayPeriod


@pytest.fixture
def resolver(rule_set) -> NetPayResolver:
    return NetPayResolver(rule_set)


def _amounts(items):
    return {item.name: item.amount for item in items}


class TestGrossToNet:
    """Ordered statutory deductions."""

    def test_base_salary_only(self, resolver, employee_factory, period):
        employee = employee_factory()

        result = resolver.resolve(employee, period, [], [])

        assert result.gross_pay == Decimal("5000.00")
        assert result.total_contributions == Decimal("337.00")
        assert result.taxable_base == Decimal("4663.00")
        assert result.tax_due == Decimal("265.93")
        assert result.net_pay == Decimal("4397.07")
        assert result.total_employer_contributions == Decimal("449.00")
        assert result.total_employer_cost == Decimal("5449.00")
        assert result.period == "2026-03"
        assert result.rule_set_version == "2026.1"

    def test_variable_elements_and_advance(self, resolver, employee_factory, element_factory, period):
        employee = employee_factory()
        elements = [
            element_factory(
                employee, VariableElementType.OVERTIME, period,
                hours=Decimal("10"), hourly_rate=Decimal("25"),
            ),
            element_factory(employee, VariableElementType.ABSENCE, period, amount=Decimal("100")),
            element_factory(employee, VariableElementType.ADVANCE, period, amount=Decimal("500")),
        ]

        result = resolver.resolve(employee, period, elements, [])

        assert result.gross_pay == Decimal("5150.00")
        assert result.total_contributions == Decimal("347.11")
        assert result.tax_due == Decimal("293.91")
        assert result.pre_net_deductions == Decimal("500.00")
        assert result.net_pay == Decimal("4008.98")

    def test_net_pay_identity(self, resolver, employee_factory, period):
        employee = employee_factory(
            transport_allowance=Decimal("800"),
            marital_status=MaritalStatus.MARRIED,
            dependents=2,
            hire_date=date(2019, 1, 1),
        )

        result = resolver.resolve(employee, period, [], [])

        assert result.allowances == {"transport": Decimal("500.00")}
        assert result.seniority_bonus == Decimal("500.00")
        assert result.tax_deductions == {"dependents": Decimal("60.00"), "spouse": Decimal("30.00")}
        assert result.net_pay == result.gross_pay - result.total_deductions
        assert result.total_deductions == (
            result.total_contributions + result.tax_due
            + result.pre_net_deductions + result.total_installments
        )

    def test_deductions_exceeding_gross(self, resolver, employee_factory, element_factory, period):
        employee = employee_factory()
        element = element_factory(employee, VariableElementType.ABSENCE, period, amount=Decimal("6000"))

        with pytest.raises(ValidationException):
            resolver.resolve(employee, period, [element], [])

    def test_identical_inputs_serialize_identically(self, resolver, employee_factory, element_factory, period):
        employee = employee_factory()
        elements = [element_factory(employee, VariableElementType.BONUS, period, amount=Decimal("300"))]

        first = resolver.resolve(employee, period, elements, [])
        second = resolver.resolve(employee, period, elements, [])

        assert first.model_dump_json() == second.model_dump_json()


class TestInstallmentNetting:
    """Loan installments due in the period are deducted after tax."""

    def test_scheduled_installment(self, resolver, employee_factory, loan_factory, installment_factory, period):
        employee = employee_factory()
        loan = loan_factory(employee)
        installment_factory(loan, 1, date(2026, 2, 15), "2000.00", status=InstallmentStatus.PAID,
                            amount_paid=Decimal("2000.00"))
        due = installment_factory(loan, 2, date(2026, 3, 15), "2000.00")
        installment_factory(loan, 3, date(2026, 4, 15), "2000.00")
        loan.remaining_balance = Decimal("10000.00")

        result = resolver.resolve(employee, period, [], [loan])

        assert [item.installment_id for item in result.installment_deductions] == [due.id]
        assert result.total_installments == Decimal("2000.00")
        assert result.net_pay == Decimal("2397.07")

    def test_no_installment_due(self, resolver, employee_factory, loan_factory, installment_factory):
        employee = employee_factory()
        loan = loan_factory(employee)
        installment_factory(loan, 1, date(2026, 2, 15), "2000.00")

        result = resolver.resolve(employee, PayPeriod(2026, 5), [], [loan])

        assert result.total_installments == Decimal("0.00")

    def test_unscheduled_loan_capped_at_balance(self, resolver, employee_factory, loan_factory, period):
        employee = employee_factory()
        loan = loan_factory(
            employee,
            installment_amount=Decimal("500.00"),
            remaining_balance=Decimal("300.00"),
            amount_repaid=Decimal("11700.00"),
        )

        result = resolver.resolve(employee, period, [], [loan])

        assert result.total_installments == Decimal("300.00")

    def test_inactive_loans_are_skipped(self, resolver, employee_factory, loan_factory, period):
        employee = employee_factory()
        loan = loan_factory(employee, status=LoanStatus.PAID_OFF, remaining_balance=Decimal("0.00"))

        result = resolver.resolve(employee, period, [], [loan])

        assert result.installment_deductions == []

    def test_housing_interest_is_tax_deductible(
        self, resolver, employee_factory, loan_factory, installment_factory, period
    ):
        employee = employee_factory()
        loan = loan_factory(employee, loan_type=LoanType.HOUSING, interest_rate=Decimal("6"))
        installment_factory(
            loan, 1, date(2026, 3, 15), "1900.00",
            interest=Decimal("60.00"), total_payment=Decimal("1960.00"),
        )

        result = resolver.resolve(employee, period, [], [loan])

        assert result.tax_deductions["housing_interest"] == Decimal("60.00")
        assert result.tax_due < Decimal("265.93")


class TestDataIntegrity:
    """Inconsistent records fail resolution instead of being corrected."""

    def test_active_loan_without_balance(self, resolver, employee_factory, loan_factory, period):
        employee = employee_factory()
        loan = loan_factory(employee, remaining_balance=Decimal("0.00"))

        with pytest.raises(DataIntegrityException):
            resolver.resolve(employee, period, [], [loan])

    def test_balance_above_principal(self, resolver, employee_factory, loan_factory, period):
        employee = employee_factory()
        loan = loan_factory(employee, remaining_balance=Decimal("15000.00"))

        with pytest.raises(DataIntegrityException):
            resolver.resolve(employee, period, [], [loan])

    def test_loan_of_another_employee(self, resolver, employee_factory, loan_factory, period):
        employee = employee_factory()
        loan = loan_factory(employee_factory())

        with pytest.raises(DataIntegrityException):
            resolver.resolve(employee, period, [], [loan])

    def test_element_from_another_period(self, resolver, employee_factory, element_factory, period):
        employee = employee_factory()
        element = element_factory(
            employee, VariableElementType.BONUS, PayPeriod(2026, 2), amount=Decimal("100"),
        )

        with pytest.raises(DataIntegrityException):
            resolver.resolve(employee, period, [element], [])


class TestEmployeeApplicability:
    """Exemptions, opt-in insurances and partial months."""

    def test_exempt_from_health_insurance(self, resolver, employee_factory, period):
        employee = employee_factory(contribution_exemptions=["health_insurance"])

        result = resolver.resolve(employee, period, [], [])

        assert _amounts(result.contributions) == {"social_security": Decimal("224.00")}
        assert result.taxable_base == Decimal("4776.00")
        assert result.tax_due == Decimal("288.53")
        assert result.net_pay == Decimal("4487.47")

    def test_opt_in_insurance_is_not_tax_deductible(self, rule_set_payload, employee_factory, period):
        rule_set_payload["contributions"].append(
            {"name": "life_insurance", "rate": "1", "optional": True, "tax_deductible": False},
        )
        resolver = NetPayResolver(RuleSet.model_validate(rule_set_payload))

        not_elected = resolver.resolve(employee_factory(), period, [], [])
        elected = resolver.resolve(
            employee_factory(optional_contributions=["life_insurance"]), period, [], [],
        )

        assert "life_insurance" not in _amounts(not_elected.contributions)
        assert not_elected.net_pay == Decimal("4397.07")
        assert _amounts(elected.contributions)["life_insurance"] == Decimal("50.00")
        assert elected.total_contributions == Decimal("387.00")
        assert elected.taxable_base == Decimal("4663.00")
        assert elected.tax_due == Decimal("265.93")
        assert elected.net_pay == Decimal("4347.07")

    def test_days_per_month_prorates_tax(self, resolver, employee_factory, period):
        employee = employee_factory(days_per_month=13)

        result = resolver.resolve(employee, period, [], [])

        assert result.days_worked == 13
        assert result.total_contributions == Decimal("337.00")
        assert result.tax_before_relief == Decimal("132.97")
        assert result.tax_due == Decimal("132.97")
        assert result.net_pay == Decimal("4530.03")

    def test_days_worked_overrides_employee_days(self, resolver, employee_factory, period):
        employee = employee_factory(days_per_month=13)

        result = resolver.resolve(employee, period, [], [], days_worked=26)

        assert result.days_worked == 26
        assert result.tax_due == Decimal("265.93")

    def test_proration_capped_at_full_month(self, resolver, employee_factory, period):
        employee = employee_factory()

        result = resolver.resolve(employee, period, [], [], days_worked=31)

        assert result.tax_due == Decimal("265.93")
        assert resolver.tax_proration(employee, 31) == Decimal("1")

    def test_full_month_by_default(self, resolver, employee_factory, period):
        result = resolver.resolve(employee_factory(), period, [], [])

        assert result.days_worked is None
        assert result.tax_due == Decimal("265.93")

    @pytest.mark.parametrize("days", [-1, 32])
    def test_days_worked_out_of_range(self, resolver, employee_factory, period, days):
        with pytest.raises(ValidationException) as exc_info:
            resolver.resolve(employee_factory(), period, [], [], days_worked=days)

        assert exc_info.value.field == "days_worked"
