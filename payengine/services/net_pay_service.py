"""
PayEngine - Net Pay Resolver

Produces the payslip figures of one employee for one period:

    gross = base salary + allowances + seniority bonus + variable adjustment
    taxable base = gross - tax-deductible employee contributions
    tax = progressive tax on taxable base less family/other deductions,
          prorated by days worked / standard working days
    net = gross - contributions - tax - advances - due loan installments

The resolver is pure: it reads the records it is given and returns an
immutable PayslipResult. Inconsistent loan records are reported as data
integrity errors, never corrected.
"""

import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from dateutil.relativedelta import relativedelta

from payengine.models.payroll import LoanStatus, LoanType, MaritalStatus
from payengine.schemas.payroll import ContributionItem, InstallmentDeductionItem, PayslipResult
from payengine.schemas.rules import RuleSet
from payengine.services.calculators import (
    ContributionCalculator,
    EarningsCalculator,
    ProgressiveTaxCalculator,
    VariableElementAggregator,
)
from payengine.utils.error_handling import (
    DataIntegrityException,
    InvalidAmountException,
    ValidationException,
)
from payengine.utils.money import ZERO, percent_of, round_money, sum_money, to_decimal
from payengine.utils.periods import PayPeriod

logger = logging.getLogger(__name__)


class NetPayResolver:
    """
    Computes one payslip from an employee, the period's variable elements,
    the employee's loans and the rule set in force.
    """

    def __init__(self, rule_set: RuleSet):
        self.rule_set = rule_set
        self.contribution_calculator = ContributionCalculator(rule_set.contributions)
        self.tax_calculator = ProgressiveTaxCalculator.from_rule_set(rule_set)
        self.element_aggregator = VariableElementAggregator()
        self.earnings_calculator = EarningsCalculator(rule_set)

    # ===========================================
    # LOAN INSTALLMENTS
    # ===========================================

    @staticmethod
    def check_loan_integrity(loan, employee_id) -> None:
        """Reject loan records whose state is self-contradictory."""
        if loan.employee_id != employee_id:
            raise DataIntegrityException(
                f"Loan {loan.reference} does not belong to employee {employee_id}",
                details={"loan_id": str(loan.id), "employee_id": str(employee_id)},
            )
        if loan.status != LoanStatus.ACTIVE:
            return

        remaining = to_decimal(loan.remaining_balance)
        if remaining <= 0:
            raise DataIntegrityException(
                f"Loan {loan.reference} is ACTIVE with no remaining balance",
                details={"loan_id": str(loan.id), "remaining_balance": str(remaining)},
            )
        if remaining > to_decimal(loan.principal_amount):
            raise DataIntegrityException(
                f"Loan {loan.reference} remaining balance exceeds its principal",
                details={
                    "loan_id": str(loan.id),
                    "remaining_balance": str(remaining),
                    "principal_amount": str(loan.principal_amount),
                },
            )
        for installment in loan.installments:
            if installment.loan_id != loan.id:
                raise DataIntegrityException(
                    f"Installment {installment.id} is attached to loan {loan.reference} "
                    f"but references loan {installment.loan_id}",
                    details={"loan_id": str(loan.id), "installment_id": str(installment.id)},
                )

    @staticmethod
    def due_installments(loan, period: PayPeriod) -> List[InstallmentDeductionItem]:
        """
        Installments of an ACTIVE loan to deduct in the period.

        Scheduled loans deduct every open installment falling due in the
        period. Loans without a schedule deduct one level installment, capped
        at the remaining balance, once the first due date is reached.
        """
        if loan.status != LoanStatus.ACTIVE:
            return []

        if loan.installments:
            return [
                InstallmentDeductionItem(
                    loan_id=loan.id,
                    loan_reference=loan.reference,
                    installment_id=installment.id,
                    sequence=installment.sequence,
                    amount=round_money(installment.total_payment - installment.amount_paid),
                    interest=round_money(installment.interest),
                )
                for installment in loan.installments
                if installment.is_open and period.contains(installment.due_date)
            ]

        first_due = loan.start_date + relativedelta(months=1)
        if first_due > period.end:
            return []
        return [
            InstallmentDeductionItem(
                loan_id=loan.id,
                loan_reference=loan.reference,
                amount=min(round_money(loan.installment_amount), round_money(loan.remaining_balance)),
                interest=ZERO,
            )
        ]

    # ===========================================
    # TAX DEDUCTIONS
    # ===========================================

    def tax_deductions(self, employee, taxable_base: Decimal, housing_interest: Decimal) -> Dict[str, Decimal]:
        """Monthly amounts subtracted from the taxable base before bracket lookup."""
        rules = self.rule_set
        deductions: Dict[str, Decimal] = {}

        if employee.dependents and rules.dependent_deduction:
            deductions["dependents"] = round_money(rules.dependent_deduction * employee.dependents)

        if employee.marital_status == MaritalStatus.MARRIED and rules.spouse_deduction:
            deductions["spouse"] = round_money(rules.spouse_deduction)

        if rules.professional_expenses is not None:
            amount = percent_of(taxable_base, rules.professional_expenses.rate)
            if rules.professional_expenses.monthly_ceiling is not None:
                amount = min(amount, round_money(rules.professional_expenses.monthly_ceiling))
            if amount:
                deductions["professional_expenses"] = amount

        if housing_interest and rules.housing_interest_cap_rate:
            cap = percent_of(taxable_base, rules.housing_interest_cap_rate)
            deductions["housing_interest"] = min(housing_interest, cap)

        return deductions

    # ===========================================
    # PER-EMPLOYEE APPLICABILITY
    # ===========================================

    def tax_proration(self, employee, days_worked: Optional[int] = None) -> Decimal:
        """
        Share of the month worked, capped at a full month.

        days_worked overrides the employee's own days_per_month; when neither
        is set the month is full.
        """
        days = days_worked if days_worked is not None else employee.days_per_month
        if days is None:
            return Decimal("1")
        if not 0 <= days <= 31:
            raise ValidationException(
                f"Days worked must be between 0 and 31, got {days}",
                field="days_worked",
                details={"days_worked": days},
            )
        return min(Decimal("1"), Decimal(days) / Decimal(self.rule_set.standard_working_days))

    # ===========================================
    # RESOLUTION
    # ===========================================

    def resolve(
        self,
        employee,
        period: PayPeriod,
        elements: Iterable,
        loans: Iterable,
        version: int = 1,
        days_worked: Optional[int] = None,
    ) -> PayslipResult:
        """
        Compute the payslip of an employee for a period.

        Args:
            days_worked: Days worked in the period when it differs from the
                employee's usual days_per_month

        Raises:
            ValidationException: negative pay inputs or inconsistent rules
            DataIntegrityException: inconsistent loan or element records
        """
        base_salary = round_money(employee.base_salary)
        if base_salary < 0:
            raise InvalidAmountException(base_salary, field="base_salary",
                                         message="Base salary cannot be negative")
        if employee.dependents is not None and employee.dependents < 0:
            raise ValidationException("Number of dependents cannot be negative", field="dependents")
        proration = self.tax_proration(employee, days_worked)
        if days_worked is None:
            days_worked = employee.days_per_month

        elements = list(elements)
        for element in elements:
            if element.employee_id != employee.id or element.period != period:
                raise DataIntegrityException(
                    f"Variable element {element.id} does not belong to "
                    f"employee {employee.id} for period {period}",
                    details={"element_id": str(element.id)},
                )

        # Earnings
        allowances = self.earnings_calculator.allowances(employee)
        seniority_bonus = self.earnings_calculator.seniority_bonus(
            base_salary, employee.hire_date, period.end,
        )
        aggregated = self.element_aggregator.aggregate(elements)
        gross_pay = round_money(
            base_salary + sum_money(allowances.values()) + seniority_bonus + aggregated.gross_adjustment
        )
        if gross_pay < 0:
            raise ValidationException(
                "Variable deductions exceed gross pay",
                field="variable_elements",
                details={"gross_pay": str(gross_pay)},
            )

        # Contributions
        contributions = self.contribution_calculator.compute_detailed(
            gross_pay,
            exemptions=frozenset(employee.contribution_exemptions or ()),
            elected=frozenset(employee.optional_contributions or ()),
        )
        total_contributions = contributions.employee_total
        taxable_base = gross_pay - contributions.tax_deductible_total
        if total_contributions > gross_pay:
            raise ValidationException(
                "Employee contributions exceed gross pay",
                field="contributions",
                details={"gross_pay": str(gross_pay), "contributions": str(total_contributions)},
            )

        # Loan installments
        installment_items: List[InstallmentDeductionItem] = []
        housing_interest = ZERO
        for loan in loans:
            self.check_loan_integrity(loan, employee.id)
            items = self.due_installments(loan, period)
            installment_items.extend(items)
            if loan.loan_type == LoanType.HOUSING:
                housing_interest += sum_money(item.interest for item in items)
        total_installments = sum_money(item.amount for item in installment_items)

        # Income tax
        tax_deductions = self.tax_deductions(employee, taxable_base, housing_interest)
        tax = self.tax_calculator.compute_detailed(
            taxable_base,
            sum_money(tax_deductions.values()),
            relief=self.rule_set.personal_relief,
            proration=proration,
        )

        total_deductions = (
            total_contributions + tax.tax_due + aggregated.pre_net_deductions + total_installments
        )
        net_pay = gross_pay - total_deductions
        if net_pay < 0:
            logger.warning(
                f"Negative net pay {net_pay} for employee {employee.id} in period {period}"
            )

        return PayslipResult(
            employee_id=employee.id,
            period=str(period),
            version=version,
            rule_set_version=self.rule_set.version,
            base_salary=base_salary,
            allowances=allowances,
            seniority_bonus=seniority_bonus,
            variable_gross_adjustment=round_money(aggregated.gross_adjustment),
            variable_breakdown={k: round_money(v) for k, v in aggregated.breakdown.items()},
            gross_pay=gross_pay,
            contributions=[
                ContributionItem(name=line.name, base=line.base, rate=line.rate, amount=line.amount)
                for line in contributions.employee
            ],
            total_contributions=total_contributions,
            employer_contributions=[
                ContributionItem(name=line.name, base=line.base, rate=line.rate, amount=line.amount)
                for line in contributions.employer
            ],
            total_employer_contributions=contributions.employer_total,
            taxable_base=round_money(taxable_base),
            tax_deductions=tax_deductions,
            tax_before_relief=tax.tax_before_relief,
            personal_relief=tax.relief,
            tax_due=tax.tax_due,
            days_worked=days_worked,
            installment_deductions=installment_items,
            total_installments=total_installments,
            pre_net_deductions=round_money(aggregated.pre_net_deductions),
            total_deductions=round_money(total_deductions),
            net_pay=round_money(net_pay),
            total_employer_cost=round_money(gross_pay + contributions.employer_total),
        )
