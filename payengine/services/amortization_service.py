"""
PayEngine - Amortization Scheduler

Turns a loan or salary advance into a fixed installment schedule.

Interest-bearing loans use a level annuity payment:
    payment = P * r / (1 - (1 + r) ** -n),  r = annual_rate / 100 / 12

Each installment splits into interest on the outstanding balance and the
principal remainder. The final installment takes exactly the remaining
balance so that the principal components sum to the original principal.
A zero rate degenerates to an equal principal split.

Installment n falls due n calendar months after the start date, keeping
the start day-of-month and clamping to month end where needed.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_CEILING, ROUND_DOWN
from typing import Any, List, Optional, Sequence

from dateutil.relativedelta import relativedelta

from payengine.models.payroll import InstallmentStatus
from payengine.utils.error_handling import (
    InvalidAmountException,
    RoundingInvariantException,
    ValidationException,
)
from payengine.utils.money import (
    CENT, HUNDRED, ZERO, completion_percentage, percent_of, round_money, sum_money, to_decimal,
)

logger = logging.getLogger(__name__)

MONTHS_PER_YEAR = Decimal("12")
MAX_INSTALLMENTS = 600


@dataclass
class ScheduledInstallment:
    """One generated installment, before persistence."""
    sequence: int
    due_date: date
    principal: Decimal
    interest: Decimal
    interest_tax: Decimal
    insurance: Decimal
    total_payment: Decimal
    remaining_balance: Decimal


@dataclass
class ScheduleStatistics:
    """Summary of a stored schedule at a reference date."""
    total_installments: int
    paid_installments: int
    overdue_installments: int
    pending_installments: int
    amount_paid: Decimal
    amount_remaining: Decimal
    next_due_date: Optional[date]
    next_payment_amount: Optional[Decimal]
    progress_percentage: Decimal


class AmortizationScheduler:
    """
    Generates installment schedules and checks their money invariants.
    """

    # ===========================================
    # HELPERS
    # ===========================================

    @staticmethod
    def due_date(start_date: date, sequence: int) -> date:
        """Due date of the given installment; relativedelta clamps to month end."""
        return start_date + relativedelta(months=sequence)

    @staticmethod
    def monthly_rate(annual_rate: Any) -> Decimal:
        return to_decimal(annual_rate) / HUNDRED / MONTHS_PER_YEAR

    @staticmethod
    def level_payment(principal: Decimal, monthly_rate: Decimal, term_months: int) -> Decimal:
        """Annuity payment, rounded to the cent."""
        if monthly_rate == 0:
            return round_money(principal / term_months)
        factor = 1 - (1 + monthly_rate) ** (-term_months)
        return round_money(principal * monthly_rate / factor)

    @staticmethod
    def _validate_principal(principal: Decimal) -> None:
        if principal <= 0:
            raise InvalidAmountException(principal, field="principal",
                                         message="Principal must be greater than zero")

    @staticmethod
    def _validate_count(count: int, field: str = "installment_count") -> None:
        if not isinstance(count, int) or count <= 0:
            raise ValidationException(
                f"{field.replace('_', ' ').capitalize()} must be a positive integer",
                field=field,
                details={"provided": str(count)},
            )
        if count > MAX_INSTALLMENTS:
            raise ValidationException(
                f"Schedules are limited to {MAX_INSTALLMENTS} installments",
                field=field,
                details={"provided": count},
            )

    def _build(
        self,
        sequence: int,
        start_date: date,
        principal: Decimal,
        interest: Decimal,
        remaining: Decimal,
        insurance: Decimal,
        interest_tax_rate: Decimal,
    ) -> ScheduledInstallment:
        interest_tax = percent_of(interest, interest_tax_rate) if interest_tax_rate else ZERO
        return ScheduledInstallment(
            sequence=sequence,
            due_date=self.due_date(start_date, sequence),
            principal=principal,
            interest=interest,
            interest_tax=interest_tax,
            insurance=insurance,
            total_payment=principal + interest + interest_tax + insurance,
            remaining_balance=remaining,
        )

    # ===========================================
    # GENERATION
    # ===========================================

    def generate(
        self,
        principal: Any,
        annual_rate: Any,
        term_months: int,
        start_date: date,
        insurance_rate: Any = ZERO,
        interest_tax_rate: Any = ZERO,
    ) -> List[ScheduledInstallment]:
        """
        Interest-bearing loan schedule.

        Args:
            principal: Amount lent
            annual_rate: Annual interest rate percentage
            term_months: Number of monthly installments
            start_date: Loan start; the first installment is due one month later
            insurance_rate: Annual insurance percentage of the original principal
            interest_tax_rate: Tax percentage on each interest component
        """
        principal = round_money(principal)
        annual_rate = to_decimal(annual_rate)
        self._validate_principal(principal)
        self._validate_count(term_months, "term_months")
        if annual_rate < 0:
            raise ValidationException("Interest rate cannot be negative", field="annual_rate")

        if annual_rate == 0:
            return self.generate_equal(principal, term_months, start_date, insurance_rate)

        rate = self.monthly_rate(annual_rate)
        payment = self.level_payment(principal, rate, term_months)
        insurance = self._monthly_insurance(principal, insurance_rate)
        interest_tax_rate = to_decimal(interest_tax_rate)

        installments = []
        balance = principal
        for sequence in range(1, term_months + 1):
            interest = round_money(balance * rate)
            if sequence == term_months:
                principal_part = balance
            else:
                principal_part = min(payment - interest, balance)
            balance -= principal_part
            installments.append(self._build(
                sequence, start_date, principal_part, interest, balance,
                insurance, interest_tax_rate,
            ))

        self.verify(principal, installments)
        return installments

    def generate_equal(
        self,
        principal: Any,
        installment_count: int,
        start_date: date,
        insurance_rate: Any = ZERO,
    ) -> List[ScheduledInstallment]:
        """Zero-interest schedule with equal principal installments."""
        principal = round_money(principal)
        self._validate_principal(principal)
        self._validate_count(installment_count)

        # Truncated share keeps the last installment's remainder non-negative
        share = (principal / installment_count).quantize(CENT, rounding=ROUND_DOWN)
        insurance = self._monthly_insurance(principal, insurance_rate)

        installments = []
        balance = principal
        for sequence in range(1, installment_count + 1):
            principal_part = balance if sequence == installment_count else share
            balance -= principal_part
            installments.append(self._build(
                sequence, start_date, principal_part, ZERO, balance, insurance, ZERO,
            ))

        self.verify(principal, installments)
        return installments

    def generate_from_payment(
        self,
        principal: Any,
        payment: Any,
        start_date: date,
        annual_rate: Any = ZERO,
        insurance_rate: Any = ZERO,
        interest_tax_rate: Any = ZERO,
    ) -> List[ScheduledInstallment]:
        """
        Schedule driven by a fixed per-period payment.

        The number of installments follows from the payment; the last one
        settles whatever principal is left.
        """
        principal = round_money(principal)
        payment = round_money(payment)
        self._validate_principal(principal)
        if payment <= 0:
            raise InvalidAmountException(payment, field="payment")

        rate = self.monthly_rate(annual_rate)
        if rate < 0:
            raise ValidationException("Interest rate cannot be negative", field="annual_rate")
        if rate == 0:
            count = int((principal / payment).to_integral_value(rounding=ROUND_CEILING))
            self._validate_count(count)
        insurance = self._monthly_insurance(principal, insurance_rate)
        interest_tax_rate = to_decimal(interest_tax_rate)

        installments = []
        balance = principal
        sequence = 0
        while balance > 0:
            sequence += 1
            if sequence > MAX_INSTALLMENTS:
                raise ValidationException(
                    f"Payment is too small to repay the loan within {MAX_INSTALLMENTS} installments",
                    field="payment",
                )
            interest = round_money(balance * rate)
            principal_part = payment - interest
            if principal_part <= 0:
                raise ValidationException(
                    "Payment does not cover the first month's interest",
                    field="payment",
                    details={"payment": str(payment), "interest": str(interest)},
                )
            principal_part = min(principal_part, balance)
            balance -= principal_part
            installments.append(self._build(
                sequence, start_date, principal_part, interest, balance,
                insurance, interest_tax_rate,
            ))

        self.verify(principal, installments)
        return installments

    def generate_custom(
        self,
        amounts: Sequence[Any],
        start_date: date,
    ) -> List[ScheduledInstallment]:
        """Zero-interest schedule from explicit principal amounts."""
        if not amounts:
            raise ValidationException("At least one installment amount is required", field="amounts")
        self._validate_count(len(amounts), "amounts")

        parts = [round_money(amount) for amount in amounts]
        for index, part in enumerate(parts, start=1):
            if part <= 0:
                raise InvalidAmountException(
                    part, field="amounts",
                    message=f"Installment {index} amount must be greater than zero",
                )

        principal = sum_money(parts)
        installments = []
        balance = principal
        for sequence, part in enumerate(parts, start=1):
            balance -= part
            installments.append(self._build(
                sequence, start_date, part, ZERO, balance, ZERO, ZERO,
            ))

        self.verify(principal, installments)
        return installments

    def generate_for_loan(self, loan) -> List[ScheduledInstallment]:
        """Schedule for a stored loan or advance record."""
        if to_decimal(loan.interest_rate) > 0:
            return self.generate(
                loan.principal_amount,
                loan.interest_rate,
                loan.installment_count,
                loan.start_date,
                insurance_rate=loan.insurance_rate,
                interest_tax_rate=loan.interest_tax_rate,
            )
        return self.generate_equal(
            loan.principal_amount,
            loan.installment_count,
            loan.start_date,
            insurance_rate=loan.insurance_rate,
        )

    @staticmethod
    def _monthly_insurance(principal: Decimal, insurance_rate: Any) -> Decimal:
        insurance_rate = to_decimal(insurance_rate)
        if insurance_rate < 0:
            raise ValidationException("Insurance rate cannot be negative", field="insurance_rate")
        if insurance_rate == 0:
            return ZERO
        return round_money(principal * insurance_rate / HUNDRED / MONTHS_PER_YEAR)

    # ===========================================
    # INVARIANTS
    # ===========================================

    @staticmethod
    def verify(principal: Decimal, installments: Sequence[ScheduledInstallment]) -> None:
        """
        Check money conservation on a generated schedule.

        Raises:
            RoundingInvariantException: on any violation; the schedule must be discarded
        """
        total_principal = sum_money(item.principal for item in installments)
        if total_principal != principal:
            logger.critical(
                f"Schedule principal {total_principal} does not match loan principal {principal}"
            )
            raise RoundingInvariantException(
                "Installment principals do not sum to the loan principal",
                details={"principal": str(principal), "scheduled": str(total_principal)},
            )

        previous = principal
        for expected_sequence, item in enumerate(installments, start=1):
            if item.sequence != expected_sequence:
                raise RoundingInvariantException(
                    "Installment sequence is not contiguous",
                    details={"expected": expected_sequence, "found": item.sequence},
                )
            if item.principal < 0 or item.remaining_balance > previous:
                raise RoundingInvariantException(
                    "Remaining balance increases across the schedule",
                    details={"sequence": item.sequence, "remaining": str(item.remaining_balance)},
                )
            previous = item.remaining_balance

        if installments and installments[-1].remaining_balance != 0:
            raise RoundingInvariantException(
                "Schedule does not end at a zero balance",
                details={"remaining": str(installments[-1].remaining_balance)},
            )

    # ===========================================
    # STATISTICS
    # ===========================================

    @staticmethod
    def statistics(installments: Sequence, as_of: date) -> ScheduleStatistics:
        """Counts and amounts of a stored schedule at the reference date."""
        total = len(installments)
        paid = [i for i in installments if i.status == InstallmentStatus.PAID]
        open_items = [
            i for i in installments
            if i.status in (InstallmentStatus.PENDING, InstallmentStatus.OVERDUE)
        ]
        overdue = [i for i in open_items if i.due_date < as_of]
        next_item = min(open_items, key=lambda i: i.sequence) if open_items else None

        return ScheduleStatistics(
            total_installments=total,
            paid_installments=len(paid),
            overdue_installments=len(overdue),
            pending_installments=len(open_items),
            amount_paid=sum_money(i.amount_paid for i in installments),
            amount_remaining=sum_money(i.total_payment - i.amount_paid for i in open_items),
            next_due_date=next_item.due_date if next_item else None,
            next_payment_amount=(next_item.total_payment - next_item.amount_paid) if next_item else None,
            progress_percentage=completion_percentage(len(paid), total),
        )
