"""
PayEngine - Repayment Progress Tracker

Completion percentage and delinquency for a loan or advance at a
reference date.

When the loan has a stored schedule, progress is the share of principal
in PAID installments and lateness is any unpaid installment past its due
date. Legacy records without a schedule fall back to a balance model:

    percentage = min(100, repaid / original * 100), truncated to 0.01
    months_elapsed = floor(days since start / 30)
    expected = min(100, months_elapsed / installment_count * 100)
    late = percentage < expected and loan is ACTIVE

Both paths return the same ProgressInfo shape. A loan counts as fully
repaid only on exact amounts (every installment PAID, or repaid >= original),
never on the rounded percentage.
"""

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_FLOOR, Decimal
from typing import Optional, Sequence

from dateutil.relativedelta import relativedelta

from payengine.models.payroll import InstallmentStatus, LoanStatus
from payengine.utils.money import ZERO, completion_percentage, round_money, sum_money, to_decimal

DAYS_PER_MONTH = 30


@dataclass
class ProgressInfo:
    """Repayment progress of one loan."""
    percentage: Decimal
    months_elapsed: int
    expected_percentage: Decimal
    is_late: bool
    months_late: int
    amount_due: Decimal
    amount_repaid: Decimal
    remaining_balance: Decimal
    paid_installments: int
    total_installments: int
    next_due_date: Optional[date]
    fully_repaid: bool = False
    suggested_status: Optional[LoanStatus] = None


class ProgressTracker:
    """Computes repayment progress and suggests status changes."""

    def __init__(self, suspension_threshold_months: int = 3):
        self.suspension_threshold_months = suspension_threshold_months

    @staticmethod
    def calendar_months_between(start: date, as_of: date) -> int:
        """Whole calendar months from start to as_of, never negative."""
        if as_of <= start:
            return 0
        months = (as_of.year - start.year) * 12 + (as_of.month - start.month)
        if as_of.day < start.day:
            months -= 1
        return max(0, months)

    def progress(self, loan, as_of: date, installments: Optional[Sequence] = None) -> ProgressInfo:
        """
        Progress of a loan at as_of.

        Args:
            loan: Loan record
            as_of: Reference date
            installments: Schedule to use; defaults to the loan's own installments
        """
        if installments is None:
            installments = loan.installments
        if installments:
            info = self._from_schedule(loan, list(installments), as_of)
        else:
            info = self._from_balances(loan, as_of)
        info.suggested_status = self.suggest_status(loan, info, as_of)
        return info

    def _from_schedule(self, loan, installments: Sequence, as_of: date) -> ProgressInfo:
        total_installments = len(installments)
        total_principal = sum_money(i.principal for i in installments)
        paid = [i for i in installments if i.status == InstallmentStatus.PAID]
        open_items = sorted(
            (i for i in installments if i.is_open),
            key=lambda i: i.sequence,
        )
        past_due = [i for i in open_items if i.due_date < as_of]

        months_elapsed = min(self.calendar_months_between(loan.start_date, as_of), total_installments)
        is_late = bool(past_due) and loan.status == LoanStatus.ACTIVE

        return ProgressInfo(
            percentage=completion_percentage(sum_money(i.principal for i in paid), total_principal),
            months_elapsed=months_elapsed,
            expected_percentage=completion_percentage(Decimal(months_elapsed), Decimal(total_installments)),
            is_late=is_late,
            months_late=len(past_due),
            amount_due=sum_money(i.total_payment - i.amount_paid for i in past_due),
            amount_repaid=round_money(loan.amount_repaid),
            remaining_balance=round_money(loan.remaining_balance),
            paid_installments=len(paid),
            total_installments=total_installments,
            next_due_date=open_items[0].due_date if open_items else None,
            fully_repaid=bool(installments) and len(paid) == total_installments,
        )

    def _from_balances(self, loan, as_of: date) -> ProgressInfo:
        original = to_decimal(loan.principal_amount)
        repaid = to_decimal(loan.amount_repaid)
        installment_amount = to_decimal(loan.installment_amount)
        total_installments = loan.installment_count or 0

        percentage = completion_percentage(repaid, original)
        fully_repaid = original > 0 and repaid >= original
        months_elapsed = max(0, (as_of - loan.start_date).days // DAYS_PER_MONTH)
        expected = (
            completion_percentage(Decimal(months_elapsed), Decimal(total_installments))
            if total_installments else ZERO
        )
        is_late = percentage < expected and loan.status == LoanStatus.ACTIVE

        due_installments = min(months_elapsed, total_installments)
        expected_repaid = min(installment_amount * due_installments, original)
        amount_due = max(ZERO, round_money(expected_repaid - repaid))

        if installment_amount > 0:
            months_late = int((amount_due / installment_amount).to_integral_value(rounding=ROUND_FLOOR))
            paid_installments = int((repaid / installment_amount).to_integral_value(rounding=ROUND_FLOOR))
        else:
            months_late = 0
            paid_installments = 0
        months_late = min(months_late, due_installments)
        paid_installments = min(paid_installments, total_installments)

        next_due_date = None
        if not fully_repaid and paid_installments < total_installments:
            next_due_date = loan.start_date + relativedelta(months=paid_installments + 1)

        return ProgressInfo(
            percentage=percentage,
            months_elapsed=months_elapsed,
            expected_percentage=expected,
            is_late=is_late,
            months_late=months_late,
            amount_due=amount_due,
            amount_repaid=round_money(repaid),
            remaining_balance=round_money(loan.remaining_balance),
            paid_installments=paid_installments,
            total_installments=total_installments,
            next_due_date=next_due_date,
            fully_repaid=fully_repaid,
        )

    def suggest_status(self, loan, info: ProgressInfo, as_of: date) -> LoanStatus:
        """
        Status the loan should have given its progress.

        PAID_OFF once fully repaid; SUSPENDED when more installments are late
        than the threshold or the term has ended with principal outstanding.
        """
        if loan.status == LoanStatus.CANCELLED:
            return LoanStatus.CANCELLED
        if info.fully_repaid:
            return LoanStatus.PAID_OFF
        if loan.status != LoanStatus.ACTIVE:
            return loan.status

        end_date = loan.start_date + relativedelta(months=loan.installment_count)
        if info.months_late > self.suspension_threshold_months:
            return LoanStatus.SUSPENDED
        if as_of > end_date and to_decimal(loan.remaining_balance) > 0:
            return LoanStatus.SUSPENDED
        return loan.status
