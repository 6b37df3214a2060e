"""
PayEngine - Payroll Schemas

Pydantic schemas for payslip results, schedules, payments and progress.
"""

from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from payengine.models.payroll import InstallmentStatus, LoanStatus, LoanType, PayslipStatus


# ===========================================
# PAYSLIP RESULT
# ===========================================

class ContributionItem(BaseModel):
    """One statutory contribution line."""
    model_config = ConfigDict(frozen=True)

    name: str
    base: Decimal
    rate: Decimal
    amount: Decimal


class InstallmentDeductionItem(BaseModel):
    """Loan or advance installment netted from pay."""
    model_config = ConfigDict(frozen=True)

    loan_id: UUID
    loan_reference: str
    installment_id: Optional[UUID] = None
    sequence: Optional[int] = None
    amount: Decimal
    interest: Decimal


class PayslipResult(BaseModel):
    """
    Payslip figures for one employee and period.

    Carries no timestamps: identical inputs serialize identically.
    """
    model_config = ConfigDict(frozen=True)

    employee_id: UUID
    period: str
    version: int = 1
    rule_set_version: str

    # Earnings
    base_salary: Decimal
    allowances: Dict[str, Decimal]
    seniority_bonus: Decimal
    variable_gross_adjustment: Decimal
    variable_breakdown: Dict[str, Decimal]
    gross_pay: Decimal

    # Contributions
    contributions: List[ContributionItem]
    total_contributions: Decimal
    employer_contributions: List[ContributionItem]
    total_employer_contributions: Decimal

    # Income tax
    taxable_base: Decimal
    tax_deductions: Dict[str, Decimal]
    tax_before_relief: Decimal
    personal_relief: Decimal
    tax_due: Decimal
    days_worked: Optional[int] = None

    # Post-tax deductions
    installment_deductions: List[InstallmentDeductionItem]
    total_installments: Decimal
    pre_net_deductions: Decimal

    total_deductions: Decimal
    net_pay: Decimal
    total_employer_cost: Decimal


class PayslipComputeRequest(BaseModel):
    """Compute payslip request."""
    employee_id: UUID
    year: int = Field(..., ge=1900, le=9999)
    month: int = Field(..., ge=1, le=12)


class PayslipCorrectionRequest(PayslipComputeRequest):
    """Versioned correction of a finalized payslip."""
    reason: str = Field(..., min_length=3, max_length=1000)


class PayslipRecordResponse(BaseModel):
    """Stored payslip with its lifecycle state."""
    status: PayslipStatus
    version: int
    result: PayslipResult


class PayrollRunRequest(BaseModel):
    """Run payroll for a period."""
    year: int = Field(..., ge=1900, le=9999)
    month: int = Field(..., ge=1, le=12)
    employee_ids: Optional[List[UUID]] = None


class PayrollRunFailure(BaseModel):
    """One employee the run could not compute."""
    employee_id: UUID
    code: str
    message: str


class PayrollRunResponse(BaseModel):
    """Payroll run outcome, including any partial failures."""
    period: str
    succeeded: List[PayslipResult]
    failures: List[PayrollRunFailure]
    total_gross: Decimal
    total_net: Decimal
    total_tax: Decimal
    is_partial: bool


# ===========================================
# SCHEDULES & PAYMENTS
# ===========================================

class InstallmentResponse(BaseModel):
    """Installment response schema."""
    id: Optional[UUID] = None
    sequence: int
    due_date: date
    principal: Decimal
    interest: Decimal
    interest_tax: Decimal
    insurance: Decimal
    total_payment: Decimal
    remaining_balance: Decimal
    status: InstallmentStatus = InstallmentStatus.PENDING
    payment_date: Optional[date] = None
    amount_paid: Decimal = Decimal("0.00")
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class SchedulePreviewRequest(BaseModel):
    """Generate a schedule without storing it."""
    principal: Decimal = Field(..., gt=0)
    start_date: date
    annual_rate: Decimal = Field(default=Decimal("0.00"), ge=0)
    installment_count: Optional[int] = Field(default=None, gt=0, le=600)
    payment: Optional[Decimal] = Field(default=None, gt=0)
    amounts: Optional[List[Decimal]] = None
    insurance_rate: Decimal = Field(default=Decimal("0.00"), ge=0)
    interest_tax_rate: Decimal = Field(default=Decimal("0.00"), ge=0)

    @model_validator(mode="after")
    def one_sizing_method(self):
        provided = [
            name for name in ("installment_count", "payment", "amounts")
            if getattr(self, name) is not None
        ]
        if len(provided) != 1:
            raise ValueError("Provide exactly one of installment_count, payment or amounts")
        return self


class PaymentCreate(BaseModel):
    """Record a payment against an installment."""
    amount_paid: Decimal = Field(..., gt=0)
    payment_date: date
    notes: Optional[str] = Field(default=None, max_length=1000)


class LoanResponse(BaseModel):
    """Loan response schema."""
    id: UUID
    employee_id: UUID
    loan_type: LoanType
    reference: str
    principal_amount: Decimal
    interest_rate: Decimal
    installment_count: int
    installment_amount: Decimal
    start_date: date
    status: LoanStatus
    remaining_balance: Decimal
    amount_repaid: Decimal
    version: int

    class Config:
        from_attributes = True


class PaymentResponse(BaseModel):
    """Updated installment and loan after a payment."""
    installment: InstallmentResponse
    loan: LoanResponse


class ProgressResponse(BaseModel):
    """Repayment progress."""
    loan_id: UUID
    as_of: date
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
    next_due_date: Optional[date] = None
    fully_repaid: bool
    suggested_status: LoanStatus


class ScheduleStatisticsResponse(BaseModel):
    """Schedule summary."""
    total_installments: int
    paid_installments: int
    overdue_installments: int
    pending_installments: int
    amount_paid: Decimal
    amount_remaining: Decimal
    next_due_date: Optional[date] = None
    next_payment_amount: Optional[Decimal] = None
    progress_percentage: Decimal

    class Config:
        from_attributes = True


class DelinquencyResponse(BaseModel):
    """Outcome of a delinquency refresh."""
    loan: LoanResponse
    marked_overdue: int
