"""
PayEngine - Payroll Models

Records read and written by the payroll computation and amortization engine:
- Employee (only the fields needed for tax and contribution computation)
- VariableElement (monthly overtime, bonus, absence, lateness, advances)
- Loan / salary advance and its Installment schedule
- PayslipRecord (versioned, finalizable payslip results)
- StatutoryRuleSet (versioned tax and contribution rule table)
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Date, DateTime, ForeignKey, Integer, Numeric, String, Text,
    Enum as SQLEnum, UniqueConstraint, CheckConstraint
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payengine.models.base import BaseModel, PeriodMixin


# ===========================================
# ENUMS
# ===========================================

class EmployeeStatus(str, Enum):
    """Employment status."""
    ACTIVE = "active"
    ON_LEAVE = "on_leave"
    SUSPENDED = "suspended"
    TERMINATED = "terminated"


class MaritalStatus(str, Enum):
    """Marital status used for family deductions."""
    SINGLE = "single"
    MARRIED = "married"
    DIVORCED = "divorced"
    WIDOWED = "widowed"


class VariableElementType(str, Enum):
    """Monthly variable pay element types."""
    OVERTIME = "overtime"
    ABSENCE = "absence"
    BONUS = "bonus"
    LEAVE = "leave"
    LATE = "late"
    ADVANCE = "advance"
    OTHER = "other"


class LoanType(str, Enum):
    """Types of employee loans."""
    PERSONAL = "personal"
    HOUSING = "housing"
    CONSUMER = "consumer"
    SALARY_ADVANCE = "salary_advance"


class LoanStatus(str, Enum):
    """Loan lifecycle status."""
    ACTIVE = "active"
    PAID_OFF = "paid_off"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class InstallmentStatus(str, Enum):
    """Installment repayment status."""
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class PayslipStatus(str, Enum):
    """Payslip lifecycle status."""
    COMPUTED = "computed"
    FINALIZED = "finalized"
    SUPERSEDED = "superseded"


# ===========================================
# EMPLOYEE
# ===========================================

class Employee(BaseModel):
    """
    Employee pay profile.
    """

    __tablename__ = "employees"

    employee_code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)

    base_salary: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
        comment="Monthly gross base salary",
    )
    transport_allowance: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=15, scale=2), nullable=True,
    )
    housing_allowance: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=15, scale=2), nullable=True,
    )
    representation_allowance: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=15, scale=2), nullable=True,
    )

    marital_status: Mapped[MaritalStatus] = mapped_column(
        SQLEnum(MaritalStatus),
        default=MaritalStatus.SINGLE,
        nullable=False,
    )
    dependents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    hire_date: Mapped[date] = mapped_column(Date, nullable=False)
    days_per_month: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Days worked in a month; NULL means a full month",
    )

    # Contribution schemes the employee is not subject to
    contribution_exemptions: Mapped[List[str]] = mapped_column(JSONB, default=list, nullable=False)
    # Optional contribution rules (e.g. supplementary insurance) the employee opted into
    optional_contributions: Mapped[List[str]] = mapped_column(JSONB, default=list, nullable=False)

    status: Mapped[EmployeeStatus] = mapped_column(
        SQLEnum(EmployeeStatus),
        default=EmployeeStatus.ACTIVE,
        nullable=False,
        index=True,
    )

    __table_args__ = (
        CheckConstraint("base_salary >= 0", name="base_salary_non_negative"),
        CheckConstraint("dependents >= 0", name="dependents_non_negative"),
        CheckConstraint(
            "days_per_month IS NULL OR days_per_month BETWEEN 0 AND 31",
            name="valid_days_per_month",
        ),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class VariableElement(BaseModel, PeriodMixin):
    """
    One monthly variable pay entry for an employee.

    OVERTIME entries carry hours and hourly_rate; the amount is
    recomputed from them at payroll time.
    """

    __tablename__ = "variable_elements"

    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    element_type: Mapped[VariableElementType] = mapped_column(
        SQLEnum(VariableElementType),
        nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=15, scale=2), nullable=True,
    )
    hours: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=8, scale=2), nullable=True,
    )
    hourly_rate: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=15, scale=2), nullable=True,
    )

    __table_args__ = (
        CheckConstraint("period_month BETWEEN 1 AND 12", name="valid_period_month"),
    )


# ===========================================
# LOANS & ADVANCES
# ===========================================

class Loan(BaseModel):
    """
    Employee loan or salary advance.

    remaining_balance is outstanding principal; amount_repaid is cash
    received including interest and insurance.
    """

    __tablename__ = "loans"

    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    loan_type: Mapped[LoanType] = mapped_column(
        SQLEnum(LoanType),
        default=LoanType.PERSONAL,
        nullable=False,
    )
    reference: Mapped[str] = mapped_column(
        String(50), nullable=False, unique=True,
        comment="Loan reference e.g., LN-2026-001",
    )

    principal_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
    )
    interest_rate: Mapped[Decimal] = mapped_column(
        Numeric(precision=5, scale=2),
        default=Decimal("0.00"),
        nullable=False,
        comment="Annual interest rate percentage",
    )
    insurance_rate: Mapped[Decimal] = mapped_column(
        Numeric(precision=5, scale=2),
        default=Decimal("0.00"),
        nullable=False,
        comment="Annual insurance rate percentage of principal",
    )
    interest_tax_rate: Mapped[Decimal] = mapped_column(
        Numeric(precision=5, scale=2),
        default=Decimal("0.00"),
        nullable=False,
        comment="Tax percentage levied on each interest component",
    )
    duration_years: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    installment_count: Mapped[int] = mapped_column(Integer, nullable=False)
    installment_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
        comment="Level payment per period",
    )

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[LoanStatus] = mapped_column(
        SQLEnum(LoanStatus),
        default=LoanStatus.ACTIVE,
        nullable=False,
        index=True,
    )
    remaining_balance: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
    )
    amount_repaid: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    installments: Mapped[List["Installment"]] = relationship(
        "Installment",
        back_populates="loan",
        order_by="Installment.sequence",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("principal_amount >= 0", name="principal_non_negative"),
        CheckConstraint("installment_count > 0", name="installment_count_positive"),
    )

    @property
    def is_advance(self) -> bool:
        return self.loan_type == LoanType.SALARY_ADVANCE


class Installment(BaseModel):
    """
    One scheduled repayment of a loan.

    Due date and amount components are fixed at schedule creation;
    payments only change status, payment_date, amount_paid and notes.
    """

    __tablename__ = "loan_installments"

    loan_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("loans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    principal: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    interest: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    interest_tax: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    insurance: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    total_payment: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    remaining_balance: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
        comment="Outstanding principal after this installment",
    )

    status: Mapped[InstallmentStatus] = mapped_column(
        SQLEnum(InstallmentStatus),
        default=InstallmentStatus.PENDING,
        nullable=False,
    )
    payment_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    loan: Mapped["Loan"] = relationship("Loan", back_populates="installments")

    __table_args__ = (
        UniqueConstraint("loan_id", "sequence", name="uq_installment_loan_sequence"),
        CheckConstraint("sequence > 0", name="sequence_positive"),
    )

    @property
    def outstanding(self) -> Decimal:
        return self.total_payment - self.amount_paid

    @property
    def is_open(self) -> bool:
        return self.status in (InstallmentStatus.PENDING, InstallmentStatus.OVERDUE)


# ===========================================
# PAYSLIPS & RULE TABLES
# ===========================================

class PayslipRecord(BaseModel, PeriodMixin):
    """
    Stored payslip computation for an (employee, period, version).
    """

    __tablename__ = "payslip_records"

    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[PayslipStatus] = mapped_column(
        SQLEnum(PayslipStatus),
        default=PayslipStatus.COMPUTED,
        nullable=False,
    )
    rule_set_version: Mapped[str] = mapped_column(String(50), nullable=False)

    gross_pay: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    tax_due: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    net_pay: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False)

    correction_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    finalized_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "employee_id", "period_year", "period_month", "version",
            name="uq_payslip_employee_period_version",
        ),
    )


class StatutoryRuleSet(BaseModel):
    """
    Versioned tax and contribution rule table.

    The payload is validated by payengine.schemas.rules.RuleSet.
    """

    __tablename__ = "statutory_rule_sets"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    version: Mapped[str] = mapped_column(String(50), nullable=False)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False)

    __table_args__ = (
        UniqueConstraint("name", "version", name="uq_rule_set_name_version"),
    )
