"""
PayEngine - Test Configuration

Pytest fixtures and configuration.

Service and API tests run against an in-memory repository so that the
engine can be exercised without a database. Model instances are built
transiently with every column set explicitly.
"""

import asyncio
import copy
from datetime import date
from decimal import Decimal
from typing import AsyncGenerator, Dict, List, Optional, Sequence
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from payengine.config import Settings
from payengine.dependencies import get_engine_service
from payengine.models.payroll import (
    Employee,
    EmployeeStatus,
    Installment,
    InstallmentStatus,
    Loan,
    LoanStatus,
    LoanType,
    MaritalStatus,
    PayslipRecord,
    VariableElement,
    VariableElementType,
)
from payengine.repositories.base import PayrollRepository
from payengine.schemas.rules import RuleSet
from payengine.services.engine_service import LoanLockRegistry, PayrollEngineService
from payengine.utils.periods import PayPeriod
from main import app


# ===========================================
# RULE SET
# ===========================================

RULE_SET_PAYLOAD = {
    "name": "Test Statutory Rules",
    "version": "2026.1",
    "effective_from": "2026-01-01",
    "bracket_basis": "annual",
    "brackets": [
        {"lower": "0", "upper": "30000", "rate": "0"},
        {"lower": "30000", "upper": "50000", "rate": "10"},
        {"lower": "50000", "upper": "60000", "rate": "20"},
        {"lower": "60000", "upper": None, "rate": "30"},
    ],
    "contributions": [
        {"name": "social_security", "rate": "4.48", "ceiling": "6000"},
        {"name": "health_insurance", "rate": "2.26"},
        {"name": "employer_social_security", "rate": "8.98", "ceiling": "6000", "side": "employer"},
    ],
    "dependent_deduction": "30",
    "spouse_deduction": "30",
    "personal_relief": "0",
    "housing_interest_cap_rate": "10",
    "seniority_scale": [
        {"min_years": 0, "max_years": 2, "rate": "0"},
        {"min_years": 2, "max_years": 5, "rate": "5"},
        {"min_years": 5, "max_years": None, "rate": "10"},
    ],
    "allowance_ceilings": {
        "transport": {"absolute_ceiling": "500"},
        "representation": {"max_percentage": "10"},
    },
}


@pytest.fixture
def rule_set_payload() -> dict:
    return copy.deepcopy(RULE_SET_PAYLOAD)


@pytest.fixture
def rule_set(rule_set_payload) -> RuleSet:
    """Rule set used across payslip tests."""
    return RuleSet.model_validate(rule_set_payload)


@pytest.fixture
def period() -> PayPeriod:
    return PayPeriod(2026, 3)


# ===========================================
# MODEL FACTORIES
# ===========================================

@pytest.fixture
def employee_factory():
    """Build transient Employee records."""

    def _make(**overrides) -> Employee:
        values = dict(
            id=uuid4(),
            employee_code=f"EMP-{uuid4().hex[:6]}",
            first_name="Amina",
            last_name="Test",
            base_salary=Decimal("5000.00"),
            transport_allowance=None,
            housing_allowance=None,
            representation_allowance=None,
            marital_status=MaritalStatus.SINGLE,
            dependents=0,
            hire_date=date(2025, 6, 1),
            days_per_month=None,
            contribution_exemptions=[],
            optional_contributions=[],
            status=EmployeeStatus.ACTIVE,
        )
        values.update(overrides)
        return Employee(**values)

    return _make


@pytest.fixture
def element_factory():
    """Build transient VariableElement records."""

    def _make(employee: Employee, element_type: VariableElementType, period: PayPeriod, **overrides):
        values = dict(
            id=uuid4(),
            employee_id=employee.id,
            period_year=period.year,
            period_month=period.month,
            element_type=element_type,
            description=None,
            amount=None,
            hours=None,
            hourly_rate=None,
        )
        values.update(overrides)
        return VariableElement(**values)

    return _make


@pytest.fixture
def loan_factory():
    """Build transient Loan records without a schedule."""

    def _make(employee: Employee, **overrides) -> Loan:
        principal = Decimal(str(overrides.pop("principal_amount", "12000.00")))
        values = dict(
            id=uuid4(),
            employee_id=employee.id,
            loan_type=LoanType.PERSONAL,
            reference=f"LN-{uuid4().hex[:8]}",
            principal_amount=principal,
            interest_rate=Decimal("0.00"),
            insurance_rate=Decimal("0.00"),
            interest_tax_rate=Decimal("0.00"),
            duration_years=None,
            installment_count=6,
            installment_amount=Decimal("2000.00"),
            start_date=date(2026, 1, 15),
            status=LoanStatus.ACTIVE,
            remaining_balance=principal,
            amount_repaid=Decimal("0.00"),
            notes=None,
            version=1,
        )
        values.update(overrides)
        return Loan(**values)

    return _make


@pytest.fixture
def installment_factory():
    """Build transient Installment records attached to a loan."""

    def _make(loan: Loan, sequence: int, due_date: date, principal: str, **overrides) -> Installment:
        amount = Decimal(principal)
        values = dict(
            id=uuid4(),
            loan_id=loan.id,
            sequence=sequence,
            due_date=due_date,
            principal=amount,
            interest=Decimal("0.00"),
            interest_tax=Decimal("0.00"),
            insurance=Decimal("0.00"),
            total_payment=amount,
            remaining_balance=Decimal("0.00"),
            status=InstallmentStatus.PENDING,
            payment_date=None,
            amount_paid=Decimal("0.00"),
            notes=None,
        )
        values.update(overrides)
        installment = Installment(**values)
        loan.installments.append(installment)
        return installment

    return _make


# ===========================================
# IN-MEMORY REPOSITORY
# ===========================================

class FakePayrollRepository(PayrollRepository):
    """In-memory PayrollRepository for service and API tests."""

    def __init__(self, rule_set: Optional[RuleSet] = None):
        self.rule_set = rule_set
        self.employees: Dict[UUID, Employee] = {}
        self.elements: List[VariableElement] = []
        self.loans: Dict[UUID, Loan] = {}
        self.payslips: List[PayslipRecord] = []
        self.commits = 0
        self.rollbacks = 0

    # Seeding helpers

    def add_employee(self, employee: Employee) -> Employee:
        self.employees[employee.id] = employee
        return employee

    def add_element(self, element: VariableElement) -> VariableElement:
        self.elements.append(element)
        return element

    def add_loan(self, loan: Loan) -> Loan:
        self.loans[loan.id] = loan
        return loan

    # PayrollRepository

    async def get_employee(self, employee_id: UUID) -> Optional[Employee]:
        return self.employees.get(employee_id)

    async def list_active_employee_ids(self) -> List[UUID]:
        active = [e for e in self.employees.values() if e.status == EmployeeStatus.ACTIVE]
        return [e.id for e in sorted(active, key=lambda e: e.employee_code)]

    async def list_variable_elements(self, employee_id: UUID, period: PayPeriod) -> List[VariableElement]:
        return [
            e for e in self.elements
            if e.employee_id == employee_id
            and e.period == period
        ]

    async def list_loans(self, employee_id: UUID) -> List[Loan]:
        return [loan for loan in self.loans.values() if loan.employee_id == employee_id]

    async def get_loan(self, loan_id: UUID, for_update: bool = False) -> Optional[Loan]:
        return self.loans.get(loan_id)

    async def get_installment(self, installment_id: UUID) -> Optional[Installment]:
        for loan in self.loans.values():
            for installment in loan.installments:
                if installment.id == installment_id:
                    return installment
        return None

    async def add_installments(self, loan: Loan, installments: Sequence[Installment]) -> None:
        for installment in installments:
            loan.installments.append(installment)

    async def get_latest_payslip(self, employee_id: UUID, period: PayPeriod) -> Optional[PayslipRecord]:
        records = [
            r for r in self.payslips
            if r.employee_id == employee_id
            and r.period == period
        ]
        return max(records, key=lambda r: r.version) if records else None

    async def add_payslip(self, record: PayslipRecord) -> None:
        self.payslips.append(record)

    async def get_rule_set(self, period: PayPeriod) -> Optional[RuleSet]:
        if self.rule_set is None or self.rule_set.effective_from > period.start:
            return None
        return self.rule_set

    async def commit(self) -> None:
        # Yield to the loop so concurrent callers interleave here
        await asyncio.sleep(0)
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1


@pytest.fixture
def repository_factory():
    return FakePayrollRepository


@pytest.fixture
def repository(rule_set: RuleSet) -> FakePayrollRepository:
    return FakePayrollRepository(rule_set)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(delinquency_suspension_months=3, default_rule_set_file=None)


@pytest.fixture
def service(repository: FakePayrollRepository, test_settings: Settings) -> PayrollEngineService:
    """Engine service with its own lock registry."""
    return PayrollEngineService(repository, locks=LoanLockRegistry(), settings=test_settings)


@pytest_asyncio.fixture(scope="function")
async def client(service: PayrollEngineService) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with the engine service overridden."""
    app.dependency_overrides[get_engine_service] = lambda: service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
