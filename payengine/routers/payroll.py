"""
PayEngine - Payroll Router

API endpoints for payslip computation, payroll runs, loan schedules,
payments and repayment progress.
"""

import uuid
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status

from payengine.dependencies import get_engine_service
from payengine.schemas.payroll import (
    DelinquencyResponse,
    InstallmentResponse,
    LoanResponse,
    PaymentCreate,
    PaymentResponse,
    PayrollRunFailure,
    PayrollRunRequest,
    PayrollRunResponse,
    PayslipComputeRequest,
    PayslipCorrectionRequest,
    PayslipRecordResponse,
    PayslipResult,
    ProgressResponse,
    SchedulePreviewRequest,
    ScheduleStatisticsResponse,
)
from payengine.services.engine_service import PayrollEngineService
from payengine.utils.periods import PayPeriod


router = APIRouter()


# ===========================================
# PAYSLIP ENDPOINTS
# ===========================================

@router.post("/payslips/compute", response_model=PayslipResult, tags=["Payslips"])
async def compute_payslip(
    request: PayslipComputeRequest,
    service: PayrollEngineService = Depends(get_engine_service),
):
    """Compute or recompute the open payslip of an employee for a month."""
    return await service.compute_payslip(
        request.employee_id,
        PayPeriod(request.year, request.month),
    )


@router.post(
    "/payslips/{employee_id}/{year}/{month}/finalize",
    response_model=PayslipRecordResponse,
    tags=["Payslips"],
)
async def finalize_payslip(
    employee_id: uuid.UUID = Path(..., description="Employee ID"),
    year: int = Path(..., ge=1900, le=9999),
    month: int = Path(..., ge=1, le=12),
    service: PayrollEngineService = Depends(get_engine_service),
):
    """Finalize the latest payslip; it can no longer be recomputed."""
    record = await service.finalize_payslip(employee_id, PayPeriod(year, month))
    return PayslipRecordResponse(
        status=record.status,
        version=record.version,
        result=PayslipResult.model_validate(record.payload),
    )


@router.post(
    "/payslips/corrections",
    response_model=PayslipResult,
    status_code=status.HTTP_201_CREATED,
    tags=["Payslips"],
)
async def correct_payslip(
    request: PayslipCorrectionRequest,
    service: PayrollEngineService = Depends(get_engine_service),
):
    """Issue a new payslip version for a finalized period."""
    return await service.correct_payslip(
        request.employee_id,
        PayPeriod(request.year, request.month),
        request.reason,
    )


@router.post("/runs", response_model=PayrollRunResponse, tags=["Payroll Runs"])
async def run_payroll(
    request: PayrollRunRequest,
    service: PayrollEngineService = Depends(get_engine_service),
):
    """Compute payslips for all active employees; failures are reported per employee."""
    report = await service.run_payroll(
        PayPeriod(request.year, request.month),
        employee_ids=request.employee_ids,
    )
    return PayrollRunResponse(
        period=str(report.period),
        succeeded=report.succeeded,
        failures=[
            PayrollRunFailure(employee_id=f.employee_id, code=f.code, message=f.message)
            for f in report.failures
        ],
        total_gross=report.total_gross,
        total_net=report.total_net,
        total_tax=report.total_tax,
        is_partial=report.is_partial,
    )


# ===========================================
# SCHEDULE ENDPOINTS
# ===========================================

@router.post("/schedules/preview", response_model=List[InstallmentResponse], tags=["Schedules"])
async def preview_schedule(
    request: SchedulePreviewRequest,
    service: PayrollEngineService = Depends(get_engine_service),
):
    """Generate a schedule without storing it."""
    return service.preview_schedule(
        principal=request.principal,
        start_date=request.start_date,
        annual_rate=request.annual_rate,
        installment_count=request.installment_count,
        payment=request.payment,
        amounts=request.amounts,
        insurance_rate=request.insurance_rate,
        interest_tax_rate=request.interest_tax_rate,
    )


@router.post(
    "/loans/{loan_id}/schedule",
    response_model=List[InstallmentResponse],
    status_code=status.HTTP_201_CREATED,
    tags=["Schedules"],
)
async def generate_schedule(
    loan_id: uuid.UUID = Path(..., description="Loan ID"),
    service: PayrollEngineService = Depends(get_engine_service),
):
    """Create the installment schedule of a loan or advance."""
    return await service.generate_schedule(loan_id)


@router.get(
    "/loans/{loan_id}/schedule/statistics",
    response_model=ScheduleStatisticsResponse,
    tags=["Schedules"],
)
async def get_schedule_statistics(
    loan_id: uuid.UUID = Path(..., description="Loan ID"),
    as_of: Optional[date] = Query(None, description="Reference date, defaults to today"),
    service: PayrollEngineService = Depends(get_engine_service),
):
    """Summarize paid, overdue and remaining installments."""
    return await service.get_schedule_statistics(loan_id, as_of or date.today())


# ===========================================
# PAYMENT & PROGRESS ENDPOINTS
# ===========================================

@router.post(
    "/installments/{installment_id}/payments",
    response_model=PaymentResponse,
    tags=["Payments"],
)
async def record_payment(
    payment: PaymentCreate,
    installment_id: uuid.UUID = Path(..., description="Installment ID"),
    service: PayrollEngineService = Depends(get_engine_service),
):
    """Record a (possibly partial) payment against an installment."""
    result = await service.record_payment(
        installment_id,
        payment.amount_paid,
        payment.payment_date,
        payment.notes,
    )
    return PaymentResponse(
        installment=InstallmentResponse.model_validate(result.installment),
        loan=LoanResponse.model_validate(result.loan),
    )


@router.get("/loans/{loan_id}/progress", response_model=ProgressResponse, tags=["Progress"])
async def get_progress(
    loan_id: uuid.UUID = Path(..., description="Loan ID"),
    as_of: Optional[date] = Query(None, description="Reference date, defaults to today"),
    service: PayrollEngineService = Depends(get_engine_service),
):
    """Repayment progress and delinquency of a loan or advance."""
    as_of = as_of or date.today()
    info = await service.get_progress(loan_id, as_of)
    return ProgressResponse(
        loan_id=loan_id,
        as_of=as_of,
        percentage=info.percentage,
        months_elapsed=info.months_elapsed,
        expected_percentage=info.expected_percentage,
        is_late=info.is_late,
        months_late=info.months_late,
        amount_due=info.amount_due,
        amount_repaid=info.amount_repaid,
        remaining_balance=info.remaining_balance,
        paid_installments=info.paid_installments,
        total_installments=info.total_installments,
        next_due_date=info.next_due_date,
        fully_repaid=info.fully_repaid,
        suggested_status=info.suggested_status,
    )


@router.post(
    "/loans/{loan_id}/delinquency/refresh",
    response_model=DelinquencyResponse,
    tags=["Progress"],
)
async def refresh_delinquency(
    loan_id: uuid.UUID = Path(..., description="Loan ID"),
    as_of: Optional[date] = Query(None, description="Reference date, defaults to today"),
    service: PayrollEngineService = Depends(get_engine_service),
):
    """Mark past-due installments overdue and suspend badly delinquent loans."""
    loan, marked = await service.refresh_delinquency(loan_id, as_of or date.today())
    return DelinquencyResponse(loan=LoanResponse.model_validate(loan), marked_overdue=marked)
