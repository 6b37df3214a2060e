"""
PayEngine - Services Package

Business logic services.
"""

from payengine.services.amortization_service import AmortizationScheduler
from payengine.services.engine_service import PayrollEngineService
from payengine.services.net_pay_service import NetPayResolver
from payengine.services.payroll_run_service import PayrollRunCoordinator, PayrollRunReport
from payengine.services.progress_service import ProgressInfo, ProgressTracker

__all__ = [
    "AmortizationScheduler",
    "PayrollEngineService",
    "NetPayResolver",
    "PayrollRunCoordinator",
    "PayrollRunReport",
    "ProgressInfo",
    "ProgressTracker",
]
