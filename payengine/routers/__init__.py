"""
PayEngine - Routers Package

FastAPI route handlers.

Routers:
- payroll: Payslips, payroll runs, loan schedules, payments and progress
"""

from payengine.routers import payroll

__all__ = ["payroll"]
