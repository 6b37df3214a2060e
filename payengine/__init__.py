"""
PayEngine - Payroll Computation & Amortization Engine

Payslip computation (gross, contributions, progressive income tax, net pay),
loan and salary advance amortization, and repayment progress tracking.
"""

__version__ = "0.1.0"
