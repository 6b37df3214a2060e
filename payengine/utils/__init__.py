"""
PayEngine - Utilities Package

Money arithmetic, payroll periods and error handling.
"""
