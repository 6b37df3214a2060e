"""
PayEngine - Repositories
"""

from payengine.repositories.base import PayrollRepository
from payengine.repositories.sqlalchemy_repository import SQLAlchemyPayrollRepository

__all__ = ["PayrollRepository", "SQLAlchemyPayrollRepository"]
