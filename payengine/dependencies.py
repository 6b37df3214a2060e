"""
PayEngine - FastAPI Dependencies

Shared dependencies for database-backed repositories and the engine service.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from payengine.config import get_settings
from payengine.database import get_async_session
from payengine.repositories import PayrollRepository, SQLAlchemyPayrollRepository
from payengine.services.engine_service import PayrollEngineService, loan_locks


async def get_repository(
    db: AsyncSession = Depends(get_async_session),
) -> PayrollRepository:
    """Repository bound to the request's database session."""
    return SQLAlchemyPayrollRepository(db)


async def get_engine_service(
    repository: PayrollRepository = Depends(get_repository),
) -> PayrollEngineService:
    """Engine service sharing the process-wide loan locks."""
    return PayrollEngineService(repository, locks=loan_locks, settings=get_settings())
