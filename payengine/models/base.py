"""
PayEngine - Base Model

Declarative base for payroll records plus the shared column groups:
timestamps for every table, and the (year, month) pair for records that
belong to a single pay period.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Integer, and_, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from payengine.database import Base
from payengine.utils.periods import PayPeriod


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class PeriodMixin:
    """
    Mixin for records scoped to one pay period.

    The month is stored as two integer columns so that the table can be
    indexed and constrained without a date convention.
    """

    period_year: Mapped[int] = mapped_column(Integer, nullable=False)
    period_month: Mapped[int] = mapped_column(Integer, nullable=False)

    @property
    def period(self) -> PayPeriod:
        return PayPeriod(self.period_year, self.period_month)

    @classmethod
    def in_period(cls, period: PayPeriod):
        """Filter clause selecting rows of the given period."""
        return and_(cls.period_year == period.year, cls.period_month == period.month)


class BaseModel(Base, TimestampMixin):
    """
    Abstract base model with UUID primary key and timestamps.
    """

    __abstract__ = True

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(id={self.id})>"
