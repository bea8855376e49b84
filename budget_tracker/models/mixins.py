from __future__ import annotations
from datetime import datetime
from sqlalchemy import Boolean, DateTime, Float, Integer, Numeric, Text
from sqlalchemy.orm import Mapped, mapped_column

# Money columns come back as float so arithmetic with request payloads stays simple
Money = Numeric(16, 2, asdecimal=False)


class SoftDeleteMixin:
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    deleted_by_id: Mapped[int | None] = mapped_column(Integer, default=None)
    deletion_reason: Mapped[str | None] = mapped_column(Text, default=None)


class AuditMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    created_by_id: Mapped[int | None] = mapped_column(Integer, default=None, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    updated_by_id: Mapped[int | None] = mapped_column(Integer, default=None)


class FinancialsMixin:
    """Derived columns shared by funds and breakdowns"""
    balance: Mapped[float] = mapped_column(Money, default=0)
    utilization_rate: Mapped[float] = mapped_column(Float, default=0)


def active_filter(model):
    """Rows that are not trashed. NULL counts as active for legacy rows."""
    return model.is_deleted.is_not(True)


def trashed_filter(model):
    return model.is_deleted.is_(True)
