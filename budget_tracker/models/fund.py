from __future__ import annotations
from datetime import datetime, date
from sqlalchemy import String, Date, DateTime, Text, Boolean, Integer
from sqlalchemy.orm import Mapped, mapped_column

from budget_tracker.db.base import Base
from budget_tracker.models.fund_type import BreakdownStatus, ReceivedFundStatus
from budget_tracker.models.mixins import AuditMixin, FinancialsMixin, Money, SoftDeleteMixin


class FundMixin(FinancialsMixin, SoftDeleteMixin, AuditMixin):
    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    remarks: Mapped[str | None] = mapped_column(Text, default=None)
    year: Mapped[int | None] = mapped_column(Integer, default=None, index=True)

    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False)
    pinned_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    pinned_by_id: Mapped[int | None] = mapped_column(Integer, default=None)


class AllocatedFundMixin(FundMixin):
    """Funds whose utilized total can be rolled up from their breakdowns"""
    particulars: Mapped[str] = mapped_column(String(500))
    implementing_office: Mapped[str] = mapped_column(String(50), index=True)
    status: Mapped[str | None] = mapped_column(String(50), default=BreakdownStatus.ONGOING.value)

    total_budget_allocated: Mapped[float] = mapped_column(Money, default=0)
    total_budget_utilized: Mapped[float] = mapped_column(Money, default=0)
    obligated_budget: Mapped[float] = mapped_column(Money, default=0)

    auto_calculate_budget_utilized: Mapped[bool] = mapped_column(Boolean, default=True)
    projects_completed: Mapped[int] = mapped_column(Integer, default=0)
    projects_delayed: Mapped[int] = mapped_column(Integer, default=0)
    projects_ongoing: Mapped[int] = mapped_column(Integer, default=0)


class ReceivedFundMixin(FundMixin):
    """Funds tracked by amount received; utilized is always entered by hand"""
    project_title: Mapped[str] = mapped_column(String(500))
    office_in_charge: Mapped[str] = mapped_column(String(50), index=True)
    status: Mapped[str | None] = mapped_column(String(50), default=ReceivedFundStatus.ACTIVE.value)
    date_received: Mapped[date | None] = mapped_column(Date, default=None)

    received: Mapped[float] = mapped_column(Money, default=0)
    utilized: Mapped[float] = mapped_column(Money, default=0)
    obligated_pr: Mapped[float] = mapped_column(Money, default=0)


class Project(AllocatedFundMixin, Base):
    __tablename__ = "projects"


class TwentyPercentDF(AllocatedFundMixin, Base):
    __tablename__ = "twenty_percent_df"


class TrustFund(ReceivedFundMixin, Base):
    __tablename__ = "trust_funds"


class SpecialEducationFund(ReceivedFundMixin, Base):
    __tablename__ = "special_education_funds"


class SpecialHealthFund(ReceivedFundMixin, Base):
    __tablename__ = "special_health_funds"
