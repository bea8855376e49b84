from __future__ import annotations
from datetime import date
from sqlalchemy import String, Date, Text, ForeignKey, Float
from sqlalchemy.orm import Mapped, mapped_column

from budget_tracker.db.base import Base
from budget_tracker.models.mixins import AuditMixin, FinancialsMixin, Money, SoftDeleteMixin


class BreakdownMixin(FinancialsMixin, SoftDeleteMixin, AuditMixin):
    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    project_name: Mapped[str] = mapped_column(String(500))
    implementing_office: Mapped[str] = mapped_column(String(50), index=True)
    project_title: Mapped[str | None] = mapped_column(String(500), default=None)

    municipality: Mapped[str | None] = mapped_column(String(255), default=None, index=True)
    barangay: Mapped[str | None] = mapped_column(String(255), default=None)
    district: Mapped[str | None] = mapped_column(String(255), default=None)
    remarks: Mapped[str | None] = mapped_column(Text, default=None)
    fund_source: Mapped[str | None] = mapped_column(String(255), default=None)

    allocated_budget: Mapped[float] = mapped_column(Money, default=0)
    obligated_budget: Mapped[float] = mapped_column(Money, default=0)
    budget_utilized: Mapped[float] = mapped_column(Money, default=0)
    project_accomplishment: Mapped[float | None] = mapped_column(Float, default=None)
    status: Mapped[str | None] = mapped_column(String(50), default=None, index=True)

    date_started: Mapped[date | None] = mapped_column(Date, default=None)
    target_date: Mapped[date | None] = mapped_column(Date, default=None)
    completion_date: Mapped[date | None] = mapped_column(Date, default=None)
    report_date: Mapped[date | None] = mapped_column(Date, default=None)

    batch_id: Mapped[str | None] = mapped_column(String(64), default=None, index=True)


class ProjectBreakdown(BreakdownMixin, Base):
    __tablename__ = "project_breakdowns"

    project_id: Mapped[int | None] = mapped_column(
        ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True
    )


class TrustFundBreakdown(BreakdownMixin, Base):
    __tablename__ = "trust_fund_breakdowns"

    trust_fund_id: Mapped[int | None] = mapped_column(
        ForeignKey("trust_funds.id", ondelete="SET NULL"), nullable=True, index=True
    )


class TwentyPercentDFBreakdown(BreakdownMixin, Base):
    __tablename__ = "twenty_percent_df_breakdowns"

    twenty_percent_df_id: Mapped[int | None] = mapped_column(
        ForeignKey("twenty_percent_df.id", ondelete="SET NULL"), nullable=True, index=True
    )


class SpecialEducationFundBreakdown(BreakdownMixin, Base):
    __tablename__ = "special_education_fund_breakdowns"

    special_education_fund_id: Mapped[int | None] = mapped_column(
        ForeignKey("special_education_funds.id", ondelete="SET NULL"), nullable=True, index=True
    )


class SpecialHealthFundBreakdown(BreakdownMixin, Base):
    __tablename__ = "special_health_fund_breakdowns"

    special_health_fund_id: Mapped[int | None] = mapped_column(
        ForeignKey("special_health_funds.id", ondelete="SET NULL"), nullable=True, index=True
    )
