from __future__ import annotations
from datetime import datetime
from enum import Enum
from sqlalchemy import String, DateTime, Text, Integer, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from budget_tracker.db.base import Base


class ActivityAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    RESTORED = "restored"
    BULK_CREATED = "bulk_created"
    BULK_UPDATED = "bulk_updated"
    BULK_DELETED = "bulk_deleted"


class EntityKind(str, Enum):
    FUND = "fund"
    BREAKDOWN = "breakdown"


class ActivitySource(str, Enum):
    WEB_UI = "web_ui"
    BULK_IMPORT = "bulk_import"
    API = "api"
    SYSTEM = "system"
    MIGRATION = "migration"


class ActivityLogMixin:
    """Append-only audit row. Actor and entity are stored by value, never by reference."""
    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    action: Mapped[str] = mapped_column(String(50), index=True)
    entity_kind: Mapped[str] = mapped_column(String(20), index=True)
    entity_id: Mapped[int | None] = mapped_column(Integer, default=None, index=True)
    fund_id: Mapped[int | None] = mapped_column(Integer, default=None, index=True)

    previous_values: Mapped[str | None] = mapped_column(Text, default=None)
    new_values: Mapped[str | None] = mapped_column(Text, default=None)
    changed_fields: Mapped[str | None] = mapped_column(Text, default=None)
    change_summary: Mapped[str | None] = mapped_column(Text, default=None)

    performed_by_id: Mapped[int | None] = mapped_column(Integer, default=None, index=True)
    performed_by_name: Mapped[str | None] = mapped_column(String(255), default=None)
    performed_by_email: Mapped[str | None] = mapped_column(String(255), default=None)
    performed_by_role: Mapped[str | None] = mapped_column(String(50), default=None)
    performed_by_department_name: Mapped[str | None] = mapped_column(String(255), default=None)

    timestamp: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    batch_id: Mapped[str | None] = mapped_column(String(64), default=None, index=True)
    record_count: Mapped[int | None] = mapped_column(Integer, default=None)
    reason: Mapped[str | None] = mapped_column(Text, default=None)
    source: Mapped[str] = mapped_column(String(20), default=ActivitySource.WEB_UI.value)

    is_flagged: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    flag_reason: Mapped[str | None] = mapped_column(Text, default=None)


class ProjectActivity(ActivityLogMixin, Base):
    __tablename__ = "project_activities"


class TrustFundActivity(ActivityLogMixin, Base):
    __tablename__ = "trust_fund_activities"


class TwentyPercentDFActivity(ActivityLogMixin, Base):
    __tablename__ = "twenty_percent_df_activities"


class SpecialEducationFundActivity(ActivityLogMixin, Base):
    __tablename__ = "special_education_fund_activities"


class SpecialHealthFundActivity(ActivityLogMixin, Base):
    __tablename__ = "special_health_fund_activities"


ACTIVITY_MODELS = (
    ProjectActivity,
    TrustFundActivity,
    TwentyPercentDFActivity,
    SpecialEducationFundActivity,
    SpecialHealthFundActivity,
)
