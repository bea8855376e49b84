"""
Activity logging for funds and breakdowns.

Each write produces one append-only row in the fund family's activity table
holding full before/after snapshots, the list of tracked fields that changed,
a short change summary and the actor as they were at write time. Rows are
written through the caller's session so they commit or roll back together
with the mutation they describe.
"""
import json
import logging
from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession

from budget_tracker.core.config import settings
from budget_tracker.models.activity_log import ActivityAction, ActivitySource, EntityKind
from budget_tracker.models.fund_type import BreakdownStatus, ReceivedFundStatus
from budget_tracker.models.department import Department
from budget_tracker.models.user import User

logger = logging.getLogger(__name__)

BREAKDOWN_TRACKED_FIELDS = (
    "allocated_budget",
    "obligated_budget",
    "budget_utilized",
    "status",
    "project_accomplishment",
    "implementing_office",
    "remarks",
    "date_started",
    "target_date",
    "completion_date",
    "is_deleted",
)

BREAKDOWN_BUDGET_FIELDS = ("allocated_budget", "obligated_budget", "budget_utilized", "balance")
DATE_FIELDS = ("date_started", "target_date", "completion_date", "date_received")
LOCATION_FIELDS = ("municipality", "barangay", "district")
TERMINAL_STATUSES = (BreakdownStatus.COMPLETED.value, ReceivedFundStatus.COMPLETED.value)


class ActorSnapshot(BaseModel):
    """Who performed a write, captured by value at write time"""
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    name: str = "System"
    email: Optional[str] = None
    role: Optional[str] = None
    department_name: Optional[str] = None

    @classmethod
    def from_user(cls, user: User | None, department_name: Optional[str] = None) -> "ActorSnapshot":
        if user is None:
            return cls()
        return cls(
            id=user.id,
            name=user.full_name,
            email=user.email,
            role=user.role,
            department_name=department_name,
        )


async def capture_actor(db: AsyncSession, user: User | None) -> ActorSnapshot:
    """Snapshot the acting user together with their department name"""
    department_name = None
    if user is not None and user.department_id is not None:
        department = await db.get(Department, user.department_id)
        department_name = department.name if department else None
    return ActorSnapshot.from_user(user, department_name)


def _json_default(value: Any):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def snapshot(record) -> dict[str, Any]:
    """Column values of an ORM row as plain JSON-safe data"""
    values = {}
    for attr in inspect(record).mapper.column_attrs:
        value = getattr(record, attr.key)
        if isinstance(value, (datetime, date)):
            value = value.isoformat()
        values[attr.key] = value
    return values


def fund_tracked_fields(adapter) -> tuple[str, ...]:
    fields = [
        adapter.allocated_field,
        adapter.utilized_field,
        adapter.obligated_field,
        "balance",
        adapter.office_field,
        "status",
        "remarks",
        "is_pinned",
        "is_deleted",
    ]
    if adapter.supports_auto_calculate:
        fields.append("auto_calculate_budget_utilized")
    return tuple(fields)


def calculate_changed_fields(previous: dict, new: dict, tracked: tuple[str, ...]) -> list[str]:
    return [key for key in tracked if previous.get(key) != new.get(key)]


def build_change_summary(
    previous: dict,
    new: dict,
    changed: list[str],
    allocated_field: str,
    budget_fields: tuple[str, ...],
    office_field: str,
) -> dict[str, Any]:
    """Highlight budget, status, date, location and office changes"""
    summary: dict[str, Any] = {}
    if any(f in budget_fields for f in changed):
        summary["budget_changed"] = True
        summary["old_budget"] = previous.get(allocated_field)
        summary["new_budget"] = new.get(allocated_field)
    if "status" in changed:
        summary["status_changed"] = True
        summary["old_status"] = previous.get("status")
        summary["new_status"] = new.get("status")
    if any(f in DATE_FIELDS for f in changed):
        summary["date_changed"] = True
    if any(previous.get(f) != new.get(f) for f in LOCATION_FIELDS if f in previous or f in new):
        summary["location_changed"] = True
    if office_field in changed:
        summary["office_changed"] = True
        summary["old_office"] = previous.get(office_field)
        summary["new_office"] = new.get(office_field)
    return summary


def flag_reasons(action: str, summary: dict[str, Any]) -> list[str]:
    """Reasons an entry should be reviewed: deletions, large budget swings, terminal status"""
    if action == ActivityAction.DELETED.value:
        return ["Record deletion"]

    reasons = []
    if summary.get("budget_changed"):
        old_budget = float(summary.get("old_budget") or 0)
        new_budget = float(summary.get("new_budget") or 0)
        if old_budget > 0:
            percent = abs((new_budget - old_budget) / old_budget * 100)
            if percent > settings.LARGE_BUDGET_CHANGE_PERCENT:
                reasons.append(f"Large budget change: {percent:.1f}%")
    if summary.get("status_changed") and summary.get("new_status") in TERMINAL_STATUSES:
        reasons.append(f"Status changed to {summary['new_status']}")
    return reasons


class ActivityLogger:
    """Writes and queries activity entries for any fund family"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        adapter,
        action: ActivityAction | str,
        entity_kind: EntityKind | str,
        entity_id: Optional[int],
        actor: ActorSnapshot,
        previous: Optional[dict[str, Any]] = None,
        new: Optional[dict[str, Any]] = None,
        reason: Optional[str] = None,
        batch_id: Optional[str] = None,
        source: ActivitySource | str = ActivitySource.WEB_UI,
        record_count: Optional[int] = None,
        extra_summary: Optional[dict[str, Any]] = None,
        flag_reason: Optional[str] = None,
        fund_id: Optional[int] = None,
    ):
        action = ActivityAction(action).value
        entity_kind = EntityKind(entity_kind).value

        if entity_kind == EntityKind.FUND.value:
            tracked = fund_tracked_fields(adapter)
            budget_fields = (
                adapter.allocated_field, adapter.utilized_field, adapter.obligated_field, "balance"
            )
            allocated_field, office_field = adapter.allocated_field, adapter.office_field
        else:
            tracked = BREAKDOWN_TRACKED_FIELDS
            budget_fields = BREAKDOWN_BUDGET_FIELDS
            allocated_field, office_field = "allocated_budget", "implementing_office"

        changed = None
        summary: dict[str, Any] = {}
        if previous is not None and new is not None:
            changed = calculate_changed_fields(previous, new, tracked)
            summary = build_change_summary(
                previous, new, changed, allocated_field, budget_fields, office_field
            )
        if extra_summary:
            summary.update(extra_summary)

        reasons = flag_reasons(action, summary)
        if flag_reason:
            reasons.insert(0, flag_reason)

        entry = adapter.activity_model(
            action=action,
            entity_kind=entity_kind,
            entity_id=entity_id,
            fund_id=fund_id,
            previous_values=json.dumps(previous, default=_json_default) if previous is not None else None,
            new_values=json.dumps(new, default=_json_default) if new is not None else None,
            changed_fields=json.dumps(changed) if changed is not None else None,
            change_summary=json.dumps(summary, default=_json_default) if summary else None,
            performed_by_id=actor.id,
            performed_by_name=actor.name,
            performed_by_email=actor.email,
            performed_by_role=actor.role,
            performed_by_department_name=actor.department_name,
            timestamp=datetime.utcnow(),
            batch_id=batch_id,
            record_count=record_count,
            reason=reason,
            source=ActivitySource(source).value,
            is_flagged=bool(reasons),
            flag_reason="; ".join(reasons) if reasons else None,
        )
        entry = await adapter.activity_repository(self.db).create(entry)
        if entry.is_flagged:
            logger.warning(
                "Flagged %s %s %s activity by %s: %s",
                adapter.fund_type.value, entity_kind, action, actor.email, entry.flag_reason,
            )
        return entry

    async def log_bulk(
        self,
        adapter,
        action: ActivityAction | str,
        actor: ActorSnapshot,
        batch_id: str,
        items: list[dict[str, Any]],
        fund_id: Optional[int] = None,
        reason: Optional[str] = None,
        source: ActivitySource | str = ActivitySource.BULK_IMPORT,
        flag_reason: Optional[str] = None,
    ):
        """One aggregate entry for a whole batch. ``items`` are the affected snapshots."""
        return await self.log(
            adapter,
            action,
            EntityKind.BREAKDOWN,
            None,
            actor,
            new={"items": items},
            reason=reason,
            batch_id=batch_id,
            source=source,
            record_count=len(items),
            extra_summary={"record_ids": [item.get("id") for item in items]},
            flag_reason=flag_reason,
            fund_id=fund_id,
        )

    async def list_activities(self, adapter, limit: int = 100, offset: int = 0, **filters) -> list:
        return await adapter.activity_repository(self.db).list(limit=limit, offset=offset, **filters)

    async def count(self, adapter, **filters) -> int:
        return await adapter.activity_repository(self.db).count(**filters)
