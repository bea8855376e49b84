import logging
import uuid
from datetime import datetime
from typing import Any, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from budget_tracker.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    ValidationError,
    ViolationWarning,
)
from budget_tracker.db.session import atomic
from budget_tracker.models.activity_log import ActivityAction, ActivitySource, EntityKind
from budget_tracker.models.fund_type import BreakdownStatus
from budget_tracker.models.user import User, UserRole
from budget_tracker.repositories.implementing_agency_repository import ImplementingAgencyRepository
from budget_tracker.services.activity_service import ActivityLogger, capture_actor, snapshot
from budget_tracker.services.aggregation_service import AggregationService
from budget_tracker.services.availability import BudgetAvailability
from budget_tracker.services.availability_cache import AvailabilityCache, get_availability_cache
from budget_tracker.services.financials import apply_financials, calculate_utilization_rate
from budget_tracker.services.violations import ViolationReport, detect_violations

logger = logging.getLogger(__name__)

BREAKDOWN_FIELDS = (
    "project_name",
    "implementing_office",
    "project_title",
    "municipality",
    "barangay",
    "district",
    "remarks",
    "fund_source",
    "allocated_budget",
    "obligated_budget",
    "budget_utilized",
    "project_accomplishment",
    "status",
    "date_started",
    "target_date",
    "completion_date",
    "report_date",
)
AMOUNT_FIELDS = ("allocated_budget", "obligated_budget", "budget_utilized")
NON_NULL_FIELDS = ("project_name", "implementing_office") + AMOUNT_FIELDS
BREAKDOWN_STATUSES = tuple(s.value for s in BreakdownStatus)


def override_flag(report: ViolationReport) -> str:
    return f"Budget violation override: {', '.join(report.codes)}"


def can_hard_delete(user: User, record) -> bool:
    return user.role == UserRole.SUPER_ADMIN.value or record.created_by_id == user.id


async def validate_office(db: AsyncSession, code: Optional[str], field: str = "implementing_office") -> None:
    """Reject office codes the registry does not know or has deactivated"""
    if not code:
        raise ValidationError({field: "Implementing office is required"})
    registry = ImplementingAgencyRepository(db)
    if await registry.resolve(code) is None:
        raise ValidationError({field: f'Implementing office "{code}" does not exist'})
    if not await registry.is_active(code):
        raise ValidationError({field: f'Implementing office "{code}" is inactive'})


class BreakdownService:
    def __init__(self, db: AsyncSession, cache: AvailabilityCache | None = None):
        self.db = db
        self.cache = cache or get_availability_cache()
        self.agencies = ImplementingAgencyRepository(db)
        self.aggregation = AggregationService(db)
        self.activity_logger = ActivityLogger(db)

    # Validation

    def _clean(self, data: dict[str, Any]) -> dict[str, Any]:
        """Keep only client-writable fields. Derived columns are never accepted."""
        return {
            k: v for k, v in data.items()
            if k in BREAKDOWN_FIELDS and not (v is None and k in NON_NULL_FIELDS)
        }

    def _validate_values(self, values: dict[str, Any]) -> None:
        errors = {}
        for field in AMOUNT_FIELDS:
            value = values.get(field)
            if value is not None and value < 0:
                errors[field] = "Amount cannot be negative"
        accomplishment = values.get("project_accomplishment")
        if accomplishment is not None and not 0 <= accomplishment <= 100:
            errors["project_accomplishment"] = "Accomplishment must be between 0 and 100"
        status = values.get("status")
        if status is not None and status not in BREAKDOWN_STATUSES:
            errors["status"] = f"Status must be one of: {', '.join(BREAKDOWN_STATUSES)}"
        if "project_name" in values and not values["project_name"]:
            errors["project_name"] = "Project name is required"
        if errors:
            raise ValidationError(errors)

    async def _validate(self, values: dict[str, Any], previous_office: Optional[str] = None) -> None:
        self._validate_values(values)
        office = values.get("implementing_office")
        if "implementing_office" in values and (office is None or office != previous_office):
            await validate_office(self.db, values["implementing_office"])

    def _resolve_violations(self, report: ViolationReport, confirm_violations: bool) -> Optional[str]:
        if not report.has_violations:
            return None
        if not confirm_violations:
            raise ViolationWarning(report)
        logger.warning("Committing despite budget violations: %s", ", ".join(report.codes))
        return override_flag(report)

    def _batch_report(self, adapter, fund, allocations: dict[Any, float], items: list[dict]) -> ViolationReport:
        """
        Check every item of a batch against the final state of the batch.

        ``allocations`` maps breakdown ids (or placeholder keys for new rows) to their
        allocated amount after the whole batch is applied.
        """
        violations = []
        availability = None
        for item in items:
            key = item["_key"]
            siblings = [(k, amount) for k, amount in allocations.items()]
            availability = adapter.compute_availability(
                fund, siblings, exclude_id=key, candidate_amount=item.get("allocated_budget") or 0
            )
            report = detect_violations(
                availability,
                item.get("allocated_budget"),
                item.get("budget_utilized"),
                item.get("obligated_budget"),
            )
            violations.extend(report.violations)
        return ViolationReport(violations=violations, availability=availability)

    async def _get_live(self, adapter, breakdown_id: int):
        breakdown = await adapter.breakdown_repository(self.db).get_by_id(breakdown_id)
        if breakdown is None or breakdown.is_deleted:
            raise NotFoundError(f"{adapter.label} breakdown", breakdown_id)
        return breakdown

    # Reads

    async def get_breakdown(self, adapter, breakdown_id: int):
        breakdown = await adapter.breakdown_repository(self.db).get_by_id(breakdown_id)
        if breakdown is None:
            raise NotFoundError(f"{adapter.label} breakdown", breakdown_id)
        return breakdown

    async def list_breakdowns(
        self,
        adapter,
        parent_id: int,
        status: Optional[str] = None,
        municipality: Optional[str] = None,
        implementing_office: Optional[str] = None,
    ) -> list:
        return await adapter.list_active_children(
            self.db, parent_id, status=status, municipality=municipality, implementing_office=implementing_office
        )

    async def list_trash(self, adapter, parent_id: Optional[int] = None) -> list:
        return await adapter.breakdown_repository(self.db).list_trash(parent_id)

    async def _sibling_allocations(self, adapter, parent_id: int) -> list[tuple[int, float]]:
        fund_type = adapter.fund_type.value
        siblings = await self.cache.get_siblings(fund_type, parent_id)
        if siblings is None:
            siblings = await adapter.breakdown_repository(self.db).sibling_allocations(parent_id)
            await self.cache.set_siblings(fund_type, parent_id, siblings)
        return siblings

    async def compute_availability(
        self,
        adapter,
        parent_id: int,
        exclude_id: Optional[int] = None,
        candidate_amount: float = 0.0,
    ) -> BudgetAvailability:
        """Read-only availability. A missing parent reports ``is_loading``."""
        fund = await adapter.get_parent(self.db, parent_id, include_deleted=True)
        if fund is None:
            return BudgetAvailability(is_loading=True)
        siblings = await self._sibling_allocations(adapter, parent_id)
        return adapter.compute_availability(fund, siblings, exclude_id, candidate_amount)

    async def check_violations(
        self,
        adapter,
        parent_id: int,
        allocated: float = 0.0,
        utilized: float = 0.0,
        obligated: float = 0.0,
        exclude_id: Optional[int] = None,
    ) -> ViolationReport:
        availability = await self.compute_availability(adapter, parent_id, exclude_id, allocated)
        return detect_violations(availability, allocated, utilized, obligated)

    async def breakdown_stats(self, adapter, parent_id: int) -> dict[str, Any]:
        fund = await adapter.require_parent(self.db, parent_id, include_deleted=True)
        totals = await adapter.breakdown_repository(self.db).aggregate(parent_id)
        parent_total = adapter.parent_total(fund)
        return {
            "parent_id": parent_id,
            "count": totals["count"],
            "total_allocated": totals["total_allocated"],
            "total_obligated": totals["total_obligated"],
            "total_utilized": totals["total_utilized"],
            "total_balance": totals["total_allocated"] - totals["total_utilized"],
            "utilization_rate": calculate_utilization_rate(totals["total_allocated"], totals["total_utilized"]),
            "by_status": totals["by_status"],
            "parent_total": parent_total,
            "available": parent_total - totals["total_allocated"],
        }

    # Single-record writes

    async def create_breakdown(
        self,
        adapter,
        parent_id: int,
        data: dict[str, Any],
        user: User,
        confirm_violations: bool = False,
        source: ActivitySource | str = ActivitySource.WEB_UI,
    ):
        fund = await adapter.require_parent(self.db, parent_id)
        values = self._clean(data)
        values.setdefault("implementing_office", None)
        values.setdefault("project_name", None)
        await self._validate(values)

        repo = adapter.breakdown_repository(self.db)
        siblings = await repo.sibling_allocations(parent_id)
        availability = adapter.compute_availability(
            fund, siblings, candidate_amount=values.get("allocated_budget") or 0
        )
        report = detect_violations(
            availability,
            values.get("allocated_budget"),
            values.get("budget_utilized"),
            values.get("obligated_budget"),
        )
        flag = self._resolve_violations(report, confirm_violations)
        actor = await capture_actor(self.db, user)

        async with atomic(self.db):
            breakdown = adapter.create_child(
                {**values, "parent_id": parent_id, "created_by_id": user.id, "updated_by_id": user.id}
            )
            apply_financials(breakdown, "allocated_budget", "budget_utilized")
            breakdown = await repo.create(breakdown)
            await self.agencies.adjust_usage_count(breakdown.implementing_office, 1)
            await self.aggregation.recalculate(adapter, fund)
            await self.activity_logger.log(
                adapter,
                ActivityAction.CREATED,
                EntityKind.BREAKDOWN,
                breakdown.id,
                actor,
                new=snapshot(breakdown),
                source=source,
                flag_reason=flag,
                fund_id=parent_id,
            )

        await self.cache.invalidate(adapter.fund_type.value, parent_id)
        logger.info("Created %s breakdown %s under %s", adapter.fund_type.value, breakdown.id, parent_id)
        return breakdown

    async def update_breakdown(
        self,
        adapter,
        breakdown_id: int,
        data: dict[str, Any],
        user: User,
        confirm_violations: bool = False,
        reason: Optional[str] = None,
    ):
        breakdown = await self._get_live(adapter, breakdown_id)
        values = self._clean(data)
        previous_office = breakdown.implementing_office
        await self._validate(values, previous_office=previous_office)

        allocated = values.get("allocated_budget", breakdown.allocated_budget)
        utilized = values.get("budget_utilized", breakdown.budget_utilized)
        obligated = values.get("obligated_budget", breakdown.obligated_budget)

        repo = adapter.breakdown_repository(self.db)
        parent_id = adapter.resolve_parent_id(breakdown)
        fund = await adapter.get_parent(self.db, parent_id, include_deleted=True) if parent_id is not None else None
        if fund is not None:
            siblings = await repo.sibling_allocations(parent_id)
            availability = adapter.compute_availability(
                fund, siblings, exclude_id=breakdown.id, candidate_amount=allocated or 0
            )
        else:
            availability = BudgetAvailability(is_loading=True)
        report = detect_violations(availability, allocated, utilized, obligated)
        flag = self._resolve_violations(report, confirm_violations)
        actor = await capture_actor(self.db, user)
        previous = snapshot(breakdown)

        async with atomic(self.db):
            for key, value in values.items():
                setattr(breakdown, key, value)
            breakdown.updated_by_id = user.id
            apply_financials(breakdown, "allocated_budget", "budget_utilized")
            breakdown = await repo.update(breakdown)
            if breakdown.implementing_office != previous_office:
                await self.agencies.adjust_usage_count(previous_office, -1)
                await self.agencies.adjust_usage_count(breakdown.implementing_office, 1)
            await self.aggregation.recalculate_parent(adapter, parent_id)
            await self.activity_logger.log(
                adapter,
                ActivityAction.UPDATED,
                EntityKind.BREAKDOWN,
                breakdown.id,
                actor,
                previous=previous,
                new=snapshot(breakdown),
                reason=reason,
                flag_reason=flag,
                fund_id=parent_id,
            )

        await self.cache.invalidate(adapter.fund_type.value, parent_id)
        return breakdown

    async def move_to_trash(self, adapter, breakdown_id: int, user: User, reason: Optional[str] = None) -> dict:
        breakdown = await self.get_breakdown(adapter, breakdown_id)
        if breakdown.is_deleted:
            return {"success": True, "message": "Breakdown is already in trash"}

        actor = await capture_actor(self.db, user)
        previous = snapshot(breakdown)
        parent_id = adapter.resolve_parent_id(breakdown)

        async with atomic(self.db):
            breakdown.is_deleted = True
            breakdown.deleted_at = datetime.utcnow()
            breakdown.deleted_by_id = user.id
            breakdown.deletion_reason = reason
            breakdown = await adapter.breakdown_repository(self.db).update(breakdown)
            await self.aggregation.recalculate_parent(adapter, parent_id)
            await self.activity_logger.log(
                adapter,
                ActivityAction.UPDATED,
                EntityKind.BREAKDOWN,
                breakdown.id,
                actor,
                previous=previous,
                new=snapshot(breakdown),
                reason=reason,
                fund_id=parent_id,
            )

        await self.cache.invalidate(adapter.fund_type.value, parent_id)
        logger.info("Moved %s breakdown %s to trash", adapter.fund_type.value, breakdown_id)
        return {"success": True}

    async def restore_from_trash(self, adapter, breakdown_id: int, user: User) -> dict:
        breakdown = await self.get_breakdown(adapter, breakdown_id)
        if not breakdown.is_deleted:
            return {"success": True, "message": "Breakdown is not in trash"}

        actor = await capture_actor(self.db, user)
        previous = snapshot(breakdown)
        parent_id = adapter.resolve_parent_id(breakdown)

        async with atomic(self.db):
            breakdown.is_deleted = False
            breakdown.deleted_at = None
            breakdown.deleted_by_id = None
            breakdown.deletion_reason = None
            breakdown.updated_by_id = user.id
            breakdown = await adapter.breakdown_repository(self.db).update(breakdown)
            await self.aggregation.recalculate_parent(adapter, parent_id)
            await self.activity_logger.log(
                adapter,
                ActivityAction.RESTORED,
                EntityKind.BREAKDOWN,
                breakdown.id,
                actor,
                previous=previous,
                new=snapshot(breakdown),
                fund_id=parent_id,
            )

        await self.cache.invalidate(adapter.fund_type.value, parent_id)
        logger.info("Restored %s breakdown %s", adapter.fund_type.value, breakdown_id)
        return {"success": True}

    async def remove(self, adapter, breakdown_id: int, user: User, reason: Optional[str] = None) -> dict:
        """Permanently delete a breakdown. Only its creator or a super admin may do this."""
        breakdown = await self.get_breakdown(adapter, breakdown_id)
        if not can_hard_delete(user, breakdown):
            raise AuthorizationError("Only the creator or a super admin can permanently delete this breakdown")

        actor = await capture_actor(self.db, user)
        previous = snapshot(breakdown)
        parent_id = adapter.resolve_parent_id(breakdown)
        was_active = not breakdown.is_deleted

        async with atomic(self.db):
            await self.activity_logger.log(
                adapter,
                ActivityAction.DELETED,
                EntityKind.BREAKDOWN,
                breakdown.id,
                actor,
                previous=previous,
                reason=reason,
                fund_id=parent_id,
            )
            await adapter.breakdown_repository(self.db).delete(breakdown)
            await self.agencies.adjust_usage_count(previous["implementing_office"], -1)
            if was_active:
                await self.aggregation.recalculate_parent(adapter, parent_id)

        await self.cache.invalidate(adapter.fund_type.value, parent_id)
        logger.info("Permanently deleted %s breakdown %s", adapter.fund_type.value, breakdown_id)
        return {"success": True}

    # Bulk writes

    async def bulk_create_breakdowns(
        self,
        adapter,
        parent_id: int,
        items: list[dict[str, Any]],
        user: User,
        confirm_violations: bool = False,
        source: ActivitySource | str = ActivitySource.BULK_IMPORT,
    ) -> list:
        if not items:
            raise ValidationError({"items": "At least one breakdown is required"})
        fund = await adapter.require_parent(self.db, parent_id)

        cleaned = []
        for index, item in enumerate(items):
            values = self._clean(item)
            values.setdefault("implementing_office", None)
            values.setdefault("project_name", None)
            try:
                await self._validate(values)
            except ValidationError as e:
                raise ValidationError({f"items[{index}].{k}": v for k, v in e.errors.items()}) from e
            cleaned.append(values)

        repo = adapter.breakdown_repository(self.db)
        allocations: dict[Any, float] = dict(await repo.sibling_allocations(parent_id))
        for index, values in enumerate(cleaned):
            allocations[f"new-{index}"] = float(values.get("allocated_budget") or 0)
        report = self._batch_report(
            adapter, fund, allocations, [{**v, "_key": f"new-{i}"} for i, v in enumerate(cleaned)]
        )
        flag = self._resolve_violations(report, confirm_violations)
        actor = await capture_actor(self.db, user)
        batch_id = uuid.uuid4().hex

        async with atomic(self.db):
            rows = []
            for values in cleaned:
                row = adapter.create_child(
                    {
                        **values,
                        "parent_id": parent_id,
                        "batch_id": batch_id,
                        "created_by_id": user.id,
                        "updated_by_id": user.id,
                    }
                )
                apply_financials(row, "allocated_budget", "budget_utilized")
                rows.append(row)
            rows = await repo.create_many(rows)
            for row in rows:
                await self.agencies.adjust_usage_count(row.implementing_office, 1)
            await self.aggregation.recalculate(adapter, fund)
            await self.activity_logger.log_bulk(
                adapter,
                ActivityAction.BULK_CREATED,
                actor,
                batch_id,
                [snapshot(row) for row in rows],
                fund_id=parent_id,
                source=source,
                flag_reason=flag,
            )

        await self.cache.invalidate(adapter.fund_type.value, parent_id)
        logger.info("Bulk created %s %s breakdowns in batch %s", len(rows), adapter.fund_type.value, batch_id)
        return rows

    async def bulk_update_breakdowns(
        self,
        adapter,
        updates: list[dict[str, Any]],
        user: User,
        confirm_violations: bool = False,
        reason: Optional[str] = None,
    ) -> list:
        """Apply partial updates keyed by ``id``; all succeed or none do"""
        if not updates:
            raise ValidationError({"items": "At least one update is required"})

        repo = adapter.breakdown_repository(self.db)
        pending = []
        for index, update in enumerate(updates):
            breakdown = await self._get_live(adapter, update.get("id"))
            values = self._clean(update)
            try:
                await self._validate(values, previous_office=breakdown.implementing_office)
            except ValidationError as e:
                raise ValidationError({f"items[{index}].{k}": v for k, v in e.errors.items()}) from e
            pending.append((breakdown, values))

        # Check each affected fund against its state after the whole batch
        violations = []
        by_parent: dict[Optional[int], list] = {}
        for breakdown, values in pending:
            by_parent.setdefault(adapter.resolve_parent_id(breakdown), []).append((breakdown, values))
        for parent_id, group in by_parent.items():
            fund = await adapter.get_parent(self.db, parent_id, include_deleted=True) if parent_id is not None else None
            items = [
                {
                    "_key": breakdown.id,
                    "allocated_budget": values.get("allocated_budget", breakdown.allocated_budget),
                    "budget_utilized": values.get("budget_utilized", breakdown.budget_utilized),
                    "obligated_budget": values.get("obligated_budget", breakdown.obligated_budget),
                }
                for breakdown, values in group
            ]
            if fund is None:
                for item in items:
                    violations.extend(
                        detect_violations(
                            BudgetAvailability(is_loading=True),
                            item["allocated_budget"],
                            item["budget_utilized"],
                            item["obligated_budget"],
                        ).violations
                    )
                continue
            allocations: dict[Any, float] = dict(await repo.sibling_allocations(parent_id))
            for item in items:
                allocations[item["_key"]] = float(item["allocated_budget"] or 0)
            violations.extend(self._batch_report(adapter, fund, allocations, items).violations)
        flag = self._resolve_violations(ViolationReport(violations=violations), confirm_violations)

        actor = await capture_actor(self.db, user)
        batch_id = uuid.uuid4().hex
        async with atomic(self.db):
            rows = []
            for breakdown, values in pending:
                previous_office = breakdown.implementing_office
                for key, value in values.items():
                    setattr(breakdown, key, value)
                breakdown.updated_by_id = user.id
                apply_financials(breakdown, "allocated_budget", "budget_utilized")
                rows.append(await repo.update(breakdown))
                if breakdown.implementing_office != previous_office:
                    await self.agencies.adjust_usage_count(previous_office, -1)
                    await self.agencies.adjust_usage_count(breakdown.implementing_office, 1)
            for parent_id in by_parent:
                await self.aggregation.recalculate_parent(adapter, parent_id)
            await self.activity_logger.log_bulk(
                adapter,
                ActivityAction.BULK_UPDATED,
                actor,
                batch_id,
                [snapshot(row) for row in rows],
                fund_id=next(iter(by_parent)) if len(by_parent) == 1 else None,
                reason=reason,
                flag_reason=flag,
            )

        await self.cache.invalidate(adapter.fund_type.value, *by_parent.keys())
        return rows

    async def bulk_move_to_trash(
        self,
        adapter,
        breakdown_ids: list[int],
        user: User,
        reason: Optional[str] = None,
    ) -> dict:
        if user.role not in (UserRole.ADMIN.value, UserRole.SUPER_ADMIN.value):
            raise AuthorizationError("Only administrators can move breakdowns to trash in bulk")
        if not breakdown_ids:
            raise ValidationError({"ids": "At least one breakdown id is required"})

        repo = adapter.breakdown_repository(self.db)
        rows = await repo.get_many(breakdown_ids)
        found = {row.id for row in rows}
        missing = [i for i in breakdown_ids if i not in found]
        if missing:
            raise NotFoundError(f"{adapter.label} breakdown", missing[0])
        rows = [row for row in rows if not row.is_deleted]
        if not rows:
            return {"success": True, "count": 0}

        actor = await capture_actor(self.db, user)
        batch_id = uuid.uuid4().hex
        parent_ids = {adapter.resolve_parent_id(row) for row in rows}
        async with atomic(self.db):
            for row in rows:
                row.is_deleted = True
                row.deleted_at = datetime.utcnow()
                row.deleted_by_id = user.id
                row.deletion_reason = reason
                await repo.update(row)
            for parent_id in parent_ids:
                await self.aggregation.recalculate_parent(adapter, parent_id)
            await self.activity_logger.log_bulk(
                adapter,
                ActivityAction.BULK_DELETED,
                actor,
                batch_id,
                [snapshot(row) for row in rows],
                fund_id=next(iter(parent_ids)) if len(parent_ids) == 1 else None,
                reason=reason,
                source=ActivitySource.WEB_UI,
            )

        await self.cache.invalidate(adapter.fund_type.value, *parent_ids)
        logger.info("Moved %s %s breakdowns to trash in batch %s", len(rows), adapter.fund_type.value, batch_id)
        return {"success": True, "count": len(rows), "batch_id": batch_id}
