import logging
from datetime import datetime
from typing import Any, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from budget_tracker.core.exceptions import AuthorizationError, ValidationError
from budget_tracker.db.session import atomic
from budget_tracker.models.activity_log import ActivityAction, EntityKind
from budget_tracker.models.user import User
from budget_tracker.services.activity_service import ActivityLogger, capture_actor, snapshot
from budget_tracker.services.aggregation_service import AggregationService
from budget_tracker.services.availability_cache import AvailabilityCache, get_availability_cache
from budget_tracker.services.breakdown_service import can_hard_delete, validate_office

logger = logging.getLogger(__name__)


class FundService:
    """Fund lifecycle for every fund type, driven by its adapter"""

    def __init__(self, db: AsyncSession, cache: AvailabilityCache | None = None):
        self.db = db
        self.cache = cache or get_availability_cache()
        self.aggregation = AggregationService(db)
        self.activity_logger = ActivityLogger(db)

    def _validate_values(self, adapter, columns: dict[str, Any]) -> None:
        errors = {}
        for field, label in (
            (adapter.allocated_field, "allocated"),
            (adapter.utilized_field, "utilized"),
            (adapter.obligated_field, "obligated"),
        ):
            value = columns.get(field)
            if value is not None and value < 0:
                errors[label] = "Amount cannot be negative"
        status = columns.get("status")
        if status is not None and status not in adapter.statuses:
            errors["status"] = f"Status must be one of: {', '.join(adapter.statuses)}"
        if adapter.title_field in columns and not columns[adapter.title_field]:
            errors["title"] = "Title is required"
        if errors:
            raise ValidationError(errors)

    async def _get_live(self, adapter, fund_id: int):
        return await adapter.require_parent(self.db, fund_id)

    # Reads

    async def get_fund(self, adapter, fund_id: int, include_deleted: bool = False):
        return await adapter.require_parent(self.db, fund_id, include_deleted=include_deleted)

    async def list_funds(self, adapter, year: Optional[int] = None) -> list:
        return await adapter.fund_repository(self.db).list(year=year)

    async def list_trash(self, adapter) -> list:
        return await adapter.fund_repository(self.db).list_trash()

    async def fund_statistics(self, adapter) -> dict[str, Any]:
        """Totals and average utilization over active funds"""
        totals = await adapter.fund_repository(self.db).totals(
            adapter.allocated_field, adapter.utilized_field, adapter.obligated_field
        )
        totals["fund_type"] = adapter.fund_type.value
        totals["total_balance"] = totals["total_allocated"] - totals["total_utilized"]
        return totals

    # Writes

    async def create_fund(self, adapter, data: dict[str, Any], user: User):
        columns = adapter.fund_columns(data)
        columns.setdefault(adapter.title_field, None)
        self._validate_values(adapter, columns)
        await validate_office(self.db, columns.get(adapter.office_field), field="office")

        auto = adapter.supports_auto_calculate and data.get("auto_calculate_budget_utilized", True)
        if auto:
            # Rolled up from breakdowns; a new fund has none yet
            columns.pop(adapter.utilized_field, None)
            columns.pop(adapter.obligated_field, None)
        if adapter.supports_auto_calculate:
            columns["auto_calculate_budget_utilized"] = bool(auto)
        columns = {k: v for k, v in columns.items() if v is not None}
        actor = await capture_actor(self.db, user)

        async with atomic(self.db):
            fund = adapter.fund_model(**columns, created_by_id=user.id, updated_by_id=user.id)
            fund = await adapter.fund_repository(self.db).create(fund)
            await self.aggregation.recalculate(adapter, fund)
            await self.db.refresh(fund)
            await self.activity_logger.log(
                adapter,
                ActivityAction.CREATED,
                EntityKind.FUND,
                fund.id,
                actor,
                new=snapshot(fund),
                fund_id=fund.id,
            )

        logger.info("Created %s %s", adapter.fund_type.value, fund.id)
        return fund

    async def update_fund(self, adapter, fund_id: int, data: dict[str, Any], user: User, reason: Optional[str] = None):
        fund = await self._get_live(adapter, fund_id)
        columns = adapter.fund_columns(data)
        if adapter.is_auto_calculated(fund):
            # Client values are ignored while the fund sums its breakdowns
            columns.pop(adapter.utilized_field, None)
            columns.pop(adapter.obligated_field, None)
        columns = {k: v for k, v in columns.items() if not (v is None and k != "remarks")}
        self._validate_values(adapter, columns)
        previous_office = adapter.office(fund)
        if adapter.office_field in columns and columns[adapter.office_field] != previous_office:
            await validate_office(self.db, columns[adapter.office_field], field="office")

        actor = await capture_actor(self.db, user)
        previous = snapshot(fund)
        async with atomic(self.db):
            for key, value in columns.items():
                setattr(fund, key, value)
            fund.updated_by_id = user.id
            await self.aggregation.recalculate(adapter, fund)
            fund = await adapter.fund_repository(self.db).update(fund)
            await self.activity_logger.log(
                adapter,
                ActivityAction.UPDATED,
                EntityKind.FUND,
                fund.id,
                actor,
                previous=previous,
                new=snapshot(fund),
                reason=reason,
                fund_id=fund.id,
            )

        # Parent total feeds breakdown availability
        await self.cache.invalidate(adapter.fund_type.value, fund.id)
        return fund

    async def toggle_pin(self, adapter, fund_id: int, user: User):
        fund = await self._get_live(adapter, fund_id)
        actor = await capture_actor(self.db, user)
        previous = snapshot(fund)
        async with atomic(self.db):
            fund.is_pinned = not fund.is_pinned
            fund.pinned_at = datetime.utcnow() if fund.is_pinned else None
            fund.pinned_by_id = user.id if fund.is_pinned else None
            fund = await adapter.fund_repository(self.db).update(fund)
            await self.activity_logger.log(
                adapter,
                ActivityAction.UPDATED,
                EntityKind.FUND,
                fund.id,
                actor,
                previous=previous,
                new=snapshot(fund),
                fund_id=fund.id,
            )
        return fund

    async def move_to_trash(self, adapter, fund_id: int, user: User, reason: Optional[str] = None) -> dict:
        """Soft delete a fund. Its breakdowns stay where they are."""
        fund = await self.get_fund(adapter, fund_id, include_deleted=True)
        if fund.is_deleted:
            return {"success": True, "message": f"{adapter.label} is already in trash"}

        actor = await capture_actor(self.db, user)
        previous = snapshot(fund)
        async with atomic(self.db):
            fund.is_deleted = True
            fund.deleted_at = datetime.utcnow()
            fund.deleted_by_id = user.id
            fund.deletion_reason = reason
            fund = await adapter.fund_repository(self.db).update(fund)
            await self.activity_logger.log(
                adapter,
                ActivityAction.UPDATED,
                EntityKind.FUND,
                fund.id,
                actor,
                previous=previous,
                new=snapshot(fund),
                reason=reason,
                fund_id=fund.id,
            )

        await self.cache.invalidate(adapter.fund_type.value, fund_id)
        logger.info("Moved %s %s to trash", adapter.fund_type.value, fund_id)
        return {"success": True}

    async def restore_from_trash(self, adapter, fund_id: int, user: User) -> dict:
        fund = await self.get_fund(adapter, fund_id, include_deleted=True)
        if not fund.is_deleted:
            return {"success": True, "message": f"{adapter.label} is not in trash"}

        actor = await capture_actor(self.db, user)
        previous = snapshot(fund)
        async with atomic(self.db):
            fund.is_deleted = False
            fund.deleted_at = None
            fund.deleted_by_id = None
            fund.deletion_reason = None
            fund.updated_by_id = user.id
            await self.aggregation.recalculate(adapter, fund)
            fund = await adapter.fund_repository(self.db).update(fund)
            await self.activity_logger.log(
                adapter,
                ActivityAction.RESTORED,
                EntityKind.FUND,
                fund.id,
                actor,
                previous=previous,
                new=snapshot(fund),
                fund_id=fund.id,
            )

        await self.cache.invalidate(adapter.fund_type.value, fund_id)
        logger.info("Restored %s %s", adapter.fund_type.value, fund_id)
        return {"success": True}

    async def remove(self, adapter, fund_id: int, user: User, reason: Optional[str] = None) -> dict:
        """Permanently delete a fund. Its breakdowns are kept as orphans."""
        fund = await self.get_fund(adapter, fund_id, include_deleted=True)
        if not can_hard_delete(user, fund):
            raise AuthorizationError(f"Only the creator or a super admin can permanently delete this {adapter.label}")

        actor = await capture_actor(self.db, user)
        previous = snapshot(fund)
        async with atomic(self.db):
            await self.activity_logger.log(
                adapter,
                ActivityAction.DELETED,
                EntityKind.FUND,
                fund.id,
                actor,
                previous=previous,
                reason=reason,
                fund_id=fund.id,
            )
            orphaned = await adapter.breakdown_repository(self.db).orphan_children(fund.id)
            await adapter.fund_repository(self.db).delete(fund)

        await self.cache.invalidate(adapter.fund_type.value, fund_id)
        logger.info(
            "Permanently deleted %s %s, orphaned %s breakdowns", adapter.fund_type.value, fund_id, orphaned
        )
        return {"success": True}
