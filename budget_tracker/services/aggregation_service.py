import logging
from typing import Any, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from budget_tracker.core.exceptions import ValidationError
from budget_tracker.db.session import atomic
from budget_tracker.models.activity_log import ActivityAction, ActivitySource, EntityKind
from budget_tracker.models.fund_type import BreakdownStatus
from budget_tracker.models.user import User
from budget_tracker.services.activity_service import (
    ActivityLogger,
    capture_actor,
    calculate_changed_fields,
    fund_tracked_fields,
    snapshot,
)
from budget_tracker.services.financials import apply_financials

logger = logging.getLogger(__name__)


def rollup_status(by_status: dict[str, int], child_count: int) -> str:
    """Derive a fund status from its active breakdowns"""
    if not child_count:
        return BreakdownStatus.ONGOING.value
    if by_status.get(BreakdownStatus.ONGOING.value):
        return BreakdownStatus.ONGOING.value
    if by_status.get(BreakdownStatus.DELAYED.value):
        return BreakdownStatus.DELAYED.value
    if by_status.get(BreakdownStatus.COMPLETED.value):
        return BreakdownStatus.COMPLETED.value
    return BreakdownStatus.ONGOING.value


class AggregationService:
    """Keeps fund totals in line with their breakdowns"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.activity_logger = ActivityLogger(db)

    def _mode(self, enabled: bool) -> str:
        return "auto" if enabled else "manual"

    async def recalculate(self, adapter, fund) -> dict[str, Any]:
        """
        Recompute a loaded fund inside the caller's transaction.

        In auto mode utilized and obligated are re-summed from active breakdowns and
        the status counts refreshed; in manual mode only balance and utilization rate
        follow the hand-entered utilized value.
        """
        totals = await adapter.breakdown_repository(self.db).aggregate(fund.id)
        if adapter.is_auto_calculated(fund):
            by_status = totals["by_status"]
            setattr(fund, adapter.utilized_field, totals["total_utilized"])
            setattr(fund, adapter.obligated_field, totals["total_obligated"])
            fund.projects_completed = by_status.get(BreakdownStatus.COMPLETED.value, 0)
            fund.projects_delayed = by_status.get(BreakdownStatus.DELAYED.value, 0)
            fund.projects_ongoing = by_status.get(BreakdownStatus.ONGOING.value, 0)
            if adapter.rolls_up_status:
                fund.status = rollup_status(by_status, totals["count"])
        apply_financials(fund, adapter.allocated_field, adapter.utilized_field)
        await self.db.flush()
        return totals

    async def recalculate_parent(self, adapter, parent_id: Optional[int]):
        """Recompute the fund a breakdown belongs to. Orphans have nothing to update."""
        if parent_id is None:
            return None
        fund = await adapter.get_parent(self.db, parent_id, include_deleted=True)
        if fund is None:
            return None
        await self.recalculate(adapter, fund)
        return fund

    async def recalculate_fund_metrics(self, adapter, fund_id: int):
        """Administrative re-sync of a single fund"""
        fund = await adapter.require_parent(self.db, fund_id, include_deleted=True)
        previous = snapshot(fund)
        async with atomic(self.db):
            await self.recalculate(adapter, fund)
            await self.db.refresh(fund)
            new = snapshot(fund)
            if calculate_changed_fields(previous, new, fund_tracked_fields(adapter)):
                await self.activity_logger.log(
                    adapter,
                    ActivityAction.UPDATED,
                    EntityKind.FUND,
                    fund.id,
                    await capture_actor(self.db, None),
                    previous=previous,
                    new=new,
                    reason="Recalculated from breakdowns",
                    source=ActivitySource.SYSTEM,
                    fund_id=fund.id,
                )
        return fund

    async def recalculate_all(self, adapter) -> int:
        """Re-sync every active fund of one type. Returns how many were processed."""
        fund_ids = await adapter.fund_repository(self.db).list_ids()
        for fund_id in fund_ids:
            await self.recalculate_fund_metrics(adapter, fund_id)
        logger.info("Recalculated %s %s funds", len(fund_ids), adapter.fund_type.value)
        return len(fund_ids)

    async def toggle_auto_calculate(
        self,
        adapter,
        fund_id: int,
        user: User,
        reason: Optional[str] = None,
    ) -> dict[str, Any]:
        """Flip between auto and manual utilized. Switching to auto re-sums immediately."""
        if not adapter.supports_auto_calculate:
            raise ValidationError(
                {"auto_calculate_budget_utilized": f"{adapter.label} does not support auto-calculation"}
            )
        fund = await adapter.require_parent(self.db, fund_id)
        actor = await capture_actor(self.db, user)
        previous = snapshot(fund)
        old_mode = bool(fund.auto_calculate_budget_utilized)

        async with atomic(self.db):
            fund.auto_calculate_budget_utilized = not old_mode
            fund.updated_by_id = user.id
            await self.recalculate(adapter, fund)
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
                extra_summary={
                    "mode_changed": True,
                    "old_mode": self._mode(old_mode),
                    "new_mode": self._mode(not old_mode),
                    "utilized": adapter.utilized(fund),
                    "obligated": adapter.obligated(fund),
                },
                fund_id=fund.id,
            )

        logger.info(
            "%s %s switched to %s utilized by %s",
            adapter.label, fund.id, self._mode(fund.auto_calculate_budget_utilized), user.email,
        )
        return {"success": True, "auto_calculate": fund.auto_calculate_budget_utilized}
