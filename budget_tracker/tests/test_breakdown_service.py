"""
Integration tests for breakdown lifecycle, aggregation and violation handling
"""
import json
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from budget_tracker.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    ValidationError,
    ViolationWarning,
)
from budget_tracker.services.activity_service import ActivityLogger
from budget_tracker.services.aggregation_service import AggregationService
from budget_tracker.services.breakdown_service import BreakdownService
from budget_tracker.services.fund_service import FundService


def breakdown_payload(name="Barangay Road", office="PEO", allocated=10000, utilized=0, obligated=0, **extra):
    return {
        "project_name": name,
        "implementing_office": office,
        "allocated_budget": allocated,
        "budget_utilized": utilized,
        "obligated_budget": obligated,
        **extra,
    }


@pytest.mark.integration
@pytest.mark.asyncio
class TestBreakdownCreate:
    async def test_derived_fields_computed(self, test_db: AsyncSession, project, project_adapter, admin_user, disabled_cache):
        """Balance and utilization rate come from allocated and utilized"""
        service = BreakdownService(test_db, cache=disabled_cache)
        breakdown = await service.create_breakdown(
            project_adapter, project.id, breakdown_payload(allocated=1000, utilized=500), admin_user
        )
        assert breakdown.balance == 500
        assert breakdown.utilization_rate == 50
        assert breakdown.project_id == project.id
        assert breakdown.created_by_id == admin_user.id

    async def test_client_balance_is_ignored(self, test_db: AsyncSession, project, project_adapter, admin_user, disabled_cache):
        service = BreakdownService(test_db, cache=disabled_cache)
        breakdown = await service.create_breakdown(
            project_adapter,
            project.id,
            breakdown_payload(allocated=1000, utilized=200, balance=123456, utilization_rate=99),
            admin_user,
        )
        assert breakdown.balance == 800
        assert breakdown.utilization_rate == 20

    async def test_unknown_office_rejected(self, test_db: AsyncSession, project, project_adapter, admin_user, disabled_cache):
        service = BreakdownService(test_db, cache=disabled_cache)
        with pytest.raises(ValidationError) as exc_info:
            await service.create_breakdown(project_adapter, project.id, breakdown_payload(office="NOPE"), admin_user)
        assert exc_info.value.errors["implementing_office"] == 'Implementing office "NOPE" does not exist'

    async def test_inactive_office_rejected(self, test_db: AsyncSession, project, project_adapter, admin_user, disabled_cache):
        service = BreakdownService(test_db, cache=disabled_cache)
        with pytest.raises(ValidationError) as exc_info:
            await service.create_breakdown(project_adapter, project.id, breakdown_payload(office="OLD"), admin_user)
        assert exc_info.value.errors["implementing_office"] == 'Implementing office "OLD" is inactive'

    async def test_negative_amount_rejected(self, test_db: AsyncSession, project, project_adapter, admin_user, disabled_cache):
        service = BreakdownService(test_db, cache=disabled_cache)
        with pytest.raises(ValidationError) as exc_info:
            await service.create_breakdown(project_adapter, project.id, breakdown_payload(allocated=-5), admin_user)
        assert "allocated_budget" in exc_info.value.errors

    async def test_invalid_status_rejected(self, test_db: AsyncSession, project, project_adapter, admin_user, disabled_cache):
        service = BreakdownService(test_db, cache=disabled_cache)
        with pytest.raises(ValidationError):
            await service.create_breakdown(
                project_adapter, project.id, breakdown_payload(status="cancelled"), admin_user
            )

    async def test_missing_parent(self, test_db: AsyncSession, project_adapter, admin_user, agencies, disabled_cache):
        service = BreakdownService(test_db, cache=disabled_cache)
        with pytest.raises(NotFoundError):
            await service.create_breakdown(project_adapter, 9999, breakdown_payload(), admin_user)

    async def test_usage_count_follows_office(self, test_db: AsyncSession, project, project_adapter, admin_user, agencies, disabled_cache):
        service = BreakdownService(test_db, cache=disabled_cache)
        breakdown = await service.create_breakdown(project_adapter, project.id, breakdown_payload(), admin_user)
        await test_db.refresh(agencies["PEO"])
        assert agencies["PEO"].usage_count == 1

        await service.update_breakdown(project_adapter, breakdown.id, {"implementing_office": "PHO"}, admin_user)
        await test_db.refresh(agencies["PEO"])
        await test_db.refresh(agencies["PHO"])
        assert agencies["PEO"].usage_count == 0
        assert agencies["PHO"].usage_count == 1

        await service.remove(project_adapter, breakdown.id, admin_user)
        await test_db.refresh(agencies["PHO"])
        assert agencies["PHO"].usage_count == 0


@pytest.mark.integration
@pytest.mark.asyncio
class TestViolations:
    async def test_exceeding_allocation_warns(self, test_db: AsyncSession, project, project_adapter, admin_user, disabled_cache):
        service = BreakdownService(test_db, cache=disabled_cache)
        with pytest.raises(ViolationWarning) as exc_info:
            await service.create_breakdown(
                project_adapter, project.id, breakdown_payload(allocated=150000), admin_user
            )
        report = exc_info.value.report
        assert report.codes == ["allocation_exceeds_available"]
        assert report.violations[0].difference == 50000
        assert await service.list_breakdowns(project_adapter, project.id) == []

    async def test_override_commits_and_flags(self, test_db: AsyncSession, project, project_adapter, admin_user, disabled_cache):
        service = BreakdownService(test_db, cache=disabled_cache)
        breakdown = await service.create_breakdown(
            project_adapter,
            project.id,
            breakdown_payload(allocated=150000),
            admin_user,
            confirm_violations=True,
        )
        assert breakdown.allocated_budget == 150000

        entries = await ActivityLogger(test_db).list_activities(
            project_adapter, entity_kind="breakdown", entity_id=breakdown.id
        )
        assert len(entries) == 1
        assert entries[0].is_flagged is True
        assert entries[0].flag_reason.startswith("Budget violation override: allocation_exceeds_available")
        assert json.loads(entries[0].new_values)["allocated_budget"] == 150000

    async def test_update_excludes_itself_from_siblings(self, test_db: AsyncSession, project, project_adapter, admin_user, disabled_cache):
        """Parent 100k, siblings 30k/40k/20k, raising the third to 50k exceeds by 20k"""
        service = BreakdownService(test_db, cache=disabled_cache)
        await service.create_breakdown(project_adapter, project.id, breakdown_payload("A", allocated=30000), admin_user)
        await service.create_breakdown(project_adapter, project.id, breakdown_payload("B", allocated=40000), admin_user)
        third = await service.create_breakdown(project_adapter, project.id, breakdown_payload("C", allocated=20000), admin_user)

        availability = await service.compute_availability(project_adapter, project.id, exclude_id=third.id, candidate_amount=50000)
        assert availability.already_allocated == 70000
        assert availability.available == 30000
        assert availability.is_exceeded is True
        assert availability.difference == 20000

        with pytest.raises(ViolationWarning):
            await service.update_breakdown(project_adapter, third.id, {"allocated_budget": 50000}, admin_user)

        # Staying within the remaining 30k is fine
        updated = await service.update_breakdown(project_adapter, third.id, {"allocated_budget": 30000}, admin_user)
        assert updated.allocated_budget == 30000

    async def test_check_violations_read_only(self, test_db: AsyncSession, project, project_adapter, admin_user, disabled_cache):
        service = BreakdownService(test_db, cache=disabled_cache)
        report = await service.check_violations(
            project_adapter, project.id, allocated=1000, utilized=2000, obligated=0
        )
        assert report.codes == ["utilized_exceeds_allocated"]

    async def test_availability_of_unknown_fund_is_loading(self, test_db: AsyncSession, project_adapter, disabled_cache):
        availability = await BreakdownService(test_db, cache=disabled_cache).compute_availability(project_adapter, 424242)
        assert availability.is_loading is True

    @pytest.mark.edge_case
    async def test_trashed_fund_still_bounds_its_breakdowns(
        self, test_db: AsyncSession, project, project_adapter, admin_user, disabled_cache
    ):
        """Parent 100k with 60k + 40k children; after trashing the fund, raising 60k to 90k still warns"""
        service = BreakdownService(test_db, cache=disabled_cache)
        first = await service.create_breakdown(project_adapter, project.id, breakdown_payload("A", allocated=60000), admin_user)
        await service.create_breakdown(project_adapter, project.id, breakdown_payload("B", allocated=40000), admin_user)
        await FundService(test_db, cache=disabled_cache).move_to_trash(project_adapter, project.id, admin_user)

        availability = await service.compute_availability(project_adapter, project.id, exclude_id=first.id, candidate_amount=90000)
        assert availability.is_loading is False
        assert availability.available == 60000
        assert availability.is_exceeded is True

        with pytest.raises(ViolationWarning) as exc_info:
            await service.update_breakdown(project_adapter, first.id, {"allocated_budget": 90000}, admin_user)
        assert exc_info.value.report.codes == ["allocation_exceeds_available"]

        with pytest.raises(ViolationWarning):
            await service.bulk_update_breakdowns(project_adapter, [{"id": first.id, "allocated_budget": 90000}], admin_user)
        assert first.allocated_budget == 60000


@pytest.mark.integration
@pytest.mark.asyncio
class TestAggregation:
    async def test_trashed_children_excluded_from_utilized(self, test_db: AsyncSession, project, project_adapter, admin_user, disabled_cache):
        """Active 10,000 + 15,000 and a trashed 99,999 roll up to 25,000"""
        service = BreakdownService(test_db, cache=disabled_cache)
        await service.create_breakdown(
            project_adapter, project.id, breakdown_payload("A", allocated=10000, utilized=10000), admin_user
        )
        await service.create_breakdown(
            project_adapter, project.id, breakdown_payload("B", allocated=15000, utilized=15000), admin_user
        )
        trashed = await service.create_breakdown(
            project_adapter,
            project.id,
            breakdown_payload("C", allocated=99999, utilized=99999),
            admin_user,
            confirm_violations=True,
        )
        await service.move_to_trash(project_adapter, trashed.id, admin_user, reason="Duplicate entry")

        assert project.total_budget_utilized == 25000
        assert project.balance == 75000
        assert project.utilization_rate == 25

    async def test_obligated_and_status_roll_up(self, test_db: AsyncSession, project, project_adapter, admin_user, disabled_cache):
        service = BreakdownService(test_db, cache=disabled_cache)
        await service.create_breakdown(
            project_adapter, project.id, breakdown_payload("A", obligated=4000, status="completed"), admin_user
        )
        await service.create_breakdown(
            project_adapter, project.id, breakdown_payload("B", obligated=1000, status="delayed"), admin_user
        )
        assert project.obligated_budget == 5000
        assert project.projects_completed == 1
        assert project.projects_delayed == 1
        assert project.status == "delayed"

    async def test_manual_mode_is_never_overwritten(self, test_db: AsyncSession, trust_fund, trust_fund_adapter, admin_user, disabled_cache):
        """Trust funds are always manual: child writes leave utilized alone"""
        service = BreakdownService(test_db, cache=disabled_cache)
        await service.create_breakdown(
            trust_fund_adapter,
            trust_fund.id,
            breakdown_payload(office="PHO", allocated=5000, utilized=5000),
            admin_user,
        )
        assert trust_fund.utilized == 1000
        assert trust_fund.balance == 49000

    async def test_mode_switch_resums_children(self, test_db: AsyncSession, project, project_adapter, admin_user, disabled_cache):
        breakdowns = BreakdownService(test_db, cache=disabled_cache)
        funds = FundService(test_db, cache=disabled_cache)
        aggregation = AggregationService(test_db)

        await breakdowns.create_breakdown(project_adapter, project.id, breakdown_payload("A", utilized=1000), admin_user)
        assert project.total_budget_utilized == 1000

        result = await aggregation.toggle_auto_calculate(project_adapter, project.id, admin_user)
        assert result == {"success": True, "auto_calculate": False}

        await funds.update_fund(project_adapter, project.id, {"utilized": 5000}, admin_user)
        await breakdowns.create_breakdown(project_adapter, project.id, breakdown_payload("B", utilized=2000), admin_user)
        assert project.total_budget_utilized == 5000
        assert project.balance == 95000

        result = await aggregation.toggle_auto_calculate(project_adapter, project.id, admin_user, reason="Back to auto")
        assert result["auto_calculate"] is True
        assert project.total_budget_utilized == 3000
        assert project.balance == 97000


@pytest.mark.integration
@pytest.mark.asyncio
class TestSoftDelete:
    @pytest.mark.edge_case
    async def test_restore_of_active_record_is_noop(self, test_db: AsyncSession, project, project_adapter, admin_user, disabled_cache):
        service = BreakdownService(test_db, cache=disabled_cache)
        breakdown = await service.create_breakdown(project_adapter, project.id, breakdown_payload(utilized=100), admin_user)
        logger = ActivityLogger(test_db)
        before = await logger.count(project_adapter)
        balance_before = project.balance

        result = await service.restore_from_trash(project_adapter, breakdown.id, admin_user)
        assert result["success"] is True
        assert await logger.count(project_adapter) == before
        assert project.balance == balance_before

    async def test_trash_then_restore(self, test_db: AsyncSession, project, project_adapter, admin_user, disabled_cache):
        service = BreakdownService(test_db, cache=disabled_cache)
        breakdown = await service.create_breakdown(project_adapter, project.id, breakdown_payload(utilized=500), admin_user)

        await service.move_to_trash(project_adapter, breakdown.id, admin_user, reason="Wrong fund")
        assert breakdown.is_deleted is True
        assert breakdown.deletion_reason == "Wrong fund"
        assert project.total_budget_utilized == 0
        assert [b.id for b in await service.list_trash(project_adapter, project.id)] == [breakdown.id]

        await service.restore_from_trash(project_adapter, breakdown.id, admin_user)
        assert breakdown.is_deleted is False
        assert breakdown.deleted_at is None
        assert project.total_budget_utilized == 500

        entries = await ActivityLogger(test_db).list_activities(
            project_adapter, entity_kind="breakdown", entity_id=breakdown.id
        )
        assert [e.action for e in entries] == ["restored", "updated", "created"]
        assert "is_deleted" in json.loads(entries[1].changed_fields)

    @pytest.mark.edge_case
    async def test_trash_twice_is_graceful(self, test_db: AsyncSession, project, project_adapter, admin_user, disabled_cache):
        service = BreakdownService(test_db, cache=disabled_cache)
        breakdown = await service.create_breakdown(project_adapter, project.id, breakdown_payload(), admin_user)
        await service.move_to_trash(project_adapter, breakdown.id, admin_user)
        result = await service.move_to_trash(project_adapter, breakdown.id, admin_user)
        assert result["success"] is True

    @pytest.mark.edge_case
    async def test_update_of_trashed_record_not_found(self, test_db: AsyncSession, project, project_adapter, admin_user, disabled_cache):
        service = BreakdownService(test_db, cache=disabled_cache)
        breakdown = await service.create_breakdown(project_adapter, project.id, breakdown_payload(), admin_user)
        await service.move_to_trash(project_adapter, breakdown.id, admin_user)
        with pytest.raises(NotFoundError):
            await service.update_breakdown(project_adapter, breakdown.id, {"remarks": "late edit"}, admin_user)

    async def test_hard_delete_requires_creator_or_super_admin(
        self, test_db: AsyncSession, project, project_adapter, member_user, other_member_user, admin_user,
        super_admin_user, disabled_cache,
    ):
        service = BreakdownService(test_db, cache=disabled_cache)
        mine = await service.create_breakdown(project_adapter, project.id, breakdown_payload("Mine"), member_user)
        theirs = await service.create_breakdown(project_adapter, project.id, breakdown_payload("Theirs"), member_user)

        with pytest.raises(AuthorizationError):
            await service.remove(project_adapter, mine.id, other_member_user)
        with pytest.raises(AuthorizationError):
            await service.remove(project_adapter, mine.id, admin_user)

        assert (await service.remove(project_adapter, mine.id, member_user))["success"] is True
        assert (await service.remove(project_adapter, theirs.id, super_admin_user, reason="Cleanup"))["success"] is True

        entries = await ActivityLogger(test_db).list_activities(project_adapter, action="deleted")
        assert len(entries) == 2
        assert all(e.is_flagged for e in entries)
        assert json.loads(entries[0].previous_values)["project_name"] == "Theirs"
        assert entries[0].new_values is None


@pytest.mark.integration
@pytest.mark.asyncio
class TestBulkOperations:
    async def test_bulk_create_writes_one_entry(self, test_db: AsyncSession, project, project_adapter, admin_user, disabled_cache):
        service = BreakdownService(test_db, cache=disabled_cache)
        rows = await service.bulk_create_breakdowns(
            project_adapter,
            project.id,
            [breakdown_payload(f"Item {i}", allocated=1000, utilized=100) for i in range(3)],
            admin_user,
        )
        assert len(rows) == 3
        assert len({row.batch_id for row in rows}) == 1
        assert project.total_budget_utilized == 300

        logger = ActivityLogger(test_db)
        entries = await logger.list_activities(project_adapter, entity_kind="breakdown")
        assert len(entries) == 1
        assert entries[0].action == "bulk_created"
        assert entries[0].record_count == 3
        assert entries[0].batch_id == rows[0].batch_id

    async def test_bulk_create_checks_batch_as_a_whole(self, test_db: AsyncSession, project, project_adapter, admin_user, disabled_cache):
        """Each item fits alone but together they exceed the parent"""
        service = BreakdownService(test_db, cache=disabled_cache)
        with pytest.raises(ViolationWarning):
            await service.bulk_create_breakdowns(
                project_adapter,
                project.id,
                [breakdown_payload("A", allocated=60000), breakdown_payload("B", allocated=60000)],
                admin_user,
            )
        assert await service.list_breakdowns(project_adapter, project.id) == []

    async def test_bulk_update(self, test_db: AsyncSession, project, project_adapter, admin_user, disabled_cache):
        service = BreakdownService(test_db, cache=disabled_cache)
        a = await service.create_breakdown(project_adapter, project.id, breakdown_payload("A"), admin_user)
        b = await service.create_breakdown(project_adapter, project.id, breakdown_payload("B"), admin_user)

        rows = await service.bulk_update_breakdowns(
            project_adapter,
            [{"id": a.id, "budget_utilized": 2000}, {"id": b.id, "budget_utilized": 3000}],
            admin_user,
        )
        assert [r.budget_utilized for r in rows] == [2000, 3000]
        assert project.total_budget_utilized == 5000

        entries = await ActivityLogger(test_db).list_activities(project_adapter, action="bulk_updated")
        assert len(entries) == 1
        assert entries[0].record_count == 2
        assert entries[0].fund_id == project.id

    async def test_bulk_trash_admin_only(self, test_db: AsyncSession, project, project_adapter, admin_user, member_user, disabled_cache):
        service = BreakdownService(test_db, cache=disabled_cache)
        a = await service.create_breakdown(project_adapter, project.id, breakdown_payload("A", utilized=100), admin_user)
        b = await service.create_breakdown(project_adapter, project.id, breakdown_payload("B", utilized=200), admin_user)

        with pytest.raises(AuthorizationError):
            await service.bulk_move_to_trash(project_adapter, [a.id, b.id], member_user)

        result = await service.bulk_move_to_trash(project_adapter, [a.id, b.id], admin_user, reason="Season closed")
        assert result["count"] == 2
        assert project.total_budget_utilized == 0
        entries = await ActivityLogger(test_db).list_activities(project_adapter, action="bulk_deleted")
        assert len(entries) == 1
        assert entries[0].batch_id == result["batch_id"]

    async def test_bulk_trash_unknown_id(self, test_db: AsyncSession, project, project_adapter, admin_user, disabled_cache):
        service = BreakdownService(test_db, cache=disabled_cache)
        with pytest.raises(NotFoundError):
            await service.bulk_move_to_trash(project_adapter, [777], admin_user)


@pytest.mark.integration
@pytest.mark.asyncio
class TestBreakdownQueries:
    async def test_filters_and_stats(self, test_db: AsyncSession, project, project_adapter, admin_user, disabled_cache):
        service = BreakdownService(test_db, cache=disabled_cache)
        await service.create_breakdown(
            project_adapter, project.id,
            breakdown_payload("A", allocated=20000, utilized=5000, municipality="Tarlac", status="ongoing"),
            admin_user,
        )
        await service.create_breakdown(
            project_adapter, project.id,
            breakdown_payload("B", office="PHO", allocated=30000, utilized=30000, municipality="Capas", status="completed"),
            admin_user,
        )

        assert [b.project_name for b in await service.list_breakdowns(project_adapter, project.id, status="completed")] == ["B"]
        assert [b.project_name for b in await service.list_breakdowns(project_adapter, project.id, municipality="Tarlac")] == ["A"]
        assert [b.project_name for b in await service.list_breakdowns(project_adapter, project.id, implementing_office="PHO")] == ["B"]

        stats = await service.breakdown_stats(project_adapter, project.id)
        assert stats["count"] == 2
        assert stats["total_allocated"] == 50000
        assert stats["total_utilized"] == 35000
        assert stats["total_balance"] == 15000
        assert stats["utilization_rate"] == 70
        assert stats["by_status"] == {"ongoing": 1, "completed": 1}
        assert stats["available"] == 50000


@pytest.mark.integration
@pytest.mark.asyncio
class TestUnitOfWork:
    @staticmethod
    def _break_activity_log(monkeypatch):
        async def failing_log(self, *args, **kwargs):
            raise RuntimeError("activity store unavailable")

        monkeypatch.setattr(ActivityLogger, "log", failing_log)

    async def test_failed_log_rolls_back_create(
        self, test_db: AsyncSession, project, project_adapter, admin_user, agencies, disabled_cache, monkeypatch
    ):
        """A breakdown and its parent recompute never persist without their log entry"""
        self._break_activity_log(monkeypatch)
        service = BreakdownService(test_db, cache=disabled_cache)
        with pytest.raises(RuntimeError):
            await service.create_breakdown(
                project_adapter, project.id, breakdown_payload(allocated=5000, utilized=3000), admin_user
            )
        monkeypatch.undo()

        assert await service.list_breakdowns(project_adapter, project.id) == []
        await test_db.refresh(project)
        assert project.total_budget_utilized == 0
        assert project.balance == 100000
        await test_db.refresh(agencies["PEO"])
        assert agencies["PEO"].usage_count == 0

    async def test_failed_log_rolls_back_mode_toggle(
        self, test_db: AsyncSession, project, project_adapter, admin_user, disabled_cache, monkeypatch
    ):
        await BreakdownService(test_db, cache=disabled_cache).create_breakdown(
            project_adapter, project.id, breakdown_payload(utilized=2000), admin_user
        )
        entries_before = await ActivityLogger(test_db).count(project_adapter)

        self._break_activity_log(monkeypatch)
        with pytest.raises(RuntimeError):
            await AggregationService(test_db).toggle_auto_calculate(project_adapter, project.id, admin_user)
        monkeypatch.undo()

        await test_db.refresh(project)
        assert project.auto_calculate_budget_utilized is True
        assert project.total_budget_utilized == 2000
        assert await ActivityLogger(test_db).count(project_adapter) == entries_before
