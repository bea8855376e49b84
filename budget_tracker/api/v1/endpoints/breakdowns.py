from fastapi import APIRouter, Query
from typing import Optional

from budget_tracker.core.deps import DBSessionDep, CurrentUserDep, FundAdapterDep
from budget_tracker.schemas.availability import BudgetAvailability, ViolationCheckRequest, ViolationReport
from budget_tracker.schemas.breakdown import (
    BreakdownBulkCreateRequest,
    BreakdownBulkUpdateRequest,
    BreakdownCreateRequest,
    BreakdownOut,
    BreakdownStats,
    BreakdownUpdateRequest,
)
from budget_tracker.schemas.common import BulkTrashRequest, ReasonRequest, SuccessResponse
from budget_tracker.services.breakdown_service import BreakdownService

router = APIRouter()


def _out(adapter, breakdown) -> BreakdownOut:
    out = BreakdownOut.model_validate(breakdown)
    out.parent_id = adapter.resolve_parent_id(breakdown)
    return out


# Fund-scoped routes

@router.get("/funds/{fund_type}/{fund_id}/breakdowns", response_model=list[BreakdownOut])
async def list_breakdowns(
    adapter: FundAdapterDep,
    fund_id: int,
    db: DBSessionDep,
    current_user: CurrentUserDep,
    status: Optional[str] = Query(None),
    municipality: Optional[str] = Query(None),
    implementing_office: Optional[str] = Query(None),
):
    rows = await BreakdownService(db).list_breakdowns(
        adapter, fund_id, status=status, municipality=municipality, implementing_office=implementing_office
    )
    return [_out(adapter, row) for row in rows]


@router.post("/funds/{fund_type}/{fund_id}/breakdowns", response_model=BreakdownOut, status_code=201)
async def create_breakdown(
    adapter: FundAdapterDep,
    fund_id: int,
    payload: BreakdownCreateRequest,
    db: DBSessionDep,
    current_user: CurrentUserDep,
):
    """Create a breakdown. Budget violations return 409 unless confirm_violations is set."""
    data = payload.model_dump(exclude_none=True, exclude={"confirm_violations"})
    breakdown = await BreakdownService(db).create_breakdown(
        adapter, fund_id, data, current_user, confirm_violations=payload.confirm_violations
    )
    return _out(adapter, breakdown)


@router.post("/funds/{fund_type}/{fund_id}/breakdowns/bulk", response_model=list[BreakdownOut], status_code=201)
async def bulk_create_breakdowns(
    adapter: FundAdapterDep,
    fund_id: int,
    payload: BreakdownBulkCreateRequest,
    db: DBSessionDep,
    current_user: CurrentUserDep,
):
    rows = await BreakdownService(db).bulk_create_breakdowns(
        adapter,
        fund_id,
        [item.model_dump(exclude_none=True) for item in payload.items],
        current_user,
        confirm_violations=payload.confirm_violations,
    )
    return [_out(adapter, row) for row in rows]


@router.get("/funds/{fund_type}/{fund_id}/breakdowns/stats", response_model=BreakdownStats)
async def breakdown_stats(adapter: FundAdapterDep, fund_id: int, db: DBSessionDep, current_user: CurrentUserDep):
    return await BreakdownService(db).breakdown_stats(adapter, fund_id)


@router.get("/funds/{fund_type}/{fund_id}/availability", response_model=BudgetAvailability)
async def get_availability(
    adapter: FundAdapterDep,
    fund_id: int,
    db: DBSessionDep,
    current_user: CurrentUserDep,
    exclude_id: Optional[int] = Query(None),
    candidate: float = Query(0, ge=0),
):
    """Remaining budget for a new or edited breakdown. Unknown funds report is_loading."""
    return await BreakdownService(db).compute_availability(adapter, fund_id, exclude_id, candidate)


@router.post("/funds/{fund_type}/{fund_id}/violations/check", response_model=ViolationReport)
async def check_violations(
    adapter: FundAdapterDep,
    fund_id: int,
    payload: ViolationCheckRequest,
    db: DBSessionDep,
    current_user: CurrentUserDep,
):
    return await BreakdownService(db).check_violations(
        adapter,
        fund_id,
        allocated=payload.allocated_budget,
        utilized=payload.budget_utilized,
        obligated=payload.obligated_budget,
        exclude_id=payload.exclude_id,
    )


# Breakdown-scoped routes

@router.get("/breakdowns/{fund_type}/trash", response_model=list[BreakdownOut])
async def list_breakdown_trash(
    adapter: FundAdapterDep,
    db: DBSessionDep,
    current_user: CurrentUserDep,
    parent_id: Optional[int] = Query(None),
):
    rows = await BreakdownService(db).list_trash(adapter, parent_id)
    return [_out(adapter, row) for row in rows]


@router.put("/breakdowns/{fund_type}/bulk", response_model=list[BreakdownOut])
async def bulk_update_breakdowns(
    adapter: FundAdapterDep,
    payload: BreakdownBulkUpdateRequest,
    db: DBSessionDep,
    current_user: CurrentUserDep,
):
    rows = await BreakdownService(db).bulk_update_breakdowns(
        adapter,
        [item.model_dump(exclude_unset=True) | {"id": item.id} for item in payload.items],
        current_user,
        confirm_violations=payload.confirm_violations,
        reason=payload.reason,
    )
    return [_out(adapter, row) for row in rows]


@router.post("/breakdowns/{fund_type}/bulk-trash", response_model=SuccessResponse)
async def bulk_move_to_trash(
    adapter: FundAdapterDep,
    payload: BulkTrashRequest,
    db: DBSessionDep,
    current_user: CurrentUserDep,
):
    """Move several breakdowns to trash in one batch - Admin only"""
    return await BreakdownService(db).bulk_move_to_trash(adapter, payload.ids, current_user, reason=payload.reason)


@router.get("/breakdowns/{fund_type}/{breakdown_id}", response_model=BreakdownOut)
async def get_breakdown(adapter: FundAdapterDep, breakdown_id: int, db: DBSessionDep, current_user: CurrentUserDep):
    breakdown = await BreakdownService(db).get_breakdown(adapter, breakdown_id)
    return _out(adapter, breakdown)


@router.put("/breakdowns/{fund_type}/{breakdown_id}", response_model=BreakdownOut)
async def update_breakdown(
    adapter: FundAdapterDep,
    breakdown_id: int,
    payload: BreakdownUpdateRequest,
    db: DBSessionDep,
    current_user: CurrentUserDep,
):
    data = payload.model_dump(exclude_unset=True, exclude={"confirm_violations", "reason"})
    breakdown = await BreakdownService(db).update_breakdown(
        adapter,
        breakdown_id,
        data,
        current_user,
        confirm_violations=payload.confirm_violations,
        reason=payload.reason,
    )
    return _out(adapter, breakdown)


@router.post("/breakdowns/{fund_type}/{breakdown_id}/trash", response_model=SuccessResponse)
async def move_breakdown_to_trash(
    adapter: FundAdapterDep,
    breakdown_id: int,
    db: DBSessionDep,
    current_user: CurrentUserDep,
    payload: Optional[ReasonRequest] = None,
):
    reason = payload.reason if payload else None
    return await BreakdownService(db).move_to_trash(adapter, breakdown_id, current_user, reason=reason)


@router.post("/breakdowns/{fund_type}/{breakdown_id}/restore", response_model=SuccessResponse)
async def restore_breakdown(adapter: FundAdapterDep, breakdown_id: int, db: DBSessionDep, current_user: CurrentUserDep):
    return await BreakdownService(db).restore_from_trash(adapter, breakdown_id, current_user)


@router.delete("/breakdowns/{fund_type}/{breakdown_id}", response_model=SuccessResponse)
async def remove_breakdown(
    adapter: FundAdapterDep,
    breakdown_id: int,
    db: DBSessionDep,
    current_user: CurrentUserDep,
    reason: Optional[str] = Query(None),
):
    """Permanently delete a breakdown - creator or super admin only"""
    return await BreakdownService(db).remove(adapter, breakdown_id, current_user, reason=reason)
