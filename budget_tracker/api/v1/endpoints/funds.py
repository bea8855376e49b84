from fastapi import APIRouter, Depends, Query
from typing import Optional

from budget_tracker.core.deps import DBSessionDep, CurrentUserDep, FundAdapterDep, require_roles
from budget_tracker.models.user import User, UserRole
from budget_tracker.schemas.common import ReasonRequest, SuccessResponse, ToggleAutoCalculateResponse
from budget_tracker.schemas.fund import FundCreate, FundOut, FundStatistics, FundUpdate
from budget_tracker.services.aggregation_service import AggregationService
from budget_tracker.services.fund_service import FundService

router = APIRouter()


def _out(adapter, fund) -> FundOut:
    return FundOut.model_validate(adapter.describe(fund))


@router.get("/{fund_type}", response_model=list[FundOut])
async def list_funds(
    adapter: FundAdapterDep,
    db: DBSessionDep,
    current_user: CurrentUserDep,
    year: Optional[int] = Query(None),
):
    """Active funds of one type, pinned first"""
    funds = await FundService(db).list_funds(adapter, year=year)
    return [_out(adapter, fund) for fund in funds]


@router.post("/{fund_type}", response_model=FundOut, status_code=201)
async def create_fund(adapter: FundAdapterDep, payload: FundCreate, db: DBSessionDep, current_user: CurrentUserDep):
    fund = await FundService(db).create_fund(adapter, payload.model_dump(exclude_unset=True), current_user)
    return _out(adapter, fund)


@router.get("/{fund_type}/statistics", response_model=FundStatistics)
async def fund_statistics(adapter: FundAdapterDep, db: DBSessionDep, current_user: CurrentUserDep):
    return await FundService(db).fund_statistics(adapter)


@router.get("/{fund_type}/trash", response_model=list[FundOut])
async def list_fund_trash(adapter: FundAdapterDep, db: DBSessionDep, current_user: CurrentUserDep):
    funds = await FundService(db).list_trash(adapter)
    return [_out(adapter, fund) for fund in funds]


@router.post("/{fund_type}/recalculate", response_model=SuccessResponse)
async def recalculate_all_funds(
    adapter: FundAdapterDep,
    db: DBSessionDep,
    user: User = Depends(require_roles(UserRole.ADMIN, UserRole.SUPER_ADMIN)),
):
    """Re-sync every active fund of this type from its breakdowns - Admin only"""
    count = await AggregationService(db).recalculate_all(adapter)
    return SuccessResponse(count=count)


@router.get("/{fund_type}/{fund_id}", response_model=FundOut)
async def get_fund(adapter: FundAdapterDep, fund_id: int, db: DBSessionDep, current_user: CurrentUserDep):
    fund = await FundService(db).get_fund(adapter, fund_id)
    return _out(adapter, fund)


@router.put("/{fund_type}/{fund_id}", response_model=FundOut)
async def update_fund(
    adapter: FundAdapterDep,
    fund_id: int,
    payload: FundUpdate,
    db: DBSessionDep,
    current_user: CurrentUserDep,
):
    data = payload.model_dump(exclude_unset=True)
    reason = data.pop("reason", None)
    fund = await FundService(db).update_fund(adapter, fund_id, data, current_user, reason=reason)
    return _out(adapter, fund)


@router.post("/{fund_type}/{fund_id}/trash", response_model=SuccessResponse)
async def move_fund_to_trash(
    adapter: FundAdapterDep,
    fund_id: int,
    db: DBSessionDep,
    current_user: CurrentUserDep,
    payload: Optional[ReasonRequest] = None,
):
    reason = payload.reason if payload else None
    return await FundService(db).move_to_trash(adapter, fund_id, current_user, reason=reason)


@router.post("/{fund_type}/{fund_id}/restore", response_model=SuccessResponse)
async def restore_fund(adapter: FundAdapterDep, fund_id: int, db: DBSessionDep, current_user: CurrentUserDep):
    return await FundService(db).restore_from_trash(adapter, fund_id, current_user)


@router.delete("/{fund_type}/{fund_id}", response_model=SuccessResponse)
async def remove_fund(
    adapter: FundAdapterDep,
    fund_id: int,
    db: DBSessionDep,
    current_user: CurrentUserDep,
    reason: Optional[str] = Query(None),
):
    """Permanently delete a fund - creator or super admin only"""
    return await FundService(db).remove(adapter, fund_id, current_user, reason=reason)


@router.post("/{fund_type}/{fund_id}/pin", response_model=FundOut)
async def toggle_pin(adapter: FundAdapterDep, fund_id: int, db: DBSessionDep, current_user: CurrentUserDep):
    fund = await FundService(db).toggle_pin(adapter, fund_id, current_user)
    return _out(adapter, fund)


@router.post("/{fund_type}/{fund_id}/auto-calculate", response_model=ToggleAutoCalculateResponse)
async def toggle_auto_calculate(
    adapter: FundAdapterDep,
    fund_id: int,
    db: DBSessionDep,
    current_user: CurrentUserDep,
    payload: Optional[ReasonRequest] = None,
):
    reason = payload.reason if payload else None
    return await AggregationService(db).toggle_auto_calculate(adapter, fund_id, current_user, reason=reason)


@router.post("/{fund_type}/{fund_id}/recalculate", response_model=FundOut)
async def recalculate_fund(
    adapter: FundAdapterDep,
    fund_id: int,
    db: DBSessionDep,
    user: User = Depends(require_roles(UserRole.ADMIN, UserRole.SUPER_ADMIN)),
):
    fund = await AggregationService(db).recalculate_fund_metrics(adapter, fund_id)
    return _out(adapter, fund)
