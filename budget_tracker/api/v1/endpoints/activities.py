from fastapi import APIRouter, Query
from datetime import datetime
from typing import Optional

from budget_tracker.core.deps import DBSessionDep, CurrentUserDep, FundAdapterDep
from budget_tracker.models.activity_log import ActivityAction, EntityKind
from budget_tracker.schemas.activity_log import ActivityOut, ActivityPage
from budget_tracker.services.activity_service import ActivityLogger

router = APIRouter()


@router.get("/{fund_type}", response_model=ActivityPage)
async def list_activities(
    adapter: FundAdapterDep,
    db: DBSessionDep,
    current_user: CurrentUserDep,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    entity_kind: Optional[EntityKind] = Query(None),
    entity_id: Optional[int] = Query(None),
    fund_id: Optional[int] = Query(None),
    action: Optional[ActivityAction] = Query(None),
    batch_id: Optional[str] = Query(None),
    performed_by_id: Optional[int] = Query(None),
    flagged_only: bool = Query(False),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
):
    """
    Activity trail of one fund family, newest first
    Supports filtering by entity, action, batch, actor and date range
    """
    filters = dict(
        entity_kind=entity_kind.value if entity_kind else None,
        entity_id=entity_id,
        fund_id=fund_id,
        action=action.value if action else None,
        batch_id=batch_id,
        performed_by_id=performed_by_id,
        flagged_only=flagged_only,
        start_date=start_date,
        end_date=end_date,
    )
    activity_logger = ActivityLogger(db)
    items = await activity_logger.list_activities(adapter, limit=limit, offset=offset, **filters)
    total = await activity_logger.count(adapter, **filters)
    return ActivityPage(items=[ActivityOut.model_validate(item) for item in items], total=total)
