from fastapi import APIRouter, HTTPException, Query

from budget_tracker.core.deps import DBSessionDep, CurrentUserDep
from budget_tracker.repositories.implementing_agency_repository import ImplementingAgencyRepository
from budget_tracker.schemas.implementing_agency import ImplementingAgencyOut

router = APIRouter()


@router.get("/", response_model=list[ImplementingAgencyOut])
async def list_implementing_agencies(
    db: DBSessionDep,
    current_user: CurrentUserDep,
    active_only: bool = Query(True),
):
    return await ImplementingAgencyRepository(db).list(active_only=active_only)


@router.get("/{code}", response_model=ImplementingAgencyOut)
async def get_implementing_agency(code: str, db: DBSessionDep, current_user: CurrentUserDep):
    agency = await ImplementingAgencyRepository(db).get_by_code(code)
    if not agency:
        raise HTTPException(status_code=404, detail="Implementing office not found")
    return agency
