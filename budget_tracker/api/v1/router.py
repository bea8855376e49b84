from fastapi import APIRouter

from budget_tracker.api.v1.endpoints import funds, breakdowns, activities, implementing_agencies

api_router = APIRouter()
# Breakdown routes nest under /funds and /breakdowns, so they are registered before the fund routes
api_router.include_router(breakdowns.router, tags=["breakdowns"])
api_router.include_router(funds.router, prefix="/funds", tags=["funds"])
api_router.include_router(activities.router, prefix="/activities", tags=["activities"])
api_router.include_router(implementing_agencies.router, prefix="/implementing-agencies", tags=["implementing-agencies"])
