from __future__ import annotations
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from budget_tracker.models.implementing_agency import ImplementingAgency


class ImplementingAgencyRepository:
    """Implementing office registry consulted before any office code is stored"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_code(self, code: str) -> ImplementingAgency | None:
        res = await self.db.execute(
            select(ImplementingAgency).where(ImplementingAgency.code == code)
        )
        return res.scalar_one_or_none()

    async def is_active(self, code: str) -> bool:
        agency = await self.get_by_code(code)
        return agency is not None and agency.is_active

    async def resolve(self, code: str) -> str | None:
        """Display name for an office code, or None when the code is unknown"""
        agency = await self.get_by_code(code)
        return agency.full_name if agency else None

    async def list(self, active_only: bool = True) -> list[ImplementingAgency]:
        query = select(ImplementingAgency)
        if active_only:
            query = query.where(ImplementingAgency.is_active.is_(True))
        res = await self.db.execute(query.order_by(ImplementingAgency.code))
        return list(res.scalars().all())

    async def create(self, agency: ImplementingAgency) -> ImplementingAgency:
        self.db.add(agency)
        await self.db.flush()
        await self.db.refresh(agency)
        return agency

    async def adjust_usage_count(self, code: str | None, delta: int) -> None:
        if not code or not delta:
            return
        await self.db.execute(
            update(ImplementingAgency)
            .where(ImplementingAgency.code == code)
            .values(usage_count=ImplementingAgency.usage_count + delta)
        )
