from sqlalchemy import select, func, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from budget_tracker.models.mixins import active_filter, trashed_filter


class BreakdownRepository:
    """Persistence for one breakdown table, scoped by its parent FK column"""

    def __init__(self, db: AsyncSession, model, parent_field: str):
        self.db = db
        self.model = model
        self.parent_field = parent_field

    @property
    def parent_column(self):
        return getattr(self.model, self.parent_field)

    async def get_by_id(self, breakdown_id: int):
        res = await self.db.execute(select(self.model).where(self.model.id == breakdown_id))
        return res.scalar_one_or_none()

    async def get_many(self, ids: list[int]) -> list:
        if not ids:
            return []
        res = await self.db.execute(select(self.model).where(self.model.id.in_(ids)))
        return list(res.scalars().all())

    async def list_by_parent(
        self,
        parent_id: int,
        status: str | None = None,
        municipality: str | None = None,
        implementing_office: str | None = None,
    ) -> list:
        """Active breakdowns of one fund with optional filtering"""
        conditions = [self.parent_column == parent_id, active_filter(self.model)]
        if status:
            conditions.append(self.model.status == status)
        if municipality:
            conditions.append(self.model.municipality == municipality)
        if implementing_office:
            conditions.append(self.model.implementing_office == implementing_office)

        query = select(self.model).where(and_(*conditions)).order_by(self.model.id)
        res = await self.db.execute(query)
        return list(res.scalars().all())

    async def list_trash(self, parent_id: int | None = None) -> list:
        query = select(self.model).where(trashed_filter(self.model))
        if parent_id is not None:
            query = query.where(self.parent_column == parent_id)
        query = query.order_by(self.model.deleted_at.desc(), self.model.id.desc())
        res = await self.db.execute(query)
        return list(res.scalars().all())

    async def sibling_allocations(self, parent_id: int) -> list[tuple[int, float]]:
        """(id, allocated_budget) of every active breakdown under a fund"""
        res = await self.db.execute(
            select(self.model.id, self.model.allocated_budget).where(
                and_(self.parent_column == parent_id, active_filter(self.model))
            )
        )
        return [(row_id, float(allocated or 0)) for row_id, allocated in res.all()]

    async def aggregate(self, parent_id: int) -> dict:
        """Sums over active breakdowns plus a per-status count"""
        model = self.model
        scope = and_(self.parent_column == parent_id, active_filter(model))
        res = await self.db.execute(
            select(
                func.count(model.id),
                func.coalesce(func.sum(model.allocated_budget), 0),
                func.coalesce(func.sum(model.obligated_budget), 0),
                func.coalesce(func.sum(model.budget_utilized), 0),
            ).where(scope)
        )
        count, allocated, obligated, utilized = res.one()

        status_res = await self.db.execute(
            select(model.status, func.count(model.id)).where(scope).group_by(model.status)
        )
        by_status = {status: n for status, n in status_res.all() if status}
        return {
            "count": count,
            "total_allocated": float(allocated),
            "total_obligated": float(obligated),
            "total_utilized": float(utilized),
            "by_status": by_status,
        }

    async def orphan_children(self, parent_id: int) -> int:
        """Detach all breakdowns from a fund that is about to be removed"""
        res = await self.db.execute(
            update(self.model)
            .where(self.parent_column == parent_id)
            .values({self.parent_field: None})
            .execution_options(synchronize_session="fetch")
        )
        return res.rowcount or 0

    async def create(self, breakdown):
        self.db.add(breakdown)
        await self.db.flush()
        await self.db.refresh(breakdown)
        return breakdown

    async def create_many(self, breakdowns: list) -> list:
        self.db.add_all(breakdowns)
        await self.db.flush()
        for breakdown in breakdowns:
            await self.db.refresh(breakdown)
        return breakdowns

    async def update(self, breakdown):
        await self.db.flush()
        await self.db.refresh(breakdown)
        return breakdown

    async def delete(self, breakdown) -> None:
        await self.db.delete(breakdown)
        await self.db.flush()
