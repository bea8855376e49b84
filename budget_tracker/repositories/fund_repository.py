from __future__ import annotations
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from budget_tracker.models.mixins import active_filter, trashed_filter


class FundRepository:
    """Persistence for one fund table. The model is chosen by the fund adapter."""

    def __init__(self, db: AsyncSession, model):
        self.db = db
        self.model = model

    async def get_by_id(self, fund_id: int, include_deleted: bool = True):
        query = select(self.model).where(self.model.id == fund_id)
        if not include_deleted:
            query = query.where(active_filter(self.model))
        res = await self.db.execute(query)
        return res.scalar_one_or_none()

    async def list(self, year: int | None = None) -> list:
        """Active funds, pinned first then newest"""
        query = select(self.model).where(active_filter(self.model))
        if year is not None:
            query = query.where(self.model.year == year)
        query = query.order_by(
            self.model.is_pinned.desc(), self.model.pinned_at.desc(), self.model.id.desc()
        )
        res = await self.db.execute(query)
        return list(res.scalars().all())

    async def list_ids(self) -> list[int]:
        res = await self.db.execute(select(self.model.id).where(active_filter(self.model)))
        return list(res.scalars().all())

    async def list_trash(self) -> list:
        res = await self.db.execute(
            select(self.model)
            .where(trashed_filter(self.model))
            .order_by(self.model.deleted_at.desc(), self.model.id.desc())
        )
        return list(res.scalars().all())

    async def totals(self, allocated_field: str, utilized_field: str, obligated_field: str) -> dict:
        model = self.model
        res = await self.db.execute(
            select(
                func.count(model.id),
                func.coalesce(func.sum(getattr(model, allocated_field)), 0),
                func.coalesce(func.sum(getattr(model, utilized_field)), 0),
                func.coalesce(func.sum(getattr(model, obligated_field)), 0),
                func.coalesce(func.avg(model.utilization_rate), 0),
            ).where(active_filter(model))
        )
        count, allocated, utilized, obligated, avg_rate = res.one()
        return {
            "count": count,
            "total_allocated": float(allocated),
            "total_utilized": float(utilized),
            "total_obligated": float(obligated),
            "average_utilization_rate": float(avg_rate),
        }

    async def create(self, fund):
        self.db.add(fund)
        await self.db.flush()
        await self.db.refresh(fund)
        return fund

    async def update(self, fund):
        await self.db.flush()
        await self.db.refresh(fund)
        return fund

    async def delete(self, fund) -> None:
        await self.db.delete(fund)
        await self.db.flush()
