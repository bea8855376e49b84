from __future__ import annotations
from sqlalchemy import select, and_, func
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime
from typing import Optional


class ActivityRepository:
    """Append-only access to one activity table"""

    def __init__(self, db: AsyncSession, model):
        self.db = db
        self.model = model

    async def create(self, entry):
        self.db.add(entry)
        await self.db.flush()
        await self.db.refresh(entry)
        return entry

    def _conditions(
        self,
        entity_kind: Optional[str] = None,
        entity_id: Optional[int] = None,
        fund_id: Optional[int] = None,
        action: Optional[str] = None,
        batch_id: Optional[str] = None,
        performed_by_id: Optional[int] = None,
        flagged_only: bool = False,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> list:
        model = self.model
        conditions = []
        if entity_kind:
            conditions.append(model.entity_kind == entity_kind)
        if entity_id is not None:
            conditions.append(model.entity_id == entity_id)
        if fund_id is not None:
            conditions.append(model.fund_id == fund_id)
        if action:
            conditions.append(model.action == action)
        if batch_id:
            conditions.append(model.batch_id == batch_id)
        if performed_by_id is not None:
            conditions.append(model.performed_by_id == performed_by_id)
        if flagged_only:
            conditions.append(model.is_flagged.is_(True))
        if start_date:
            conditions.append(model.timestamp >= start_date)
        if end_date:
            conditions.append(model.timestamp <= end_date)
        return conditions

    async def list(self, limit: int = 100, offset: int = 0, **filters) -> list:
        """List activity entries newest first with optional filtering"""
        query = select(self.model)
        conditions = self._conditions(**filters)
        if conditions:
            query = query.where(and_(*conditions))
        query = query.order_by(self.model.id.desc()).limit(limit).offset(offset)
        res = await self.db.execute(query)
        return list(res.scalars().all())

    async def count(self, **filters) -> int:
        query = select(func.count(self.model.id))
        conditions = self._conditions(**filters)
        if conditions:
            query = query.where(and_(*conditions))
        res = await self.db.execute(query)
        return res.scalar() or 0
