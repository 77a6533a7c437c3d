"""
Stage Repository - data access for the kanban stage registry.
"""
from typing import Optional

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.lead import Lead
from app.models.lead_stage import LeadStage


class StageRepository:
    """Repository for LeadStage CRUD operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, stage: LeadStage) -> LeadStage:
        self.db.add(stage)
        await self.db.flush()
        await self.db.refresh(stage)
        return stage

    async def get_by_id(self, stage_id: int) -> Optional[LeadStage]:
        return await self.db.get(LeadStage, stage_id)

    async def get_by_slug(self, slug: str) -> Optional[LeadStage]:
        result = await self.db.execute(select(LeadStage).where(LeadStage.slug == slug))
        return result.scalar_one_or_none()

    async def get_all(self, include_inactive: bool = False) -> list[LeadStage]:
        """Stages ordered by position (id breaks ties)."""
        stmt = select(LeadStage)
        if not include_inactive:
            stmt = stmt.where(LeadStage.is_active == True)
        stmt = stmt.order_by(LeadStage.position.asc(), LeadStage.id.asc())
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_max_position(self) -> Optional[int]:
        result = await self.db.execute(select(func.max(LeadStage.position)))
        return result.scalar()

    async def count_leads_with_status(self, slug: str) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(Lead).where(Lead.status == slug)
        )
        return result.scalar() or 0

    async def repoint_lead_statuses(self, old_slug: str, new_slug: str) -> int:
        """Move every lead sitting on ``old_slug`` to ``new_slug``. Returns affected rows."""
        stmt = (
            update(Lead)
            .where(Lead.status == old_slug)
            .values(status=new_slug, version=Lead.version + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount

    async def save(self, stage: LeadStage) -> LeadStage:
        await self.db.flush()
        await self.db.refresh(stage)
        return stage

    async def delete(self, stage: LeadStage) -> None:
        await self.db.delete(stage)
        await self.db.flush()
