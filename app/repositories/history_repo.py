from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.history import LeadStageHistory


class HistoryRepository:
    """Repository for lead stage history records. Rows are only ever inserted."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def add(self, entry: LeadStageHistory) -> LeadStageHistory:
        """Stage an entry in the current transaction; it is written with the next flush."""
        self.db.add(entry)
        return entry

    async def get_by_lead_id(self, lead_id: int) -> list[LeadStageHistory]:
        """Fetch all history records for a specific lead, ordered by newest first."""
        stmt = (
            select(LeadStageHistory)
            .where(LeadStageHistory.lead_id == lead_id)
            .order_by(LeadStageHistory.created_at.desc(), LeadStageHistory.id.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
