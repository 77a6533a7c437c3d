"""
Lead Repository - Data Access Layer for Lead model.
"""
from datetime import datetime, UTC
from typing import Optional

from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.history import LeadStageHistory
from app.models.lead import Lead


class LeadRepository:
    """Repository for Lead CRUD operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, lead: Lead) -> Lead:
        """Create a new lead."""
        self.db.add(lead)
        await self.db.flush()
        await self.db.refresh(lead)
        return lead

    async def get_by_id(self, lead_id: int) -> Optional[Lead]:
        """Get lead by ID."""
        result = await self.db.execute(select(Lead).where(Lead.id == lead_id))
        return result.scalar_one_or_none()

    async def get_by_client_id(self, client_id: int) -> Optional[Lead]:
        result = await self.db.execute(
            select(Lead).where(Lead.client_id == client_id).order_by(Lead.id.asc()).limit(1)
        )
        return result.scalar_one_or_none()

    async def get_all(
        self,
        status: Optional[str] = None,
        consultant_id: Optional[int] = None,
        assigned_consultant_id: Optional[int] = None,
        priority: Optional[str] = None,
        query: Optional[str] = None,
    ) -> list[Lead]:
        """Get leads with optional filtering, newest first."""
        from sqlalchemy import or_

        stmt = select(Lead)
        if status:
            stmt = stmt.where(Lead.status == status)
        if consultant_id is not None:
            stmt = stmt.where(Lead.consultant_id == consultant_id)
        if assigned_consultant_id is not None:
            stmt = stmt.where(Lead.assigned_consultant_id == assigned_consultant_id)
        if priority:
            stmt = stmt.where(Lead.priority == priority)
        if query:
            q_pattern = f"%{query}%"
            stmt = stmt.where(
                or_(
                    Lead.patient_name.ilike(q_pattern),
                    Lead.patient_email.ilike(q_pattern),
                    Lead.patient_phone.ilike(q_pattern),
                    Lead.company.ilike(q_pattern),
                )
            )

        stmt = stmt.order_by(Lead.created_at.desc(), Lead.id.desc())
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def save(self, lead: Lead) -> Lead:
        """Save lead changes."""
        await self.db.flush()
        await self.db.refresh(lead)
        return lead

    async def assign_if_unassigned(self, lead_id: int, consultant_id: int) -> bool:
        """
        Conditional assignment: only succeeds while ``assigned_consultant_id`` is NULL.
        Two concurrent self-assignments cannot both win.
        """
        stmt = (
            update(Lead)
            .where(Lead.id == lead_id, Lead.assigned_consultant_id.is_(None))
            .values(
                assigned_consultant_id=consultant_id,
                assigned_at=datetime.now(UTC),
                updated_at=datetime.now(UTC),
                version=Lead.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def delete(self, lead: Lead) -> None:
        """Hard delete a lead together with its stage history."""
        await self.db.execute(
            delete(LeadStageHistory).where(LeadStageHistory.lead_id == lead.id)
        )
        await self.db.delete(lead)
        await self.db.flush()
