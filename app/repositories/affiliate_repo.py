"""
Affiliate Repository - append-only access to affiliate tracking events.
"""
from decimal import Decimal

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.affiliate import AffiliateTrackingEvent, AffiliateEventType


class AffiliateRepository:
    """Events are inserted and aggregated, never updated or deleted."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def add_event(self, event: AffiliateTrackingEvent) -> AffiliateTrackingEvent:
        self.db.add(event)
        await self.db.flush()
        await self.db.refresh(event)
        return event

    async def count_events(self, vendor_id: int, event_type: AffiliateEventType) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(AffiliateTrackingEvent)
            .where(
                AffiliateTrackingEvent.affiliate_vendor_id == vendor_id,
                AffiliateTrackingEvent.event_type == event_type,
            )
        )
        return result.scalar() or 0

    async def purchase_totals(self, vendor_id: int) -> tuple[int, Decimal, Decimal]:
        """Return (purchase count, total order value, total commission) for a vendor."""
        result = await self.db.execute(
            select(
                func.count(),
                func.coalesce(func.sum(AffiliateTrackingEvent.order_value), 0),
                func.coalesce(func.sum(AffiliateTrackingEvent.commission_value), 0),
            ).where(
                AffiliateTrackingEvent.affiliate_vendor_id == vendor_id,
                AffiliateTrackingEvent.event_type == AffiliateEventType.PURCHASE,
            )
        )
        count, revenue, commission = result.one()
        return int(count or 0), Decimal(str(revenue or 0)), Decimal(str(commission or 0))

    async def purchase_recorded(self, order_id: int) -> bool:
        result = await self.db.execute(
            select(AffiliateTrackingEvent.id)
            .where(
                AffiliateTrackingEvent.order_id == order_id,
                AffiliateTrackingEvent.event_type == AffiliateEventType.PURCHASE,
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def recent_events(self, vendor_id: int, limit: int = 10) -> list[AffiliateTrackingEvent]:
        result = await self.db.execute(
            select(AffiliateTrackingEvent)
            .where(AffiliateTrackingEvent.affiliate_vendor_id == vendor_id)
            .order_by(AffiliateTrackingEvent.created_at.desc(), AffiliateTrackingEvent.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
