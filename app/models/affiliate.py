"""
Affiliate tracking events (clicks, registrations and purchases attributed to a vendor).
"""
import enum
from datetime import datetime, UTC
from decimal import Decimal
from typing import Optional

from sqlalchemy import Integer, String, Text, DateTime, Numeric, ForeignKey, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from app.core.base import Base


class AffiliateEventType(str, enum.Enum):
    CLICK = "click"
    REGISTRATION = "registration"
    PURCHASE = "purchase"


class AffiliateTrackingEvent(Base):
    """Append-only. ``commission_value`` is a snapshot taken when the purchase is recorded."""

    __tablename__ = "affiliate_tracking"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    affiliate_vendor_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    event_type: Mapped[AffiliateEventType] = mapped_column(
        SAEnum(AffiliateEventType, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        index=True,
    )
    client_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("clients.id"), nullable=True)
    order_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("orders.id"), nullable=True)
    order_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    commission_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    referrer: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
