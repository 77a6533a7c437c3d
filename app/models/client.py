"""
Client (patient), consultant and order records.

Only the columns the CRM pipeline and the affiliate program read or link are mapped here;
the rest of the patient profile and the checkout flow live elsewhere.
"""
from datetime import datetime, UTC
from decimal import Decimal
from typing import Optional

from sqlalchemy import Integer, String, Boolean, DateTime, Numeric, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.base import Base
from app.models.user import User


class Client(Base):
    """Patient/client profile attached to a user account."""

    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True)
    consultant_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("consultants.id"), nullable=True)
    # Vendor that brought the client in; set once at registration, never overwritten
    affiliate_vendor_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))

    user: Mapped[User] = relationship(User, foreign_keys=[user_id], lazy="joined")


class Consultant(Base):
    """Salesperson record holding the commission rate used by the CRM."""

    __tablename__ = "consultants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), index=True)
    # Stored as typed by admins: "0.15" or "15" both mean 15%
    commission_rate: Mapped[Optional[str]] = mapped_column(String(16), default="0.10", nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))

    user: Mapped[User] = relationship(User, lazy="joined")

    @property
    def full_name(self) -> str:
        return self.user.full_name if self.user else ""


class Order(Base):
    """Checkout order, linked to the referring vendor on purchase."""

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[int] = mapped_column(Integer, ForeignKey("clients.id", ondelete="CASCADE"), index=True)
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    affiliate_vendor_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
