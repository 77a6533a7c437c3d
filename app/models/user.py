"""
Platform user model.

One table backs every role (client, doctor, consultant, comercial staff, admin).
External vendors (affiliates) are users flagged with ``is_external_vendor``.
"""
import enum
from datetime import datetime, UTC
from typing import Optional

from sqlalchemy import String, Boolean, Integer, DateTime, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from app.core.base import Base


class UserRole(str, enum.Enum):
    """User roles."""
    ADMIN = "admin"
    CONSULTANT = "consultant"
    COMERCIAL = "comercial"
    DOCTOR = "doctor"
    CLIENT = "client"


class User(Base):
    """Platform user."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[Optional[str]] = mapped_column(String(128), unique=True, nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True, index=True)
    full_name: Mapped[str] = mapped_column(String(256), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        SAEnum(UserRole, values_callable=lambda e: [m.value for m in e]),
        default=UserRole.CLIENT,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Affiliate program
    is_external_vendor: Mapped[bool] = mapped_column(Boolean, default=False)
    affiliate_code: Mapped[Optional[str]] = mapped_column(String(32), unique=True, nullable=True, index=True)
    commission_rate: Mapped[Optional[str]] = mapped_column(String(16), default="0.10", nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def __repr__(self):
        return f"<User id={self.id} name={self.full_name} role={self.role.value}>"
