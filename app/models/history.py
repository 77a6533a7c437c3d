from datetime import datetime, UTC
from typing import Optional

from sqlalchemy import Integer, String, DateTime, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.base import Base


class LeadStageHistory(Base):
    """Append-only audit log of lead status transitions."""

    __tablename__ = "lead_stage_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    lead_id: Mapped[int] = mapped_column(Integer, ForeignKey("leads.id", ondelete="CASCADE"), index=True)

    previous_status: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    new_status: Mapped[str] = mapped_column(String(128), nullable=False)

    by_user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )

    lead = relationship("Lead", back_populates="history")
