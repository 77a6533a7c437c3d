"""
Lead model for the CRM pipeline.

``status`` holds a stage slug from ``lead_stages``. It is deliberately not a foreign key:
writes are validated against the stage registry in ``LeadService`` instead.
"""
import enum
from typing import TYPE_CHECKING, Optional
from datetime import datetime, UTC
from decimal import Decimal

from sqlalchemy import String, Integer, Text, DateTime, Numeric, ForeignKey, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.base import Base

if TYPE_CHECKING:
    from app.models.history import LeadStageHistory


class LeadPriority(str, enum.Enum):
    """Lead priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class LeadSource(str, enum.Enum):
    """Where the lead came from."""
    INTAKE = "intake"
    MANUAL = "manual"
    REFERRAL = "referral"
    WEBSITE = "website"
    AFFILIATE = "affiliate"


class Lead(Base):
    """Sales/intake opportunity tied to a (prospective) patient."""

    __tablename__ = "leads"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("clients.id", ondelete="CASCADE"), nullable=True, index=True
    )

    # Contact data captured at intake (the client record may not exist yet)
    patient_name: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    patient_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    patient_phone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Ownership
    consultant_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("consultants.id"), nullable=True)
    assigned_consultant_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("consultants.id"), nullable=True, index=True
    )
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Pipeline
    status: Mapped[str] = mapped_column(String(128), nullable=False, default="novo", index=True)
    priority: Mapped[str] = mapped_column(String(16), default=LeadPriority.MEDIUM.value)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source: Mapped[str] = mapped_column(String(64), default=LeadSource.INTAKE.value)
    # NULL until the prescription is validated
    estimated_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    # CRM metadata
    company: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    job_title: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    lead_score: Mapped[int] = mapped_column(Integer, default=0)
    tags: Mapped[list[str]] = mapped_column(JSON, default=list)
    last_interaction: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    next_follow_up: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    products_interest: Mapped[list[str]] = mapped_column(JSON, default=list)
    budget: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    expected_close_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    conversion_probability: Mapped[int] = mapped_column(Integer, default=50)
    address: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    linkedin: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    instagram: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    referral_source: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    lost_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Incremented on every UPDATE; concurrent writers get StaleDataError instead of a lost update
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __mapper_args__ = {"version_id_col": version}

    history: Mapped[list["LeadStageHistory"]] = relationship(
        "LeadStageHistory",
        back_populates="lead",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="LeadStageHistory.created_at.desc()",
    )

    def __repr__(self):
        return f"<Lead id={self.id} status={self.status}>"
