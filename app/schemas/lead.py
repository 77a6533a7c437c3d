"""
Pydantic schemas for Lead API.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from app.models.lead import LeadPriority
from app.core.sanitization import sanitize_short, sanitize_long


# ──────────────────────────────────────────────
# Request Schemas
# ──────────────────────────────────────────────

class LeadCreate(BaseModel):
    """Schema for creating a lead from the CRM form."""
    patient_name: str = Field(..., min_length=1, max_length=256)
    patient_email: str = Field(..., min_length=3, max_length=255)
    patient_phone: str = Field(..., min_length=1, max_length=64)
    consultant_id: Optional[int] = None
    priority: LeadPriority = LeadPriority.MEDIUM
    notes: Optional[str] = None
    source: Optional[str] = Field(None, max_length=64)
    tags: list[str] = Field(default_factory=list)

    @field_validator("patient_name", "patient_phone")
    @classmethod
    def clean_short(cls, v: str) -> str:
        cleaned = sanitize_short(v)
        if not cleaned:
            raise ValueError("must not be blank")
        return cleaned

    @field_validator("patient_email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        cleaned = v.strip().lower()
        if "@" not in cleaned:
            raise ValueError("must be an email address")
        return cleaned

    @field_validator("notes")
    @classmethod
    def clean_notes(cls, v: Optional[str]) -> Optional[str]:
        return sanitize_long(v)

    @field_validator("priority", mode="before")
    @classmethod
    def normalize_priority(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v


class LeadUpdate(BaseModel):
    """
    Generic CRM edit. Every field is optional; blank values are dropped by the service
    and never overwrite stored data.
    """
    patient_name: Optional[str] = Field(None, max_length=256)
    patient_email: Optional[str] = Field(None, max_length=255)
    patient_phone: Optional[str] = Field(None, max_length=64)
    priority: Optional[LeadPriority] = None
    notes: Optional[str] = None
    source: Optional[str] = Field(None, max_length=64)
    estimated_value: Optional[Decimal] = Field(None, ge=0)
    company: Optional[str] = Field(None, max_length=256)
    job_title: Optional[str] = Field(None, max_length=256)
    lead_score: Optional[int] = Field(None, ge=0, le=100)
    tags: Optional[list[str]] = None
    last_interaction: Optional[datetime] = None
    next_follow_up: Optional[datetime] = None
    products_interest: Optional[list[str]] = None
    budget: Optional[Decimal] = Field(None, ge=0)
    expected_close_date: Optional[datetime] = None
    conversion_probability: Optional[int] = Field(None, ge=0, le=100)
    address: Optional[str] = Field(None, max_length=512)
    city: Optional[str] = Field(None, max_length=128)
    state: Optional[str] = Field(None, max_length=2)
    zip_code: Optional[str] = Field(None, max_length=16)
    linkedin: Optional[str] = Field(None, max_length=256)
    instagram: Optional[str] = Field(None, max_length=128)
    referral_source: Optional[str] = Field(None, max_length=256)
    lost_reason: Optional[str] = None

    @field_validator(
        "patient_name", "patient_phone", "company", "job_title", "city",
        "linkedin", "instagram", "referral_source",
    )
    @classmethod
    def clean_short(cls, v: Optional[str]) -> Optional[str]:
        return sanitize_short(v)

    @field_validator("notes", "lost_reason", "address")
    @classmethod
    def clean_long(cls, v: Optional[str]) -> Optional[str]:
        return sanitize_long(v)

    @field_validator("priority", mode="before")
    @classmethod
    def normalize_priority(cls, v):
        if isinstance(v, str):
            return v.strip().lower() or None
        return v


class LeadStatusUpdate(BaseModel):
    """Schema for moving a lead to another stage."""
    status: str = Field(..., min_length=1, max_length=128)
    notes: Optional[str] = None
    estimated_value: Optional[Decimal] = Field(None, ge=0)

    @field_validator("status")
    @classmethod
    def strip_status(cls, v: str) -> str:
        return v.strip()

    @field_validator("notes")
    @classmethod
    def clean_notes(cls, v: Optional[str]) -> Optional[str]:
        return sanitize_long(v)


class LeadAssign(BaseModel):
    consultant_id: int


class AutoLeadCreate(BaseModel):
    """Intake hook: create the lead for a client that just completed the anamnesis form."""
    client_id: int


# ──────────────────────────────────────────────
# Response Schemas
# ──────────────────────────────────────────────

class LeadResponse(BaseModel):
    """Schema for lead response."""
    id: int
    client_id: Optional[int] = None
    patient_name: Optional[str] = None
    patient_email: Optional[str] = None
    patient_phone: Optional[str] = None
    consultant_id: Optional[int] = None
    assigned_consultant_id: Optional[int] = None
    assigned_at: Optional[datetime] = None

    status: str
    priority: str
    notes: Optional[str] = None
    source: Optional[str] = None
    estimated_value: Optional[Decimal] = None

    company: Optional[str] = None
    job_title: Optional[str] = None
    lead_score: int = 0
    tags: list[str] = Field(default_factory=list)
    last_interaction: Optional[datetime] = None
    next_follow_up: Optional[datetime] = None
    products_interest: list[str] = Field(default_factory=list)
    budget: Optional[Decimal] = None
    expected_close_date: Optional[datetime] = None
    conversion_probability: int = 50
    city: Optional[str] = None
    state: Optional[str] = None
    lost_reason: Optional[str] = None

    version: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("tags", "products_interest", mode="before")
    @classmethod
    def none_to_list(cls, v):
        return v or []


class LeadHistoryResponse(BaseModel):
    """Schema for stage history entries."""
    id: int
    lead_id: int
    previous_status: Optional[str] = None
    new_status: str
    by_user_id: Optional[int] = None
    notes: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class AutoLeadResponse(BaseModel):
    lead: LeadResponse
    created: bool


class PipelineStatsResponse(BaseModel):
    total: int
    novos: int
    em_andamento: int
    finalizados: int
    total_value: float
    pipeline_value: float
    conversion_rate: float
    avg_deal_size: float


class SalespersonCommissionResponse(BaseModel):
    consultant_id: Optional[int] = None
    name: str
    rate: float
    leads: int
    total_value: float
    commission: float


class CommissionSummaryResponse(BaseModel):
    total_commissions: float
    total_sales_value: float
    average_rate: float
    by_salesperson: dict[str, SalespersonCommissionResponse]
