"""
Pydantic schemas for affiliate (external vendor) endpoints.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from app.models.affiliate import AffiliateEventType


class VendorEnableRequest(BaseModel):
    commission_rate: Optional[Decimal] = Field(None, ge=0, le=1)
    custom_code: Optional[str] = Field(None, min_length=1, max_length=32)


class VendorActivationResponse(BaseModel):
    user_id: int
    affiliate_code: str
    affiliate_link: str


class RegistrationTrack(BaseModel):
    """
    Clients registering themselves omit ``client_id``; without ``affiliate_code`` the code stored
    in their session is used. Admins must send both.
    """
    client_id: Optional[int] = None
    affiliate_code: Optional[str] = Field(None, max_length=32)

    @field_validator("affiliate_code")
    @classmethod
    def upper_code(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v else None


class PurchaseTrack(BaseModel):
    client_id: int
    order_id: int
    order_value: Decimal = Field(..., ge=0)


class TrackResult(BaseModel):
    recorded: bool
    commission_value: Optional[Decimal] = None


class AffiliateEventResponse(BaseModel):
    id: int
    event_type: AffiliateEventType
    client_id: Optional[int] = None
    order_id: Optional[int] = None
    order_value: Optional[Decimal] = None
    commission_value: Optional[Decimal] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class VendorMetricsResponse(BaseModel):
    clicks: int
    registrations: int
    purchases: int
    total_revenue: Decimal
    total_commission: Decimal
    conversion_rate: float = Field(..., description="registrations / clicks, as a 0-1 fraction")
    recent_activity: list[AffiliateEventResponse] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class VendorSummaryResponse(BaseModel):
    """Admin listing row: vendor identity, link and aggregated metrics."""
    user_id: int
    full_name: str
    email: Optional[str] = None
    affiliate_code: Optional[str] = None
    affiliate_link: Optional[str] = None
    commission_rate: Optional[str] = None
    is_external_vendor: bool
    metrics: VendorMetricsResponse


class VendorClientResponse(BaseModel):
    client_id: int
    user_id: int
    full_name: Optional[str] = None
    email: Optional[str] = None
    created_at: datetime
