"""
Pydantic schemas for the lead stage registry.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from app.core.sanitization import sanitize_short, sanitize_long
from app.services.stage_service import stage_color, stage_icon


class StageCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    description: Optional[str] = None
    color: str = Field("blue", max_length=32)
    icon: Optional[str] = Field(None, max_length=64)
    is_active: bool = True

    @field_validator("name")
    @classmethod
    def clean_name(cls, v: str) -> str:
        cleaned = sanitize_short(v)
        if not cleaned:
            raise ValueError("must not be blank")
        return cleaned

    @field_validator("description")
    @classmethod
    def clean_description(cls, v: Optional[str]) -> Optional[str]:
        return sanitize_long(v)


class StageUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=128)
    description: Optional[str] = None
    color: Optional[str] = Field(None, max_length=32)
    icon: Optional[str] = Field(None, max_length=64)
    position: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def clean_name(cls, v: Optional[str]) -> Optional[str]:
        return sanitize_short(v)

    @field_validator("description")
    @classmethod
    def clean_description(cls, v: Optional[str]) -> Optional[str]:
        return sanitize_long(v)


class StageReorder(BaseModel):
    stage_ids: list[int] = Field(..., min_length=1)


class StageResponse(BaseModel):
    """Stage as the board renders it: ``hex_color`` and ``icon`` always resolve to something."""
    id: int
    name: str
    slug: str
    description: Optional[str] = None
    color: str
    hex_color: str = ""
    icon: Optional[str] = None
    position: int
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def resolve_display(self) -> "StageResponse":
        self.icon = stage_icon(self.slug, self.icon)
        self.hex_color = stage_color(self.color)
        return self


class StageDeleteResponse(BaseModel):
    deleted: bool = True
    stage_id: int
    slug: str
    orphaned_leads: int
    warning: Optional[str] = None

