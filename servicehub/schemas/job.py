"""Pydantic v2 schemas for Job lifecycle endpoints."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from servicehub.schemas._common import enum_value


class JobCreate(BaseModel):
    """Customer turns a finished service-chat conversation into a job."""
    chat_id: uuid.UUID
    location_lat: float = Field(..., ge=-90, le=90)
    location_lng: float = Field(..., ge=-180, le=180)
    price_floor: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    portfolio_consent: bool = False


class JobCancel(BaseModel):
    reason: str | None = Field(None, max_length=1024)
    clear_chat: bool = False


class CodeSubmission(BaseModel):
    code: str = Field(..., min_length=1, max_length=16)


class CodeValidationResponse(BaseModel):
    job_id: uuid.UUID
    is_valid: bool
    transition_scheduled: str


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    job_id: uuid.UUID
    customer_id: uuid.UUID
    category_id: uuid.UUID
    subcategory_id: uuid.UUID | None
    subcategory_ids: list[uuid.UUID] | None = None
    worker_id: uuid.UUID | None
    status: str
    broadcasting_phase: int
    categorizer_worker_ids: list[uuid.UUID]
    categorizer_group_size: int | None
    voice_url: str
    voice_duration: float
    photos: list[str]
    requested_date: str | None
    location_lat: float
    location_lng: float
    price_floor: Decimal
    portfolio_consent: bool
    view_count: int
    matched_at: datetime | None
    started_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    cancelled_at_phase: str | None
    created_at: datetime

    @field_validator("status", "cancelled_at_phase", mode="before")
    @classmethod
    def serialize_enum(cls, v: object) -> object:
        return enum_value(v)
