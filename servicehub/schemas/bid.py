"""Pydantic v2 schemas for bids."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from servicehub.schemas._common import enum_value


class BidCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    equipment_cost: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)


class PricingCheck(BaseModel):
    is_valid: bool
    minimum_amount: Decimal | None = None
    baseline_price: Decimal | None = None
    min_percentage: int | None = None
    message: str | None = None


class BidResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    bid_id: uuid.UUID
    job_id: uuid.UUID
    worker_id: uuid.UUID
    amount: Decimal
    equipment_cost: Decimal
    service_fee: Decimal
    total_amount: Decimal
    status: str
    expires_at: datetime
    priority_window_end: datetime
    accepted_at: datetime | None
    rejected_at: datetime | None
    created_at: datetime

    @field_validator("status", mode="before")
    @classmethod
    def serialize_status(cls, v: object) -> object:
        return enum_value(v)


class BidAcceptResponse(BaseModel):
    bid: BidResponse
    job_id: uuid.UUID
    conversation_chat_id: uuid.UUID
