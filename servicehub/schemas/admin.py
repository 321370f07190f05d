"""Schemas for administrative configuration endpoints."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    description: str | None = Field(None, max_length=2048)
    parent_id: uuid.UUID | None = None


class CategoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    category_id: uuid.UUID
    parent_id: uuid.UUID | None
    name: str
    description: str | None
    created_at: datetime


class PricingUpdate(BaseModel):
    baseline_price: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    min_percentage: int = Field(..., ge=0, le=100)


class PricingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    subcategory_id: uuid.UUID
    baseline_price: Decimal
    min_percentage: int


class ExpertCreate(BaseModel):
    worker_id: uuid.UUID


class SkillCreate(BaseModel):
    category_id: uuid.UUID


class ApprovalUpdate(BaseModel):
    approval_status: str = Field(..., pattern="^(pending|approved|rejected)$")


class BalanceCredit(BaseModel):
    amount: Decimal = Field(..., max_digits=12, decimal_places=2)


class SettingUpdate(BaseModel):
    value: str = Field(..., min_length=1, max_length=256)


class SettingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    key: str
    value: str
    updated_at: datetime


class WorkerAssignment(BaseModel):
    worker_id: uuid.UUID


class ExpertResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    expert_id: uuid.UUID
    worker_id: uuid.UUID
    category_id: uuid.UUID
    created_at: datetime


class SkillResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    skill_id: uuid.UUID
    user_id: uuid.UUID
    category_id: uuid.UUID
    created_at: datetime
