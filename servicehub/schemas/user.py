"""Pydantic v2 schemas for users and sessions."""

import re
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from servicehub.schemas._common import enum_value

_PHONE_RE = re.compile(r"^\+?[0-9]{7,15}$")


class UserCreate(BaseModel):
    phone: str
    name: str = Field(..., min_length=1, max_length=128)
    user_type: str = Field(..., pattern="^(customer|worker)$")

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        v = v.replace(" ", "").replace("-", "")
        if not _PHONE_RE.match(v):
            raise ValueError("Invalid phone number")
        return v


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: uuid.UUID
    phone: str
    name: str
    user_type: str
    approval_status: str
    balance: Decimal
    rating: Decimal | None
    rating_count: int
    is_admin: bool
    created_at: datetime

    @field_validator("user_type", "approval_status", mode="before")
    @classmethod
    def serialize_enum(cls, v: object) -> object:
        return enum_value(v)


class SessionResponse(BaseModel):
    user: UserResponse
    access_token: str
    expires_at: datetime
