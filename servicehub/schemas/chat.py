"""Schemas for chats and messages."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from servicehub.models.chat import BubbleType
from servicehub.schemas._common import enum_value
from servicehub.schemas.bubbles import USER_BUBBLE_TYPES, UserContentMetadata


class ChatOpen(BaseModel):
    category_id: uuid.UUID


class ChatResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    chat_id: uuid.UUID
    kind: str
    category_id: uuid.UUID
    customer_id: uuid.UUID | None
    worker_id: uuid.UUID | None
    job_id: uuid.UUID | None
    is_cleared: bool
    banner_info: dict | None
    created_at: datetime
    last_message_at: datetime | None

    @field_validator("kind", mode="before")
    @classmethod
    def serialize_kind(cls, v: object) -> object:
        return enum_value(v)


class MessageCreate(BaseModel):
    bubble_type: BubbleType
    content: str = Field(..., min_length=1, max_length=4096)
    metadata: dict[str, Any] | None = None

    @field_validator("bubble_type")
    @classmethod
    def user_bubbles_only(cls, v: BubbleType) -> BubbleType:
        if v not in USER_BUBBLE_TYPES:
            raise ValueError(f"{v.value} bubbles are created by the system")
        return v

    @field_validator("metadata")
    @classmethod
    def user_metadata_only(cls, v: dict[str, Any] | None) -> dict[str, Any] | None:
        if v is None:
            return v
        try:
            UserContentMetadata.model_validate(v)
        except PydanticValidationError as exc:
            raise ValueError(f"Invalid message metadata: {exc.errors()[0]['msg']}") from None
        return v


class MessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    message_id: uuid.UUID
    chat_id: uuid.UUID
    year_month: str
    sender_id: uuid.UUID
    bubble_type: str
    content: str
    metadata: dict[str, Any] = Field(validation_alias="metadata_")
    job_id: uuid.UUID | None
    is_system_generated: bool
    is_expired: bool
    status: str
    delivered_at: datetime | None
    read_at: datetime | None
    mirrored_from_id: uuid.UUID | None
    created_at: datetime

    @field_validator("bubble_type", "status", mode="before")
    @classmethod
    def serialize_enum(cls, v: object) -> object:
        return enum_value(v)


class SendMessageResponse(BaseModel):
    message: MessageResponse | None
    mirrored_message_ids: list[uuid.UUID] = []
    completion_flow_started: bool = False


class PartitionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    year_month: str
    message_count: int


class MessageStatusUpdate(BaseModel):
    message_ids: list[uuid.UUID] = Field(..., min_length=1, max_length=500)


class MessageStatusResult(BaseModel):
    updated: int
