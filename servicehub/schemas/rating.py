"""Pydantic v2 schemas for ratings."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class RatingCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    review_text: str | None = Field(None, max_length=4096)


class RatingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rating_id: uuid.UUID
    job_id: uuid.UUID
    rater_id: uuid.UUID
    rated_user_id: uuid.UUID
    rating: int
    review_text: str | None
    created_at: datetime


class RatingSummary(BaseModel):
    user_id: uuid.UUID
    average_rating: Decimal | None
    rating_count: int
    ratings: list[RatingResponse]
