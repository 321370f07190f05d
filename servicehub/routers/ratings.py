"""Rating endpoints."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.auth.middleware import AuthenticatedUser, verify_request
from servicehub.auth.rate_limit import check_rate_limit
from servicehub.database import get_db
from servicehub.schemas.rating import RatingCreate, RatingResponse
from servicehub.services import ratings as rating_service

router = APIRouter(tags=["ratings"], dependencies=[Depends(check_rate_limit)])


@router.post("/jobs/{job_id}/ratings", response_model=RatingResponse, status_code=201)
async def submit_rating(
    job_id: uuid.UUID,
    data: RatingCreate,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> RatingResponse:
    """Rate the other party of a job, once."""
    rating = await rating_service.submit_rating(
        db, job_id, auth.user_id, data.rating, data.review_text
    )
    return RatingResponse.model_validate(rating)
