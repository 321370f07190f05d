"""User registration and profile endpoints."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.auth.middleware import AuthenticatedUser, verify_request
from servicehub.auth.rate_limit import check_rate_limit
from servicehub.database import get_db
from servicehub.schemas.rating import RatingSummary
from servicehub.schemas.user import SessionResponse, UserCreate, UserResponse
from servicehub.services import ratings as rating_service
from servicehub.services import users as user_service

router = APIRouter(prefix="/users", tags=["users"])


@router.post(
    "",
    response_model=SessionResponse,
    status_code=201,
    dependencies=[Depends(check_rate_limit)],
)
async def register_user(
    data: UserCreate,
    db: AsyncSession = Depends(get_db),
) -> SessionResponse:
    """Register a customer or worker and open a session."""
    user, token, expires_at = await user_service.register_user(db, data)
    return SessionResponse(
        user=UserResponse.model_validate(user),
        access_token=token,
        expires_at=expires_at,
    )


@router.get("/me", response_model=UserResponse, dependencies=[Depends(check_rate_limit)])
async def get_me(auth: AuthenticatedUser = Depends(verify_request)) -> UserResponse:
    return UserResponse.model_validate(auth.user)


@router.get(
    "/{user_id}/ratings",
    response_model=RatingSummary,
    dependencies=[Depends(check_rate_limit)],
)
async def get_user_ratings(
    user_id: uuid.UUID,
    _auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> RatingSummary:
    """Average rating and the individual ratings a user has received."""
    return await rating_service.get_rating_summary(db, user_id)
