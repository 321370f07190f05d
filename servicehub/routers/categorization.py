"""Categorization voting endpoints."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.auth.middleware import AuthenticatedUser, verify_request
from servicehub.auth.rate_limit import check_rate_limit
from servicehub.database import get_db
from servicehub.errors import AuthorizationError
from servicehub.schemas.categorization import CategorizationResult, VoteCreate
from servicehub.schemas.job import JobResponse
from servicehub.services import categorization as categorization_service

router = APIRouter(tags=["categorization"], dependencies=[Depends(check_rate_limit)])


@router.get("/workers/me/categorization-jobs", response_model=list[JobResponse])
async def list_categorization_jobs(
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[JobResponse]:
    """Posted jobs still waiting on the caller's vote group."""
    if not auth.is_worker:
        raise AuthorizationError("Only workers categorize jobs")
    jobs = await categorization_service.list_categorization_jobs(db, auth.user_id)
    return [JobResponse.model_validate(j) for j in jobs]


@router.post("/jobs/{job_id}/categorizations", response_model=CategorizationResult, status_code=201)
async def submit_categorization(
    job_id: uuid.UUID,
    data: VoteCreate,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> CategorizationResult:
    return await categorization_service.submit_categorization(
        db, job_id, auth.user_id, data.subcategory_id
    )


@router.get("/jobs/{job_id}/categorizations", response_model=CategorizationResult)
async def get_categorization_status(
    job_id: uuid.UUID,
    _auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> CategorizationResult:
    return await categorization_service.get_categorization_status(db, job_id)
