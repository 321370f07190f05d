"""Job lifecycle endpoints."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.auth.middleware import AuthenticatedUser, verify_request
from servicehub.auth.rate_limit import check_rate_limit
from servicehub.database import get_db
from servicehub.schemas.job import CodeSubmission, CodeValidationResponse, JobCancel, JobCreate, JobResponse
from servicehub.services import codes as code_service
from servicehub.services import jobs as job_service

router = APIRouter(prefix="/jobs", tags=["jobs"], dependencies=[Depends(check_rate_limit)])


@router.post("", response_model=JobResponse, status_code=201)
async def create_job(
    data: JobCreate,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    """Post a job from the caller's service chat (needs a voice note and a date)."""
    job = await job_service.create_job_from_chat(db, data.chat_id, auth.user_id, data)
    return JobResponse.model_validate(job)


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    job = await job_service.get_job_for_party(db, job_id, auth.user)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(
    job_id: uuid.UUID,
    data: JobCancel,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    job = await job_service.cancel_job(db, job_id, auth.user, data.reason, data.clear_chat)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/views", response_model=JobResponse)
async def record_view(
    job_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    job = await job_service.record_job_view(db, job_id, auth.user)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/onboarding-code/validate", response_model=CodeValidationResponse)
async def validate_onboarding_code(
    job_id: uuid.UUID,
    data: CodeSubmission,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> CodeValidationResponse:
    """Worker enters the customer's start code; the job starts shortly after."""
    return await code_service.validate_onboarding_code(db, job_id, auth.user_id, data.code)


@router.post("/{job_id}/completion-code/validate", response_model=CodeValidationResponse)
async def validate_completion_code(
    job_id: uuid.UUID,
    data: CodeSubmission,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> CodeValidationResponse:
    return await code_service.validate_completion_code(db, job_id, auth.user_id, data.code)
