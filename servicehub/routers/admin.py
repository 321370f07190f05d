"""Administrative endpoints: catalogue, pricing, workers, settings, direct assignment."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.auth.middleware import require_admin
from servicehub.auth.rate_limit import check_rate_limit
from servicehub.database import get_db
from servicehub.schemas.admin import (
    ApprovalUpdate,
    BalanceCredit,
    CategoryCreate,
    CategoryResponse,
    ExpertCreate,
    ExpertResponse,
    PricingResponse,
    PricingUpdate,
    SettingResponse,
    SettingUpdate,
    SkillCreate,
    SkillResponse,
    WorkerAssignment,
)
from servicehub.schemas.job import JobResponse
from servicehub.schemas.user import UserResponse
from servicehub.services import categories as category_service
from servicehub.services import jobs as job_service
from servicehub.services import users as user_service
from servicehub.services.config_lookup import set_system_setting

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(check_rate_limit), Depends(require_admin)],
)


@router.post("/categories", response_model=CategoryResponse, status_code=201)
async def create_category(
    data: CategoryCreate,
    db: AsyncSession = Depends(get_db),
) -> CategoryResponse:
    """Create a top-level category, or a subcategory when parent_id is given."""
    category = await category_service.create_category(db, data)
    return CategoryResponse.model_validate(category)


@router.put("/categories/{subcategory_id}/pricing", response_model=PricingResponse)
async def set_pricing(
    subcategory_id: uuid.UUID,
    data: PricingUpdate,
    db: AsyncSession = Depends(get_db),
) -> PricingResponse:
    pricing = await category_service.set_pricing(
        db, subcategory_id, data.baseline_price, data.min_percentage
    )
    return PricingResponse.model_validate(pricing)


@router.post("/categories/{category_id}/experts", response_model=ExpertResponse, status_code=201)
async def add_expert(
    category_id: uuid.UUID,
    data: ExpertCreate,
    db: AsyncSession = Depends(get_db),
) -> ExpertResponse:
    expert = await category_service.add_expert(db, category_id, data.worker_id)
    return ExpertResponse.model_validate(expert)


@router.put("/workers/{worker_id}/approval", response_model=UserResponse)
async def set_approval(
    worker_id: uuid.UUID,
    data: ApprovalUpdate,
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    worker = await user_service.set_approval_status(db, worker_id, data.approval_status)
    return UserResponse.model_validate(worker)


@router.post("/workers/{worker_id}/balance", response_model=UserResponse)
async def credit_balance(
    worker_id: uuid.UUID,
    data: BalanceCredit,
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    worker = await user_service.credit_balance(db, worker_id, data.amount)
    return UserResponse.model_validate(worker)


@router.post("/workers/{worker_id}/skills", response_model=SkillResponse, status_code=201)
async def add_skill(
    worker_id: uuid.UUID,
    data: SkillCreate,
    db: AsyncSession = Depends(get_db),
) -> SkillResponse:
    skill = await user_service.add_skill(db, worker_id, data.category_id)
    return SkillResponse.model_validate(skill)


@router.put("/settings/{key}", response_model=SettingResponse)
async def update_setting(
    key: str,
    data: SettingUpdate,
    db: AsyncSession = Depends(get_db),
) -> SettingResponse:
    row = await set_system_setting(db, key, data.value)
    return SettingResponse.model_validate(row)


@router.post("/jobs/{job_id}/assign", response_model=JobResponse)
async def assign_worker(
    job_id: uuid.UUID,
    data: WorkerAssignment,
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    """Match a job to a worker without a bid, reusing their notification chat."""
    job = await job_service.assign_worker_to_job(db, job_id, data.worker_id)
    return JobResponse.model_validate(job)
