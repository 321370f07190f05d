"""Category browsing and bid price checks."""

import uuid
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.auth.rate_limit import check_rate_limit
from servicehub.database import get_db
from servicehub.schemas.admin import CategoryResponse
from servicehub.schemas.bid import PricingCheck
from servicehub.services import categories as category_service
from servicehub.services.bids import check_bid_amount
from servicehub.services.config_lookup import DatabasePricingLookup

router = APIRouter(prefix="/categories", tags=["categories"], dependencies=[Depends(check_rate_limit)])


@router.get("", response_model=list[CategoryResponse])
async def list_categories(db: AsyncSession = Depends(get_db)) -> list[CategoryResponse]:
    categories = await category_service.list_categories(db)
    return [CategoryResponse.model_validate(c) for c in categories]


@router.get("/{category_id}/subcategories", response_model=list[CategoryResponse])
async def list_subcategories(
    category_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> list[CategoryResponse]:
    subcategories = await category_service.list_subcategories(db, category_id)
    return [CategoryResponse.model_validate(c) for c in subcategories]


@router.get("/{category_id}/pricing/check", response_model=PricingCheck)
async def check_pricing(
    category_id: uuid.UUID,
    amount: Decimal = Query(..., gt=0),
    db: AsyncSession = Depends(get_db),
) -> PricingCheck:
    """Would a bid of ``amount`` pass this subcategory's pricing floor?"""
    await category_service.get_category(db, category_id)
    return await check_bid_amount(amount, category_id, DatabasePricingLookup(db))
