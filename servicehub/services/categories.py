"""Category tree, pricing floors and expert categorizers."""

import logging
import uuid
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.errors import AlreadyExistsError, NotFoundError, ValidationError
from servicehub.models.category import Category, CategoryPricing
from servicehub.models.user import ExpertCategorizer, UserType
from servicehub.schemas.admin import CategoryCreate
from servicehub.services.jobs import get_user

logger = logging.getLogger(__name__)


async def get_category(db: AsyncSession, category_id: uuid.UUID) -> Category:
    category = await db.get(Category, category_id)
    if category is None:
        raise NotFoundError("Category not found")
    return category


async def list_categories(db: AsyncSession) -> list[Category]:
    result = await db.execute(
        select(Category).where(Category.parent_id.is_(None)).order_by(Category.name.asc())
    )
    return list(result.scalars().all())


async def list_subcategories(db: AsyncSession, category_id: uuid.UUID) -> list[Category]:
    await get_category(db, category_id)
    result = await db.execute(
        select(Category).where(Category.parent_id == category_id).order_by(Category.name.asc())
    )
    return list(result.scalars().all())


async def create_category(db: AsyncSession, data: CategoryCreate) -> Category:
    if data.parent_id is not None:
        parent = await get_category(db, data.parent_id)
        if parent.parent_id is not None:
            raise ValidationError("Subcategories cannot be nested")
    category = Category(
        category_id=uuid.uuid4(),
        parent_id=data.parent_id,
        name=data.name,
        description=data.description,
    )
    db.add(category)
    await db.commit()
    await db.refresh(category)
    logger.info("Created category %s (%s)", category.name, category.category_id)
    return category


async def set_pricing(
    db: AsyncSession, subcategory_id: uuid.UUID, baseline_price: Decimal, min_percentage: int
) -> CategoryPricing:
    await get_category(db, subcategory_id)
    pricing = await db.get(CategoryPricing, subcategory_id)
    if pricing is None:
        pricing = CategoryPricing(subcategory_id=subcategory_id)
        db.add(pricing)
    pricing.baseline_price = baseline_price
    pricing.min_percentage = min_percentage
    await db.commit()
    await db.refresh(pricing)
    return pricing


async def add_expert(
    db: AsyncSession, category_id: uuid.UUID, worker_id: uuid.UUID
) -> ExpertCategorizer:
    await get_category(db, category_id)
    worker = await get_user(db, worker_id, "Worker")
    if worker.user_type != UserType.WORKER:
        raise ValidationError("Only workers can be expert categorizers")

    existing = await db.execute(
        select(ExpertCategorizer.expert_id).where(
            ExpertCategorizer.category_id == category_id,
            ExpertCategorizer.worker_id == worker_id,
        )
    )
    if existing.first() is not None:
        raise AlreadyExistsError("Worker is already an expert for this category")

    expert = ExpertCategorizer(worker_id=worker_id, category_id=category_id)
    db.add(expert)
    await db.commit()
    await db.refresh(expert)
    return expert
