"""User registration, sessions and worker administration."""

import logging
import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.config import settings
from servicehub.errors import AlreadyExistsError, NotFoundError, ValidationError
from servicehub.models.category import Category
from servicehub.models.user import ApprovalStatus, User, UserSession, UserSkill, UserType
from servicehub.schemas.user import UserCreate
from servicehub.services.jobs import get_user
from servicehub.utils.crypto import generate_session_token, hash_token

logger = logging.getLogger(__name__)


async def create_session(db: AsyncSession, user: User) -> tuple[str, datetime]:
    """Issue a bearer token. Only its hash is stored."""
    token = generate_session_token()
    expires_at = datetime.now(UTC) + timedelta(days=settings.session_ttl_days)
    db.add(UserSession(user_id=user.user_id, token_hash=hash_token(token), expires_at=expires_at))
    await db.commit()
    return token, expires_at


async def register_user(db: AsyncSession, data: UserCreate) -> tuple[User, str, datetime]:
    existing = await db.execute(select(User.user_id).where(User.phone == data.phone))
    if existing.first() is not None:
        raise AlreadyExistsError("Phone number already registered")

    user_type = UserType(data.user_type)
    user = User(
        user_id=uuid.uuid4(),
        phone=data.phone,
        name=data.name,
        user_type=user_type,
        # Customers need no vetting; workers wait for an admin
        approval_status=(
            ApprovalStatus.APPROVED if user_type == UserType.CUSTOMER else ApprovalStatus.PENDING
        ),
    )
    db.add(user)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise AlreadyExistsError("Phone number already registered") from None

    token, expires_at = await create_session(db, user)
    await db.refresh(user)
    logger.info("Registered %s %s", user_type.value, user.user_id)
    return user, token, expires_at


async def get_user_by_token(db: AsyncSession, token: str) -> User | None:
    result = await db.execute(
        select(User)
        .join(UserSession, UserSession.user_id == User.user_id)
        .where(
            UserSession.token_hash == hash_token(token),
            UserSession.expires_at > datetime.now(UTC),
        )
    )
    return result.scalar_one_or_none()


async def _get_worker(db: AsyncSession, worker_id: uuid.UUID) -> User:
    worker = await get_user(db, worker_id, "Worker")
    if worker.user_type != UserType.WORKER:
        raise ValidationError("User is not a worker")
    return worker


async def set_approval_status(db: AsyncSession, worker_id: uuid.UUID, status: str) -> User:
    worker = await _get_worker(db, worker_id)
    worker.approval_status = ApprovalStatus(status)
    await db.commit()
    await db.refresh(worker)
    logger.info("Worker %s approval set to %s", worker_id, status)
    return worker


async def credit_balance(db: AsyncSession, worker_id: uuid.UUID, amount: Decimal) -> User:
    worker = await _get_worker(db, worker_id)
    new_balance = worker.balance + amount
    if new_balance < 0:
        raise ValidationError("Balance cannot go negative")
    worker.balance = new_balance
    await db.commit()
    await db.refresh(worker)
    return worker


async def add_skill(db: AsyncSession, worker_id: uuid.UUID, category_id: uuid.UUID) -> UserSkill:
    await _get_worker(db, worker_id)
    if await db.get(Category, category_id) is None:
        raise NotFoundError("Category not found")
    existing = await db.execute(
        select(UserSkill).where(UserSkill.user_id == worker_id, UserSkill.category_id == category_id)
    )
    skill = existing.scalar_one_or_none()
    if skill is not None:
        return skill

    skill = UserSkill(user_id=worker_id, category_id=category_id)
    db.add(skill)
    await db.commit()
    await db.refresh(skill)
    return skill
