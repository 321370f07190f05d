"""Bid submission, pricing floors, acceptance and rejection."""

import logging
import uuid
from datetime import UTC, datetime, timedelta
from decimal import ROUND_FLOOR, Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.config import settings
from servicehub.errors import (
    AlreadyExistsError,
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
    best_effort,
)
from servicehub.models.bid import Bid, BidStatus
from servicehub.models.chat import BubbleType, Chat
from servicehub.models.job import Job, JobStatus
from servicehub.models.user import User, UserType
from servicehub.schemas.bid import PricingCheck
from servicehub.schemas.bubbles import BidData, BidMetadata, patch_bid_data
from servicehub.services import chat as chat_service
from servicehub.services.broadcast import update_worker_job_data
from servicehub.services.config_lookup import DatabasePricingLookup, PricingLookup
from servicehub.services.jobs import get_job, get_user, mark_matched
from servicehub.services.message_store import append_message, find_job_bubble
from servicehub.services.system_messages import post_system_message

logger = logging.getLogger(__name__)


def _floor(value: Decimal) -> Decimal:
    return value.quantize(Decimal("1"), rounding=ROUND_FLOOR)


def minimum_bid(baseline_price: Decimal, min_percentage: int) -> Decimal:
    """``floor(baseline * pct / 100)``."""
    return _floor(Decimal(baseline_price) * min_percentage / 100)


def service_fee_for(amount: Decimal) -> Decimal:
    """Platform fee: a fixed percentage of the base amount, floored."""
    return _floor(amount * settings.platform_fee_percent / 100)


async def check_bid_amount(
    amount: Decimal, subcategory_id: uuid.UUID, pricing: PricingLookup
) -> PricingCheck:
    """Validate an amount against the subcategory's floor, if one is configured."""
    if amount <= 0:
        return PricingCheck(is_valid=False, message="Bid amount must be positive")
    row = await pricing.pricing_for(subcategory_id)
    if row is None:
        return PricingCheck(is_valid=True)

    baseline = Decimal(row.baseline_price).normalize()
    minimum = minimum_bid(baseline, row.min_percentage)
    check = PricingCheck(
        is_valid=amount >= minimum,
        minimum_amount=minimum,
        baseline_price=baseline,
        min_percentage=row.min_percentage,
    )
    if not check.is_valid:
        check.message = (
            f"Bid must be at least {minimum} ({row.min_percentage}% of baseline {baseline:f})"
        )
    return check


async def get_bid(db: AsyncSession, bid_id: uuid.UUID, *, for_update: bool = False) -> Bid:
    query = select(Bid).where(Bid.bid_id == bid_id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    bid = result.scalar_one_or_none()
    if bid is None:
        raise NotFoundError("Bid not found")
    return bid


def _bid_data(bid: Bid, worker: User) -> BidData:
    return BidData(
        bid_id=bid.bid_id,
        job_id=bid.job_id,
        worker_id=bid.worker_id,
        worker_name=worker.name,
        worker_rating=worker.rating,
        bid_amount=bid.amount,
        equipment_cost=bid.equipment_cost,
        service_fee=bid.service_fee,
        total_amount=bid.total_amount,
        status=bid.status.value,
        created_at=bid.created_at,
        expires_at=bid.expires_at,
        priority_window_end=bid.priority_window_end,
    )


async def submit_bid(
    db: AsyncSession,
    job_id: uuid.UUID,
    worker_id: uuid.UUID,
    amount: Decimal,
    equipment_cost: Decimal = Decimal("0"),
    pricing: PricingLookup | None = None,
) -> Bid:
    """Record a worker's offer on a categorized, still-posted job."""
    pricing = pricing or DatabasePricingLookup(db)
    job = await get_job(db, job_id)
    worker = await get_user(db, worker_id, "Worker")
    if worker.user_type != UserType.WORKER:
        raise AuthorizationError("Only workers can bid")
    if worker.balance <= 0:
        raise ValidationError("Insufficient balance to place a bid")
    if job.status != JobStatus.POSTED:
        raise InvalidTransitionError(f"Cannot bid on a {job.status.value} job")
    if job.subcategory_id is None:
        raise InvalidTransitionError("Job has not been categorized yet")

    existing = await db.execute(
        select(Bid.bid_id).where(Bid.job_id == job_id, Bid.worker_id == worker_id)
    )
    if existing.first() is not None:
        raise AlreadyExistsError("You have already bid on this job")

    check = await check_bid_amount(amount, job.subcategory_id, pricing)
    if not check.is_valid:
        raise ValidationError(check.message or "Invalid bid amount")

    now = datetime.now(UTC)
    fee = service_fee_for(amount)
    bid = Bid(
        bid_id=uuid.uuid4(),
        job_id=job_id,
        worker_id=worker_id,
        amount=amount,
        equipment_cost=equipment_cost,
        service_fee=fee,
        total_amount=amount + equipment_cost + fee,
        status=BidStatus.PENDING,
        expires_at=now + timedelta(hours=settings.bid_expiry_hours),
        priority_window_end=now + timedelta(hours=settings.bid_priority_window_hours),
        created_at=now,
    )
    db.add(bid)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise AlreadyExistsError("You have already bid on this job") from None

    async with best_effort(db, f"bid status for worker {worker_id} on job {job_id}"):
        await update_worker_job_data(
            db, job_id, worker_id,
            bid_status=bid.status.value,
            bid_id=bid.bid_id,
            bid_amount=bid.amount,
            bid_equipment_cost=bid.equipment_cost,
            bid_service_fee=bid.service_fee,
            bid_total_amount=bid.total_amount,
            bid_submitted_at=now,
        )
    async with best_effort(db, f"bid bubble for job {job_id}"):
        service_chat = await chat_service.find_service_chat_for_job(db, job)
        if service_chat is not None:
            await append_message(
                db,
                service_chat.chat_id,
                job.customer_id,
                BubbleType.BID,
                str(bid.bid_id),
                BidMetadata(bid_data=_bid_data(bid, worker)),
                job_id=job_id,
                system=True,
            )

    await db.commit()
    await db.refresh(bid)
    logger.info("Bid %s (%s) submitted on job %s by %s", bid.bid_id, bid.total_amount, job_id, worker_id)
    return bid


async def list_bids(db: AsyncSession, job_id: uuid.UUID, user: User) -> list[Bid]:
    job = await get_job(db, job_id)
    query = select(Bid).where(Bid.job_id == job_id)
    if user.user_id != job.customer_id and not user.is_admin:
        # Workers only see their own bid
        query = query.where(Bid.worker_id == user.user_id)
    result = await db.execute(query.order_by(Bid.created_at.asc()))
    return list(result.scalars().all())


async def _load_for_decision(
    db: AsyncSession, bid_id: uuid.UUID, customer_id: uuid.UUID
) -> tuple[Bid, Job]:
    bid = await get_bid(db, bid_id, for_update=True)
    job = await get_job(db, bid.job_id, for_update=True)
    if job.customer_id != customer_id:
        raise AuthorizationError("Only the job's customer can decide on bids")
    if bid.status != BidStatus.PENDING:
        raise InvalidTransitionError(f"Bid is already {bid.status.value}")
    return bid, job


async def _sync_bid_bubble(db: AsyncSession, bid: Bid) -> None:
    bubble = await find_job_bubble(db, bid.job_id, BubbleType.BID, content=str(bid.bid_id))
    if bubble is not None:
        bubble.metadata_ = patch_bid_data(bubble.metadata_, status=bid.status.value)


async def accept_bid(
    db: AsyncSession, bid_id: uuid.UUID, customer_id: uuid.UUID
) -> tuple[Bid, Chat]:
    """Accept a bid: match the job and open a dedicated conversation chat."""
    bid, job = await _load_for_decision(db, bid_id, customer_id)
    if job.status != JobStatus.POSTED:
        raise InvalidTransitionError(f"Cannot accept bids on a {job.status.value} job")
    worker = await get_user(db, bid.worker_id, "Worker")

    now = datetime.now(UTC)
    bid.status = BidStatus.ACCEPTED
    bid.accepted_at = now

    conversation = await chat_service.create_conversation_chat(db, job, worker.user_id)
    await mark_matched(db, job, worker.user_id)

    async with best_effort(db, f"bid bubble update for bid {bid.bid_id}"):
        await _sync_bid_bubble(db, bid)
    async with best_effort(db, f"acceptance notice for job {job.job_id}"):
        service_chat = await chat_service.find_service_chat_for_job(db, job)
        if service_chat is not None:
            await post_system_message(
                db, service_chat, BubbleType.SYSTEM_NOTIFICATION, "bid_accepted_notification",
                job_id=job.job_id,
                variables={"worker_name": worker.name},
                conversationChatId=str(conversation.chat_id),
                bidId=str(bid.bid_id),
            )
    async with best_effort(db, f"worker bid status for job {job.job_id}"):
        await update_worker_job_data(
            db, job.job_id, worker.user_id,
            bid_status=BidStatus.ACCEPTED.value,
            bid_accepted_at=now,
            job_status=JobStatus.MATCHED.value,
        )

    await db.commit()
    await db.refresh(bid)
    logger.info("Bid %s accepted; job %s matched to %s", bid.bid_id, job.job_id, worker.user_id)
    return bid, conversation


async def reject_bid(db: AsyncSession, bid_id: uuid.UUID, customer_id: uuid.UUID) -> Bid:
    bid, job = await _load_for_decision(db, bid_id, customer_id)
    now = datetime.now(UTC)
    bid.status = BidStatus.REJECTED
    bid.rejected_at = now

    async with best_effort(db, f"bid bubble update for bid {bid.bid_id}"):
        await _sync_bid_bubble(db, bid)
    async with best_effort(db, f"worker bid status for bid {bid.bid_id}"):
        await update_worker_job_data(
            db, job.job_id, bid.worker_id,
            bid_status=BidStatus.REJECTED.value,
            bid_rejected_at=now,
        )

    await db.commit()
    await db.refresh(bid)
    logger.info("Bid %s rejected on job %s", bid.bid_id, job.job_id)
    return bid
