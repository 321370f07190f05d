"""Post-job ratings: private rating-request bubbles and rating submission."""

import logging
import uuid
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.errors import AlreadyExistsError, AuthorizationError, InvalidTransitionError, best_effort
from servicehub.models.chat import BubbleType, Chat
from servicehub.models.job import Job, JobStatus
from servicehub.models.rating import Rating
from servicehub.models.user import User
from servicehub.schemas.bubbles import RatingRequestMetadata
from servicehub.schemas.rating import RatingResponse, RatingSummary
from servicehub.services import chat as chat_service
from servicehub.services.jobs import get_job, get_user
from servicehub.services.message_store import (
    append_message,
    expire_job_bubbles,
    expire_non_initial_messages,
    find_job_bubble,
)
from servicehub.services.system_messages import render

logger = logging.getLogger(__name__)

_RATEABLE = (JobStatus.IN_PROGRESS, JobStatus.COMPLETED)


async def _send_request(
    db: AsyncSession, chat: Chat | None, job: Job, rater: User, rated: User, rating_type: str
) -> bool:
    if chat is None:
        logger.warning("No chat to deliver %s request for job %s", rating_type, job.job_id)
        return False
    existing = await find_job_bubble(
        db, job.job_id, BubbleType.RATING_REQUEST, sender_id=rater.user_id, include_expired=True
    )
    if existing is not None:
        return False
    await append_message(
        db,
        chat.chat_id,
        rater.user_id,
        BubbleType.RATING_REQUEST,
        render(rating_type, name=rated.name),
        RatingRequestMetadata(
            job_id=job.job_id,
            rating_type=rating_type,
            rated_user_id=rated.user_id,
            rated_user_name=rated.name,
        ),
        job_id=job.job_id,
        system=True,
    )
    return True


async def send_rating_requests(db: AsyncSession, job: Job) -> int:
    """One private rating bubble per party, at most once per job. Does not commit."""
    if job.worker_id is None:
        return 0
    customer = await get_user(db, job.customer_id, "Customer")
    worker = await get_user(db, job.worker_id, "Worker")

    sent = 0
    service_chat = await chat_service.find_service_chat_for_job(db, job)
    if await _send_request(db, service_chat, job, customer, worker, "rate_worker"):
        sent += 1
    conversation = await chat_service.find_conversation_chat(db, job)
    if await _send_request(db, conversation, job, worker, customer, "rate_customer"):
        sent += 1
    return sent


async def _refresh_average(db: AsyncSession, user_id: uuid.UUID) -> None:
    result = await db.execute(
        select(func.avg(Rating.rating), func.count(Rating.rating_id))
        .where(Rating.rated_user_id == user_id)
    )
    avg, count = result.one()
    user = await get_user(db, user_id)
    user.rating_count = count
    user.rating = (
        Decimal(str(avg)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP) if count else None
    )


async def _tidy_service_chat(db: AsyncSession, job: Job) -> None:
    """Leave only the greeting bubbles once a finished job is fully rated."""
    chat = await chat_service.find_service_chat_for_job(db, job)
    # A newer job may already be running in the same chat
    if chat is None or chat.job_id is not None:
        return
    expired = await expire_non_initial_messages(db, chat.chat_id)
    logger.info("Expired %d service chat messages after job %s", expired, job.job_id)


async def submit_rating(
    db: AsyncSession,
    job_id: uuid.UUID,
    rater_id: uuid.UUID,
    rating: int,
    review_text: str | None = None,
) -> Rating:
    job = await get_job(db, job_id)
    if rater_id == job.customer_id:
        rated_id = job.worker_id
    elif rater_id == job.worker_id:
        rated_id = job.customer_id
    else:
        raise AuthorizationError("Only the job's customer and worker can rate")
    if rated_id is None or job.status not in _RATEABLE:
        raise InvalidTransitionError(f"Cannot rate a {job.status.value} job")

    existing = await db.execute(
        select(Rating.rating_id).where(Rating.job_id == job_id, Rating.rater_id == rater_id)
    )
    if existing.first() is not None:
        raise AlreadyExistsError("You have already rated this job")

    row = Rating(
        rating_id=uuid.uuid4(),
        job_id=job_id,
        rater_id=rater_id,
        rated_user_id=rated_id,
        rating=rating,
        review_text=review_text,
    )
    db.add(row)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise AlreadyExistsError("You have already rated this job") from None

    await _refresh_average(db, rated_id)

    count_result = await db.execute(
        select(func.count(Rating.rating_id)).where(Rating.job_id == job_id)
    )
    if count_result.scalar() >= 2:
        await expire_job_bubbles(db, job_id, BubbleType.RATING_REQUEST)
        if job.status == JobStatus.COMPLETED:
            async with best_effort(db, f"service chat cleanup for job {job_id}"):
                await _tidy_service_chat(db, job)

    await db.commit()
    await db.refresh(row)
    logger.info("Rating %d for %s on job %s", rating, rated_id, job_id)
    return row


async def get_rating_summary(db: AsyncSession, user_id: uuid.UUID) -> RatingSummary:
    user = await get_user(db, user_id)
    result = await db.execute(
        select(Rating).where(Rating.rated_user_id == user_id).order_by(Rating.created_at.desc())
    )
    return RatingSummary(
        user_id=user.user_id,
        average_rating=user.rating,
        rating_count=user.rating_count,
        ratings=[RatingResponse.model_validate(r) for r in result.scalars().all()],
    )
