"""Fan-out of ``worker_job`` bubbles into workers' notification chats."""

import logging
import uuid
from collections.abc import Iterable
from typing import Any, Literal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.errors import best_effort
from servicehub.models.category import Category
from servicehub.models.chat import BubbleType, Message
from servicehub.models.job import Job
from servicehub.models.user import ApprovalStatus, User, UserSkill, UserType
from servicehub.schemas.bubbles import JobData, WorkerJobMetadata, patch_job_data, patch_message_type
from servicehub.services.chat import get_or_create_notification_chat
from servicehub.services.message_store import append_message

logger = logging.getLogger(__name__)

MessageType = Literal["categorization_request", "bid_invitation"]


async def eligible_workers(db: AsyncSession, category_ids: Iterable[uuid.UUID]) -> list[User]:
    """Approved workers with a positive balance skilled in any of the categories."""
    ids = list(category_ids)
    if not ids:
        return []
    result = await db.execute(
        select(User)
        .join(UserSkill, UserSkill.user_id == User.user_id)
        .where(
            UserSkill.category_id.in_(ids),
            User.user_type == UserType.WORKER,
            User.approval_status == ApprovalStatus.APPROVED,
            User.balance > 0,
        )
        .distinct()
        .order_by(User.created_at.asc())
    )
    return list(result.scalars().all())


async def build_job_data(db: AsyncSession, job: Job) -> JobData:
    category = await db.get(Category, job.category_id)
    customer = await db.get(User, job.customer_id)
    return JobData(
        job_id=job.job_id,
        category_id=job.category_id,
        category_name=category.name if category else "",
        customer_name=customer.name if customer else None,
        voice_url=job.voice_url,
        voice_duration=job.voice_duration,
        photos=list(job.photos or []),
        requested_date=job.requested_date,
        location_lat=job.location_lat,
        location_lng=job.location_lng,
        price_floor=job.price_floor,
        portfolio_consent=job.portfolio_consent,
        job_status=job.status.value,
        broadcasting_phase=job.broadcasting_phase,
        created_at=job.created_at,
        has_subcategory=job.subcategory_id is not None,
        subcategory_id=job.subcategory_id,
        subcategory_ids=[uuid.UUID(s) for s in job.subcategory_ids] if job.subcategory_ids else None,
    )


async def find_worker_job_message(
    db: AsyncSession, job_id: uuid.UUID, worker_id: uuid.UUID
) -> Message | None:
    result = await db.execute(
        select(Message)
        .where(
            Message.job_id == job_id,
            Message.sender_id == worker_id,
            Message.bubble_type == BubbleType.WORKER_JOB,
        )
        .order_by(Message.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def send_job_to_worker(
    db: AsyncSession,
    job: Job,
    worker_id: uuid.UUID,
    message_type: MessageType,
    job_data: JobData | None = None,
) -> Message:
    """Post a ``worker_job`` bubble, or re-label the one the worker already has."""
    existing = await find_worker_job_message(db, job.job_id, worker_id)
    if existing is not None:
        if existing.metadata_.get("messageType") != message_type:
            existing.metadata_ = patch_message_type(existing.metadata_, message_type)
        return existing
    chat = await get_or_create_notification_chat(db, worker_id, job.category_id)
    job_data = job_data or await build_job_data(db, job)
    return await append_message(
        db,
        chat.chat_id,
        worker_id,
        BubbleType.WORKER_JOB,
        str(job.job_id),
        WorkerJobMetadata(message_type=message_type, job_data=job_data),
        job_id=job.job_id,
        system=True,
    )


async def broadcast_to_workers(
    db: AsyncSession,
    job: Job,
    worker_ids: Iterable[uuid.UUID],
    message_type: MessageType,
) -> int:
    """Best-effort fan-out; one worker's failure does not stop the rest."""
    job_data = await build_job_data(db, job)
    sent = 0
    for worker_id in worker_ids:
        async with best_effort(db, f"broadcast job {job.job_id} to worker {worker_id}"):
            await send_job_to_worker(db, job, worker_id, message_type, job_data)
            sent += 1
    return sent


async def assign_bidders_to_job(
    db: AsyncSession, job: Job, subcategory_ids: list[uuid.UUID]
) -> int:
    """Invite every eligible worker skilled in the given subcategories to bid.

    Categorizers who are also eligible keep their bubble, re-labelled as an
    invitation. Returns the number of eligible workers.
    """
    workers = await eligible_workers(db, subcategory_ids)
    sent = await broadcast_to_workers(db, job, (w.user_id for w in workers), "bid_invitation")
    logger.info(
        "Job %s open for bidding in %d subcategories; %d of %d eligible workers notified",
        job.job_id, len(subcategory_ids), sent, len(workers),
    )
    return len(workers)


async def update_worker_job_data(
    db: AsyncSession, job_id: uuid.UUID, worker_id: uuid.UUID, **changes: Any
) -> Message | None:
    """Patch the ``jobData`` of a worker's broadcast bubble. Does not commit."""
    message = await find_worker_job_message(db, job_id, worker_id)
    if message is None:
        logger.warning("No worker_job bubble for job %s / worker %s", job_id, worker_id)
        return None
    message.metadata_ = patch_job_data(message.metadata_, **changes)
    return message


async def update_all_worker_job_data(
    db: AsyncSession, job_id: uuid.UUID, worker_ids: Iterable[uuid.UUID], **changes: Any
) -> int:
    updated = 0
    for worker_id in worker_ids:
        if await update_worker_job_data(db, job_id, worker_id, **changes) is not None:
            updated += 1
    return updated
