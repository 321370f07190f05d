"""Job lifecycle state machine.

posted -> matched -> in_progress -> completed, with cancelled reachable from
any non-terminal state. Transitions are authoritative; the chat side effects
around them run under ``best_effort`` and never roll a transition back.
"""

import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy import select
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
from servicehub.models.chat import BubbleType, Chat, ChatKind, Message
from servicehub.models.job import (
    VALID_TRANSITIONS,
    BroadcastingPhase,
    CancellationPhase,
    Job,
    JobCancellation,
    JobStatus,
    JobView,
)
from servicehub.models.user import User, UserType
from servicehub.schemas.bubbles import JobBubbleMetadata, patch_job_status
from servicehub.schemas.job import JobCreate
from servicehub.services import chat as chat_service
from servicehub.services.message_store import (
    append_message,
    expire_job_bubbles,
    expire_job_messages,
    find_job_bubble,
    year_month,
)
from servicehub.services.system_messages import post_system_message
from servicehub.services.task_queue import TaskKind, schedule_task
from servicehub.utils.crypto import generate_numeric_code

logger = logging.getLogger(__name__)

_CANCELLATION_PHASES: dict[JobStatus, CancellationPhase] = {
    JobStatus.POSTED: CancellationPhase.BIDDING,
    JobStatus.MATCHED: CancellationPhase.MATCHED,
    JobStatus.IN_PROGRESS: CancellationPhase.IN_PROGRESS,
}


def _assert_transition(job: Job, target: JobStatus) -> None:
    if target not in VALID_TRANSITIONS.get(job.status, set()):
        raise InvalidTransitionError(
            f"Cannot transition from {job.status.value} to {target.value}"
        )


async def get_job(db: AsyncSession, job_id: uuid.UUID, *, for_update: bool = False) -> Job:
    query = select(Job).where(Job.job_id == job_id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    job = result.scalar_one_or_none()
    if job is None:
        raise NotFoundError("Job not found")
    return job


async def get_job_for_party(db: AsyncSession, job_id: uuid.UUID, user: User) -> Job:
    """Load a job for someone entitled to see it.

    That is its customer, its worker, admins, and the workers the job was
    broadcast to (categorizers and invited bidders).
    """
    job = await get_job(db, job_id)
    if user.is_admin or user.user_id in (job.customer_id, job.worker_id):
        return job
    if user.user_type == UserType.WORKER:
        if str(user.user_id) in (job.categorizer_worker_ids or []):
            return job
        broadcast = await db.execute(
            select(Message.message_id)
            .where(
                Message.job_id == job.job_id,
                Message.sender_id == user.user_id,
                Message.bubble_type == BubbleType.WORKER_JOB,
            )
            .limit(1)
        )
        if broadcast.first() is not None:
            return job
    raise AuthorizationError("Not a party to this job")


async def get_user(db: AsyncSession, user_id: uuid.UUID, label: str = "User") -> User:
    result = await db.execute(select(User).where(User.user_id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError(f"{label} not found")
    return user


async def create_job_from_chat(
    db: AsyncSession,
    chat_id: uuid.UUID,
    customer_id: uuid.UUID,
    data: JobCreate,
) -> Job:
    """Create a posted job from the customer's service chat conversation.

    Only live messages of the current month partition are scanned, so bubbles
    spent on a cancelled job do not count again. System-generated bubbles are
    ignored; the first voice recording, every photo and any date selection
    made by the customer are taken.
    """
    chat = await chat_service.get_chat(db, chat_id, for_update=True)
    if chat.customer_id is None or chat.kind != ChatKind.SERVICE:
        raise ValidationError("Jobs can only be created from a customer service chat")
    if chat.customer_id != customer_id:
        raise AuthorizationError("Only the chat's customer can create a job from it")
    if chat.job_id is not None:
        raise AlreadyExistsError("Job already created for this chat")

    result = await db.execute(
        select(Message)
        .where(
            Message.chat_id == chat.chat_id,
            Message.year_month == year_month(),
            Message.is_system_generated.is_(False),
            Message.is_expired.is_(False),
        )
        .order_by(Message.created_at.asc())
    )
    voice_url: str | None = None
    voice_duration = 0.0
    photos: list[str] = []
    requested_date: str | None = None
    has_confirmation = False
    for message in result.scalars().all():
        if message.metadata_.get("isSystemGenerated"):
            continue
        if message.bubble_type == BubbleType.VOICE:
            if voice_url is None:
                voice_url = message.content
                voice_duration = float(message.metadata_.get("duration") or 0)
        elif message.bubble_type == BubbleType.PHOTO:
            photos.append(message.content)
        elif message.bubble_type == BubbleType.CONFIRMATION:
            if message.content == "yes":
                has_confirmation = True
        elif message.bubble_type == BubbleType.DATE:
            requested_date = message.content

    if voice_url is None:
        raise ValidationError("Voice recording is required to create job")
    if requested_date is None:
        raise ValidationError("Date selection is required to create job")

    job = Job(
        job_id=uuid.uuid4(),
        customer_id=chat.customer_id,
        category_id=chat.category_id,
        status=JobStatus.POSTED,
        broadcasting_phase=BroadcastingPhase.UNASSIGNED,
        categorizer_worker_ids=[],
        voice_url=voice_url,
        voice_duration=voice_duration,
        photos=photos,
        requested_date=requested_date,
        has_confirmation=has_confirmation,
        location_lat=data.location_lat,
        location_lng=data.location_lng,
        price_floor=data.price_floor,
        portfolio_consent=data.portfolio_consent,
        work_code=generate_numeric_code(settings.work_code_digits),
    )
    db.add(job)
    await db.flush()
    chat.job_id = job.job_id

    await append_message(
        db,
        chat.chat_id,
        chat.customer_id,
        BubbleType.JOB,
        str(job.job_id),
        JobBubbleMetadata(job_id=job.job_id, job_status=job.status.value),
        job_id=job.job_id,
        system=True,
    )
    async with best_effort(db, f"loading bubble for job {job.job_id}"):
        await post_system_message(
            db, chat, BubbleType.SYSTEM_INSTRUCTION, "job_posted_loading",
            job_id=job.job_id, is_loading=True,
        )

    schedule_task(db, TaskKind.ASSIGN_CATEGORIZERS, job.job_id)

    await db.commit()
    await db.refresh(job)
    logger.info("Job %s posted from chat %s", job.job_id, chat.chat_id)
    return job


async def sync_job_bubble(db: AsyncSession, job: Job) -> None:
    """Mirror the job status into the customer's job bubble. Does not commit.

    The transient loading bubble goes away once the job has left ``posted``.
    """
    bubble = await find_job_bubble(db, job.job_id, BubbleType.JOB, include_expired=True)
    if bubble is not None:
        bubble.metadata_ = patch_job_status(bubble.metadata_, job.status.value)
    if job.status != JobStatus.POSTED:
        await expire_job_bubbles(
            db, job.job_id, BubbleType.SYSTEM_INSTRUCTION, message_key="job_posted_loading"
        )


async def mark_matched(db: AsyncSession, job: Job, worker_id: uuid.UUID) -> None:
    """posted -> matched with the worker assigned; queues the onboarding code. No commit."""
    _assert_transition(job, JobStatus.MATCHED)
    job.status = JobStatus.MATCHED
    job.worker_id = worker_id
    job.matched_at = datetime.now(UTC)
    schedule_task(db, TaskKind.DELIVER_ONBOARDING_CODE, job.job_id)
    async with best_effort(db, f"job bubble for job {job.job_id}"):
        await sync_job_bubble(db, job)
    logger.info("Job %s matched with worker %s", job.job_id, worker_id)


async def assign_worker_to_job(
    db: AsyncSession, job_id: uuid.UUID, worker_id: uuid.UUID
) -> Job:
    """Assign a worker directly, converting their notification chat in place."""
    job = await get_job(db, job_id, for_update=True)
    worker = await get_user(db, worker_id, "Worker")
    if worker.user_type != UserType.WORKER:
        raise ValidationError("Assignee must be a worker")
    _assert_transition(job, JobStatus.MATCHED)

    chat = await chat_service.get_or_create_notification_chat(db, worker.user_id, job.category_id)
    chat_service.convert_to_conversation(chat, job)
    await mark_matched(db, job, worker.user_id)
    await db.commit()
    await db.refresh(job)
    return job


async def start_job(db: AsyncSession, job_id: uuid.UUID) -> Job:
    """matched -> in_progress once the onboarding code was validated."""
    job = await get_job(db, job_id, for_update=True)
    if job.status != JobStatus.MATCHED:
        raise InvalidTransitionError(
            f"Cannot start job in status {job.status.value}"
        )
    job.status = JobStatus.IN_PROGRESS
    job.started_at = datetime.now(UTC)
    async with best_effort(db, f"job bubble for job {job.job_id}"):
        await sync_job_bubble(db, job)

    worker = await get_user(db, job.worker_id, "Worker")
    async with best_effort(db, f"start notifications for job {job.job_id}"):
        await expire_job_bubbles(db, job.job_id, BubbleType.ONBOARDING_CODE_INPUT)
        service_chat = await chat_service.find_service_chat_for_job(db, job)
        if service_chat is not None:
            await post_system_message(
                db, service_chat, BubbleType.SYSTEM_NOTIFICATION, "job_started_notification",
                job_id=job.job_id, variables={"worker_name": worker.name},
            )
        conversation = await chat_service.find_conversation_chat(db, job)
        if conversation is not None:
            await post_system_message(
                db, conversation, BubbleType.SYSTEM_NOTIFICATION, "work_started",
                job_id=job.job_id, sender_id=worker.user_id,
            )

    await db.commit()
    await db.refresh(job)
    logger.info("Job %s started", job.job_id)
    return job


async def complete_job(db: AsyncSession, job_id: uuid.UUID) -> Job:
    """in_progress -> completed once the completion code was validated."""
    from servicehub.services.ratings import send_rating_requests

    job = await get_job(db, job_id, for_update=True)
    if job.status != JobStatus.IN_PROGRESS:
        raise InvalidTransitionError(
            f"Cannot complete job in status {job.status.value}"
        )
    job.status = JobStatus.COMPLETED
    job.completed_at = datetime.now(UTC)
    async with best_effort(db, f"job bubble for job {job.job_id}"):
        await sync_job_bubble(db, job)

    # Rating bubbles must go out while the chats still reference the job.
    async with best_effort(db, f"rating requests for job {job.job_id}"):
        await send_rating_requests(db, job)
    async with best_effort(db, f"completion notifications for job {job.job_id}"):
        await expire_job_bubbles(db, job.job_id, BubbleType.COMPLETION_CODE_INPUT)
        service_chat = await chat_service.find_service_chat_for_job(db, job)
        if service_chat is not None:
            await post_system_message(
                db, service_chat, BubbleType.SYSTEM_NOTIFICATION, "job_completed_notification",
                job_id=job.job_id,
            )
    async with best_effort(db, f"chat reset for job {job.job_id}"):
        await chat_service.reset_chats_for_job(db, job.job_id)

    await db.commit()
    await db.refresh(job)
    logger.info("Job %s completed", job.job_id)
    return job


async def cancel_job(
    db: AsyncSession,
    job_id: uuid.UUID,
    user: User,
    reason: str | None = None,
    clear_chat: bool = False,
) -> Job:
    """Cancel a job on behalf of its customer (or an admin).

    Ordering matters: job-linked messages are expired while the chats still
    reference the job, broadcast bubbles elsewhere are expired after a short
    delay, and the chat's job reference is cleared last.
    """
    job = await get_job(db, job_id, for_update=True)
    if user.user_id != job.customer_id and not user.is_admin:
        raise AuthorizationError("Only the job's customer can cancel it")
    if job.status in (JobStatus.CANCELLED, JobStatus.COMPLETED):
        raise InvalidTransitionError(f"Cannot cancel a {job.status.value} job")
    _assert_transition(job, JobStatus.CANCELLED)

    phase = _CANCELLATION_PHASES[job.status]
    now = datetime.now(UTC)
    job.status = JobStatus.CANCELLED
    job.cancelled_at = now
    job.cancelled_at_phase = phase
    db.add(JobCancellation(
        job_id=job.job_id,
        cancelled_by=user.user_id,
        cancelled_at_phase=phase,
        reason=reason,
    ))

    # Locate the originating chat while job_id is still set on it.
    origin = await chat_service.find_service_chat_for_job(db, job)

    async with best_effort(db, f"expire messages for cancelled job {job.job_id}"):
        expired = await expire_job_messages(db, job.job_id)
        logger.info("Expired %d messages for cancelled job %s", expired, job.job_id)
    async with best_effort(db, f"job bubble for job {job.job_id}"):
        await sync_job_bubble(db, job)

    schedule_task(
        db,
        TaskKind.EXPIRE_WORKER_JOB_BUBBLES,
        job.job_id,
        delay_seconds=settings.cancellation_broadcast_expiry_delay_seconds,
    )

    async with best_effort(db, f"clear chats for cancelled job {job.job_id}"):
        result = await db.execute(select(Chat).where(Chat.job_id == job.job_id))
        for chat in result.scalars().all():
            chat.job_id = None
            chat.banner_info = None

    await db.commit()
    await db.refresh(job)
    logger.info("Job %s cancelled by %s at phase %s", job.job_id, user.user_id, phase.value)

    if clear_chat and origin is not None:
        async with best_effort(db, f"reset chat {origin.chat_id}"):
            await chat_service.clear_service_chat(db, origin)
        await db.commit()
    return job


async def record_job_view(db: AsyncSession, job_id: uuid.UUID, worker: User) -> Job:
    """Count a worker's first view of a job; repeat views are ignored."""
    job = await get_job(db, job_id)
    if worker.user_type != UserType.WORKER:
        raise AuthorizationError("Only workers record job views")
    existing = await db.execute(
        select(JobView).where(JobView.job_id == job_id, JobView.worker_id == worker.user_id)
    )
    if existing.scalar_one_or_none() is None:
        db.add(JobView(job_id=job_id, worker_id=worker.user_id))
        job.view_count += 1
        await db.commit()
        await db.refresh(job)
    return job
