"""Onboarding and completion code exchange.

Both codes follow the same pattern: generated once per job, shown to the
customer (service chat + SMS), typed in by the worker through an input bubble
in the conversation chat. A match schedules the job transition as a deferred
task; a mismatch is rejected with no lockout.
"""

import enum
import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.config import settings
from servicehub.errors import AuthorizationError, InvalidTransitionError, ValidationError, best_effort
from servicehub.models.chat import BubbleType
from servicehub.models.job import Job, JobStatus
from servicehub.models.user import User
from servicehub.schemas.bubbles import CodeInputMetadata
from servicehub.schemas.job import CodeValidationResponse
from servicehub.services import chat as chat_service
from servicehub.services.jobs import get_job, get_user
from servicehub.services.message_store import append_message, expire_job_bubbles, find_job_bubble
from servicehub.services.sms import send_sms
from servicehub.services.system_messages import post_system_message, render
from servicehub.services.task_queue import TaskKind, schedule_task
from servicehub.utils.crypto import codes_match, generate_numeric_code

logger = logging.getLogger(__name__)


class CodeType(enum.Enum):
    ONBOARDING = "onboarding"
    COMPLETION = "completion"


_DIGITS = {
    CodeType.ONBOARDING: lambda: settings.onboarding_code_digits,
    CodeType.COMPLETION: lambda: settings.completion_code_digits,
}
_INPUT_BUBBLES = {
    CodeType.ONBOARDING: BubbleType.ONBOARDING_CODE_INPUT,
    CodeType.COMPLETION: BubbleType.COMPLETION_CODE_INPUT,
}


def ensure_code(job: Job, code_type: CodeType) -> str:
    """Return the job's code of this type, generating it on first use."""
    attr = f"{code_type.value}_code"
    code = getattr(job, attr)
    if code is None:
        code = generate_numeric_code(_DIGITS[code_type]())
        setattr(job, attr, code)
        logger.info("Generated %s code for job %s", code_type.value, job.job_id)
    return code


async def generate_code(db: AsyncSession, job_id: uuid.UUID, code_type: CodeType) -> str:
    job = await get_job(db, job_id, for_update=True)
    code = ensure_code(job, code_type)
    await db.commit()
    return code


async def _deliver_to_customer(
    db: AsyncSession, job: Job, customer: User, worker: User, code_type: CodeType, code: str
) -> None:
    async with best_effort(db, f"{code_type.value} code delivery for job {job.job_id}"):
        service_chat = await chat_service.find_service_chat_for_job(db, job)
        if service_chat is not None:
            await post_system_message(
                db, service_chat, BubbleType.SYSTEM_INSTRUCTION, f"{code_type.value}_code_delivery",
                job_id=job.job_id,
                variables={"worker_name": worker.name, "code": code},
                codeType=code_type.value,
            )
    async with best_effort(db, f"{code_type.value} code SMS for job {job.job_id}"):
        await send_sms(customer.phone, render(
            f"{code_type.value}_code_delivery", worker_name=worker.name, code=code
        ))


async def _post_input_bubble(
    db: AsyncSession, job: Job, worker: User, code_type: CodeType
) -> None:
    bubble_type = _INPUT_BUBBLES[code_type]
    async with best_effort(db, f"{code_type.value} input bubble for job {job.job_id}"):
        if await find_job_bubble(db, job.job_id, bubble_type) is not None:
            return
        conversation = await chat_service.find_conversation_chat(db, job)
        if conversation is None:
            logger.warning("Job %s has no conversation chat for the %s code", job.job_id, code_type.value)
            return
        await append_message(
            db,
            conversation.chat_id,
            worker.user_id,
            bubble_type,
            render(f"{code_type.value}_code_prompt"),
            CodeInputMetadata(
                job_id=job.job_id,
                code_type=code_type.value,
                max_length=_DIGITS[code_type](),
            ),
            job_id=job.job_id,
            system=True,
        )


async def deliver_onboarding_code(db: AsyncSession, job_id: uuid.UUID) -> bool:
    """Send the start code to the customer, prompt the worker, queue reminders.

    No-op unless the job is still matched. Returns whether anything was sent.
    """
    job = await get_job(db, job_id, for_update=True)
    if job.status != JobStatus.MATCHED:
        logger.info("Skipping onboarding code for job %s in status %s", job_id, job.status.value)
        return False
    if await find_job_bubble(db, job.job_id, BubbleType.ONBOARDING_CODE_INPUT, include_expired=True):
        logger.info("Onboarding code for job %s already delivered", job_id)
        return False

    code = ensure_code(job, CodeType.ONBOARDING)
    customer = await get_user(db, job.customer_id, "Customer")
    worker = await get_user(db, job.worker_id, "Worker")

    await _deliver_to_customer(db, job, customer, worker, CodeType.ONBOARDING, code)
    await _post_input_bubble(db, job, worker, CodeType.ONBOARDING)

    interval = settings.onboarding_reminder_interval_minutes * 60
    for number in range(1, settings.onboarding_reminder_count + 1):
        schedule_task(
            db, TaskKind.ONBOARDING_REMINDER, job.job_id,
            payload={"reminder_number": number},
            delay_seconds=number * interval,
        )

    await db.commit()
    return True


async def send_onboarding_reminder(db: AsyncSession, job_id: uuid.UUID, number: int) -> bool:
    job = await get_job(db, job_id)
    if job.status != JobStatus.MATCHED:
        return False
    conversation = await chat_service.find_conversation_chat(db, job)
    if conversation is None:
        return False

    total = settings.onboarding_reminder_count
    await post_system_message(
        db, conversation, BubbleType.SYSTEM_PROMPT, "onboarding_reminder",
        job_id=job.job_id,
        sender_id=job.worker_id,
        variables={"reminder_number": number, "total_reminders": total},
        reminder_number=number,
        total_reminders=total,
    )
    await db.commit()
    return True


async def expire_onboarding_reminders(db: AsyncSession, job_id: uuid.UUID) -> int:
    expired = await expire_job_bubbles(
        db, job_id, BubbleType.SYSTEM_PROMPT, message_key="onboarding_reminder"
    )
    await db.commit()
    return expired


async def _check_submission(
    db: AsyncSession, job_id: uuid.UUID, worker_id: uuid.UUID, code_type: CodeType, status: JobStatus
) -> Job:
    job = await get_job(db, job_id)
    if job.worker_id != worker_id:
        raise AuthorizationError("Only the assigned worker can submit this code")
    if job.status != status:
        raise InvalidTransitionError(
            f"Cannot validate {code_type.value} code for a {job.status.value} job"
        )
    return job


async def validate_onboarding_code(
    db: AsyncSession, job_id: uuid.UUID, worker_id: uuid.UUID, code: str
) -> CodeValidationResponse:
    job = await _check_submission(db, job_id, worker_id, CodeType.ONBOARDING, JobStatus.MATCHED)
    if job.onboarding_code is None:
        raise ValidationError("Onboarding code has not been generated yet")
    if not codes_match(job.onboarding_code, code):
        raise ValidationError("Invalid onboarding code")

    schedule_task(db, TaskKind.START_JOB, job.job_id)
    schedule_task(db, TaskKind.EXPIRE_ONBOARDING_REMINDERS, job.job_id)
    await db.commit()
    logger.info("Onboarding code accepted for job %s", job_id)
    return CodeValidationResponse(
        job_id=job_id, is_valid=True, transition_scheduled=JobStatus.IN_PROGRESS.value
    )


async def initiate_completion_flow(db: AsyncSession, job: Job, worker: User) -> str:
    """Worker signalled the job is done: issue the completion code. Does not commit."""
    from servicehub.services.ratings import send_rating_requests

    code = ensure_code(job, CodeType.COMPLETION)
    customer = await get_user(db, job.customer_id, "Customer")

    async with best_effort(db, f"rating requests for job {job.job_id}"):
        await send_rating_requests(db, job)
    await _deliver_to_customer(db, job, customer, worker, CodeType.COMPLETION, code)
    await _post_input_bubble(db, job, worker, CodeType.COMPLETION)
    logger.info("Completion flow started for job %s", job.job_id)
    return code


async def validate_completion_code(
    db: AsyncSession, job_id: uuid.UUID, worker_id: uuid.UUID, code: str
) -> CodeValidationResponse:
    job = await _check_submission(db, job_id, worker_id, CodeType.COMPLETION, JobStatus.IN_PROGRESS)
    if job.completion_code is None:
        raise ValidationError("Completion code has not been generated yet")
    if not codes_match(job.completion_code, code):
        raise ValidationError("Invalid completion code")

    schedule_task(db, TaskKind.COMPLETE_JOB, job.job_id)
    await db.commit()
    logger.info("Completion code accepted for job %s", job_id)
    return CodeValidationResponse(
        job_id=job_id, is_valid=True, transition_scheduled=JobStatus.COMPLETED.value
    )
