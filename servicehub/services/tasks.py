"""Handlers for each deferred task kind.

Every handler re-reads the job and does nothing when the job has moved past
the state the task was scheduled for.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.models.chat import BubbleType
from servicehub.models.job import BroadcastingPhase, JobStatus
from servicehub.models.task import ScheduledTask
from servicehub.services import categorization, codes, jobs
from servicehub.services.message_store import expire_job_bubbles
from servicehub.services.task_queue import TaskKind, register_handler

logger = logging.getLogger(__name__)


async def _job_in(db: AsyncSession, task: ScheduledTask, *statuses: JobStatus) -> bool:
    job = await jobs.get_job(db, task.job_id)
    if job.status not in statuses:
        logger.info(
            "Skipping %s for job %s: status is %s", task.kind, task.job_id, job.status.value
        )
        return False
    return True


@register_handler(TaskKind.ASSIGN_CATEGORIZERS)
async def handle_assign_categorizers(db: AsyncSession, task: ScheduledTask) -> None:
    job = await jobs.get_job(db, task.job_id)
    if job.status != JobStatus.POSTED or job.broadcasting_phase != BroadcastingPhase.UNASSIGNED:
        logger.info("Job %s no longer awaits categorizers", task.job_id)
        return
    await categorization.assign_categorizers(db, task.job_id)


@register_handler(TaskKind.DELIVER_ONBOARDING_CODE)
async def handle_deliver_onboarding_code(db: AsyncSession, task: ScheduledTask) -> None:
    await codes.deliver_onboarding_code(db, task.job_id)


@register_handler(TaskKind.ONBOARDING_REMINDER)
async def handle_onboarding_reminder(db: AsyncSession, task: ScheduledTask) -> None:
    await codes.send_onboarding_reminder(db, task.job_id, int(task.payload.get("reminder_number", 1)))


@register_handler(TaskKind.START_JOB)
async def handle_start_job(db: AsyncSession, task: ScheduledTask) -> None:
    if await _job_in(db, task, JobStatus.MATCHED):
        await jobs.start_job(db, task.job_id)


@register_handler(TaskKind.EXPIRE_ONBOARDING_REMINDERS)
async def handle_expire_onboarding_reminders(db: AsyncSession, task: ScheduledTask) -> None:
    await codes.expire_onboarding_reminders(db, task.job_id)


@register_handler(TaskKind.COMPLETE_JOB)
async def handle_complete_job(db: AsyncSession, task: ScheduledTask) -> None:
    if await _job_in(db, task, JobStatus.IN_PROGRESS):
        await jobs.complete_job(db, task.job_id)


@register_handler(TaskKind.EXPIRE_WORKER_JOB_BUBBLES)
async def handle_expire_worker_job_bubbles(db: AsyncSession, task: ScheduledTask) -> None:
    if not await _job_in(db, task, JobStatus.CANCELLED):
        return
    expired = await expire_job_bubbles(db, task.job_id, BubbleType.WORKER_JOB)
    await db.commit()
    logger.info("Expired %d broadcast bubbles for cancelled job %s", expired, task.job_id)
