"""Durable deferred-task queue.

Multi-step flows (assign categorizers, deliver the onboarding code, send
reminders, start/complete the job) are scheduled as rows in
``scheduled_tasks`` inside the same transaction as the operation that
schedules them. A single async consumer polls for due rows, claims each one
with a Redis ``SET NX`` lock so only one replica runs it, and dispatches to
the handler registered for its kind. Handlers re-check job state and no-op
when the job has moved on; that is the only cancellation mechanism.
"""

import asyncio
import enum
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.config import settings
from servicehub.errors import DomainError
from servicehub.models.task import ScheduledTask, TaskStatus

logger = logging.getLogger(__name__)

CLAIM_KEY_PREFIX = "task:claim:"


class TaskKind(enum.Enum):
    ASSIGN_CATEGORIZERS = "assign_categorizers"
    DELIVER_ONBOARDING_CODE = "deliver_onboarding_code"
    ONBOARDING_REMINDER = "onboarding_reminder"
    START_JOB = "start_job"
    EXPIRE_ONBOARDING_REMINDERS = "expire_onboarding_reminders"
    COMPLETE_JOB = "complete_job"
    EXPIRE_WORKER_JOB_BUBBLES = "expire_worker_job_bubbles"


TaskHandler = Callable[[AsyncSession, ScheduledTask], Awaitable[None]]
HANDLERS: dict[str, TaskHandler] = {}


def register_handler(kind: TaskKind) -> Callable[[TaskHandler], TaskHandler]:
    def decorator(func: TaskHandler) -> TaskHandler:
        HANDLERS[kind.value] = func
        return func

    return decorator


def _get_handler(kind: str) -> TaskHandler:
    import servicehub.services.tasks  # noqa: F401 (registers handlers)

    try:
        return HANDLERS[kind]
    except KeyError:
        raise LookupError(f"No handler registered for task kind {kind!r}") from None


def schedule_task(
    db: AsyncSession,
    kind: TaskKind,
    job_id: uuid.UUID | None,
    payload: dict[str, Any] | None = None,
    delay_seconds: float = 0,
    now: datetime | None = None,
) -> ScheduledTask:
    """Add a deferred task to the caller's transaction. Does not commit."""
    now = now or datetime.now(UTC)
    task = ScheduledTask(
        task_id=uuid.uuid4(),
        kind=kind.value,
        job_id=job_id,
        payload=payload or {},
        run_at=now + timedelta(seconds=delay_seconds),
        status=TaskStatus.PENDING,
    )
    db.add(task)
    logger.debug("Scheduled %s for job %s in %ss", kind.value, job_id, delay_seconds)
    return task


async def execute_task(db: AsyncSession, task_id: uuid.UUID) -> bool:
    """Run one pending task to completion. Returns False if it was not pending."""
    task = await db.get(ScheduledTask, task_id)
    if task is None or task.status != TaskStatus.PENDING:
        return False

    kind, job_id = task.kind, task.job_id
    task.status = TaskStatus.RUNNING
    task.attempts += 1
    await db.commit()

    try:
        handler = _get_handler(kind)
        await handler(db, task)
    except Exception as exc:
        await db.rollback()
        if isinstance(exc, DomainError):
            logger.warning("Task %s (%s) for job %s refused: %s", task_id, kind, job_id, exc.detail)
        else:
            logger.exception("Task %s (%s) for job %s failed", task_id, kind, job_id)
        await db.refresh(task)
        task.status = TaskStatus.FAILED
        task.last_error = (exc.detail if isinstance(exc, DomainError) else repr(exc))[:2000]
        task.finished_at = datetime.now(UTC)
        await db.commit()
        return True

    task.status = TaskStatus.DONE
    task.finished_at = datetime.now(UTC)
    await db.commit()
    logger.info("Task %s (%s) for job %s done", task_id, kind, job_id)
    return True


async def run_due_tasks(
    db: AsyncSession,
    now: datetime | None = None,
    limit: int | None = None,
    claim: Callable[[uuid.UUID], Awaitable[bool]] | None = None,
) -> int:
    """Execute pending tasks whose run_at has passed. Returns how many ran."""
    now = now or datetime.now(UTC)
    query = (
        select(ScheduledTask.task_id)
        .where(ScheduledTask.status == TaskStatus.PENDING, ScheduledTask.run_at <= now)
        .order_by(ScheduledTask.run_at.asc(), ScheduledTask.created_at.asc())
    )
    if limit is not None:
        query = query.limit(limit)
    result = await db.execute(query)
    task_ids = list(result.scalars().all())

    executed = 0
    for task_id in task_ids:
        if claim is not None and not await claim(task_id):
            # Another consumer got it
            continue
        if await execute_task(db, task_id):
            executed += 1
    return executed


async def recover_stale_tasks(db: AsyncSession) -> int:
    """Return tasks left RUNNING by a crashed process to PENDING."""
    result = await db.execute(
        update(ScheduledTask)
        .where(ScheduledTask.status == TaskStatus.RUNNING)
        .values(status=TaskStatus.PENDING)
    )
    await db.commit()
    return result.rowcount or 0


async def run_task_consumer() -> None:
    """Poll for due tasks forever, sleeping only when nothing ran."""
    from servicehub.database import async_session_factory
    from servicehub.redis import get_redis_client

    redis = get_redis_client()

    async def claim(task_id: uuid.UUID) -> bool:
        return bool(await redis.set(
            f"{CLAIM_KEY_PREFIX}{task_id}", "1", nx=True, ex=settings.task_claim_ttl_seconds
        ))

    while True:
        try:
            async with async_session_factory() as db:
                executed = await run_due_tasks(db, limit=settings.task_batch_size, claim=claim)
            if executed == 0:
                await asyncio.sleep(settings.task_poll_interval_seconds)

        except asyncio.CancelledError:
            logger.info("Task consumer shutting down")
            break
        except Exception:
            logger.exception("Task consumer error, retrying in 5s")
            await asyncio.sleep(5)

    await redis.aclose()
