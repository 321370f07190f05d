"""Tests for onboarding/completion code generation, delivery and validation."""

import uuid
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.errors import AuthorizationError, InvalidTransitionError, NotFoundError, ValidationError
from servicehub.models.chat import BubbleType, Message
from servicehub.models.job import JobStatus
from servicehub.models.task import ScheduledTask, TaskStatus
from servicehub.services import codes
from servicehub.services.task_queue import TaskKind
from tests.conftest import count_messages, drain_tasks, in_minutes, make_matched_job, start_matched_job


def _reminders(job_id: uuid.UUID):  # type: ignore[no-untyped-def]
    return (
        Message.job_id == job_id,
        Message.bubble_type == BubbleType.SYSTEM_PROMPT,
        Message.message_key == "onboarding_reminder",
    )


@pytest.mark.asyncio
async def test_ensure_code_generates_once(db_session: AsyncSession) -> None:
    m = await make_matched_job(db_session)

    first = codes.ensure_code(m.job, codes.CodeType.COMPLETION)
    second = codes.ensure_code(m.job, codes.CodeType.COMPLETION)

    assert first == second
    assert len(first) == 6 and first.isdigit() and first[0] != "0"


@pytest.mark.asyncio
async def test_generate_code_persists(db_session: AsyncSession) -> None:
    m = await make_matched_job(db_session)

    code = await codes.generate_code(db_session, m.job.job_id, codes.CodeType.ONBOARDING)

    await db_session.refresh(m.job)
    assert m.job.onboarding_code == code
    assert len(code) == 4


@pytest.mark.asyncio
async def test_deliver_onboarding_code(db_session: AsyncSession) -> None:
    m = await make_matched_job(db_session)

    with patch("servicehub.services.codes.send_sms", new=AsyncMock()) as sms:
        assert await codes.deliver_onboarding_code(db_session, m.job.job_id)

    code = m.job.onboarding_code
    assert code is not None and len(code) == 4
    sms.assert_awaited_once()
    phone, body = sms.await_args.args
    assert phone == m.customer.phone
    assert code in body

    delivery = (await db_session.execute(
        select(Message).where(Message.message_key == "onboarding_code_delivery")
    )).scalar_one()
    assert delivery.chat_id == m.service_chat.chat_id
    assert code in delivery.content
    assert delivery.metadata_["codeType"] == "onboarding"

    prompt = (await db_session.execute(
        select(Message).where(Message.bubble_type == BubbleType.ONBOARDING_CODE_INPUT)
    )).scalar_one()
    assert prompt.chat_id == m.conversation.chat_id
    assert prompt.sender_id == m.worker.user_id
    assert prompt.metadata_["maxLength"] == 4

    reminders = await db_session.execute(
        select(ScheduledTask).where(ScheduledTask.kind == TaskKind.ONBOARDING_REMINDER.value)
        .order_by(ScheduledTask.run_at)
    )
    scheduled = reminders.scalars().all()
    assert [t.payload["reminder_number"] for t in scheduled] == list(range(1, 13))


@pytest.mark.asyncio
async def test_deliver_twice_sends_once(db_session: AsyncSession) -> None:
    m = await make_matched_job(db_session)
    assert await codes.deliver_onboarding_code(db_session, m.job.job_id)
    assert not await codes.deliver_onboarding_code(db_session, m.job.job_id)

    assert await count_messages(db_session, Message.message_key == "onboarding_code_delivery") == 1
    queued = await db_session.execute(
        select(func.count()).select_from(ScheduledTask).where(
            ScheduledTask.kind == TaskKind.ONBOARDING_REMINDER.value
        )
    )
    assert queued.scalar() == 12


@pytest.mark.asyncio
async def test_sms_failure_does_not_block_delivery(db_session: AsyncSession) -> None:
    m = await make_matched_job(db_session)

    with patch("servicehub.services.codes.send_sms", new=AsyncMock(side_effect=RuntimeError("gateway down"))):
        assert await codes.deliver_onboarding_code(db_session, m.job.job_id)

    assert await count_messages(db_session, Message.bubble_type == BubbleType.ONBOARDING_CODE_INPUT) == 1


@pytest.mark.asyncio
async def test_reminders_post_until_job_starts(db_session: AsyncSession) -> None:
    m = await make_matched_job(db_session)
    await drain_tasks(db_session)

    await drain_tasks(db_session, now=in_minutes(11))
    reminders = (await db_session.execute(
        select(Message).where(*_reminders(m.job.job_id)).order_by(Message.created_at)
    )).scalars().all()
    assert [r.metadata_["reminderNumber"] for r in reminders] == [1, 2]
    assert all(r.chat_id == m.conversation.chat_id for r in reminders)
    assert reminders[0].content.startswith("Reminder 1/12")

    await codes.validate_onboarding_code(db_session, m.job.job_id, m.worker.user_id, m.job.onboarding_code)
    await drain_tasks(db_session, now=in_minutes(11))
    await drain_tasks(db_session, now=in_minutes(90))

    assert await count_messages(db_session, *_reminders(m.job.job_id)) == 2
    assert await count_messages(db_session, *_reminders(m.job.job_id), Message.is_expired.is_(False)) == 0
    leftover = await db_session.execute(
        select(func.count()).select_from(ScheduledTask).where(ScheduledTask.status != TaskStatus.DONE)
    )
    assert leftover.scalar() == 0


@pytest.mark.asyncio
async def test_valid_onboarding_code_schedules_start(db_session: AsyncSession) -> None:
    m = await make_matched_job(db_session)
    await drain_tasks(db_session)

    result = await codes.validate_onboarding_code(
        db_session, m.job.job_id, m.worker.user_id, f"  {m.job.onboarding_code}\n"
    )

    assert result.is_valid
    assert result.transition_scheduled == "in_progress"
    # The transition itself is deferred
    assert m.job.status == JobStatus.MATCHED

    await drain_tasks(db_session)
    await db_session.refresh(m.job)
    assert m.job.status == JobStatus.IN_PROGRESS
    assert m.job.started_at is not None
    assert await count_messages(
        db_session, Message.bubble_type == BubbleType.ONBOARDING_CODE_INPUT, Message.is_expired.is_(False)
    ) == 0
    assert await count_messages(db_session, Message.message_key == "job_started_notification") == 1
    assert await count_messages(db_session, Message.message_key == "work_started") == 1


@pytest.mark.asyncio
async def test_wrong_onboarding_code_rejected_without_lockout(db_session: AsyncSession) -> None:
    m = await make_matched_job(db_session)
    await drain_tasks(db_session)
    wrong = "1000" if m.job.onboarding_code != "1000" else "1001"

    for _ in range(5):
        with pytest.raises(ValidationError) as exc:
            await codes.validate_onboarding_code(db_session, m.job.job_id, m.worker.user_id, wrong)
        assert exc.value.detail == "Invalid onboarding code"

    result = await codes.validate_onboarding_code(
        db_session, m.job.job_id, m.worker.user_id, m.job.onboarding_code
    )
    assert result.is_valid


@pytest.mark.asyncio
async def test_onboarding_code_checks(db_session: AsyncSession) -> None:
    m = await make_matched_job(db_session)

    with pytest.raises(ValidationError) as exc:
        await codes.validate_onboarding_code(db_session, m.job.job_id, m.worker.user_id, "1234")
    assert exc.value.detail == "Onboarding code has not been generated yet"

    await drain_tasks(db_session)
    with pytest.raises(AuthorizationError):
        await codes.validate_onboarding_code(
            db_session, m.job.job_id, m.customer.user_id, m.job.onboarding_code
        )
    with pytest.raises(NotFoundError):
        await codes.validate_onboarding_code(db_session, uuid.uuid4(), m.worker.user_id, "1234")


@pytest.mark.asyncio
async def test_onboarding_code_after_start_rejected(db_session: AsyncSession) -> None:
    m = await make_matched_job(db_session)
    job = await start_matched_job(db_session, m)

    with pytest.raises(InvalidTransitionError):
        await codes.validate_onboarding_code(db_session, job.job_id, m.worker.user_id, job.onboarding_code)


@pytest.mark.asyncio
async def test_completion_code_completes_job(db_session: AsyncSession) -> None:
    m = await make_matched_job(db_session)
    job = await start_matched_job(db_session, m)

    with pytest.raises(ValidationError) as exc:
        await codes.validate_completion_code(db_session, job.job_id, m.worker.user_id, "123456")
    assert exc.value.detail == "Completion code has not been generated yet"

    code = await codes.initiate_completion_flow(db_session, job, m.worker)
    await db_session.commit()

    with pytest.raises(ValidationError):
        await codes.validate_completion_code(db_session, job.job_id, m.worker.user_id, "000000")
    result = await codes.validate_completion_code(db_session, job.job_id, m.worker.user_id, code)
    assert result.transition_scheduled == "completed"

    await drain_tasks(db_session)
    await db_session.refresh(job)
    assert job.status == JobStatus.COMPLETED
    assert job.completed_at is not None


@pytest.mark.asyncio
async def test_expire_onboarding_reminders(db_session: AsyncSession) -> None:
    m = await make_matched_job(db_session)
    await drain_tasks(db_session)
    await codes.send_onboarding_reminder(db_session, m.job.job_id, 1)
    await codes.send_onboarding_reminder(db_session, m.job.job_id, 2)

    assert await codes.expire_onboarding_reminders(db_session, m.job.job_id) == 2
    assert await codes.expire_onboarding_reminders(db_session, m.job.job_id) == 0
