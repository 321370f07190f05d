"""Tests for cross-chat message mirroring and the completion command."""

from unittest.mock import patch

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.errors import AuthorizationError
from servicehub.models.chat import BubbleType, Message
from servicehub.models.job import JobStatus
from servicehub.models.rating import Rating
from servicehub.schemas.chat import MessageCreate
from servicehub.services import message_store
from servicehub.services.message_router import get_message_destinations, send_message
from tests.conftest import (
    count_messages,
    make_category,
    make_matched_job,
    make_service_chat,
    make_user,
    start_matched_job,
)


def _text(content: str) -> MessageCreate:
    return MessageCreate(bubble_type=BubbleType.TEXT, content=content)


@pytest.mark.asyncio
async def test_customer_message_mirrors_into_conversation(db_session: AsyncSession) -> None:
    m = await make_matched_job(db_session)

    result = await send_message(db_session, m.service_chat.chat_id, m.customer, _text("Gate code is 1234"))

    assert result.message is not None
    assert result.message.chat_id == m.service_chat.chat_id
    assert len(result.mirrored_message_ids) == 1
    copy = await db_session.get(Message, result.mirrored_message_ids[0])
    assert copy.chat_id == m.conversation.chat_id
    assert copy.content == "Gate code is 1234"
    assert copy.sender_id == m.customer.user_id
    assert copy.mirrored_from_id == result.message.message_id


@pytest.mark.asyncio
async def test_worker_message_mirrors_into_service_chat(db_session: AsyncSession) -> None:
    m = await make_matched_job(db_session)

    result = await send_message(db_session, m.conversation.chat_id, m.worker, _text("Running 10 min late"))

    assert len(result.mirrored_message_ids) == 1
    copy = await db_session.get(Message, result.mirrored_message_ids[0])
    assert copy.chat_id == m.service_chat.chat_id
    assert copy.job_id == m.job.job_id


@pytest.mark.asyncio
async def test_customer_message_in_conversation_is_not_mirrored(db_session: AsyncSession) -> None:
    m = await make_matched_job(db_session)
    destinations = await get_message_destinations(db_session, m.conversation, m.customer.user_id)
    assert destinations == []

    result = await send_message(db_session, m.conversation.chat_id, m.customer, _text("Thanks!"))
    assert result.mirrored_message_ids == []


@pytest.mark.asyncio
async def test_chat_without_job_has_no_destinations(db_session: AsyncSession) -> None:
    category = await make_category(db_session)
    customer = await make_user(db_session)
    chat = await make_service_chat(db_session, customer, category)

    assert await get_message_destinations(db_session, chat, customer.user_id) == []
    result = await send_message(db_session, chat.chat_id, customer, _text("hello?"))
    assert result.message is not None
    assert result.mirrored_message_ids == []


@pytest.mark.asyncio
async def test_non_member_cannot_send(db_session: AsyncSession) -> None:
    m = await make_matched_job(db_session)
    stranger = await make_user(db_session, name="Stranger")
    with pytest.raises(AuthorizationError):
        await send_message(db_session, m.conversation.chat_id, stranger, _text("hi"))


@pytest.mark.asyncio
async def test_completion_command_starts_completion_flow(db_session: AsyncSession) -> None:
    m = await make_matched_job(db_session)
    job = await start_matched_job(db_session, m)
    assert job.status == JobStatus.IN_PROGRESS

    result = await send_message(db_session, m.conversation.chat_id, m.worker, _text(" *1# "))

    assert result.completion_flow_started
    assert result.message is None
    # The command itself is never stored
    assert await count_messages(db_session, Message.content.like("%*1#%"), Message.bubble_type == BubbleType.TEXT) == 0

    await db_session.refresh(job)
    assert job.completion_code is not None and len(job.completion_code) == 6
    assert job.status == JobStatus.IN_PROGRESS

    inputs = await count_messages(
        db_session,
        Message.chat_id == m.conversation.chat_id,
        Message.bubble_type == BubbleType.COMPLETION_CODE_INPUT,
    )
    assert inputs == 1
    delivery = await db_session.execute(
        select(Message).where(
            Message.chat_id == m.service_chat.chat_id,
            Message.message_key == "completion_code_delivery",
        )
    )
    assert job.completion_code in delivery.scalar_one().content
    rating_requests = await count_messages(
        db_session, Message.job_id == job.job_id, Message.bubble_type == BubbleType.RATING_REQUEST
    )
    assert rating_requests == 2


@pytest.mark.asyncio
async def test_completion_command_before_start_is_plain_text(db_session: AsyncSession) -> None:
    m = await make_matched_job(db_session)

    result = await send_message(db_session, m.conversation.chat_id, m.worker, _text("*1#"))

    assert not result.completion_flow_started
    assert result.message is not None
    assert result.message.content == "*1#"
    await db_session.refresh(m.job)
    assert m.job.completion_code is None


@pytest.mark.asyncio
async def test_customer_cannot_trigger_completion(db_session: AsyncSession) -> None:
    m = await make_matched_job(db_session)
    await start_matched_job(db_session, m)

    result = await send_message(db_session, m.service_chat.chat_id, m.customer, _text("*1#"))

    assert not result.completion_flow_started
    await db_session.refresh(m.job)
    assert m.job.completion_code is None


@pytest.mark.asyncio
async def test_repeated_completion_command_is_idempotent(db_session: AsyncSession) -> None:
    m = await make_matched_job(db_session)
    job = await start_matched_job(db_session, m)

    await send_message(db_session, m.conversation.chat_id, m.worker, _text("*1#"))
    first_code = job.completion_code
    await send_message(db_session, m.conversation.chat_id, m.worker, _text("*1#"))

    await db_session.refresh(job)
    assert job.completion_code == first_code
    assert await count_messages(
        db_session, Message.job_id == job.job_id, Message.bubble_type == BubbleType.RATING_REQUEST
    ) == 2
    assert await count_messages(
        db_session, Message.job_id == job.job_id, Message.bubble_type == BubbleType.COMPLETION_CODE_INPUT
    ) == 1
    ratings = await db_session.execute(select(Rating))
    assert ratings.scalars().all() == []


@pytest.mark.asyncio
async def test_mirror_failure_keeps_original_message(db_session: AsyncSession) -> None:
    """A failed copy is logged and skipped; the sender's message still lands."""
    m = await make_matched_job(db_session, amount="75.00")
    real_append = message_store.append_message

    async def flaky_append(db, chat_id, *args, **kwargs):  # type: ignore[no-untyped-def]
        if kwargs.get("mirrored_from_id") is not None:
            raise RuntimeError("partition store unavailable")
        return await real_append(db, chat_id, *args, **kwargs)

    with patch("servicehub.services.message_router.append_message", side_effect=flaky_append):
        result = await send_message(db_session, m.service_chat.chat_id, m.customer, _text("still there?"))

    assert result.message is not None
    assert result.mirrored_message_ids == []
    assert await count_messages(db_session, Message.content == "still there?") == 1
