"""Tests for the month-partitioned message log."""

import uuid
from datetime import UTC, datetime

import pydantic
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.errors import AuthorizationError, NotFoundError
from servicehub.models.chat import BubbleType, Chat, ChatKind, Message, MessageStatus
from servicehub.models.user import UserType
from servicehub.schemas.bubbles import CodeInputMetadata, validate_metadata
from servicehub.services import message_store
from tests.conftest import count_messages, make_category, make_user


async def _chat(db: AsyncSession) -> tuple[Chat, uuid.UUID, uuid.UUID]:
    category = await make_category(db)
    customer = await make_user(db)
    worker = await make_user(db, UserType.WORKER)
    chat = Chat(
        chat_id=uuid.uuid4(),
        kind=ChatKind.CONVERSATION,
        category_id=category.category_id,
        customer_id=customer.user_id,
        worker_id=worker.user_id,
    )
    db.add(chat)
    await db.commit()
    return chat, customer.user_id, worker.user_id


def test_year_month_key() -> None:
    assert message_store.year_month(datetime(2026, 3, 9, tzinfo=UTC)) == "2026-03"
    assert message_store.year_month(datetime(2025, 12, 31, 23, 59, tzinfo=UTC)) == "2025-12"


@pytest.mark.asyncio
async def test_append_creates_and_counts_partition(db_session: AsyncSession) -> None:
    chat, customer_id, _ = await _chat(db_session)
    assert await message_store.is_chat_fresh(db_session, chat.chat_id)

    await message_store.append_message(db_session, chat.chat_id, customer_id, BubbleType.TEXT, "hi")
    await message_store.append_message(db_session, chat.chat_id, customer_id, BubbleType.TEXT, "there")
    await db_session.commit()

    partitions = await message_store.list_partitions(db_session, chat.chat_id)
    assert len(partitions) == 1
    assert partitions[0].year_month == message_store.year_month()
    assert partitions[0].message_count == 2
    assert not await message_store.is_chat_fresh(db_session, chat.chat_id)


@pytest.mark.asyncio
async def test_messages_land_in_their_own_month(db_session: AsyncSession) -> None:
    chat, customer_id, _ = await _chat(db_session)
    await message_store.append_message(
        db_session, chat.chat_id, customer_id, BubbleType.TEXT, "january",
        now=datetime(2026, 1, 20, tzinfo=UTC),
    )
    await message_store.append_message(
        db_session, chat.chat_id, customer_id, BubbleType.TEXT, "february",
        now=datetime(2026, 2, 3, tzinfo=UTC),
    )
    await db_session.commit()

    partitions = await message_store.list_partitions(db_session, chat.chat_id)
    assert [p.year_month for p in partitions] == ["2026-02", "2026-01"]
    january = await message_store.list_messages(db_session, chat.chat_id, key="2026-01")
    assert [m.content for m in january] == ["january"]


@pytest.mark.asyncio
async def test_deleting_last_message_removes_partition(db_session: AsyncSession) -> None:
    """Partition rows exist only while their counter is positive."""
    chat, customer_id, _ = await _chat(db_session)
    first = await message_store.append_message(db_session, chat.chat_id, customer_id, BubbleType.TEXT, "a")
    second = await message_store.append_message(db_session, chat.chat_id, customer_id, BubbleType.TEXT, "b")
    await db_session.commit()

    await message_store.delete_message(db_session, first.message_id, customer_id)
    partitions = await message_store.list_partitions(db_session, chat.chat_id)
    assert partitions[0].message_count == 1

    await message_store.delete_message(db_session, second.message_id, customer_id)
    assert await message_store.list_partitions(db_session, chat.chat_id) == []
    assert await message_store.is_chat_fresh(db_session, chat.chat_id)


@pytest.mark.asyncio
async def test_only_sender_can_delete(db_session: AsyncSession) -> None:
    chat, customer_id, worker_id = await _chat(db_session)
    message = await message_store.append_message(
        db_session, chat.chat_id, customer_id, BubbleType.TEXT, "mine"
    )
    await db_session.commit()

    with pytest.raises(AuthorizationError):
        await message_store.delete_message(db_session, message.message_id, worker_id)


@pytest.mark.asyncio
async def test_get_missing_message(db_session: AsyncSession) -> None:
    with pytest.raises(NotFoundError):
        await message_store.get_message(db_session, uuid.uuid4())


@pytest.mark.asyncio
async def test_purge_chat_clears_messages_and_partitions(db_session: AsyncSession) -> None:
    chat, customer_id, _ = await _chat(db_session)
    for text in ("one", "two", "three"):
        await message_store.append_message(db_session, chat.chat_id, customer_id, BubbleType.TEXT, text)
    await db_session.commit()

    purged = await message_store.purge_chat(db_session, chat.chat_id)
    await db_session.commit()

    assert purged == 3
    assert await count_messages(db_session, Message.chat_id == chat.chat_id) == 0
    assert await message_store.is_chat_fresh(db_session, chat.chat_id)


@pytest.mark.asyncio
async def test_expired_messages_hidden_from_listing(db_session: AsyncSession) -> None:
    chat, customer_id, _ = await _chat(db_session)
    keep = await message_store.append_message(db_session, chat.chat_id, customer_id, BubbleType.TEXT, "keep")
    gone = await message_store.append_message(db_session, chat.chat_id, customer_id, BubbleType.TEXT, "gone")
    await db_session.commit()

    expired = await message_store.expire_message(db_session, gone.message_id)
    assert expired.is_expired
    assert expired.expired_at is not None

    live = await message_store.list_messages(db_session, chat.chat_id)
    assert [m.message_id for m in live] == [keep.message_id]
    everything = await message_store.list_messages(db_session, chat.chat_id, include_expired=True)
    assert len(everything) == 2


@pytest.mark.asyncio
async def test_expire_job_bubbles_by_type(db_session: AsyncSession) -> None:
    chat, customer_id, worker_id = await _chat(db_session)
    job_id = uuid.uuid4()
    bubble = await message_store.append_message(
        db_session, chat.chat_id, worker_id, BubbleType.ONBOARDING_CODE_INPUT, "Enter code",
        CodeInputMetadata(job_id=job_id, code_type="onboarding", max_length=4),
        job_id=job_id, system=True,
    )
    text = await message_store.append_message(
        db_session, chat.chat_id, customer_id, BubbleType.TEXT, "see you soon", job_id=job_id
    )
    await db_session.commit()

    count = await message_store.expire_job_bubbles(db_session, job_id, BubbleType.ONBOARDING_CODE_INPUT)
    await db_session.commit()

    assert count == 1
    assert bubble.is_expired
    assert not text.is_expired
    assert await message_store.find_job_bubble(db_session, job_id, BubbleType.ONBOARDING_CODE_INPUT) is None
    found = await message_store.find_job_bubble(
        db_session, job_id, BubbleType.ONBOARDING_CODE_INPUT, include_expired=True
    )
    assert found is not None and found.message_id == bubble.message_id


@pytest.mark.asyncio
async def test_system_messages_start_delivered(db_session: AsyncSession) -> None:
    chat, customer_id, _ = await _chat(db_session)
    user_message = await message_store.append_message(
        db_session, chat.chat_id, customer_id, BubbleType.TEXT, "hello"
    )
    system_message = await message_store.append_message(
        db_session, chat.chat_id, customer_id, BubbleType.SYSTEM_NOTIFICATION, "note",
        {"messageKey": "job_completed_notification"}, system=True,
    )
    assert user_message.status == MessageStatus.SENT
    assert system_message.status == MessageStatus.DELIVERED
    assert system_message.metadata_["isSystemGenerated"] is True
    assert system_message.metadata_["messageKey"] == "job_completed_notification"


@pytest.mark.asyncio
async def test_delivery_and_read_receipts_skip_own_messages(db_session: AsyncSession) -> None:
    chat, customer_id, worker_id = await _chat(db_session)
    from_customer = await message_store.append_message(
        db_session, chat.chat_id, customer_id, BubbleType.TEXT, "are you coming?"
    )
    from_worker = await message_store.append_message(
        db_session, chat.chat_id, worker_id, BubbleType.TEXT, "on my way"
    )
    await db_session.commit()
    ids = [from_customer.message_id, from_worker.message_id]

    assert await message_store.mark_delivered(db_session, ids, worker_id) == 1
    assert from_customer.status == MessageStatus.DELIVERED
    assert from_worker.status == MessageStatus.SENT

    assert await message_store.mark_read(db_session, ids, worker_id) == 1
    assert from_customer.status == MessageStatus.READ
    assert from_customer.read_at is not None
    # Already read: nothing changes the second time
    assert await message_store.mark_read(db_session, ids, worker_id) == 0


@pytest.mark.asyncio
async def test_receipts_ignore_chats_the_recipient_is_not_in(db_session: AsyncSession) -> None:
    chat, customer_id, worker_id = await _chat(db_session)
    stranger = await make_user(db_session, name="Stranger")
    message = await message_store.append_message(
        db_session, chat.chat_id, customer_id, BubbleType.TEXT, "gate code is 4411"
    )
    await db_session.commit()

    assert await message_store.mark_read(db_session, [message.message_id], stranger.user_id) == 0
    assert await message_store.mark_delivered(db_session, [message.message_id], stranger.user_id) == 0
    assert message.status == MessageStatus.SENT

    assert await message_store.mark_read(db_session, [message.message_id], worker_id) == 1
    assert message.status == MessageStatus.READ


@pytest.mark.asyncio
async def test_list_messages_pages_by_cursor(db_session: AsyncSession) -> None:
    chat, customer_id, _ = await _chat(db_session)
    stamps = [datetime(2026, 3, 1, 9, minute, tzinfo=UTC) for minute in range(5)]
    for i, stamp in enumerate(stamps):
        await message_store.append_message(
            db_session, chat.chat_id, customer_id, BubbleType.TEXT, f"m{i}", now=stamp
        )
    await db_session.commit()

    forward = await message_store.list_messages(
        db_session, chat.chat_id, key="2026-03", limit=2, after=stamps[1]
    )
    assert [m.content for m in forward] == ["m2", "m3"]

    newest = await message_store.list_messages(
        db_session, chat.chat_id, key="2026-03", limit=2, before=datetime(2026, 3, 1, 10, tzinfo=UTC)
    )
    assert [m.content for m in newest] == ["m3", "m4"]
    older = await message_store.list_messages(
        db_session, chat.chat_id, key="2026-03", limit=2, before=newest[0].created_at
    )
    assert [m.content for m in older] == ["m1", "m2"]


def test_metadata_must_match_bubble_type() -> None:
    with pytest.raises(TypeError):
        validate_metadata(
            BubbleType.BID,
            CodeInputMetadata(job_id=uuid.uuid4(), code_type="completion", max_length=6),
        )
    with pytest.raises(pydantic.ValidationError):
        validate_metadata(BubbleType.SYSTEM_PROMPT, {"jobId": str(uuid.uuid4())})
    with pytest.raises(pydantic.ValidationError):
        validate_metadata(BubbleType.TEXT, {"isSystemGenerated": True})


def test_user_metadata_keeps_extra_fields() -> None:
    stored = validate_metadata(BubbleType.VOICE, {"duration": 4.2, "waveform": [1, 2, 3]})
    assert stored == {"isSystemGenerated": False, "duration": 4.2, "waveform": [1, 2, 3]}
