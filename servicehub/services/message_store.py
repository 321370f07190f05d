"""Month-partitioned message log with soft expiry.

Every message lives under a ``(chat_id, year_month)`` partition whose counter
moves in lockstep with inserts and hard deletes. A partition row exists only
while its counter is positive, so "no partitions" means "fresh chat".
"""

import logging
import uuid
from collections import Counter
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.errors import AuthorizationError, NotFoundError
from servicehub.models.chat import BubbleType, Chat, Message, MessagePartition, MessageStatus
from servicehub.schemas.bubbles import _Payload, validate_metadata

logger = logging.getLogger(__name__)


def year_month(now: datetime | None = None) -> str:
    """Partition key for a timestamp, e.g. ``2026-03``."""
    now = now or datetime.now(UTC)
    return now.strftime("%Y-%m")


async def adjust_partition(
    db: AsyncSession, chat_id: uuid.UUID, key: str, delta: int
) -> None:
    """Apply ``delta`` to a partition counter, creating or removing the row."""
    result = await db.execute(
        select(MessagePartition)
        .where(MessagePartition.chat_id == chat_id, MessagePartition.year_month == key)
        .with_for_update()
    )
    partition = result.scalar_one_or_none()

    if partition is None:
        if delta > 0:
            db.add(MessagePartition(chat_id=chat_id, year_month=key, message_count=delta))
        return

    new_count = partition.message_count + delta
    if new_count <= 0:
        await db.delete(partition)
    else:
        partition.message_count = new_count


async def append_message(
    db: AsyncSession,
    chat_id: uuid.UUID,
    sender_id: uuid.UUID,
    bubble_type: BubbleType,
    content: str,
    metadata: _Payload | dict[str, Any] | None = None,
    *,
    job_id: uuid.UUID | None = None,
    message_key: str | None = None,
    system: bool = False,
    mirrored_from_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> Message:
    """Insert a message into its month partition. Does not commit."""
    now = now or datetime.now(UTC)
    key = year_month(now)
    message = Message(
        message_id=uuid.uuid4(),
        chat_id=chat_id,
        year_month=key,
        sender_id=sender_id,
        bubble_type=bubble_type,
        content=content,
        metadata_=validate_metadata(bubble_type, metadata),
        job_id=job_id,
        message_key=message_key,
        is_system_generated=system,
        status=MessageStatus.DELIVERED if system else MessageStatus.SENT,
        delivered_at=now if system else None,
        mirrored_from_id=mirrored_from_id,
        created_at=now,
    )
    db.add(message)
    await adjust_partition(db, chat_id, key, +1)
    await db.execute(update(Chat).where(Chat.chat_id == chat_id).values(last_message_at=now))
    await db.flush()
    return message


async def get_message(db: AsyncSession, message_id: uuid.UUID) -> Message:
    result = await db.execute(select(Message).where(Message.message_id == message_id))
    message = result.scalar_one_or_none()
    if message is None:
        raise NotFoundError("Message not found")
    return message


async def delete_messages(db: AsyncSession, messages: list[Message]) -> int:
    """Hard-delete messages and decrement their partitions. Does not commit."""
    if not messages:
        return 0
    per_partition = Counter((m.chat_id, m.year_month) for m in messages)
    for message in messages:
        await db.delete(message)
    for (chat_id, key), count in per_partition.items():
        await adjust_partition(db, chat_id, key, -count)
    await db.flush()
    return len(messages)


async def delete_message(db: AsyncSession, message_id: uuid.UUID, user_id: uuid.UUID) -> None:
    """Delete one of the caller's own messages."""
    message = await get_message(db, message_id)
    if message.sender_id != user_id or message.is_system_generated:
        raise AuthorizationError("Only the sender can delete this message")
    await delete_messages(db, [message])
    await db.commit()


async def purge_chat(db: AsyncSession, chat_id: uuid.UUID) -> int:
    """Hard-delete every message and partition of a chat. Does not commit."""
    count_result = await db.execute(
        select(func.count()).select_from(Message).where(Message.chat_id == chat_id)
    )
    count = count_result.scalar() or 0
    await db.execute(delete(Message).where(Message.chat_id == chat_id))
    await db.execute(delete(MessagePartition).where(MessagePartition.chat_id == chat_id))
    return count


async def expire_where(db: AsyncSession, *conditions: Any) -> int:
    """Soft-expire every live message matching ``conditions``. Does not commit."""
    result = await db.execute(
        update(Message)
        .where(Message.is_expired.is_(False), *conditions)
        .values(is_expired=True, expired_at=datetime.now(UTC))
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0


async def expire_message(db: AsyncSession, message_id: uuid.UUID) -> Message:
    message = await get_message(db, message_id)
    if not message.is_expired:
        message.is_expired = True
        message.expired_at = datetime.now(UTC)
    await db.commit()
    return message


async def expire_job_messages(db: AsyncSession, job_id: uuid.UUID) -> int:
    """Expire every live message in every chat currently linked to the job."""
    linked = select(Chat.chat_id).where(Chat.job_id == job_id)
    return await expire_where(db, Message.chat_id.in_(linked))


async def expire_job_bubbles(
    db: AsyncSession, job_id: uuid.UUID, *bubble_types: BubbleType, message_key: str | None = None
) -> int:
    """Expire bubbles referring to the job, wherever they live."""
    conditions = [Message.job_id == job_id]
    if bubble_types:
        conditions.append(Message.bubble_type.in_(bubble_types))
    if message_key is not None:
        conditions.append(Message.message_key == message_key)
    return await expire_where(db, *conditions)


async def expire_non_initial_messages(db: AsyncSession, chat_id: uuid.UUID) -> int:
    """Expire everything except the welcome/voice-instruction bubbles."""
    result = await db.execute(
        select(Message).where(Message.chat_id == chat_id, Message.is_expired.is_(False))
    )
    now = datetime.now(UTC)
    expired = 0
    for message in result.scalars().all():
        if message.metadata_.get("isInitialInstruction"):
            continue
        message.is_expired = True
        message.expired_at = now
        expired += 1
    return expired


async def list_partitions(db: AsyncSession, chat_id: uuid.UUID) -> list[MessagePartition]:
    result = await db.execute(
        select(MessagePartition)
        .where(MessagePartition.chat_id == chat_id)
        .order_by(MessagePartition.year_month.desc())
    )
    return list(result.scalars().all())


async def is_chat_fresh(db: AsyncSession, chat_id: uuid.UUID) -> bool:
    """A chat is fresh when it has no partition rows at all."""
    result = await db.execute(
        select(MessagePartition.partition_id)
        .where(MessagePartition.chat_id == chat_id)
        .limit(1)
    )
    return result.first() is None


async def list_messages(
    db: AsyncSession,
    chat_id: uuid.UUID,
    key: str | None = None,
    limit: int = 100,
    include_expired: bool = False,
    *,
    after: datetime | None = None,
    before: datetime | None = None,
) -> list[Message]:
    """Messages of one partition (current month by default), oldest first.

    ``after`` pages forward from a ``created_at`` cursor. ``before`` returns the
    ``limit`` messages just older than the cursor, which is how a client walks
    back from the newest page.
    """
    query = select(Message).where(
        Message.chat_id == chat_id,
        Message.year_month == (key or year_month()),
    )
    if not include_expired:
        query = query.where(Message.is_expired.is_(False))
    if after is not None:
        query = query.where(Message.created_at > after)
    if before is not None:
        query = query.where(Message.created_at < before)
        result = await db.execute(query.order_by(Message.created_at.desc()).limit(limit))
        return list(reversed(result.scalars().all()))
    result = await db.execute(query.order_by(Message.created_at.asc()).limit(limit))
    return list(result.scalars().all())


async def find_job_bubble(
    db: AsyncSession,
    job_id: uuid.UUID,
    bubble_type: BubbleType,
    *,
    chat_id: uuid.UUID | None = None,
    sender_id: uuid.UUID | None = None,
    content: str | None = None,
    include_expired: bool = False,
) -> Message | None:
    """Most recent bubble of a type referring to the job, live ones only by default."""
    query = select(Message).where(
        Message.job_id == job_id,
        Message.bubble_type == bubble_type,
    )
    if not include_expired:
        query = query.where(Message.is_expired.is_(False))
    if chat_id is not None:
        query = query.where(Message.chat_id == chat_id)
    if sender_id is not None:
        query = query.where(Message.sender_id == sender_id)
    if content is not None:
        query = query.where(Message.content == content)
    result = await db.execute(query.order_by(Message.created_at.desc()).limit(1))
    return result.scalar_one_or_none()


async def _set_status(
    db: AsyncSession,
    message_ids: list[uuid.UUID],
    recipient_id: uuid.UUID,
    status: MessageStatus,
) -> int:
    # Receipts only count in chats the recipient takes part in
    member_of = select(Chat.chat_id).where(
        or_(Chat.customer_id == recipient_id, Chat.worker_id == recipient_id)
    )
    result = await db.execute(
        select(Message).where(
            Message.message_id.in_(message_ids),
            Message.sender_id != recipient_id,
            Message.chat_id.in_(member_of),
        )
    )
    now = datetime.now(UTC)
    changed = 0
    for message in result.scalars().all():
        if status == MessageStatus.DELIVERED:
            if message.status in (MessageStatus.DELIVERED, MessageStatus.READ):
                continue
            message.delivered_at = now
        else:
            if message.status == MessageStatus.READ:
                continue
            message.delivered_at = message.delivered_at or now
            message.read_at = now
        message.status = status
        changed += 1
    await db.commit()
    return changed


async def mark_delivered(
    db: AsyncSession, message_ids: list[uuid.UUID], recipient_id: uuid.UUID
) -> int:
    """Mark messages delivered to ``recipient_id``; own messages and other chats are skipped."""
    return await _set_status(db, message_ids, recipient_id, MessageStatus.DELIVERED)


async def mark_read(
    db: AsyncSession, message_ids: list[uuid.UUID], recipient_id: uuid.UUID
) -> int:
    """Mark messages read by ``recipient_id``; own messages and other chats are skipped."""
    return await _set_status(db, message_ids, recipient_id, MessageStatus.READ)
