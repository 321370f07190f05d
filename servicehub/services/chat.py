"""Chat topology: service, notification and conversation chats."""

import logging
import uuid

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.errors import AuthorizationError, InvalidTransitionError, NotFoundError, ValidationError
from servicehub.models.category import Category
from servicehub.models.chat import BubbleType, Chat, ChatKind
from servicehub.models.job import Job, JobStatus
from servicehub.models.user import User, UserType
from servicehub.services.message_store import is_chat_fresh, purge_chat
from servicehub.services.system_messages import post_system_message

logger = logging.getLogger(__name__)


async def get_chat(db: AsyncSession, chat_id: uuid.UUID, *, for_update: bool = False) -> Chat:
    query = select(Chat).where(Chat.chat_id == chat_id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    chat = result.scalar_one_or_none()
    if chat is None:
        raise NotFoundError("Chat not found")
    return chat


def assert_member(chat: Chat, user_id: uuid.UUID) -> None:
    if user_id not in (chat.customer_id, chat.worker_id):
        raise AuthorizationError("Not a participant in this chat")


async def get_chat_for_user(db: AsyncSession, chat_id: uuid.UUID, user_id: uuid.UUID) -> Chat:
    chat = await get_chat(db, chat_id)
    assert_member(chat, user_id)
    return chat


async def list_chats_for_user(db: AsyncSession, user_id: uuid.UUID) -> list[Chat]:
    result = await db.execute(
        select(Chat)
        .where(or_(Chat.customer_id == user_id, Chat.worker_id == user_id))
        .order_by(Chat.created_at.desc())
    )
    return list(result.scalars().all())


async def _require_top_level_category(db: AsyncSession, category_id: uuid.UUID) -> Category:
    result = await db.execute(select(Category).where(Category.category_id == category_id))
    category = result.scalar_one_or_none()
    if category is None:
        raise NotFoundError("Category not found")
    if category.parent_id is not None:
        raise ValidationError("Chats are scoped to top-level categories")
    return category


async def initialize_service_chat(db: AsyncSession, chat: Chat, customer: User) -> None:
    """Post the welcome and voice-instruction bubbles into a fresh service chat."""
    if not await is_chat_fresh(db, chat.chat_id):
        return
    await post_system_message(
        db, chat, BubbleType.SYSTEM_INSTRUCTION, "welcome",
        variables={"customer_name": customer.name},
        is_initial_instruction=True,
    )
    await post_system_message(
        db, chat, BubbleType.SYSTEM_INSTRUCTION, "voice_instruction",
        is_initial_instruction=True,
    )


async def find_service_chat(
    db: AsyncSession, customer_id: uuid.UUID, category_id: uuid.UUID
) -> Chat | None:
    result = await db.execute(
        select(Chat)
        .where(
            Chat.kind == ChatKind.SERVICE,
            Chat.customer_id == customer_id,
            Chat.category_id == category_id,
        )
        .order_by(Chat.created_at.asc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_or_create_service_chat(
    db: AsyncSession, customer: User, category_id: uuid.UUID
) -> Chat:
    """Return the customer's chat for a category, creating and greeting it if needed."""
    if customer.user_type != UserType.CUSTOMER:
        raise AuthorizationError("Only customers have service chats")
    await _require_top_level_category(db, category_id)

    chat = await find_service_chat(db, customer.user_id, category_id)
    if chat is None:
        chat = Chat(
            chat_id=uuid.uuid4(),
            kind=ChatKind.SERVICE,
            category_id=category_id,
            customer_id=customer.user_id,
        )
        db.add(chat)
        await db.flush()
        logger.info("Created service chat %s for customer %s", chat.chat_id, customer.user_id)

    await initialize_service_chat(db, chat, customer)
    await db.commit()
    await db.refresh(chat)
    return chat


async def get_or_create_notification_chat(
    db: AsyncSession, worker_id: uuid.UUID, category_id: uuid.UUID
) -> Chat:
    """Worker's broadcast inbox for a category. Does not commit."""
    result = await db.execute(
        select(Chat)
        .where(
            Chat.kind == ChatKind.NOTIFICATION,
            Chat.worker_id == worker_id,
            Chat.category_id == category_id,
        )
        .order_by(Chat.created_at.asc())
        .limit(1)
    )
    chat = result.scalar_one_or_none()
    if chat is None:
        chat = Chat(
            chat_id=uuid.uuid4(),
            kind=ChatKind.NOTIFICATION,
            category_id=category_id,
            worker_id=worker_id,
        )
        db.add(chat)
        await db.flush()
    return chat


async def ensure_notification_chat(
    db: AsyncSession, worker: User, category_id: uuid.UUID
) -> Chat:
    if worker.user_type != UserType.WORKER:
        raise AuthorizationError("Only workers have notification chats")
    await _require_top_level_category(db, category_id)
    chat = await get_or_create_notification_chat(db, worker.user_id, category_id)
    await db.commit()
    return chat


async def find_service_chat_for_job(db: AsyncSession, job: Job) -> Chat | None:
    """The customer's originating chat: linked by job_id, else by customer + category."""
    result = await db.execute(
        select(Chat)
        .where(Chat.kind == ChatKind.SERVICE, Chat.job_id == job.job_id)
        .limit(1)
    )
    chat = result.scalar_one_or_none()
    if chat is None:
        chat = await find_service_chat(db, job.customer_id, job.category_id)
    return chat


async def find_conversation_chat(db: AsyncSession, job: Job) -> Chat | None:
    """Customer/worker chat for the job, including after its job link was cleared."""
    result = await db.execute(
        select(Chat)
        .where(Chat.kind == ChatKind.CONVERSATION, Chat.job_id == job.job_id)
        .limit(1)
    )
    chat = result.scalar_one_or_none()
    if chat is None and job.worker_id is not None:
        result = await db.execute(
            select(Chat)
            .where(
                Chat.kind == ChatKind.CONVERSATION,
                Chat.customer_id == job.customer_id,
                Chat.worker_id == job.worker_id,
                Chat.category_id == job.category_id,
            )
            .order_by(Chat.created_at.desc())
            .limit(1)
        )
        chat = result.scalar_one_or_none()
    return chat


async def create_conversation_chat(db: AsyncSession, job: Job, worker_id: uuid.UUID) -> Chat:
    """New dedicated customer + worker chat for the job. Does not commit."""
    chat = Chat(
        chat_id=uuid.uuid4(),
        kind=ChatKind.CONVERSATION,
        category_id=job.category_id,
        customer_id=job.customer_id,
        worker_id=worker_id,
        job_id=job.job_id,
    )
    db.add(chat)
    await db.flush()
    logger.info("Created conversation chat %s for job %s", chat.chat_id, job.job_id)
    return chat


def convert_to_conversation(chat: Chat, job: Job) -> Chat:
    """Turn a worker's notification chat into the job's conversation chat in place."""
    if chat.kind != ChatKind.NOTIFICATION:
        raise InvalidTransitionError("Only notification chats can become conversation chats")
    chat.kind = ChatKind.CONVERSATION
    chat.customer_id = job.customer_id
    chat.job_id = job.job_id
    return chat


async def reset_chats_for_job(db: AsyncSession, job_id: uuid.UUID) -> int:
    """Clear the job reference from every linked chat. Does not commit.

    Service chats also lose any worker reference; conversation chats keep
    both participants so their history stays reachable.
    """
    result = await db.execute(select(Chat).where(Chat.job_id == job_id))
    chats = list(result.scalars().all())
    for chat in chats:
        chat.job_id = None
        chat.banner_info = None
        if chat.kind == ChatKind.SERVICE:
            chat.worker_id = None
    return len(chats)


async def reset_service_chat(db: AsyncSession, chat_id: uuid.UUID, user_id: uuid.UUID) -> Chat:
    """Hard-reset a service chat to its pristine, freshly greeted state."""
    chat = await get_chat_for_user(db, chat_id, user_id)
    if chat.kind != ChatKind.SERVICE:
        raise ValidationError("Only service chats can be reset")
    if chat.job_id is not None:
        job = await db.get(Job, chat.job_id)
        if job is not None and job.status not in (JobStatus.COMPLETED, JobStatus.CANCELLED):
            raise InvalidTransitionError("Chat has an active job")

    purged = await clear_service_chat(db, chat)
    await db.commit()
    await db.refresh(chat)
    logger.info("Reset service chat %s (%d messages purged)", chat.chat_id, purged)
    return chat


async def clear_service_chat(db: AsyncSession, chat: Chat) -> int:
    """Purge history and linkage, then greet again. Does not commit."""
    purged = await purge_chat(db, chat.chat_id)
    chat.job_id = None
    chat.worker_id = None
    chat.banner_info = None
    chat.is_cleared = True

    customer = await db.get(User, chat.customer_id)
    await initialize_service_chat(db, chat, customer)
    return purged
