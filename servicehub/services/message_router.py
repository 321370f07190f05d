"""Message sending and cross-chat mirroring.

A job has up to two customer-facing chats: the customer's service chat and
the conversation chat with the assigned worker. Customer messages in the
service chat are copied into the conversation chat; worker messages in the
conversation chat are copied into the service chat. Copies are independent
rows in their own partitions, linked back through ``mirrored_from_id``.
"""

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.config import settings
from servicehub.errors import best_effort
from servicehub.models.chat import BubbleType, Chat, ChatKind
from servicehub.models.job import Job, JobStatus
from servicehub.models.user import User
from servicehub.schemas.chat import MessageCreate, MessageResponse, SendMessageResponse
from servicehub.services import chat as chat_service
from servicehub.services.codes import initiate_completion_flow
from servicehub.services.message_store import append_message

logger = logging.getLogger(__name__)


async def get_message_destinations(
    db: AsyncSession, chat: Chat, sender_id: uuid.UUID
) -> list[Chat]:
    """Chats other than ``chat`` that must receive a copy of the sender's message."""
    if chat.job_id is None:
        return []
    job = await db.get(Job, chat.job_id)
    if job is None:
        return []

    target: Chat | None = None
    if chat.kind == ChatKind.SERVICE and sender_id == chat.customer_id:
        target = await chat_service.find_conversation_chat(db, job)
    elif chat.kind == ChatKind.CONVERSATION and sender_id == chat.worker_id:
        target = await chat_service.find_service_chat_for_job(db, job)

    if target is None or target.chat_id == chat.chat_id:
        return []
    return [target]


def is_completion_trigger(chat: Chat, job: Job | None, sender_id: uuid.UUID, data: MessageCreate) -> bool:
    """The assigned worker typed the completion command on an in-progress job."""
    return (
        data.bubble_type == BubbleType.TEXT
        and data.content.strip() == settings.completion_trigger
        and job is not None
        and job.status == JobStatus.IN_PROGRESS
        and sender_id == job.worker_id
        and chat.job_id == job.job_id
    )


async def send_message(
    db: AsyncSession, chat_id: uuid.UUID, sender: User, data: MessageCreate
) -> SendMessageResponse:
    chat = await chat_service.get_chat_for_user(db, chat_id, sender.user_id)

    job = await db.get(Job, chat.job_id) if chat.job_id is not None else None
    if is_completion_trigger(chat, job, sender.user_id, data):
        # The command itself is never stored as a message.
        await initiate_completion_flow(db, job, sender)
        await db.commit()
        return SendMessageResponse(message=None, completion_flow_started=True)

    message = await append_message(
        db,
        chat.chat_id,
        sender.user_id,
        data.bubble_type,
        data.content,
        data.metadata,
        job_id=chat.job_id,
    )

    mirrored: list[uuid.UUID] = []
    for destination in await get_message_destinations(db, chat, sender.user_id):
        async with best_effort(db, f"mirror message {message.message_id} to chat {destination.chat_id}"):
            copy = await append_message(
                db,
                destination.chat_id,
                sender.user_id,
                data.bubble_type,
                data.content,
                data.metadata,
                job_id=destination.job_id,
                mirrored_from_id=message.message_id,
            )
            mirrored.append(copy.message_id)

    await db.commit()
    await db.refresh(message)
    logger.debug("Message %s sent in chat %s (%d mirrors)", message.message_id, chat.chat_id, len(mirrored))
    return SendMessageResponse(
        message=MessageResponse.model_validate(message),
        mirrored_message_ids=mirrored,
    )
