"""Chat and message endpoints."""

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.auth.middleware import AuthenticatedUser, verify_request
from servicehub.auth.rate_limit import check_rate_limit
from servicehub.database import get_db
from servicehub.schemas.chat import (
    ChatOpen,
    ChatResponse,
    MessageCreate,
    MessageResponse,
    MessageStatusResult,
    MessageStatusUpdate,
    PartitionResponse,
    SendMessageResponse,
)
from servicehub.services import chat as chat_service
from servicehub.services import message_store
from servicehub.services.message_router import send_message

router = APIRouter(tags=["chats"], dependencies=[Depends(check_rate_limit)])


@router.post("/chats/service", response_model=ChatResponse)
async def open_service_chat(
    data: ChatOpen,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ChatResponse:
    """Get or create the caller's service chat for a top-level category."""
    chat = await chat_service.get_or_create_service_chat(db, auth.user, data.category_id)
    return ChatResponse.model_validate(chat)


@router.post("/chats/notification", response_model=ChatResponse)
async def open_notification_chat(
    data: ChatOpen,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ChatResponse:
    chat = await chat_service.ensure_notification_chat(db, auth.user, data.category_id)
    return ChatResponse.model_validate(chat)


@router.get("/chats", response_model=list[ChatResponse])
async def list_chats(
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[ChatResponse]:
    chats = await chat_service.list_chats_for_user(db, auth.user_id)
    return [ChatResponse.model_validate(c) for c in chats]


@router.get("/chats/{chat_id}", response_model=ChatResponse)
async def get_chat(
    chat_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ChatResponse:
    chat = await chat_service.get_chat_for_user(db, chat_id, auth.user_id)
    return ChatResponse.model_validate(chat)


@router.get("/chats/{chat_id}/messages", response_model=list[MessageResponse])
async def list_messages(
    chat_id: uuid.UUID,
    month: str | None = Query(None, pattern=r"^\d{4}-\d{2}$"),
    limit: int = Query(100, ge=1, le=500),
    after: datetime | None = Query(None, description="Page forward from this created_at"),
    before: datetime | None = Query(None, description="Page backward from this created_at"),
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[MessageResponse]:
    """Live messages of one month partition (current month by default), oldest first."""
    await chat_service.get_chat_for_user(db, chat_id, auth.user_id)
    messages = await message_store.list_messages(
        db, chat_id, key=month, limit=limit, after=after, before=before
    )
    return [MessageResponse.model_validate(m) for m in messages]


@router.get("/chats/{chat_id}/partitions", response_model=list[PartitionResponse])
async def list_partitions(
    chat_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[PartitionResponse]:
    await chat_service.get_chat_for_user(db, chat_id, auth.user_id)
    partitions = await message_store.list_partitions(db, chat_id)
    return [PartitionResponse.model_validate(p) for p in partitions]


@router.post("/chats/{chat_id}/messages", response_model=SendMessageResponse, status_code=201)
async def post_message(
    chat_id: uuid.UUID,
    data: MessageCreate,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> SendMessageResponse:
    return await send_message(db, chat_id, auth.user, data)


@router.post("/chats/{chat_id}/reset", response_model=ChatResponse)
async def reset_chat(
    chat_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ChatResponse:
    """Purge a service chat's history and greet the customer again."""
    chat = await chat_service.reset_service_chat(db, chat_id, auth.user_id)
    return ChatResponse.model_validate(chat)


@router.post("/messages/delivered", response_model=MessageStatusResult)
async def mark_delivered(
    data: MessageStatusUpdate,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> MessageStatusResult:
    updated = await message_store.mark_delivered(db, data.message_ids, auth.user_id)
    return MessageStatusResult(updated=updated)


@router.post("/messages/read", response_model=MessageStatusResult)
async def mark_read(
    data: MessageStatusUpdate,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> MessageStatusResult:
    updated = await message_store.mark_read(db, data.message_ids, auth.user_id)
    return MessageStatusResult(updated=updated)


@router.post("/messages/{message_id}/expire", response_model=MessageResponse)
async def expire_message(
    message_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    message = await message_store.get_message(db, message_id)
    await chat_service.get_chat_for_user(db, message.chat_id, auth.user_id)
    message = await message_store.expire_message(db, message_id)
    return MessageResponse.model_validate(message)


@router.delete("/messages/{message_id}", status_code=204)
async def delete_message(
    message_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> None:
    await message_store.delete_message(db, message_id, auth.user_id)
