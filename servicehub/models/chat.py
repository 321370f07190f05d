"""Chat, message and month-partition models."""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from servicehub.database import Base, JSONType


class ChatKind(enum.Enum):
    SERVICE = "service"  # customer + category
    NOTIFICATION = "notification"  # worker + category
    CONVERSATION = "conversation"  # customer + worker + job


class BubbleType(enum.Enum):
    TEXT = "text"
    VOICE = "voice"
    PHOTO = "photo"
    CONFIRMATION = "confirmation"
    DATE = "date"
    SYSTEM_INSTRUCTION = "system_instruction"
    SYSTEM_PROMPT = "system_prompt"
    SYSTEM_NOTIFICATION = "system_notification"
    JOB = "job"
    WORKER_JOB = "worker_job"
    BID = "bid"
    RATING_REQUEST = "rating_request"
    ONBOARDING_CODE_INPUT = "onboarding_code_input"
    COMPLETION_CODE_INPUT = "completion_code_input"


class MessageStatus(enum.Enum):
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class Chat(Base):
    __tablename__ = "chats"

    chat_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    kind: Mapped[ChatKind] = mapped_column(
        Enum(ChatKind, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    category_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("categories.category_id", ondelete="RESTRICT"), nullable=False
    )
    customer_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=True, index=True
    )
    worker_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=True, index=True
    )
    job_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("jobs.job_id", ondelete="SET NULL"), nullable=True, index=True
    )
    is_cleared: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    banner_info: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    last_message_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class MessagePartition(Base):
    """Per-(chat, month) message counter; the row exists only while count > 0."""

    __tablename__ = "message_partitions"
    __table_args__ = (
        UniqueConstraint("chat_id", "year_month", name="uq_message_partitions_chat_month"),
    )

    partition_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    chat_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("chats.chat_id", ondelete="CASCADE"), nullable=False
    )
    year_month: Mapped[str] = mapped_column(String(7), nullable=False)
    message_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_chat_partition", "chat_id", "year_month"),
        Index("ix_messages_job_bubble", "job_id", "bubble_type"),
    )

    message_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    chat_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("chats.chat_id", ondelete="CASCADE"), nullable=False
    )
    year_month: Mapped[str] = mapped_column(String(7), nullable=False)
    sender_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False, index=True
    )
    bubble_type: Mapped[BubbleType] = mapped_column(
        Enum(BubbleType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_: Mapped[dict] = mapped_column(
        "metadata", JSONType, nullable=False, default=dict
    )
    # Job the bubble refers to, if any; lets expiry find job-linked bubbles by index
    job_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    message_key: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_system_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_expired: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    expired_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[MessageStatus] = mapped_column(
        Enum(MessageStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=MessageStatus.SENT,
    )
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    mirrored_from_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
