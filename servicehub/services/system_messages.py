"""System bubble templates and the helper that posts them."""

import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.models.chat import BubbleType, Chat, Message
from servicehub.schemas.bubbles import SystemMetadata
from servicehub.services.message_store import append_message

TEMPLATES: dict[str, str] = {
    "welcome": "Hi {customer_name}! Tell us what you need help with.",
    "voice_instruction": "Record a short voice message describing the job.",
    "job_posted_loading": "Finding the right workers for your job...",
    "bid_accepted_notification": (
        "You accepted {worker_name}'s offer. Continue with them in your new conversation."
    ),
    "onboarding_code_delivery": "Give this code to {worker_name} when they arrive: {code}",
    "onboarding_code_prompt": "Ask the customer for the 4-digit start code.",
    "onboarding_reminder": (
        "Reminder {reminder_number}/{total_reminders}: enter the start code once you arrive."
    ),
    "job_started_notification": "{worker_name} has started working on your job.",
    "work_started": "Work started. Send *1# when the job is finished.",
    "completion_code_delivery": "Job finished? Give this code to {worker_name}: {code}",
    "completion_code_prompt": "Ask the customer for the 6-digit completion code.",
    "job_completed_notification": "Your job is complete. Thank you!",
    "rate_worker": "How did {name} do?",
    "rate_customer": "How was working with {name}?",
}


def render(message_key: str, **variables: Any) -> str:
    return TEMPLATES[message_key].format(**variables)


def chat_owner(chat: Chat) -> uuid.UUID:
    """Default sender for system bubbles: the customer if present, else the worker."""
    owner = chat.customer_id or chat.worker_id
    if owner is None:
        raise ValueError(f"Chat {chat.chat_id} has no participants")
    return owner


async def post_system_message(
    db: AsyncSession,
    chat: Chat,
    bubble_type: BubbleType,
    message_key: str,
    *,
    job_id: uuid.UUID | None = None,
    sender_id: uuid.UUID | None = None,
    variables: dict[str, Any] | None = None,
    is_loading: bool = False,
    is_initial_instruction: bool = False,
    **extra: Any,
) -> Message:
    """Render a template into a system bubble. ``extra`` keys land in metadata."""
    metadata = SystemMetadata(
        message_key=message_key,
        job_id=job_id,
        is_loading=is_loading,
        is_initial_instruction=is_initial_instruction,
        **extra,
    )
    return await append_message(
        db,
        chat.chat_id,
        sender_id or chat_owner(chat),
        bubble_type,
        render(message_key, **(variables or {})),
        metadata,
        job_id=job_id,
        message_key=message_key,
        system=True,
    )
