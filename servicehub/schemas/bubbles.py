"""Typed metadata payloads, one schema per bubble type.

Payloads are stored as camelCase JSON (``jobData``, ``bidData``) because the
mobile client reads them verbatim. Every write goes through
``validate_metadata`` so a payload cannot drift from its schema.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from servicehub.models.chat import BubbleType


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class VotingProgress(_Payload):
    current_votes: int
    total_categorizers: int
    majority_threshold: int


class JobData(_Payload):
    job_id: uuid.UUID
    category_id: uuid.UUID
    category_name: str
    customer_name: str | None = None
    voice_url: str
    voice_duration: float = 0
    photos: list[str] = []
    requested_date: str | None = None
    location_lat: float
    location_lng: float
    price_floor: Decimal
    portfolio_consent: bool = False
    job_status: str = "posted"
    broadcasting_phase: int
    created_at: datetime

    # Categorization outcome
    has_subcategory: bool = False
    subcategory_id: uuid.UUID | None = None
    subcategory_ids: list[uuid.UUID] | None = None

    # The receiving worker's own vote
    has_voted: bool = False
    voted_subcategory_id: uuid.UUID | None = None
    voting_progress: VotingProgress | None = None

    # The receiving worker's own bid
    bid_status: str | None = None
    bid_id: uuid.UUID | None = None
    bid_amount: Decimal | None = None
    bid_equipment_cost: Decimal | None = None
    bid_service_fee: Decimal | None = None
    bid_total_amount: Decimal | None = None
    bid_submitted_at: datetime | None = None
    bid_accepted_at: datetime | None = None
    bid_rejected_at: datetime | None = None


class WorkerJobMetadata(_Payload):
    message_type: Literal["categorization_request", "bid_invitation"]
    is_system_generated: bool = True
    job_data: JobData


class BidData(_Payload):
    bid_id: uuid.UUID
    job_id: uuid.UUID
    worker_id: uuid.UUID
    worker_name: str
    worker_rating: Decimal | None = None
    bid_amount: Decimal
    equipment_cost: Decimal
    service_fee: Decimal
    total_amount: Decimal
    status: str
    created_at: datetime
    expires_at: datetime
    priority_window_end: datetime


class BidMetadata(_Payload):
    is_system_generated: bool = True
    bid_data: BidData


class RatingRequestMetadata(_Payload):
    is_system_generated: bool = True
    job_id: uuid.UUID
    rating_type: Literal["rate_worker", "rate_customer"]
    rated_user_id: uuid.UUID
    rated_user_name: str
    is_private: bool = True


class CodeInputMetadata(_Payload):
    is_system_generated: bool = True
    job_id: uuid.UUID
    code_type: Literal["onboarding", "completion"]
    max_length: int


class JobBubbleMetadata(_Payload):
    is_system_generated: bool = True
    job_id: uuid.UUID
    job_status: str


class SystemMetadata(_Payload):
    """System instruction/prompt/notification. Extra keys carry template context."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    is_system_generated: bool = True
    message_key: str
    job_id: uuid.UUID | None = None
    is_loading: bool = False
    is_initial_instruction: bool = False
    reminder_number: int | None = None
    total_reminders: int | None = None


class UserContentMetadata(_Payload):
    """Anything the end user sends: text, voice, photo, confirmation, date."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    is_system_generated: Literal[False] = False
    duration: float | None = None


USER_BUBBLE_TYPES: frozenset[BubbleType] = frozenset({
    BubbleType.TEXT,
    BubbleType.VOICE,
    BubbleType.PHOTO,
    BubbleType.CONFIRMATION,
    BubbleType.DATE,
})

METADATA_SCHEMAS: dict[BubbleType, type[_Payload]] = {
    **{bt: UserContentMetadata for bt in USER_BUBBLE_TYPES},
    BubbleType.SYSTEM_INSTRUCTION: SystemMetadata,
    BubbleType.SYSTEM_PROMPT: SystemMetadata,
    BubbleType.SYSTEM_NOTIFICATION: SystemMetadata,
    BubbleType.JOB: JobBubbleMetadata,
    BubbleType.WORKER_JOB: WorkerJobMetadata,
    BubbleType.BID: BidMetadata,
    BubbleType.RATING_REQUEST: RatingRequestMetadata,
    BubbleType.ONBOARDING_CODE_INPUT: CodeInputMetadata,
    BubbleType.COMPLETION_CODE_INPUT: CodeInputMetadata,
}


def _dump(payload: _Payload) -> dict[str, Any]:
    return payload.model_dump(mode="json", by_alias=True, exclude_none=True)


def validate_metadata(
    bubble_type: BubbleType, data: _Payload | dict[str, Any] | None
) -> dict[str, Any]:
    """Validate a payload against its bubble type and return the stored JSON form."""
    schema = METADATA_SCHEMAS[bubble_type]
    if isinstance(data, BaseModel):
        if not isinstance(data, schema):
            raise TypeError(
                f"{type(data).__name__} is not valid metadata for {bubble_type.value} bubbles"
            )
        return _dump(data)
    return _dump(schema.model_validate(data or {}))


def patch_job_data(metadata: dict[str, Any], **changes: Any) -> dict[str, Any]:
    """Return worker_job metadata with ``jobData`` fields replaced and revalidated."""
    current = WorkerJobMetadata.model_validate(metadata)
    job_data = JobData.model_validate({**current.job_data.model_dump(), **changes})
    return _dump(current.model_copy(update={"job_data": job_data}))


def patch_bid_data(metadata: dict[str, Any], **changes: Any) -> dict[str, Any]:
    """Return bid metadata with ``bidData`` fields replaced and revalidated."""
    current = BidMetadata.model_validate(metadata)
    bid_data = BidData.model_validate({**current.bid_data.model_dump(), **changes})
    return _dump(current.model_copy(update={"bid_data": bid_data}))


def patch_message_type(metadata: dict[str, Any], message_type: str) -> dict[str, Any]:
    """Return worker_job metadata re-labelled, e.g. a categorizer now invited to bid."""
    current = WorkerJobMetadata.model_validate(metadata)
    return _dump(WorkerJobMetadata.model_validate({**current.model_dump(), "message_type": message_type}))


def patch_job_status(metadata: dict[str, Any], job_status: str) -> dict[str, Any]:
    """Return job bubble metadata with ``jobStatus`` replaced."""
    current = JobBubbleMetadata.model_validate(metadata)
    return _dump(current.model_copy(update={"job_status": job_status}))
