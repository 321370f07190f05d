"""Job SQLAlchemy model and related lifecycle records."""

import enum
import uuid
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Enum, Float, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from servicehub.database import Base, JSONType


class JobStatus(enum.Enum):
    POSTED = "posted"
    MATCHED = "matched"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Valid state transitions
VALID_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.POSTED: {JobStatus.MATCHED, JobStatus.CANCELLED},
    JobStatus.MATCHED: {JobStatus.IN_PROGRESS, JobStatus.CANCELLED},
    JobStatus.IN_PROGRESS: {JobStatus.COMPLETED, JobStatus.CANCELLED},
    JobStatus.COMPLETED: set(),
    JobStatus.CANCELLED: set(),
}


class BroadcastingPhase(enum.IntEnum):
    UNASSIGNED = 0
    CATEGORIZING = 1
    BIDDING = 2


class CancellationPhase(enum.Enum):
    BIDDING = "bidding"
    MATCHED = "matched"
    IN_PROGRESS = "in_progress"


class Job(Base):
    __tablename__ = "jobs"

    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False, index=True
    )
    category_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("categories.category_id", ondelete="RESTRICT"), nullable=False, index=True
    )
    subcategory_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("categories.category_id", ondelete="RESTRICT"), nullable=True
    )
    # Set only when categorization ended in a majority-level tie
    subcategory_ids: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    worker_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=True, index=True
    )
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=JobStatus.POSTED,
        index=True,
    )
    broadcasting_phase: Mapped[int] = mapped_column(
        Integer, nullable=False, default=BroadcastingPhase.UNASSIGNED
    )
    categorizer_worker_ids: Mapped[list[str]] = mapped_column(
        JSONType, nullable=False, default=list
    )
    categorizer_group_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    voice_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    voice_duration: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    photos: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    requested_date: Mapped[str | None] = mapped_column(String(64), nullable=True)
    has_confirmation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    location_lat: Mapped[float] = mapped_column(Float, nullable=False)
    location_lng: Mapped[float] = mapped_column(Float, nullable=False)
    price_floor: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    portfolio_consent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    work_code: Mapped[str] = mapped_column(String(6), nullable=False)
    onboarding_code: Mapped[str | None] = mapped_column(String(4), nullable=True)
    completion_code: Mapped[str | None] = mapped_column(String(6), nullable=True)
    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    matched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at_phase: Mapped[CancellationPhase | None] = mapped_column(
        Enum(CancellationPhase, values_callable=lambda x: [e.value for e in x]),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    def bidding_subcategory_ids(self) -> list[uuid.UUID]:
        """Subcategories open for bidding: the tied set, else the single winner."""
        if self.subcategory_ids:
            return [uuid.UUID(s) for s in self.subcategory_ids]
        if self.subcategory_id is not None:
            return [self.subcategory_id]
        return []


class CategorizationVote(Base):
    __tablename__ = "categorization_votes"
    __table_args__ = (
        UniqueConstraint("job_id", "worker_id", name="uq_categorization_votes_job_worker"),
    )

    vote_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("jobs.job_id", ondelete="CASCADE"), nullable=False, index=True
    )
    worker_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False
    )
    suggested_subcategory_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("categories.category_id", ondelete="RESTRICT"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )


class JobCancellation(Base):
    __tablename__ = "job_cancellations"

    cancellation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("jobs.job_id", ondelete="CASCADE"), nullable=False, index=True
    )
    cancelled_by: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False
    )
    cancelled_at_phase: Mapped[CancellationPhase] = mapped_column(
        Enum(CancellationPhase, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )


class JobView(Base):
    __tablename__ = "job_views"
    __table_args__ = (
        UniqueConstraint("job_id", "worker_id", name="uq_job_views_job_worker"),
    )

    view_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("jobs.job_id", ondelete="CASCADE"), nullable=False
    )
    worker_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
