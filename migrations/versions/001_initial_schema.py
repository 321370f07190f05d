"""Create users, catalogue, jobs, chats, bids, ratings and task tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_ENUMS: dict[str, tuple[str, ...]] = {
    "usertype": ("customer", "worker"),
    "approvalstatus": ("pending", "approved", "rejected"),
    "jobstatus": ("posted", "matched", "in_progress", "completed", "cancelled"),
    "cancellationphase": ("bidding", "matched", "in_progress"),
    "chatkind": ("service", "notification", "conversation"),
    "bubbletype": (
        "text", "voice", "photo", "confirmation", "date",
        "system_instruction", "system_prompt", "system_notification",
        "job", "worker_job", "bid", "rating_request",
        "onboarding_code_input", "completion_code_input",
    ),
    "messagestatus": ("sending", "sent", "delivered", "read", "failed"),
    "bidstatus": ("pending", "accepted", "rejected"),
    "taskstatus": ("pending", "running", "done", "failed"),
}


def _enum(name: str) -> postgresql.ENUM:
    # Types are created up front; cancellationphase is shared by two tables
    return postgresql.ENUM(*_ENUMS[name], name=name, create_type=False)


def _uuid_fk(target: str, ondelete: str) -> sa.ForeignKey:
    return sa.ForeignKey(target, ondelete=ondelete)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in _ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("user_id", sa.Uuid(), primary_key=True),
        sa.Column("phone", sa.String(32), nullable=False, unique=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("user_type", _enum("usertype"), nullable=False),
        sa.Column("approval_status", _enum("approvalstatus"), nullable=False, server_default="pending"),
        sa.Column("balance", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("rating", sa.Numeric(3, 1), nullable=True),
        sa.Column("rating_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
    )

    op.create_table(
        "categories",
        sa.Column("category_id", sa.Uuid(), primary_key=True),
        sa.Column("parent_id", sa.Uuid(), _uuid_fk("categories.category_id", "RESTRICT"), nullable=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_categories_parent_id", "categories", ["parent_id"])

    op.create_table(
        "category_pricing",
        sa.Column("subcategory_id", sa.Uuid(), _uuid_fk("categories.category_id", "CASCADE"), primary_key=True),
        sa.Column("baseline_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("min_percentage", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("min_percentage >= 0 AND min_percentage <= 100", name="ck_category_pricing_pct"),
    )

    op.create_table(
        "system_settings",
        sa.Column("key", sa.String(64), primary_key=True),
        sa.Column("value", sa.String(256), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "user_skills",
        sa.Column("skill_id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), _uuid_fk("users.user_id", "CASCADE"), nullable=False),
        sa.Column("category_id", sa.Uuid(), _uuid_fk("categories.category_id", "CASCADE"), nullable=False),
        _created_at(),
        sa.UniqueConstraint("user_id", "category_id", name="uq_user_skills_user_category"),
    )
    op.create_index("ix_user_skills_user_id", "user_skills", ["user_id"])
    op.create_index("ix_user_skills_category_id", "user_skills", ["category_id"])

    op.create_table(
        "expert_categorizers",
        sa.Column("expert_id", sa.Uuid(), primary_key=True),
        sa.Column("worker_id", sa.Uuid(), _uuid_fk("users.user_id", "CASCADE"), nullable=False),
        sa.Column("category_id", sa.Uuid(), _uuid_fk("categories.category_id", "CASCADE"), nullable=False),
        _created_at(),
        sa.UniqueConstraint("worker_id", "category_id", name="uq_expert_categorizers_worker_category"),
    )
    op.create_index("ix_expert_categorizers_category_id", "expert_categorizers", ["category_id"])

    op.create_table(
        "sessions",
        sa.Column("session_id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), _uuid_fk("users.user_id", "CASCADE"), nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=False, unique=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        _created_at(),
    )
    op.create_index("ix_sessions_user_id", "sessions", ["user_id"])

    op.create_table(
        "jobs",
        sa.Column("job_id", sa.Uuid(), primary_key=True),
        sa.Column("customer_id", sa.Uuid(), _uuid_fk("users.user_id", "RESTRICT"), nullable=False),
        sa.Column("category_id", sa.Uuid(), _uuid_fk("categories.category_id", "RESTRICT"), nullable=False),
        sa.Column("subcategory_id", sa.Uuid(), _uuid_fk("categories.category_id", "RESTRICT"), nullable=True),
        sa.Column("subcategory_ids", JSONB, nullable=True),
        sa.Column("worker_id", sa.Uuid(), _uuid_fk("users.user_id", "RESTRICT"), nullable=True),
        sa.Column("status", _enum("jobstatus"), nullable=False, server_default="posted"),
        sa.Column("broadcasting_phase", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("categorizer_worker_ids", JSONB, nullable=False, server_default="[]"),
        sa.Column("categorizer_group_size", sa.Integer(), nullable=True),
        sa.Column("voice_url", sa.String(2048), nullable=False),
        sa.Column("voice_duration", sa.Float(), nullable=False, server_default="0"),
        sa.Column("photos", JSONB, nullable=False, server_default="[]"),
        sa.Column("requested_date", sa.String(64), nullable=True),
        sa.Column("has_confirmation", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("location_lat", sa.Float(), nullable=False),
        sa.Column("location_lng", sa.Float(), nullable=False),
        sa.Column("price_floor", sa.Numeric(12, 2), nullable=False),
        sa.Column("portfolio_consent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("work_code", sa.String(6), nullable=False),
        sa.Column("onboarding_code", sa.String(4), nullable=True),
        sa.Column("completion_code", sa.String(6), nullable=True),
        sa.Column("view_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("matched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at_phase", _enum("cancellationphase"), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_jobs_customer_id", "jobs", ["customer_id"])
    op.create_index("ix_jobs_category_id", "jobs", ["category_id"])
    op.create_index("ix_jobs_worker_id", "jobs", ["worker_id"])
    op.create_index("ix_jobs_status", "jobs", ["status"])

    op.create_table(
        "categorization_votes",
        sa.Column("vote_id", sa.Uuid(), primary_key=True),
        sa.Column("job_id", sa.Uuid(), _uuid_fk("jobs.job_id", "CASCADE"), nullable=False),
        sa.Column("worker_id", sa.Uuid(), _uuid_fk("users.user_id", "RESTRICT"), nullable=False),
        sa.Column(
            "suggested_subcategory_id", sa.Uuid(),
            _uuid_fk("categories.category_id", "RESTRICT"), nullable=False,
        ),
        _created_at(),
        sa.UniqueConstraint("job_id", "worker_id", name="uq_categorization_votes_job_worker"),
    )
    op.create_index("ix_categorization_votes_job_id", "categorization_votes", ["job_id"])

    op.create_table(
        "job_cancellations",
        sa.Column("cancellation_id", sa.Uuid(), primary_key=True),
        sa.Column("job_id", sa.Uuid(), _uuid_fk("jobs.job_id", "CASCADE"), nullable=False),
        sa.Column("cancelled_by", sa.Uuid(), _uuid_fk("users.user_id", "RESTRICT"), nullable=False),
        sa.Column("cancelled_at_phase", _enum("cancellationphase"), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_job_cancellations_job_id", "job_cancellations", ["job_id"])

    op.create_table(
        "job_views",
        sa.Column("view_id", sa.Uuid(), primary_key=True),
        sa.Column("job_id", sa.Uuid(), _uuid_fk("jobs.job_id", "CASCADE"), nullable=False),
        sa.Column("worker_id", sa.Uuid(), _uuid_fk("users.user_id", "CASCADE"), nullable=False),
        _created_at(),
        sa.UniqueConstraint("job_id", "worker_id", name="uq_job_views_job_worker"),
    )

    op.create_table(
        "chats",
        sa.Column("chat_id", sa.Uuid(), primary_key=True),
        sa.Column("kind", _enum("chatkind"), nullable=False),
        sa.Column("category_id", sa.Uuid(), _uuid_fk("categories.category_id", "RESTRICT"), nullable=False),
        sa.Column("customer_id", sa.Uuid(), _uuid_fk("users.user_id", "RESTRICT"), nullable=True),
        sa.Column("worker_id", sa.Uuid(), _uuid_fk("users.user_id", "RESTRICT"), nullable=True),
        sa.Column("job_id", sa.Uuid(), _uuid_fk("jobs.job_id", "SET NULL"), nullable=True),
        sa.Column("is_cleared", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("banner_info", JSONB, nullable=True),
        _created_at(),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_chats_customer_id", "chats", ["customer_id"])
    op.create_index("ix_chats_worker_id", "chats", ["worker_id"])
    op.create_index("ix_chats_job_id", "chats", ["job_id"])

    op.create_table(
        "message_partitions",
        sa.Column("partition_id", sa.Uuid(), primary_key=True),
        sa.Column("chat_id", sa.Uuid(), _uuid_fk("chats.chat_id", "CASCADE"), nullable=False),
        sa.Column("year_month", sa.String(7), nullable=False),
        sa.Column("message_count", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
        sa.UniqueConstraint("chat_id", "year_month", name="uq_message_partitions_chat_month"),
    )

    op.create_table(
        "messages",
        sa.Column("message_id", sa.Uuid(), primary_key=True),
        sa.Column("chat_id", sa.Uuid(), _uuid_fk("chats.chat_id", "CASCADE"), nullable=False),
        sa.Column("year_month", sa.String(7), nullable=False),
        sa.Column("sender_id", sa.Uuid(), _uuid_fk("users.user_id", "RESTRICT"), nullable=False),
        sa.Column("bubble_type", _enum("bubbletype"), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("metadata", JSONB, nullable=False, server_default="{}"),
        sa.Column("job_id", sa.Uuid(), nullable=True),
        sa.Column("message_key", sa.String(64), nullable=True),
        sa.Column("is_system_generated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_expired", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", _enum("messagestatus"), nullable=False, server_default="sent"),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("mirrored_from_id", sa.Uuid(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_messages_chat_partition", "messages", ["chat_id", "year_month"])
    op.create_index("ix_messages_job_bubble", "messages", ["job_id", "bubble_type"])
    op.create_index("ix_messages_sender_id", "messages", ["sender_id"])

    op.create_table(
        "bids",
        sa.Column("bid_id", sa.Uuid(), primary_key=True),
        sa.Column("job_id", sa.Uuid(), _uuid_fk("jobs.job_id", "CASCADE"), nullable=False),
        sa.Column("worker_id", sa.Uuid(), _uuid_fk("users.user_id", "RESTRICT"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("equipment_cost", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("service_fee", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", _enum("bidstatus"), nullable=False, server_default="pending"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("priority_window_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.UniqueConstraint("job_id", "worker_id", name="uq_bids_job_worker"),
    )
    op.create_index("ix_bids_job_id", "bids", ["job_id"])
    op.create_index("ix_bids_worker_id", "bids", ["worker_id"])

    op.create_table(
        "ratings",
        sa.Column("rating_id", sa.Uuid(), primary_key=True),
        sa.Column("job_id", sa.Uuid(), _uuid_fk("jobs.job_id", "RESTRICT"), nullable=False),
        sa.Column("rater_id", sa.Uuid(), _uuid_fk("users.user_id", "RESTRICT"), nullable=False),
        sa.Column("rated_user_id", sa.Uuid(), _uuid_fk("users.user_id", "RESTRICT"), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("review_text", sa.Text(), nullable=True),
        _created_at(),
        sa.CheckConstraint("rating >= 1 AND rating <= 5", name="ck_ratings_rating"),
        sa.UniqueConstraint("job_id", "rater_id", name="uq_ratings_job_rater"),
    )
    op.create_index("ix_ratings_job_id", "ratings", ["job_id"])
    op.create_index("ix_ratings_rated_user_id", "ratings", ["rated_user_id"])

    op.create_table(
        "scheduled_tasks",
        sa.Column("task_id", sa.Uuid(), primary_key=True),
        sa.Column("kind", sa.String(64), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=True),
        sa.Column("payload", JSONB, nullable=False, server_default="{}"),
        sa.Column("run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", _enum("taskstatus"), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        _created_at(),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_scheduled_tasks_status_run_at", "scheduled_tasks", ["status", "run_at"])
    op.create_index("ix_scheduled_tasks_job_id", "scheduled_tasks", ["job_id"])


def downgrade() -> None:
    for table in (
        "scheduled_tasks", "ratings", "bids", "messages", "message_partitions", "chats",
        "job_views", "job_cancellations", "categorization_votes", "jobs", "sessions",
        "expert_categorizers", "user_skills", "system_settings", "category_pricing",
        "categories", "users",
    ):
        op.drop_table(table)
    for name in reversed(list(_ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
