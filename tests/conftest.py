"""Test configuration and fixtures.

Each test gets its own in-memory SQLite database (aiosqlite on a single
StaticPool connection) with SAVEPOINT support switched on, so the
best-effort side effects nest exactly as they do on Postgres. The HTTP
client shares the test's session; rate limiting is stubbed out.
"""

import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import NamedTuple

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from servicehub.auth.rate_limit import check_rate_limit
from servicehub.config import settings
from servicehub.database import Base, enable_sqlite_savepoints, get_db
from servicehub.main import app
from servicehub.models.bid import Bid
from servicehub.models.category import Category
from servicehub.models.chat import BubbleType, Chat, Message
from servicehub.models.job import BroadcastingPhase, Job
from servicehub.models.rating import Rating  # noqa: F401 (registers tables)
from servicehub.models.task import ScheduledTask  # noqa: F401
from servicehub.models.user import ApprovalStatus, User, UserSkill, UserType
from servicehub.schemas.job import JobCreate
from servicehub.services.bids import accept_bid, submit_bid
from servicehub.services.chat import find_service_chat_for_job, get_or_create_service_chat
from servicehub.services.codes import validate_onboarding_code
from servicehub.services.jobs import create_job_from_chat
from servicehub.services.message_store import append_message
from servicehub.services.task_queue import run_due_tasks
from servicehub.services.users import create_session


# ---------------------------------------------------------------------------
# Per-test fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_settings() -> None:
    """Snapshot settings before each test and restore after to prevent mutation bleed."""
    original = settings.model_dump()
    object.__setattr__(settings, "sms_backend", "log")
    yield  # type: ignore[misc]
    for key, value in original.items():
        object.__setattr__(settings, key, value)


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database with every table created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """HTTP test client with overridden DB and rate-limit dependencies."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    async def override_rate_limit() -> None:
        return None

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[check_rate_limit] = override_rate_limit

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_user_data(user_type: str = "customer", phone: str | None = None) -> dict:
    """Factory for a registration payload."""
    return {
        "phone": phone or f"+1555{uuid.uuid4().int % 10_000_000:07d}",
        "name": "Test Customer" if user_type == "customer" else "Test Worker",
        "user_type": user_type,
    }


async def make_user(
    db: AsyncSession,
    user_type: UserType = UserType.CUSTOMER,
    *,
    name: str | None = None,
    approved: bool = True,
    balance: Decimal = Decimal("100.00"),
    is_admin: bool = False,
) -> User:
    user = User(
        user_id=uuid.uuid4(),
        phone=f"+1555{uuid.uuid4().int % 10_000_000:07d}",
        name=name or ("Cora Customer" if user_type == UserType.CUSTOMER else "Walt Worker"),
        user_type=user_type,
        approval_status=ApprovalStatus.APPROVED if approved else ApprovalStatus.PENDING,
        balance=balance,
        is_admin=is_admin,
    )
    db.add(user)
    await db.commit()
    return user


async def make_worker(
    db: AsyncSession, *skill_category_ids: uuid.UUID, **kwargs
) -> User:
    """Worker skilled in the given categories (approved with a balance by default)."""
    worker = await make_user(db, UserType.WORKER, **kwargs)
    for category_id in skill_category_ids:
        db.add(UserSkill(user_id=worker.user_id, category_id=category_id))
    await db.commit()
    return worker


async def make_category(
    db: AsyncSession, name: str = "Plumbing", parent: Category | None = None
) -> Category:
    category = Category(
        category_id=uuid.uuid4(),
        name=name,
        parent_id=parent.category_id if parent else None,
    )
    db.add(category)
    await db.commit()
    return category


async def auth_headers(db: AsyncSession, user: User) -> dict[str, str]:
    token, _ = await create_session(db, user)
    return {"Authorization": f"Bearer {token}"}


async def make_service_chat(
    db: AsyncSession,
    customer: User,
    category: Category,
    *,
    voice: bool = True,
    date: bool = True,
    photos: tuple[str, ...] = (),
) -> Chat:
    """Service chat where the customer has recorded what the job needs."""
    chat = await get_or_create_service_chat(db, customer, category.category_id)
    if voice:
        await append_message(
            db, chat.chat_id, customer.user_id, BubbleType.VOICE,
            "https://cdn.example.com/voice/leak.m4a", {"duration": 12.5},
        )
    for url in photos:
        await append_message(db, chat.chat_id, customer.user_id, BubbleType.PHOTO, url)
    if date:
        await append_message(db, chat.chat_id, customer.user_id, BubbleType.DATE, "2026-11-02")
    await db.commit()
    return chat


def job_request(chat: Chat, price_floor: str = "50.00") -> JobCreate:
    return JobCreate(
        chat_id=chat.chat_id,
        location_lat=52.37,
        location_lng=4.89,
        price_floor=Decimal(price_floor),
    )


async def make_posted_job(
    db: AsyncSession, customer: User, category: Category, **chat_kwargs
) -> Job:
    chat = await make_service_chat(db, customer, category, **chat_kwargs)
    return await create_job_from_chat(db, chat.chat_id, customer.user_id, job_request(chat))


async def open_for_bidding(db: AsyncSession, job: Job, subcategory: Category) -> Job:
    """Shortcut past categorization: settle the job on one subcategory."""
    job.subcategory_id = subcategory.category_id
    job.broadcasting_phase = BroadcastingPhase.BIDDING
    await db.commit()
    return job


async def drain_tasks(db: AsyncSession, now: datetime | None = None) -> int:
    """Run due tasks repeatedly until none are left (handlers may schedule more)."""
    total = 0
    while True:
        executed = await run_due_tasks(db, now=now or datetime.now(UTC))
        if executed == 0:
            return total
        total += executed


def in_minutes(minutes: float) -> datetime:
    return datetime.now(UTC) + timedelta(minutes=minutes)


async def count_messages(db: AsyncSession, *conditions) -> int:
    result = await db.execute(select(func.count()).select_from(Message).where(*conditions))
    return result.scalar() or 0


class MatchedJob(NamedTuple):
    job: Job
    customer: User
    worker: User
    category: Category
    subcategory: Category
    service_chat: Chat
    conversation: Chat
    bid: Bid


async def make_matched_job(db: AsyncSession, amount: str = "80.00") -> MatchedJob:
    """Posted job, settled on a subcategory, with one accepted bid."""
    category = await make_category(db)
    subcategory = await make_category(db, "Leaks", parent=category)
    customer = await make_user(db)
    worker = await make_worker(db, subcategory.category_id)
    job = await make_posted_job(db, customer, category)
    await open_for_bidding(db, job, subcategory)

    bid = await submit_bid(db, job.job_id, worker.user_id, Decimal(amount))
    bid, conversation = await accept_bid(db, bid.bid_id, customer.user_id)
    service_chat = await find_service_chat_for_job(db, job)
    return MatchedJob(job, customer, worker, category, subcategory, service_chat, conversation, bid)


async def start_matched_job(db: AsyncSession, matched: MatchedJob) -> Job:
    """Deliver the onboarding code, have the worker enter it, run the start task."""
    await drain_tasks(db)
    await validate_onboarding_code(
        db, matched.job.job_id, matched.worker.user_id, matched.job.onboarding_code
    )
    await drain_tasks(db)
    await db.refresh(matched.job)
    return matched.job
