"""Alembic environment configuration for async SQLAlchemy."""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy.ext.asyncio import create_async_engine

from servicehub.config import settings
from servicehub.database import Base
from servicehub.models.user import ExpertCategorizer, User, UserSession, UserSkill  # noqa: F401 (registers tables)
from servicehub.models.category import Category, CategoryPricing, SystemSetting  # noqa: F401
from servicehub.models.job import CategorizationVote, Job, JobCancellation, JobView  # noqa: F401
from servicehub.models.chat import Chat, Message, MessagePartition  # noqa: F401
from servicehub.models.bid import Bid  # noqa: F401
from servicehub.models.rating import Rating  # noqa: F401
from servicehub.models.task import ScheduledTask  # noqa: F401

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Emit SQL without a live connection."""
    context.configure(
        url=settings.database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection) -> None:  # type: ignore[no-untyped-def]
    context.configure(connection=connection, target_metadata=target_metadata)
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    engine = create_async_engine(settings.database_url)
    async with engine.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await engine.dispose()


def run_migrations_online() -> None:
    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
