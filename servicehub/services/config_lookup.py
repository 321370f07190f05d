"""Runtime configuration and pricing lookups injected into the engines.

Consensus and bidding never read global state directly; they receive a
``ConfigLookup`` / ``PricingLookup``. The database-backed implementations fall
back to ``Settings`` defaults when no row is configured.
"""

import logging
import uuid
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.config import settings
from servicehub.models.category import CategoryPricing, SystemSetting

logger = logging.getLogger(__name__)

CATEGORIZER_GROUP_SIZE_KEY = "categorizer_group_size"


class ConfigLookup(Protocol):
    async def categorizer_group_size(self) -> int: ...


class PricingLookup(Protocol):
    async def pricing_for(self, subcategory_id: uuid.UUID) -> CategoryPricing | None: ...


class DatabaseConfigLookup:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _get(self, key: str) -> str | None:
        result = await self.db.execute(select(SystemSetting.value).where(SystemSetting.key == key))
        return result.scalar_one_or_none()

    async def categorizer_group_size(self) -> int:
        raw = await self._get(CATEGORIZER_GROUP_SIZE_KEY)
        if raw is None:
            return settings.categorizer_group_size_default
        try:
            size = int(raw)
        except ValueError:
            logger.warning("Ignoring non-integer %s=%r", CATEGORIZER_GROUP_SIZE_KEY, raw)
            return settings.categorizer_group_size_default
        if size < 1:
            logger.warning("Ignoring non-positive %s=%r", CATEGORIZER_GROUP_SIZE_KEY, raw)
            return settings.categorizer_group_size_default
        return size


class DatabasePricingLookup:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def pricing_for(self, subcategory_id: uuid.UUID) -> CategoryPricing | None:
        result = await self.db.execute(
            select(CategoryPricing).where(CategoryPricing.subcategory_id == subcategory_id)
        )
        return result.scalar_one_or_none()


class StaticConfigLookup:
    """Fixed values, for callers that already know the configuration."""

    def __init__(self, group_size: int) -> None:
        self.group_size = group_size

    async def categorizer_group_size(self) -> int:
        return self.group_size


async def set_system_setting(db: AsyncSession, key: str, value: str) -> SystemSetting:
    row = await db.get(SystemSetting, key)
    if row is None:
        row = SystemSetting(key=key, value=value)
        db.add(row)
    else:
        row.value = value
    await db.commit()
    await db.refresh(row)
    logger.info("System setting %s set to %r", key, value)
    return row
