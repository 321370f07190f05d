"""Category tree, pricing floors and runtime system settings."""

import uuid
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from servicehub.database import Base


class Category(Base):
    """Top-level category, or a subcategory when parent_id is set."""

    __tablename__ = "categories"

    category_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    parent_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("categories.category_id", ondelete="RESTRICT"), nullable=True, index=True
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )


class CategoryPricing(Base):
    __tablename__ = "category_pricing"
    __table_args__ = (
        CheckConstraint("min_percentage >= 0 AND min_percentage <= 100", name="ck_category_pricing_pct"),
    )

    subcategory_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("categories.category_id", ondelete="CASCADE"), primary_key=True
    )
    baseline_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    min_percentage: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


class SystemSetting(Base):
    __tablename__ = "system_settings"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(String(256), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )
