"""SQLAlchemy database models."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _uuid() -> str:
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class User(Base):
    """Alert recipient with notification preferences."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    subscription_tier: Mapped[str] = mapped_column(String(16), default="free", nullable=False)
    # web_push / email / sms / discord flags plus discord_webhook URL
    notification_settings: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    # enabled, start_time, end_time ("HH:MM"), timezone, days (0 = Sunday)
    quiet_hours: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    timezone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )


class Product(Base):
    """Catalog product that can be watched."""

    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    popularity_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )


class Watch(Base):
    """A user's standing subscription to a product across retailers."""

    __tablename__ = "watches"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    product_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("products.id"), nullable=False
    )
    retailer_ids: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    max_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    availability_type: Mapped[str] = mapped_column(
        String(16), default="online", nullable=False
    )  # online, in_store, both
    zip_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    radius_miles: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    alert_preferences: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    alert_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_alerted: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_watches_user_id", "user_id"),
        Index("ix_watches_product_active", "product_id", "is_active"),
    )


class WatchPack(Base):
    """Curated group of products users can subscribe to at once."""

    __tablename__ = "watch_packs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    product_ids: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    subscriber_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class UserWatchPack(Base):
    """A user's subscription to a watch pack."""

    __tablename__ = "user_watch_packs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    watch_pack_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("watch_packs.id"), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    customizations: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("user_id", "watch_pack_id", name="uq_user_watch_pack"),
    )


class Alert(Base):
    """A single notification instance for one user and one retail event."""

    __tablename__ = "alerts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    product_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("products.id"), nullable=False
    )
    retailer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    watch_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("watches.id"), nullable=True
    )
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    priority: Mapped[str] = mapped_column(String(8), default="medium", nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="pending", nullable=False)
    data: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    delivery_channels: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    scheduled_for: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        Index(
            "ix_alerts_dedup_key",
            "user_id", "product_id", "retailer_id", "type", "created_at",
        ),
        Index("ix_alerts_user_created", "user_id", "created_at"),
        Index("ix_alerts_status_scheduled", "status", "scheduled_for"),
    )
