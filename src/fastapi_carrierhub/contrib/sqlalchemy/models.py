"""SQLAlchemy models for provider config, rate cache, events and status."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""


class ShippingProviderModel(Base):
    """Provider account configuration, edited by admin tooling."""

    __tablename__ = "carrierhub_providers"

    provider_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    code: Mapped[str] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(128), default="")
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    priority: Mapped[int] = mapped_column(Integer, default=100)
    supported_modes: Mapped[list] = mapped_column(JSON, default=list)
    credentials: Mapped[dict] = mapped_column(JSON, default=dict)
    options: Mapped[dict] = mapped_column(JSON, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class RateCacheModel(Base):
    """Aggregated rate set for one normalized rate request."""

    __tablename__ = "carrierhub_rate_cache"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    rates: Mapped[list] = mapped_column(JSON)
    # "|a|b|" so one provider can be matched with LIKE on any backend.
    provider_ids: Mapped[str] = mapped_column(Text, default="|")
    fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), index=True
    )


class ShippingEventModel(Base):
    """Append-only audit record."""

    __tablename__ = "carrierhub_events"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String(32), index=True)
    provider_id: Mapped[str] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(16), default="success")
    order_id: Mapped[str | None] = mapped_column(
        String(128), nullable=True, index=True
    )
    tracking_number: Mapped[str | None] = mapped_column(
        String(128), nullable=True, index=True
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )


class ShipmentRecordModel(Base):
    """Current status of one shipment, keyed by tracking number."""

    __tablename__ = "carrierhub_shipments"

    tracking_number: Mapped[str] = mapped_column(String(128), primary_key=True)
    provider_id: Mapped[str] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(32))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
