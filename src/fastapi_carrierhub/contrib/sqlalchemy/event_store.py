"""SQLAlchemy audit event sink."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fastapi_carrierhub.contrib.sqlalchemy.models import ShippingEventModel
from fastapi_carrierhub.events import EventType, ShippingEvent


class SQLAlchemyEventSink:
    """Persist shipping events in ``carrierhub_events``."""

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        self.session_factory = session_factory

    async def append(self, event: ShippingEvent) -> None:
        async with self.session_factory() as session:
            session.add(
                ShippingEventModel(
                    event_type=event.event_type.value,
                    provider_id=event.provider_id,
                    status=event.status,
                    order_id=event.order_id,
                    tracking_number=event.tracking_number,
                    error_message=event.error_message,
                    payload=event.payload,
                    created_at=event.created_at,
                )
            )
            await session.commit()

    async def list_events(
        self,
        *,
        order_id: str | None = None,
        tracking_number: str | None = None,
        event_type: EventType | None = None,
    ) -> list[ShippingEventModel]:
        """Events in insertion order, optionally filtered."""
        stmt = select(ShippingEventModel).order_by(ShippingEventModel.id)
        if order_id is not None:
            stmt = stmt.where(ShippingEventModel.order_id == order_id)
        if tracking_number is not None:
            stmt = stmt.where(
                ShippingEventModel.tracking_number == tracking_number
            )
        if event_type is not None:
            stmt = stmt.where(ShippingEventModel.event_type == event_type.value)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())
