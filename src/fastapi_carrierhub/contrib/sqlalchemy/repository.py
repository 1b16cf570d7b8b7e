"""SQLAlchemy provider configuration source and shipment status store."""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fastapi_carrierhub.contrib.sqlalchemy.models import (
    ShipmentRecordModel,
    ShippingProviderModel,
)
from fastapi_carrierhub.exceptions import UnknownProviderError
from fastapi_carrierhub.status import TERMINAL_STATUSES, resolve_transition
from fastapi_carrierhub.types import ProviderSettings, ShipmentStatus


class SQLAlchemyProviderConfigSource:
    """Provider settings stored in ``carrierhub_providers``."""

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        self.session_factory = session_factory

    async def load_provider_settings(self) -> list[ProviderSettings]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ShippingProviderModel).order_by(
                    ShippingProviderModel.priority,
                    ShippingProviderModel.provider_id,
                )
            )
            return [
                ProviderSettings(
                    provider_id=row.provider_id,
                    code=row.code,
                    name=row.name,
                    enabled=row.enabled,
                    priority=row.priority,
                    supported_modes=tuple(row.supported_modes or ()),
                    credentials=row.credentials or {},
                    options=row.options or {},
                )
                for row in result.scalars().all()
            ]

    async def save(self, settings: ProviderSettings) -> None:
        """Insert or replace the record of ``settings.provider_id``."""
        async with self.session_factory() as session:
            await session.merge(
                ShippingProviderModel(
                    provider_id=settings.provider_id,
                    code=settings.code,
                    name=settings.name,
                    enabled=settings.enabled,
                    priority=settings.priority,
                    supported_modes=list(settings.supported_modes),
                    credentials=dict(settings.credentials),
                    options=dict(settings.options),
                )
            )
            await session.commit()

    async def set_enabled(self, provider_id: str, enabled: bool) -> None:
        async with self.session_factory() as session:
            row = await session.get(ShippingProviderModel, provider_id)
            if row is None:
                raise UnknownProviderError(provider_id)
            row.enabled = enabled
            await session.commit()


class SQLAlchemyShipmentStatusStore:
    """Current shipment status per tracking number."""

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        self.session_factory = session_factory

    async def get_status(self, tracking_number: str) -> ShipmentStatus | None:
        async with self.session_factory() as session:
            row = await session.get(ShipmentRecordModel, tracking_number)
            return ShipmentStatus(row.status) if row is not None else None

    async def set_status(
        self,
        tracking_number: str,
        provider_id: str,
        status: ShipmentStatus,
    ) -> None:
        async with self.session_factory() as session:
            row = await session.get(ShipmentRecordModel, tracking_number)
            if row is None:
                session.add(
                    ShipmentRecordModel(
                        tracking_number=tracking_number,
                        provider_id=provider_id,
                        status=status.value,
                    )
                )
            else:
                row.provider_id = provider_id
                row.status = status.value
            await session.commit()

    async def transition(
        self,
        tracking_number: str,
        provider_id: str,
        incoming: ShipmentStatus,
    ) -> ShipmentStatus:
        """Apply ``incoming`` with one conditional UPDATE.

        Rows already in a terminal status are excluded by the WHERE clause,
        so concurrent writers cannot move a shipment out of a final state.
        """
        terminal = sorted(status.value for status in TERMINAL_STATUSES)
        async with self.session_factory() as session:
            result = await session.execute(
                update(ShipmentRecordModel)
                .where(
                    ShipmentRecordModel.tracking_number == tracking_number,
                    ShipmentRecordModel.status.not_in(terminal),
                )
                .values(provider_id=provider_id, status=incoming.value)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                await session.commit()
                return incoming

            row = await session.get(ShipmentRecordModel, tracking_number)
            if row is not None:
                current = ShipmentStatus(row.status)
                await session.commit()
                return resolve_transition(current, incoming)

            session.add(
                ShipmentRecordModel(
                    tracking_number=tracking_number,
                    provider_id=provider_id,
                    status=incoming.value,
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
            else:
                return incoming
        # Another writer inserted the row first; retry against it.
        return await self.transition(tracking_number, provider_id, incoming)
