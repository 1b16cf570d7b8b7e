"""Shared fixtures for fastapi-carrierhub tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from typing import Any

import pytest

from fastapi_carrierhub.config import CarrierHubConfig
from fastapi_carrierhub.events import InMemoryEventSink
from fastapi_carrierhub.registry import ProviderRegistry
from fastapi_carrierhub.types import (
    Address,
    OrderItem,
    ParsedWebhook,
    ProviderSettings,
    RateRequest,
    Shipment,
    ShipmentOrder,
    ShipmentRequest,
    ShipmentStatus,
    ShippingRate,
    TrackingCheckpoint,
    TrackingInfo,
)


def make_rate(
    provider_id: str,
    rate: str | int,
    days: int,
    courier_code: str = "std",
    **extra: Any,
) -> ShippingRate:
    return ShippingRate(
        provider_id=provider_id,
        provider_name=provider_id.title(),
        courier_name=f"{provider_id} {courier_code}",
        courier_code=courier_code,
        rate=Decimal(str(rate)),
        estimated_days=days,
        **extra,
    )


class ScriptedProvider:
    """Adapter whose answers are fixed up front.

    Has no ``validate_webhook``: it never signs webhooks.
    """

    status_map = {
        "booked": ShipmentStatus.CREATED,
        "moving": ShipmentStatus.IN_TRANSIT,
        "done": ShipmentStatus.DELIVERED,
    }

    def __init__(
        self,
        provider_id: str,
        *,
        rates: list[ShippingRate] | None = None,
        rate_error: Exception | None = None,
        rate_delay: float = 0.0,
        shipment_error: Exception | None = None,
        shipment_delay: float = 0.0,
        serviceable: bool | Exception = True,
        cancellable: bool = True,
        journal: list[tuple[str, str]] | None = None,
    ) -> None:
        self.provider_id = provider_id
        self.rates = rates if rates is not None else []
        self.rate_error = rate_error
        self.rate_delay = rate_delay
        self.shipment_error = shipment_error
        self.shipment_delay = shipment_delay
        self.serviceable = serviceable
        self.cancellable = cancellable
        self.journal = journal if journal is not None else []
        self.calls: list[tuple[str, Any]] = []
        self.settings: ProviderSettings | None = None

    def identify(self) -> tuple[str, str]:
        return self.provider_id, f"Scripted {self.provider_id}"

    async def initialize(self, settings: ProviderSettings) -> None:
        self.settings = settings

    async def check_serviceability(
        self, pincode: str, *, timeout: float
    ) -> bool:
        self.calls.append(("check_serviceability", pincode))
        if isinstance(self.serviceable, Exception):
            raise self.serviceable
        return self.serviceable

    async def get_rates(
        self, request: RateRequest, *, timeout: float
    ) -> list[ShippingRate]:
        self.calls.append(("get_rates", request))
        if self.rate_delay:
            await asyncio.sleep(self.rate_delay)
        if self.rate_error is not None:
            raise self.rate_error
        return list(self.rates)

    async def create_shipment(
        self, request: ShipmentRequest, *, timeout: float
    ) -> Shipment:
        self.calls.append(("create_shipment", request))
        self.journal.append(("start", self.provider_id))
        try:
            if self.shipment_delay:
                await asyncio.sleep(self.shipment_delay)
            if self.shipment_error is not None:
                raise self.shipment_error
        finally:
            self.journal.append(("end", self.provider_id))
        return Shipment(
            provider_id=self.provider_id,
            tracking_number=f"{self.provider_id.upper()}-{request.order.order_id}",
            courier_name=request.rate.courier_name if request.rate else "",
            order_id=request.order.order_id,
        )

    async def track_shipment(
        self, tracking_number: str, *, timeout: float
    ) -> TrackingInfo:
        self.calls.append(("track_shipment", tracking_number))
        return TrackingInfo(
            tracking_number=tracking_number,
            provider_id=self.provider_id,
            current=TrackingCheckpoint(
                status=ShipmentStatus.IN_TRANSIT, provider_status="moving"
            ),
        )

    async def cancel_shipment(
        self, tracking_number: str, *, timeout: float
    ) -> bool:
        self.calls.append(("cancel_shipment", tracking_number))
        return self.cancellable

    def handle_webhook(self, payload: dict) -> ParsedWebhook:
        return ParsedWebhook(
            tracking_number=payload["awb"],
            provider_status=payload["status"],
            timestamp=datetime.fromisoformat(payload["at"]),
        )

    def called(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)


class FailingEventSink:
    async def append(self, event) -> None:
        raise RuntimeError("audit database is down")


@pytest.fixture()
def registry() -> ProviderRegistry:
    return ProviderRegistry()


@pytest.fixture()
def add_provider(
    registry: ProviderRegistry,
) -> Callable[..., ScriptedProvider]:
    """Register a scripted adapter; extra kwargs script its answers."""

    def add(
        provider_id: str,
        *,
        priority: int = 100,
        enabled: bool = True,
        supported_modes: tuple[str, ...] = ("surface", "air"),
        **script: Any,
    ) -> ScriptedProvider:
        adapter = ScriptedProvider(provider_id, **script)
        registry.register(
            adapter,
            ProviderSettings(
                provider_id=provider_id,
                code="scripted",
                priority=priority,
                enabled=enabled,
                supported_modes=supported_modes,
            ),
        )
        return adapter

    return add


@pytest.fixture()
def event_sink() -> InMemoryEventSink:
    return InMemoryEventSink()


@pytest.fixture()
def rate_request() -> RateRequest:
    return RateRequest(
        from_pincode="110001", to_pincode="400001", weight=Decimal("1.0")
    )


@pytest.fixture()
def order() -> ShipmentOrder:
    return ShipmentOrder(
        order_id="ORD-1001",
        pickup=Address(
            name="Warehouse",
            line1="12 Industrial Area",
            city="New Delhi",
            state="Delhi",
            pincode="110001",
            phone="9000000001",
        ),
        delivery=Address(
            name="Asha",
            line1="4 Marine Drive",
            city="Mumbai",
            state="Maharashtra",
            pincode="400001",
            phone="9000000002",
            email="asha@example.com",
        ),
        items=[
            OrderItem(
                name="Kurta",
                sku="KRT-1",
                units=2,
                selling_price=Decimal("499"),
                weight=Decimal("0.5"),
            )
        ],
        sub_total=Decimal("998"),
    )


SANDBOX_PROVIDERS: dict[str, dict[str, Any]] = {
    "budget": {
        "code": "dummy",
        "name": "Budget Sandbox",
        "priority": 1,
        "credentials": {"secret": "budget-secret"},
    },
    "express": {
        "code": "dummy",
        "name": "Express Sandbox",
        "priority": 2,
        "credentials": {"secret": "express-secret"},
        "options": {
            "rate_card": [
                {
                    "courier_code": "nxt",
                    "courier_name": "Next Day",
                    "rate": "90",
                    "estimated_days": 1,
                    "mode": "surface",
                    "cod": True,
                }
            ]
        },
    },
}


@pytest.fixture()
def sandbox_config() -> CarrierHubConfig:
    """Two sandbox accounts.

    For 110001 -> 400001 at 1 kg surface: budget quotes 80.00 in 7 days,
    express 180.00 in 3 days.
    """
    return CarrierHubConfig(
        providers={
            provider_id: dict(record)
            for provider_id, record in SANDBOX_PROVIDERS.items()
        }
    )


@pytest.fixture()
async def async_engine():
    """Create an in-memory aiosqlite async engine."""
    from sqlalchemy.ext.asyncio import create_async_engine
    from sqlalchemy.pool import StaticPool

    from fastapi_carrierhub.contrib.sqlalchemy.models import Base

    engine = create_async_engine(
        "sqlite+aiosqlite://", echo=False, poolclass=StaticPool
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture()
async def async_session_factory(async_engine):
    """Create an async session factory bound to the in-memory engine."""
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    factory = async_sessionmaker(
        async_engine, class_=AsyncSession, expire_on_commit=False
    )
    yield factory
