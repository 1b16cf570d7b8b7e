"""Contracts for provider adapters and persistence collaborators."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from fastapi_carrierhub.events import ShippingEvent
from fastapi_carrierhub.types import (
    CacheEntry,
    ParsedWebhook,
    ProviderSettings,
    RateRequest,
    Shipment,
    ShipmentRequest,
    ShipmentStatus,
    ShippingRate,
    TrackingInfo,
)


@runtime_checkable
class ShippingProvider(Protocol):
    """Capability set every carrier adapter implements.

    Network calls take the caller's ``timeout`` in seconds and must not
    outlive it. ``create_shipment`` is attempted at most once per call:
    fallback to other providers is the orchestrator's job.
    """

    status_map: Mapping[str, ShipmentStatus]

    def identify(self) -> tuple[str, str]: ...

    async def initialize(self, settings: ProviderSettings) -> None: ...

    async def check_serviceability(
        self, pincode: str, *, timeout: float
    ) -> bool: ...

    async def get_rates(
        self, request: RateRequest, *, timeout: float
    ) -> list[ShippingRate]: ...

    async def create_shipment(
        self, request: ShipmentRequest, *, timeout: float
    ) -> Shipment: ...

    async def track_shipment(
        self, tracking_number: str, *, timeout: float
    ) -> TrackingInfo: ...

    async def cancel_shipment(
        self, tracking_number: str, *, timeout: float
    ) -> bool: ...

    def handle_webhook(self, payload: Mapping[str, Any]) -> ParsedWebhook: ...


@runtime_checkable
class WebhookValidator(Protocol):
    """Optional capability: authenticate inbound webhooks."""

    signature_header: str

    def validate_webhook(self, raw_body: bytes, signature: str) -> bool: ...


@runtime_checkable
class ProviderConfigSource(Protocol):
    """Supplies provider configuration records."""

    async def load_provider_settings(self) -> list[ProviderSettings]: ...


@runtime_checkable
class RateCacheStore(Protocol):
    """Key/value storage behind the rate cache."""

    async def get(self, key: str) -> CacheEntry | None: ...

    async def put(self, entry: CacheEntry) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_for_provider(self, provider_id: str) -> int: ...

    async def delete_prefix(self, prefix: str) -> int: ...

    async def clear(self) -> int: ...

    async def purge_expired(self, now: datetime | None = None) -> int: ...

    async def count(self) -> int: ...

    async def count_expired(self, now: datetime) -> int: ...


@runtime_checkable
class EventSink(Protocol):
    """Append-only audit log."""

    async def append(self, event: ShippingEvent) -> None: ...


@runtime_checkable
class ShipmentStatusStore(Protocol):
    """Current status per tracking number, owned by the order side."""

    async def get_status(self, tracking_number: str) -> ShipmentStatus | None: ...

    async def set_status(
        self,
        tracking_number: str,
        provider_id: str,
        status: ShipmentStatus,
    ) -> None: ...

    async def transition(
        self,
        tracking_number: str,
        provider_id: str,
        incoming: ShipmentStatus,
    ) -> ShipmentStatus:
        """Store ``incoming`` unless the current status is terminal.

        The check and the write must be atomic. Returns the status the
        shipment is in afterwards.
        """
        ...
