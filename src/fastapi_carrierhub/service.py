"""Engine facade wiring registry, cache, selector and orchestrator."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

from fastapi_carrierhub.aggregator import RateAggregate, RateAggregator
from fastapi_carrierhub.cache import CacheEntryCounts, RateCache
from fastapi_carrierhub.config import CarrierHubConfig
from fastapi_carrierhub.events import EventType, ShippingEvent, record_event
from fastapi_carrierhub.exceptions import CarrierHubError
from fastapi_carrierhub.orchestrator import ShipmentOrchestrator
from fastapi_carrierhub.protocols import (
    EventSink,
    ProviderConfigSource,
    RateCacheStore,
    ShipmentStatusStore,
)
from fastapi_carrierhub.registry import (
    ConfigProviderSource,
    ProviderFactory,
    ProviderRegistry,
)
from fastapi_carrierhub.selector import RateSelector
from fastapi_carrierhub.status import apply_status_update
from fastapi_carrierhub.types import (
    ProviderInfo,
    RateRequest,
    SelectionCriteria,
    SelectionResult,
    Shipment,
    ShipmentOrder,
    ShipmentStatus,
    ShippingRate,
    TrackingInfo,
    WebhookEvent,
)
from fastapi_carrierhub.webhooks import RawPayload, WebhookNormalizer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookOutcome:
    event: WebhookEvent
    # Status the shipment is in after the event; differs from
    # ``event.status`` when the shipment had already reached a final state.
    current_status: ShipmentStatus


class ShippingService:
    """Single entry point for checkout, admin tooling and webhooks."""

    def __init__(
        self,
        config: CarrierHubConfig | None = None,
        *,
        registry: ProviderRegistry | None = None,
        cache_store: RateCacheStore | None = None,
        event_sink: EventSink | None = None,
        status_store: ShipmentStatusStore | None = None,
    ) -> None:
        self.config = config or CarrierHubConfig()
        self.registry = registry or ProviderRegistry()
        self.event_sink = event_sink
        self.status_store = status_store
        self.cache = RateCache(cache_store, self.config)
        self.selector = RateSelector(self.registry.priority_of)
        self.aggregator = RateAggregator(self.registry, self.cache, self.config)
        self.orchestrator = ShipmentOrchestrator(
            self.registry,
            self.selector,
            event_sink,
            self.config,
            aggregator=self.aggregator,
        )
        self.normalizer = WebhookNormalizer(self.registry, self.config)

    # --- Providers ---

    async def load_providers(
        self,
        source: ProviderConfigSource | None = None,
        factories: Mapping[str, ProviderFactory] | None = None,
    ) -> int:
        """Initialize adapters, by default from ``config.providers``."""
        if factories is None:
            from fastapi_carrierhub.providers import DEFAULT_FACTORIES

            factories = DEFAULT_FACTORIES
        source = source or ConfigProviderSource(self.config.providers)
        return await self.registry.load(source, factories)

    async def reload_providers(self) -> int:
        """Re-read provider configuration and drop every cached rate set."""
        count = await self.registry.reload()
        await self.cache.invalidate()
        return count

    def get_available_providers(self) -> list[ProviderInfo]:
        return self.registry.available_providers()

    def get_provider_count(self) -> int:
        return self.registry.count()

    async def check_serviceability(self, pincode: str) -> dict[str, bool]:
        return await self.aggregator.check_serviceability(pincode)

    # --- Rates ---

    def _criteria(self, criteria: SelectionCriteria | None) -> SelectionCriteria:
        if criteria is not None:
            return criteria
        return SelectionCriteria(strategy=self.config.default_strategy)

    async def get_rates_from_all_providers(
        self, request: RateRequest, *, use_cache: bool = True
    ) -> RateAggregate:
        return await self.aggregator.get_rates_from_all_providers(
            request, use_cache=use_cache
        )

    def select(
        self,
        rates: Sequence[ShippingRate],
        criteria: SelectionCriteria | None = None,
    ) -> SelectionResult | None:
        return self.selector.select(rates, self._criteria(criteria))

    async def get_best_rate(
        self,
        request: RateRequest,
        criteria: SelectionCriteria | None = None,
    ) -> SelectionResult | None:
        """Aggregate rates for ``request`` and select one of them."""
        aggregate = await self.get_rates_from_all_providers(request)
        return self.select(aggregate.rates, criteria)

    async def invalidate_rates(
        self,
        *,
        key: str | None = None,
        provider_id: str | None = None,
        route: tuple[str, str] | None = None,
    ) -> int:
        return await self.cache.invalidate(
            key=key, provider_id=provider_id, route=route
        )

    async def purge_expired_rates(self) -> int:
        return await self.cache.purge_expired()

    async def warm_rate_cache(self, requests: Iterable[RateRequest]) -> int:
        """Pre-load rate sets, e.g. for popular routes from a scheduled job."""
        return await self.aggregator.warm(requests)

    async def rate_cache_stats(self) -> CacheEntryCounts:
        return await self.cache.entry_counts()

    # --- Shipments ---

    async def create_shipment_with_fallback(
        self,
        order: ShipmentOrder,
        criteria: SelectionCriteria | None = None,
        *,
        rate: ShippingRate | None = None,
        rates: Sequence[ShippingRate] | None = None,
    ) -> Shipment:
        shipment = await self.orchestrator.create_shipment_with_fallback(
            order, criteria, rate=rate, rates=rates
        )
        if self.status_store is not None:
            await apply_status_update(
                self.status_store,
                shipment.tracking_number,
                shipment.provider_id,
                shipment.status,
            )
        return shipment

    async def track_shipment(
        self, tracking_number: str, provider_id: str
    ) -> TrackingInfo:
        return await self.orchestrator.track_shipment(tracking_number, provider_id)

    async def cancel_shipment(self, tracking_number: str, provider_id: str) -> bool:
        cancelled = await self.orchestrator.cancel_shipment(
            tracking_number, provider_id
        )
        if cancelled and self.status_store is not None:
            await apply_status_update(
                self.status_store,
                tracking_number,
                provider_id,
                ShipmentStatus.CANCELLED,
            )
        return cancelled

    # --- Webhooks ---

    async def ingest_webhook(
        self,
        provider_id: str,
        raw_payload: RawPayload,
        signature: str | None = None,
    ) -> WebhookOutcome:
        """Normalize a webhook and apply it to the shipment's status.

        Rejected payloads are recorded as ``webhook_rejected`` events and
        the error is re-raised for the caller to acknowledge.
        """
        try:
            event = self.normalizer.ingest(provider_id, raw_payload, signature)
        except CarrierHubError as exc:
            await record_event(
                self.event_sink,
                ShippingEvent(
                    event_type=EventType.WEBHOOK_REJECTED,
                    provider_id=provider_id,
                    status="failed",
                    error_message=str(exc),
                    payload={"error_type": exc.code},
                ),
            )
            raise

        current = event.status
        if self.status_store is not None:
            current = await apply_status_update(
                self.status_store,
                event.tracking_number,
                provider_id,
                event.status,
            )
        await record_event(
            self.event_sink,
            ShippingEvent(
                event_type=EventType.WEBHOOK_INGESTED,
                provider_id=provider_id,
                order_id=event.order_id,
                tracking_number=event.tracking_number,
                payload={
                    "status": event.status.value,
                    "provider_status": event.provider_status,
                    "current_status": current.value,
                    "signature_verified": event.signature_verified,
                },
            ),
        )
        return WebhookOutcome(event=event, current_status=current)
