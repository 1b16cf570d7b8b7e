"""Shipment creation with ordered provider fallback."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import TypeVar

from fastapi_carrierhub.aggregator import RateAggregator
from fastapi_carrierhub.config import CarrierHubConfig
from fastapi_carrierhub.events import EventType, ShippingEvent, record_event
from fastapi_carrierhub.exceptions import (
    AllProvidersFailedError,
    NoServiceableRateError,
    ProviderError,
    ProviderFailure,
    ProviderRequestError,
    ProviderTimeoutError,
    UnknownProviderError,
)
from fastapi_carrierhub.protocols import EventSink
from fastapi_carrierhub.registry import ProviderRegistry
from fastapi_carrierhub.selector import RateSelector
from fastapi_carrierhub.types import (
    SelectionCriteria,
    Shipment,
    ShipmentOrder,
    ShipmentRequest,
    ShippingRate,
    TrackingInfo,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AttemptState(StrEnum):
    PENDING = "pending"
    TRYING = "trying"
    SUCCEEDED = "succeeded"
    FAILED_TRY_NEXT = "failed_try_next"
    EXHAUSTED = "exhausted"


@dataclass
class ShipmentAttempt:
    """One provider in the fallback order."""

    provider_id: str
    rate: ShippingRate | None = None
    state: AttemptState = AttemptState.PENDING
    failure: ProviderFailure | None = None


class ShipmentOrchestrator:
    """Creates shipments, falling back provider by provider.

    Attempts are strictly sequential. Once one provider has created the
    shipment no other provider is called, whatever happens afterwards.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        selector: RateSelector | None = None,
        event_sink: EventSink | None = None,
        config: CarrierHubConfig | None = None,
        aggregator: RateAggregator | None = None,
    ) -> None:
        self.registry = registry
        self.selector = selector or RateSelector(registry.priority_of)
        self.event_sink = event_sink
        self.config = config or CarrierHubConfig()
        self.aggregator = aggregator

    async def _call(
        self,
        provider_id: str,
        operation: str,
        awaitable: Awaitable[T],
        timeout: float,
    ) -> T:
        """Await a provider call, mapping raw failures onto provider errors."""
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except TimeoutError as exc:
            raise ProviderTimeoutError(
                provider_id, f"{operation} did not finish within {timeout:g}s"
            ) from exc
        except ProviderError:
            raise
        except Exception as exc:
            detail = str(exc) or type(exc).__name__
            raise ProviderRequestError(
                provider_id, f"{operation} failed: {detail}"
            ) from exc

    async def _ranked_rates(
        self,
        order: ShipmentOrder,
        criteria: SelectionCriteria | None,
        rates: Sequence[ShippingRate] | None,
    ) -> list[ShippingRate] | None:
        if rates is None and criteria is not None and self.aggregator is not None:
            try:
                aggregate = await self.aggregator.get_rates_from_all_providers(
                    order.rate_request()
                )
            except NoServiceableRateError as exc:
                logger.warning(
                    "No rates for order %s, falling back to provider priority: %s",
                    order.order_id,
                    exc,
                )
                return None
            rates = aggregate.rates
        if not rates:
            return None

        criteria = criteria or SelectionCriteria(
            strategy=self.config.default_strategy
        )
        ranked = self.selector.rank(rates, criteria)
        if not ranked:
            raise NoServiceableRateError(
                [
                    ProviderFailure(
                        provider_id=provider_id,
                        reason="no rate satisfies the selection criteria",
                        error_type="filtered",
                    )
                    for provider_id in sorted({r.provider_id for r in rates})
                ]
            )
        return ranked

    async def plan_attempts(
        self,
        order: ShipmentOrder,
        criteria: SelectionCriteria | None = None,
        *,
        rate: ShippingRate | None = None,
        rates: Sequence[ShippingRate] | None = None,
    ) -> list[ShipmentAttempt]:
        """Compute the provider try order for ``order``.

        A specific provider in ``criteria`` is tried alone. Otherwise the
        selector's ranking decides, one attempt per provider, and without
        rates the registry's priority order is used. An explicit ``rate``
        always goes first.
        """
        if criteria is not None and criteria.specific_provider_id:
            provider_id = criteria.specific_provider_id
            if not self.registry.is_registered(provider_id):
                raise UnknownProviderError(provider_id)
            chosen = rate if rate and rate.provider_id == provider_id else None
            if chosen is None and rates:
                ranked = self.selector.rank(rates, criteria)
                chosen = next(
                    (r for r in ranked if r.provider_id == provider_id), None
                )
            return [ShipmentAttempt(provider_id=provider_id, rate=chosen)]

        attempts: list[ShipmentAttempt] = []
        seen: set[str] = set()

        def add(provider_id: str, chosen: ShippingRate | None) -> None:
            if provider_id in seen or not self.registry.is_enabled(provider_id):
                return
            seen.add(provider_id)
            attempts.append(ShipmentAttempt(provider_id=provider_id, rate=chosen))

        if rate is not None:
            add(rate.provider_id, rate)

        ranked = await self._ranked_rates(order, criteria, rates)
        if ranked is None:
            for provider_id in self.registry.enabled_providers(mode=order.mode):
                add(provider_id, None)
        else:
            for candidate in ranked:
                add(candidate.provider_id, candidate)
        return attempts

    async def create_shipment_with_fallback(
        self,
        order: ShipmentOrder,
        criteria: SelectionCriteria | None = None,
        *,
        rate: ShippingRate | None = None,
        rates: Sequence[ShippingRate] | None = None,
    ) -> Shipment:
        """Create a shipment with the first provider that accepts it.

        Raises ``AllProvidersFailedError`` with every provider's failure, in
        try order, when none does.
        """
        attempts = await self.plan_attempts(
            order, criteria, rate=rate, rates=rates
        )
        failures: list[ProviderFailure] = []

        for attempt in attempts:
            attempt.state = AttemptState.TRYING
            await record_event(
                self.event_sink,
                ShippingEvent(
                    event_type=EventType.PROVIDER_TRIED,
                    provider_id=attempt.provider_id,
                    order_id=order.order_id,
                    payload=(
                        {"courier_code": attempt.rate.courier_code}
                        if attempt.rate
                        else {}
                    ),
                ),
            )
            try:
                shipment = await self._create_with(attempt, order)
            except ProviderError as exc:
                attempt.state = AttemptState.FAILED_TRY_NEXT
                attempt.failure = exc.to_failure()
                failures.append(attempt.failure)
                logger.warning(
                    "Shipment for order %s failed at provider %s: %s",
                    order.order_id,
                    attempt.provider_id,
                    exc.reason,
                )
                await record_event(
                    self.event_sink,
                    ShippingEvent(
                        event_type=EventType.PROVIDER_FAILED,
                        provider_id=attempt.provider_id,
                        status="failed",
                        order_id=order.order_id,
                        error_message=exc.reason,
                        payload={"error_type": exc.code},
                    ),
                )
                continue

            attempt.state = AttemptState.SUCCEEDED
            logger.info(
                "Created shipment %s for order %s with provider %s",
                shipment.tracking_number,
                order.order_id,
                attempt.provider_id,
            )
            await record_event(
                self.event_sink,
                ShippingEvent(
                    event_type=EventType.SHIPMENT_CREATED,
                    provider_id=attempt.provider_id,
                    order_id=order.order_id,
                    tracking_number=shipment.tracking_number,
                    payload={
                        "courier_name": shipment.courier_name,
                        "attempt": len(failures) + 1,
                    },
                ),
            )
            return shipment

        if attempts:
            attempts[-1].state = AttemptState.EXHAUSTED
        logger.error(
            "Shipment for order %s failed with all %d provider(s): %s",
            order.order_id,
            len(attempts),
            ", ".join(f.provider_id for f in failures) or "none available",
        )
        raise AllProvidersFailedError(failures, order_id=order.order_id)

    async def _create_with(
        self, attempt: ShipmentAttempt, order: ShipmentOrder
    ) -> Shipment:
        adapter = self.registry.adapter_for(attempt.provider_id)
        timeout = self.config.shipment_timeout_seconds
        shipment = await self._call(
            attempt.provider_id,
            "create_shipment",
            adapter.create_shipment(
                ShipmentRequest(order=order, rate=attempt.rate),
                timeout=timeout,
            ),
            timeout,
        )
        if shipment.provider_id != attempt.provider_id:
            shipment = shipment.model_copy(
                update={"provider_id": attempt.provider_id}
            )
        return shipment

    async def track_shipment(
        self, tracking_number: str, provider_id: str
    ) -> TrackingInfo:
        adapter = self.registry.adapter_for(provider_id)
        timeout = self.config.tracking_timeout_seconds
        return await self._call(
            provider_id,
            "track_shipment",
            adapter.track_shipment(tracking_number, timeout=timeout),
            timeout,
        )

    async def cancel_shipment(
        self, tracking_number: str, provider_id: str
    ) -> bool:
        adapter = self.registry.adapter_for(provider_id)
        timeout = self.config.shipment_timeout_seconds
        cancelled = await self._call(
            provider_id,
            "cancel_shipment",
            adapter.cancel_shipment(tracking_number, timeout=timeout),
            timeout,
        )
        if cancelled:
            await record_event(
                self.event_sink,
                ShippingEvent(
                    event_type=EventType.SHIPMENT_CANCELLED,
                    provider_id=provider_id,
                    tracking_number=tracking_number,
                ),
            )
        else:
            logger.warning(
                "Provider %s refused to cancel shipment %s",
                provider_id,
                tracking_number,
            )
        return cancelled
