"""Shipment creation and fallback tests."""

import pytest

from fastapi_carrierhub.aggregator import RateAggregator
from fastapi_carrierhub.config import CarrierHubConfig
from fastapi_carrierhub.events import EventType
from fastapi_carrierhub.exceptions import (
    AllProvidersFailedError,
    NoServiceableRateError,
    ProviderRequestError,
    UnknownProviderError,
)
from fastapi_carrierhub.orchestrator import AttemptState, ShipmentOrchestrator
from fastapi_carrierhub.types import SelectionCriteria, SelectionStrategy
from conftest import FailingEventSink, make_rate


@pytest.fixture()
def orchestrator(registry, event_sink) -> ShipmentOrchestrator:
    return ShipmentOrchestrator(
        registry,
        event_sink=event_sink,
        config=CarrierHubConfig(shipment_timeout_seconds=0.05),
    )


class TestFallback:
    async def test_next_provider_is_tried_after_a_failure(
        self, add_provider, orchestrator, event_sink, order
    ) -> None:
        journal: list[tuple[str, str]] = []
        add_provider(
            "a",
            priority=1,
            shipment_error=ProviderRequestError("a", "pincode blocked"),
            shipment_delay=0.01,
            journal=journal,
        )
        add_provider("b", priority=2, journal=journal)

        shipment = await orchestrator.create_shipment_with_fallback(order)

        assert shipment.provider_id == "b"
        assert shipment.tracking_number == "B-ORD-1001"
        assert journal == [
            ("start", "a"),
            ("end", "a"),
            ("start", "b"),
            ("end", "b"),
        ]
        assert [(e.event_type, e.provider_id) for e in event_sink.events] == [
            (EventType.PROVIDER_TRIED, "a"),
            (EventType.PROVIDER_FAILED, "a"),
            (EventType.PROVIDER_TRIED, "b"),
            (EventType.SHIPMENT_CREATED, "b"),
        ]
        failed = event_sink.of_type(EventType.PROVIDER_FAILED)[0]
        assert failed.status == "failed"
        assert failed.error_message == "pincode blocked"
        assert failed.payload == {"error_type": "provider_request_error"}
        created = event_sink.of_type(EventType.SHIPMENT_CREATED)[0]
        assert created.payload["attempt"] == 2

    async def test_no_provider_is_called_after_success(
        self, add_provider, orchestrator, order
    ) -> None:
        add_provider("a", priority=1)
        b = add_provider("b", priority=2)

        shipment = await orchestrator.create_shipment_with_fallback(order)

        assert shipment.provider_id == "a"
        assert b.called("create_shipment") == 0

    async def test_timeout_counts_as_failure(
        self, add_provider, orchestrator, order
    ) -> None:
        add_provider("slow", priority=1, shipment_delay=1)
        add_provider("b", priority=2)

        shipment = await orchestrator.create_shipment_with_fallback(order)

        assert shipment.provider_id == "b"

    async def test_unexpected_exception_counts_as_failure(
        self, add_provider, orchestrator, order
    ) -> None:
        add_provider("a", priority=1, shipment_error=ValueError())
        add_provider("b", priority=2)

        shipment = await orchestrator.create_shipment_with_fallback(order)

        assert shipment.provider_id == "b"

    async def test_exhaustion_reports_every_failure_in_order(
        self, add_provider, orchestrator, order
    ) -> None:
        add_provider(
            "a", priority=1, shipment_error=ProviderRequestError("a", "down")
        )
        add_provider("b", priority=2, shipment_delay=1)

        with pytest.raises(AllProvidersFailedError) as exc_info:
            await orchestrator.create_shipment_with_fallback(order)

        exc = exc_info.value
        assert exc.order_id == "ORD-1001"
        assert [(f.provider_id, f.error_type) for f in exc.failures] == [
            ("a", "provider_request_error"),
            ("b", "provider_timeout"),
        ]

    async def test_no_enabled_provider(
        self, add_provider, orchestrator, order
    ) -> None:
        add_provider("off", enabled=False)

        with pytest.raises(AllProvidersFailedError) as exc_info:
            await orchestrator.create_shipment_with_fallback(order)

        assert exc_info.value.failures == []

    async def test_event_sink_failure_does_not_fail_shipment(
        self, add_provider, registry, order
    ) -> None:
        add_provider("a")
        orchestrator = ShipmentOrchestrator(
            registry, event_sink=FailingEventSink()
        )

        shipment = await orchestrator.create_shipment_with_fallback(order)

        assert shipment.provider_id == "a"


class TestSpecificProvider:
    async def test_only_the_named_provider_is_tried(
        self, add_provider, orchestrator, order
    ) -> None:
        add_provider("a", priority=1)
        b = add_provider(
            "b", priority=2, shipment_error=ProviderRequestError("b", "down")
        )
        criteria = SelectionCriteria(
            strategy=SelectionStrategy.SPECIFIC, specific_provider_id="b"
        )

        with pytest.raises(AllProvidersFailedError) as exc_info:
            await orchestrator.create_shipment_with_fallback(order, criteria)

        assert [f.provider_id for f in exc_info.value.failures] == ["b"]
        assert b.called("create_shipment") == 1

    async def test_unknown_provider(self, orchestrator, order) -> None:
        criteria = SelectionCriteria(
            strategy=SelectionStrategy.SPECIFIC, specific_provider_id="ghost"
        )

        with pytest.raises(UnknownProviderError):
            await orchestrator.create_shipment_with_fallback(order, criteria)

    async def test_rate_of_the_named_provider_is_used(
        self, add_provider, orchestrator, order
    ) -> None:
        b = add_provider("b")
        rates = [make_rate("a", 10, 1), make_rate("b", 50, 2)]
        criteria = SelectionCriteria(
            strategy=SelectionStrategy.SPECIFIC, specific_provider_id="b"
        )

        attempts = await orchestrator.plan_attempts(
            order, criteria, rates=rates
        )
        await orchestrator.create_shipment_with_fallback(
            order, criteria, rates=rates
        )

        assert [a.provider_id for a in attempts] == ["b"]
        assert attempts[0].rate == rates[1]
        _, request = b.calls[-1]
        assert request.rate == rates[1]


class TestPlanAttempts:
    async def test_ranked_rates_decide_the_order(
        self, add_provider, orchestrator, order
    ) -> None:
        add_provider("a", priority=1)
        add_provider("b", priority=2)
        rates = [
            make_rate("a", 90, 2),
            make_rate("b", 40, 4, courier_code="x"),
            make_rate("b", 45, 3, courier_code="y"),
        ]

        attempts = await orchestrator.plan_attempts(
            order, SelectionCriteria(), rates=rates
        )

        assert [(a.provider_id, a.rate.courier_code) for a in attempts] == [
            ("b", "x"),
            ("a", "std"),
        ]
        assert all(a.state is AttemptState.PENDING for a in attempts)

    async def test_explicit_rate_goes_first(
        self, add_provider, orchestrator, order
    ) -> None:
        add_provider("a", priority=1)
        add_provider("b", priority=2)
        chosen = make_rate("b", 99, 9)

        attempts = await orchestrator.plan_attempts(order, rate=chosen)

        assert [a.provider_id for a in attempts] == ["b", "a"]
        assert attempts[0].rate is chosen
        assert attempts[1].rate is None

    async def test_disabled_and_unknown_providers_are_skipped(
        self, add_provider, orchestrator, order
    ) -> None:
        add_provider("a")
        add_provider("off", enabled=False)
        rates = [
            make_rate("off", 1, 1),
            make_rate("ghost", 2, 1),
            make_rate("a", 3, 1),
        ]

        attempts = await orchestrator.plan_attempts(
            order, SelectionCriteria(), rates=rates
        )

        assert [a.provider_id for a in attempts] == ["a"]

    async def test_filtered_out_rates_raise(
        self, add_provider, orchestrator, order
    ) -> None:
        add_provider("a")
        criteria = SelectionCriteria(max_days=1)

        with pytest.raises(NoServiceableRateError) as exc_info:
            await orchestrator.plan_attempts(
                order, criteria, rates=[make_rate("a", 10, 5)]
            )

        assert exc_info.value.failures[0].error_type == "filtered"

    async def test_criteria_without_rates_asks_the_aggregator(
        self, add_provider, registry, order
    ) -> None:
        add_provider("a", priority=1, rates=[make_rate("a", 90, 2)])
        add_provider("b", priority=2, rates=[make_rate("b", 40, 4)])
        orchestrator = ShipmentOrchestrator(
            registry, aggregator=RateAggregator(registry)
        )

        attempts = await orchestrator.plan_attempts(
            order, SelectionCriteria(strategy=SelectionStrategy.CHEAPEST)
        )

        assert [a.provider_id for a in attempts] == ["b", "a"]

    async def test_unserviceable_route_falls_back_to_priority(
        self, add_provider, registry, order
    ) -> None:
        add_provider("a", priority=2)
        add_provider("b", priority=1)
        orchestrator = ShipmentOrchestrator(
            registry, aggregator=RateAggregator(registry)
        )

        attempts = await orchestrator.plan_attempts(order, SelectionCriteria())

        assert [a.provider_id for a in attempts] == ["b", "a"]
        assert all(a.rate is None for a in attempts)


async def test_track_shipment(add_provider, orchestrator) -> None:
    add_provider("a")

    info = await orchestrator.track_shipment("AWB1", "a")

    assert info.tracking_number == "AWB1"


async def test_cancel_shipment_records_event(
    add_provider, orchestrator, event_sink
) -> None:
    add_provider("a")
    add_provider("stubborn", cancellable=False)

    assert await orchestrator.cancel_shipment("AWB1", "a") is True
    assert await orchestrator.cancel_shipment("AWB2", "stubborn") is False
    cancelled = event_sink.of_type(EventType.SHIPMENT_CANCELLED)
    assert [e.tracking_number for e in cancelled] == ["AWB1"]


async def test_track_unknown_provider(orchestrator) -> None:
    with pytest.raises(UnknownProviderError):
        await orchestrator.track_shipment("AWB1", "ghost")
