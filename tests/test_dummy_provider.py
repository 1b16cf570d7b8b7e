"""Sandbox carrier tests."""

import hashlib
from datetime import UTC, datetime
from decimal import Decimal

import pytest

from fastapi_carrierhub.exceptions import (
    ProviderAuthError,
    ProviderRequestError,
    WebhookPayloadError,
)
from fastapi_carrierhub.providers.dummy import DummyProvider, sign_payload
from fastapi_carrierhub.types import (
    ProviderSettings,
    RateRequest,
    ShipmentRequest,
    ShipmentStatus,
)


async def _sandbox(**options) -> DummyProvider:
    adapter = DummyProvider()
    await adapter.initialize(
        ProviderSettings(
            provider_id="sandbox",
            code="dummy",
            credentials={"secret": "s3cret"},
            options=options,
        )
    )
    return adapter


def _request(to_pincode: str = "400001", **kwargs) -> RateRequest:
    return RateRequest(
        from_pincode="110001", to_pincode=to_pincode, **{"weight": 1, **kwargs}
    )


class TestRates:
    async def test_default_rate_card(self) -> None:
        adapter = await _sandbox()

        rates = await adapter.get_rates(_request(), timeout=1)

        assert [(r.courier_code, r.rate, r.estimated_days) for r in rates] == [
            ("std", Decimal("80.00"), 7)
        ]
        assert rates[0].provider_name == "Sandbox Carrier"
        assert rates[0].features.cod is True

    async def test_weight_rounds_up_to_half_kilo(self) -> None:
        adapter = await _sandbox()

        rates = await adapter.get_rates(
            _request(weight=Decimal("1.2")), timeout=1
        )

        assert rates[0].rate == Decimal("120.00")

    async def test_distance_adds_days(self) -> None:
        adapter = await _sandbox()

        local = await adapter.get_rates(_request("110005"), timeout=1)
        regional = await adapter.get_rates(_request("122001"), timeout=1)

        assert local[0].estimated_days == 5
        assert regional[0].estimated_days == 6

    async def test_air_mode_and_cod(self) -> None:
        adapter = await _sandbox()

        air = await adapter.get_rates(_request(mode="air"), timeout=1)
        air_cod = await adapter.get_rates(
            _request(mode="air", cod_amount=Decimal("500")), timeout=1
        )

        assert [r.courier_code for r in air] == ["exp"]
        assert air_cod == []

    async def test_invalid_pincode_gives_no_rates(self) -> None:
        adapter = await _sandbox()

        assert await adapter.get_rates(_request("012345"), timeout=1) == []
        assert await adapter.check_serviceability("012345", timeout=1) is False

    async def test_rate_failure_option(self) -> None:
        adapter = await _sandbox(fail_rates=True)

        with pytest.raises(ProviderRequestError, match="sandbox rate failure"):
            await adapter.get_rates(_request(), timeout=1)

    async def test_auth_failure_option(self) -> None:
        with pytest.raises(ProviderAuthError):
            await _sandbox(fail_auth=True)


class TestShipments:
    async def test_tracking_number_is_deterministic(self, order) -> None:
        adapter = await _sandbox()
        digest = hashlib.sha1(b"sandbox:ORD-1001").hexdigest()

        shipment = await adapter.create_shipment(
            ShipmentRequest(order=order), timeout=1
        )

        assert shipment.tracking_number == f"SBX{digest[:10].upper()}"
        assert shipment.tracking_url.endswith(shipment.tracking_number)
        assert shipment.courier_code == "std"
        assert shipment.shipping_cost is None

    async def test_track_then_cancel(self, order) -> None:
        adapter = await _sandbox()
        shipment = await adapter.create_shipment(
            ShipmentRequest(order=order), timeout=1
        )

        before = await adapter.track_shipment(shipment.tracking_number, timeout=1)
        cancelled = await adapter.cancel_shipment(
            shipment.tracking_number, timeout=1
        )
        after = await adapter.track_shipment(shipment.tracking_number, timeout=1)

        assert before.current.status is ShipmentStatus.CREATED
        assert cancelled is True
        assert after.current.status is ShipmentStatus.CANCELLED
        assert adapter.calls["track_shipment"] == 2

    async def test_cancel_unknown(self) -> None:
        adapter = await _sandbox()

        assert await adapter.cancel_shipment("SBXNOPE", timeout=1) is False

    async def test_booking_failure_option(self, order) -> None:
        adapter = await _sandbox(fail_shipments=True)

        with pytest.raises(ProviderRequestError, match="booking failure"):
            await adapter.create_shipment(ShipmentRequest(order=order), timeout=1)


class TestWebhooks:
    async def test_signature(self) -> None:
        adapter = await _sandbox()
        body = b'{"tracking_number": "SBX1"}'

        assert adapter.validate_webhook(body, sign_payload("s3cret", body))
        assert not adapter.validate_webhook(body, sign_payload("other", body))

    async def test_naive_timestamp_is_utc(self) -> None:
        adapter = await _sandbox()

        parsed = adapter.handle_webhook(
            {
                "tracking_number": "SBX1",
                "status": "picked",
                "timestamp": "2026-03-01T08:00:00",
            }
        )

        assert parsed.timestamp == datetime(2026, 3, 1, 8, tzinfo=UTC)
        assert adapter.status_map[parsed.provider_status] is (
            ShipmentStatus.PICKED_UP
        )

    async def test_bad_timestamp(self) -> None:
        adapter = await _sandbox()

        with pytest.raises(WebhookPayloadError, match="ISO 8601"):
            adapter.handle_webhook(
                {"tracking_number": "SBX1", "status": "ofd", "timestamp": "x"}
            )
