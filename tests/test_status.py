"""Shipment status mapping and transition tests."""

import asyncio
import logging

import pytest

from fastapi_carrierhub.status import (
    InMemoryShipmentStatusStore,
    apply_status_update,
    is_terminal,
    map_provider_status,
    resolve_transition,
    status_label,
)
from fastapi_carrierhub.types import ShipmentStatus

TABLE = {
    "DELIVERED": ShipmentStatus.DELIVERED,
    "In Transit": ShipmentStatus.IN_TRANSIT,
    "7": ShipmentStatus.RETURNED,
}


class TestMapProviderStatus:
    def test_exact_match(self) -> None:
        assert (
            map_provider_status("p", "7", TABLE) is ShipmentStatus.RETURNED
        )

    def test_case_insensitive_match(self) -> None:
        assert (
            map_provider_status("p", "delivered", TABLE)
            is ShipmentStatus.DELIVERED
        )
        assert (
            map_provider_status("p", " IN TRANSIT ", TABLE)
            is ShipmentStatus.IN_TRANSIT
        )

    @pytest.mark.parametrize(
        ("code", "expected"),
        [
            ("Reached transit hub", ShipmentStatus.IN_TRANSIT),
            ("Out for delivery - 2nd attempt", ShipmentStatus.OUT_FOR_DELIVERY),
            ("Pickup done", ShipmentStatus.PICKED_UP),
            ("Booked at counter", ShipmentStatus.CREATED),
            ("Lost in warehouse", ShipmentStatus.PENDING),
        ],
    )
    def test_unmapped_codes_fall_back_to_non_terminal(
        self, code: str, expected: ShipmentStatus
    ) -> None:
        status = map_provider_status("p", code, TABLE)

        assert status is expected
        assert not is_terminal(status)

    def test_unmapped_code_is_logged(self, caplog) -> None:
        with caplog.at_level(logging.WARNING):
            map_provider_status("courierx", "XYZ", TABLE)

        assert "Unmapped status 'XYZ' from provider courierx" in caplog.text


class TestResolveTransition:
    def test_first_status_is_taken(self) -> None:
        assert (
            resolve_transition(None, ShipmentStatus.CREATED)
            is ShipmentStatus.CREATED
        )

    def test_terminal_status_is_sticky(self) -> None:
        assert (
            resolve_transition(
                ShipmentStatus.DELIVERED, ShipmentStatus.IN_TRANSIT
            )
            is ShipmentStatus.DELIVERED
        )

    def test_out_of_order_non_terminal_is_accepted(self) -> None:
        assert (
            resolve_transition(
                ShipmentStatus.IN_TRANSIT, ShipmentStatus.PICKED_UP
            )
            is ShipmentStatus.PICKED_UP
        )


async def test_apply_status_update_keeps_terminal_status() -> None:
    store = InMemoryShipmentStatusStore()

    first = await apply_status_update(
        store, "AWB1", "p", ShipmentStatus.DELIVERED
    )
    second = await apply_status_update(
        store, "AWB1", "p", ShipmentStatus.IN_TRANSIT
    )

    assert first is second is ShipmentStatus.DELIVERED
    assert store.statuses["AWB1"] is ShipmentStatus.DELIVERED
    assert store.providers["AWB1"] == "p"


async def test_concurrent_updates_keep_terminal_status() -> None:
    store = InMemoryShipmentStatusStore()
    await store.set_status("AWB1", "p", ShipmentStatus.IN_TRANSIT)

    await asyncio.gather(
        apply_status_update(store, "AWB1", "p", ShipmentStatus.DELIVERED),
        apply_status_update(
            store, "AWB1", "p", ShipmentStatus.OUT_FOR_DELIVERY
        ),
    )

    assert store.statuses["AWB1"] is ShipmentStatus.DELIVERED


def test_every_status_has_a_label() -> None:
    for status in ShipmentStatus:
        assert status_label(status)
    assert status_label(ShipmentStatus.RETURNED) == "Returned to Sender"


@pytest.mark.parametrize(
    ("status", "terminal"),
    [
        (ShipmentStatus.DELIVERED, True),
        (ShipmentStatus.FAILED, True),
        (ShipmentStatus.RETURNED, True),
        (ShipmentStatus.CANCELLED, True),
        (ShipmentStatus.OUT_FOR_DELIVERY, False),
        (ShipmentStatus.PENDING, False),
    ],
)
def test_is_terminal(status: ShipmentStatus, terminal: bool) -> None:
    assert is_terminal(status) is terminal
