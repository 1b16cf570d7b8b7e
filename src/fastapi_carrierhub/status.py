"""Shipment status rules: terminal states, transitions, inference."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Mapping

from fastapi_carrierhub.types import ShipmentStatus

logger = logging.getLogger(__name__)

TERMINAL_STATUSES: frozenset[ShipmentStatus] = frozenset(
    {
        ShipmentStatus.DELIVERED,
        ShipmentStatus.FAILED,
        ShipmentStatus.RETURNED,
        ShipmentStatus.CANCELLED,
    }
)

STATUS_LABELS: dict[ShipmentStatus, str] = {
    ShipmentStatus.PENDING: "Pending",
    ShipmentStatus.CREATED: "Label Created",
    ShipmentStatus.PICKED_UP: "Picked Up",
    ShipmentStatus.IN_TRANSIT: "In Transit",
    ShipmentStatus.OUT_FOR_DELIVERY: "Out for Delivery",
    ShipmentStatus.DELIVERED: "Delivered",
    ShipmentStatus.FAILED: "Delivery Failed",
    ShipmentStatus.RETURNED: "Returned to Sender",
    ShipmentStatus.CANCELLED: "Cancelled",
}

# Keyword -> status, checked in order. Only non-terminal targets: an unknown
# provider code must never end a shipment's lifecycle.
_NON_TERMINAL_KEYWORDS: tuple[tuple[str, ShipmentStatus], ...] = (
    ("out for", ShipmentStatus.OUT_FOR_DELIVERY),
    ("transit", ShipmentStatus.IN_TRANSIT),
    ("pick", ShipmentStatus.PICKED_UP),
    ("manifest", ShipmentStatus.CREATED),
    ("book", ShipmentStatus.CREATED),
)


def is_terminal(status: ShipmentStatus) -> bool:
    return status in TERMINAL_STATUSES


def status_label(status: ShipmentStatus) -> str:
    return STATUS_LABELS[status]


def resolve_transition(
    current: ShipmentStatus | None, incoming: ShipmentStatus
) -> ShipmentStatus:
    """Return the status a shipment ends up in after ``incoming``.

    Terminal states are sticky. Non-terminal reports are accepted in any
    order because carriers deliver events out of order and skip steps.
    """
    if current is not None and is_terminal(current):
        if incoming != current:
            logger.info(
                "Ignoring %s after terminal status %s", incoming, current
            )
        return current
    return incoming


def infer_non_terminal_status(provider_status: str) -> ShipmentStatus:
    lowered = provider_status.lower()
    for keyword, status in _NON_TERMINAL_KEYWORDS:
        if keyword in lowered:
            return status
    return ShipmentStatus.PENDING


def map_provider_status(
    provider_id: str,
    provider_status: str,
    table: Mapping[str, ShipmentStatus],
) -> ShipmentStatus:
    """Translate a provider status code through the provider's table.

    Lookup is exact first, then case-insensitive. Unmapped codes fall back
    to the closest non-terminal status and are logged.
    """
    status = table.get(provider_status)
    if status is None:
        folded = provider_status.strip().lower()
        status = next(
            (
                value
                for key, value in table.items()
                if key.strip().lower() == folded
            ),
            None,
        )
    if status is not None:
        return status

    inferred = infer_non_terminal_status(provider_status)
    logger.warning(
        "Unmapped status %r from provider %s, using %s",
        provider_status,
        provider_id,
        inferred,
    )
    return inferred


class InMemoryShipmentStatusStore:
    """Status per tracking number kept in a dict."""

    def __init__(self) -> None:
        self.statuses: dict[str, ShipmentStatus] = {}
        self.providers: dict[str, str] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def get_status(self, tracking_number: str) -> ShipmentStatus | None:
        return self.statuses.get(tracking_number)

    async def set_status(
        self,
        tracking_number: str,
        provider_id: str,
        status: ShipmentStatus,
    ) -> None:
        self.statuses[tracking_number] = status
        self.providers[tracking_number] = provider_id

    async def transition(
        self,
        tracking_number: str,
        provider_id: str,
        incoming: ShipmentStatus,
    ) -> ShipmentStatus:
        async with self._locks[tracking_number]:
            current = await self.get_status(tracking_number)
            resolved = resolve_transition(current, incoming)
            if resolved != current:
                await self.set_status(tracking_number, provider_id, resolved)
            return resolved


async def apply_status_update(
    store, tracking_number: str, provider_id: str, incoming: ShipmentStatus
) -> ShipmentStatus:
    """Persist ``incoming`` through ``store`` unless the shipment is final.

    The store's ``transition`` performs the terminal check and the write as
    one step, so concurrent updates cannot leave a final state.
    """
    return await store.transition(tracking_number, provider_id, incoming)
