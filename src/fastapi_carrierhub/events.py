"""Audit events and the in-memory event sink."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    PROVIDER_TRIED = "provider_tried"
    PROVIDER_FAILED = "provider_failed"
    SHIPMENT_CREATED = "shipment_created"
    SHIPMENT_CANCELLED = "shipment_cancelled"
    WEBHOOK_INGESTED = "webhook_ingested"
    WEBHOOK_REJECTED = "webhook_rejected"


class ShippingEvent(BaseModel):
    event_type: EventType
    provider_id: str
    status: Literal["success", "failed"] = "success"
    order_id: str | None = None
    tracking_number: str | None = None
    error_message: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))


class InMemoryEventSink:
    """Append-only list of events, for tests and single-process setups."""

    def __init__(self) -> None:
        self.events: list[ShippingEvent] = []

    async def append(self, event: ShippingEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> list[ShippingEvent]:
        return [event for event in self.events if event.event_type == event_type]


async def record_event(sink: Any, event: ShippingEvent) -> bool:
    """Append ``event`` to ``sink``; bookkeeping failures never propagate.

    Returns whether the event was stored.
    """
    if sink is None:
        return False
    try:
        await sink.append(event)
    except Exception:
        logger.exception(
            "Failed to record %s event for provider %s",
            event.event_type,
            event.provider_id,
        )
        return False
    return True
