"""In-process sandbox carrier for tests, demos and local development."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
from collections import Counter
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

from fastapi_carrierhub.exceptions import (
    ProviderAuthError,
    ProviderRequestError,
    WebhookPayloadError,
)
from fastapi_carrierhub.types import (
    ParsedWebhook,
    ProviderSettings,
    RateFeatures,
    RateRequest,
    Shipment,
    ShipmentRequest,
    ShipmentStatus,
    ShippingRate,
    TrackingCheckpoint,
    TrackingInfo,
)
from fastapi_carrierhub.utils.pincode import (
    estimate_distance_category,
    is_valid_pincode,
)
from fastapi_carrierhub.utils.weight import round_weight_up

logger = logging.getLogger(__name__)

# Price per started half kilogram.
DEFAULT_RATE_CARD: tuple[dict[str, Any], ...] = (
    {
        "courier_code": "std",
        "courier_name": "Sandbox Standard",
        "rate": "40",
        "estimated_days": 5,
        "mode": "surface",
        "cod": True,
    },
    {
        "courier_code": "exp",
        "courier_name": "Sandbox Express",
        "rate": "75",
        "estimated_days": 2,
        "mode": "air",
        "cod": False,
    },
)

_EXTRA_DAYS = {"local": 0, "regional": 1, "national": 2}

DUMMY_STATUS_MAP: dict[str, ShipmentStatus] = {
    "booked": ShipmentStatus.CREATED,
    "picked": ShipmentStatus.PICKED_UP,
    "transit": ShipmentStatus.IN_TRANSIT,
    "ofd": ShipmentStatus.OUT_FOR_DELIVERY,
    "delivered": ShipmentStatus.DELIVERED,
    "failed": ShipmentStatus.FAILED,
    "rto": ShipmentStatus.RETURNED,
    "cancelled": ShipmentStatus.CANCELLED,
}


def sign_payload(secret: str, raw_body: bytes) -> str:
    """Hex HMAC-SHA256 of ``raw_body``, the sandbox webhook signature."""
    return hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()


class DummyProvider:
    """Deterministic carrier driven entirely by ``ProviderSettings``.

    Options:

    * ``rate_card``: list of courier records (``courier_code``,
      ``courier_name``, ``rate`` per half kg, ``estimated_days``, ``mode``,
      ``cod``).
    * ``fail_auth``, ``fail_rates``, ``fail_shipments``: raise the matching
      provider error.
    * ``latency``: seconds slept before answering any network-like call.

    The ``secret`` credential signs webhooks.
    """

    signature_header = "x-dummy-signature"
    status_map: Mapping[str, ShipmentStatus] = DUMMY_STATUS_MAP

    def __init__(self) -> None:
        self.settings: ProviderSettings | None = None
        self.rate_card: tuple[dict[str, Any], ...] = DEFAULT_RATE_CARD
        self.secret = ""
        self.latency = 0.0
        self.calls: Counter[str] = Counter()
        self.shipments: dict[str, Shipment] = {}
        self.statuses: dict[str, ShipmentStatus] = {}

    @property
    def provider_id(self) -> str:
        return self.settings.provider_id if self.settings else "dummy"

    def _option(self, name: str) -> Any:
        return self.settings.options.get(name) if self.settings else None

    def identify(self) -> tuple[str, str]:
        name = self.settings.name if self.settings and self.settings.name else ""
        return self.provider_id, name or "Sandbox Carrier"

    async def initialize(self, settings: ProviderSettings) -> None:
        self.calls["initialize"] += 1
        if settings.options.get("fail_auth"):
            raise ProviderAuthError(
                settings.provider_id, "sandbox credentials rejected"
            )
        self.settings = settings
        self.rate_card = tuple(
            settings.options.get("rate_card") or DEFAULT_RATE_CARD
        )
        self.secret = str(settings.credentials.get("secret", ""))
        self.latency = float(settings.options.get("latency", 0))

    async def _simulate(self, operation: str) -> None:
        self.calls[operation] += 1
        if self.latency:
            await asyncio.sleep(self.latency)

    async def check_serviceability(self, pincode: str, *, timeout: float) -> bool:
        await self._simulate("check_serviceability")
        return is_valid_pincode(pincode)

    async def get_rates(
        self, request: RateRequest, *, timeout: float
    ) -> list[ShippingRate]:
        await self._simulate("get_rates")
        if self._option("fail_rates"):
            raise ProviderRequestError(self.provider_id, "sandbox rate failure")
        if not (
            is_valid_pincode(request.from_pincode)
            and is_valid_pincode(request.to_pincode)
        ):
            return []

        _, name = self.identify()
        slabs = round_weight_up(request.weight) / Decimal("0.5")
        extra_days = _EXTRA_DAYS[
            estimate_distance_category(request.from_pincode, request.to_pincode)
        ]
        rates = []
        for courier in self.rate_card:
            if str(courier.get("mode", "surface")).lower() != request.mode:
                continue
            if request.is_cod and not courier.get("cod", False):
                continue
            rates.append(
                ShippingRate(
                    provider_id=self.provider_id,
                    provider_name=name,
                    courier_name=courier["courier_name"],
                    courier_code=courier["courier_code"],
                    rate=(Decimal(str(courier["rate"])) * slabs).quantize(
                        Decimal("0.01")
                    ),
                    estimated_days=int(courier["estimated_days"]) + extra_days,
                    mode=request.mode,
                    available=courier.get("available", True),
                    features=RateFeatures(
                        cod=bool(courier.get("cod", False)), tracking=True
                    ),
                )
            )
        return rates

    async def create_shipment(
        self, request: ShipmentRequest, *, timeout: float
    ) -> Shipment:
        await self._simulate("create_shipment")
        if self._option("fail_shipments"):
            raise ProviderRequestError(self.provider_id, "sandbox booking failure")

        order = request.order
        digest = hashlib.sha1(
            f"{self.provider_id}:{order.order_id}".encode()
        ).hexdigest()
        tracking_number = f"SBX{digest[:10].upper()}"
        rate = request.rate
        shipment = Shipment(
            provider_id=self.provider_id,
            tracking_number=tracking_number,
            tracking_url=f"https://sandbox.invalid/track/{tracking_number}",
            courier_name=rate.courier_name if rate else "Sandbox Standard",
            courier_code=rate.courier_code if rate else "std",
            shipping_cost=rate.rate if rate else None,
            estimated_delivery=(
                datetime.now(tz=UTC) + timedelta(days=rate.estimated_days)
                if rate
                else None
            ),
            status=ShipmentStatus.CREATED,
            provider_shipment_id=digest[:12],
            order_id=order.order_id,
        )
        self.shipments[tracking_number] = shipment
        self.statuses[tracking_number] = ShipmentStatus.CREATED
        logger.info(
            "Sandbox shipment %s booked for order %s",
            tracking_number,
            order.order_id,
        )
        return shipment

    async def track_shipment(
        self, tracking_number: str, *, timeout: float
    ) -> TrackingInfo:
        await self._simulate("track_shipment")
        shipment = self.shipments.get(tracking_number)
        if shipment is None:
            raise ProviderRequestError(
                self.provider_id, f"unknown tracking number {tracking_number}"
            )
        status = self.statuses[tracking_number]
        return TrackingInfo(
            tracking_number=tracking_number,
            provider_id=self.provider_id,
            courier_name=shipment.courier_name,
            current=TrackingCheckpoint(status=status, provider_status=status.value),
            estimated_delivery=shipment.estimated_delivery,
            tracking_url=shipment.tracking_url,
        )

    async def cancel_shipment(self, tracking_number: str, *, timeout: float) -> bool:
        await self._simulate("cancel_shipment")
        if tracking_number not in self.shipments:
            return False
        self.statuses[tracking_number] = ShipmentStatus.CANCELLED
        return True

    def validate_webhook(self, raw_body: bytes, signature: str) -> bool:
        if not self.secret:
            return False
        return hmac.compare_digest(sign_payload(self.secret, raw_body), signature)

    def handle_webhook(self, payload: Mapping[str, Any]) -> ParsedWebhook:
        missing = [
            field
            for field in ("tracking_number", "status", "timestamp")
            if not payload.get(field)
        ]
        if missing:
            raise WebhookPayloadError(
                self.provider_id, f"missing {', '.join(missing)}"
            )
        try:
            timestamp = datetime.fromisoformat(str(payload["timestamp"]))
        except ValueError as exc:
            raise WebhookPayloadError(
                self.provider_id, "timestamp is not ISO 8601"
            ) from exc
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=UTC)
        return ParsedWebhook(
            tracking_number=str(payload["tracking_number"]),
            provider_status=str(payload["status"]),
            timestamp=timestamp,
            location=payload.get("location"),
            description=payload.get("description"),
            order_id=payload.get("order_id"),
        )
