"""Domain records shared by every part of the shipping engine."""

from __future__ import annotations

import math
from collections.abc import Callable
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import StrEnum
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from fastapi_carrierhub.utils.weight import (
    calculate_package_weight,
    get_chargeable_weight,
)

ProviderId = str

MIN_PARCEL_WEIGHT = Decimal("0.1")


class ShipmentStatus(StrEnum):
    """Canonical shipment status shared by every provider."""

    PENDING = "pending"
    CREATED = "created"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    FAILED = "failed"
    RETURNED = "returned"
    CANCELLED = "cancelled"


class SelectionStrategy(StrEnum):
    CHEAPEST = "cheapest"
    FASTEST = "fastest"
    BALANCED = "balanced"
    PRIORITY = "priority"
    SPECIFIC = "specific"
    CUSTOM = "custom"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# --- Rates ---


class RateFeatures(_Frozen):
    cod: bool = False
    tracking: bool = False
    insurance: bool = False
    hyperlocal: bool = False


class RatePerformance(_Frozen):
    rating: float | None = None
    delivery_performance: float | None = None
    pickup_performance: float | None = None


class RateConstraints(_Frozen):
    min_weight: Decimal | None = None
    max_weight: Decimal | None = None
    charge_weight: Decimal | None = None


class RateCharges(_Frozen):
    freight: Decimal | None = None
    cod: Decimal | None = None
    coverage: Decimal | None = None
    rto: Decimal | None = None


class ShippingRate(_Frozen):
    """A quoted offer from one courier of one provider."""

    provider_id: ProviderId
    provider_name: str
    courier_name: str
    courier_code: str
    rate: Decimal = Field(ge=0)
    estimated_days: int = Field(ge=0)
    mode: str = "surface"
    available: bool = True
    etd: str | None = None
    features: RateFeatures | None = None
    performance: RatePerformance | None = None
    constraints: RateConstraints | None = None
    charges: RateCharges | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("mode")
    @classmethod
    def _lower_mode(cls, value: str) -> str:
        return value.strip().lower()

    @property
    def key(self) -> tuple[ProviderId, str]:
        """Identity used for de-duplication and selection."""
        return (self.provider_id, self.courier_code)


class RateRequest(_Frozen):
    """Route and package description used for quoting and cache keys."""

    from_pincode: str
    to_pincode: str
    weight: Decimal = Field(gt=0)
    mode: str = "surface"
    cod_amount: Decimal | None = Field(default=None, ge=0)
    declared_value: Decimal | None = Field(default=None, ge=0)

    @field_validator("from_pincode", "to_pincode", "mode")
    @classmethod
    def _normalize(cls, value: str) -> str:
        value = value.strip().lower()
        if not value:
            raise ValueError("must not be empty")
        return value

    @property
    def is_cod(self) -> bool:
        return bool(self.cod_amount and self.cod_amount > 0)

    def rounded_weight(self, precision: int = 1) -> Decimal:
        quantum = Decimal(1).scaleb(-precision)
        rounded = self.weight.quantize(quantum, rounding=ROUND_HALF_UP)
        # Never round a real parcel down to zero.
        return rounded if rounded > 0 else quantum

    def cache_key(self, precision: int = 1) -> str:
        payment = "cod" if self.is_cod else "prepaid"
        return "|".join(
            [
                self.from_pincode,
                self.to_pincode,
                str(self.rounded_weight(precision)),
                self.mode,
                payment,
            ]
        )


class CacheEntry(_Frozen):
    key: str
    rates: tuple[ShippingRate, ...]
    fetched_at: datetime
    expires_at: datetime
    refreshing: bool = False

    @property
    def provider_ids(self) -> frozenset[ProviderId]:
        return frozenset(rate.provider_id for rate in self.rates)

    def is_fresh(self, now: datetime) -> bool:
        return now < self.expires_at


# --- Selection ---


class BalancedWeights(_Frozen):
    cost_weight: float = Field(default=0.5, ge=0, le=1)
    speed_weight: float = Field(default=0.5, ge=0, le=1)

    @model_validator(mode="before")
    @classmethod
    def _derive_missing(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        cost = data.get("cost_weight")
        speed = data.get("speed_weight")
        if cost is not None and speed is None:
            return {"cost_weight": cost, "speed_weight": 1 - float(cost)}
        if speed is not None and cost is None:
            return {"cost_weight": 1 - float(speed), "speed_weight": speed}
        return data

    @model_validator(mode="after")
    def _sum_to_one(self) -> BalancedWeights:
        if not math.isclose(
            self.cost_weight + self.speed_weight, 1.0, abs_tol=1e-9
        ):
            raise ValueError("cost_weight and speed_weight must sum to 1")
        return self


RateSelectorFn = Callable[[list[ShippingRate]], ShippingRate | None]


class SelectionCriteria(BaseModel):
    """How the selector should pick a rate."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    strategy: SelectionStrategy = SelectionStrategy.CHEAPEST
    specific_provider_id: ProviderId | None = None
    max_cost: Decimal | None = Field(default=None, ge=0)
    max_days: int | None = Field(default=None, ge=0)
    preferred_providers: tuple[ProviderId, ...] = ()
    balanced_weights: BalancedWeights = Field(default_factory=BalancedWeights)
    custom_selector: RateSelectorFn | None = Field(default=None, exclude=True)

    @model_validator(mode="after")
    def _check_strategy_arguments(self) -> SelectionCriteria:
        is_custom = self.strategy is SelectionStrategy.CUSTOM
        if is_custom and self.custom_selector is None:
            raise ValueError("custom strategy requires custom_selector")
        if not is_custom and self.custom_selector is not None:
            raise ValueError(
                "custom_selector is only allowed with the custom strategy"
            )
        if (
            self.strategy is SelectionStrategy.SPECIFIC
            and not self.specific_provider_id
        ):
            raise ValueError("specific strategy requires specific_provider_id")
        return self


class FilteredRate(_Frozen):
    rate: ShippingRate
    reason: str


class SelectionMetadata(_Frozen):
    total_rates_evaluated: int
    rates_filtered: int
    selection_time_ms: float


class SelectionResult(_Frozen):
    selected_rate: ShippingRate
    reason: str
    alternative_rates: tuple[ShippingRate, ...] = ()
    metadata: SelectionMetadata
    filtered: tuple[FilteredRate, ...] = ()


# --- Orders and shipments ---


class Address(BaseModel):
    name: str
    line1: str
    city: str
    state: str
    pincode: str
    country: str = "India"
    phone: str = ""
    email: str = ""
    line2: str = ""
    last_name: str = ""


class PackageDimensions(BaseModel):
    """Package size in centimetres."""

    length: Decimal = Field(gt=0)
    width: Decimal = Field(gt=0)
    height: Decimal = Field(gt=0)


class OrderItem(BaseModel):
    name: str
    sku: str
    units: int = Field(default=1, ge=1)
    selling_price: Decimal = Field(ge=0)
    weight: Decimal | None = Field(default=None, gt=0)
    category: str | None = None


class ShipmentOrder(BaseModel):
    """Everything a provider needs to book a shipment for an order."""

    order_id: str
    pickup: Address
    delivery: Address
    items: list[OrderItem] = Field(default_factory=list)
    payment_method: Literal["prepaid", "cod"] = "prepaid"
    sub_total: Decimal = Field(default=Decimal("0"), ge=0)
    dimensions: PackageDimensions | None = None
    weight: Decimal | None = Field(default=None, gt=0)
    mode: str = "surface"
    created_at: datetime | None = None

    def total_weight(self) -> Decimal:
        if self.weight is not None:
            return self.weight
        # An order without item data still ships as the lightest parcel.
        return calculate_package_weight(self.items) or MIN_PARCEL_WEIGHT

    def chargeable_weight(self) -> Decimal:
        return get_chargeable_weight(self.total_weight(), self.dimensions)

    def rate_request(self) -> RateRequest:
        return RateRequest(
            from_pincode=self.pickup.pincode,
            to_pincode=self.delivery.pincode,
            weight=self.chargeable_weight(),
            mode=self.mode,
            cod_amount=(
                self.sub_total if self.payment_method == "cod" else None
            ),
        )


class ShipmentRequest(BaseModel):
    """Input of one ``create_shipment`` attempt."""

    order: ShipmentOrder
    rate: ShippingRate | None = None


class Shipment(_Frozen):
    provider_id: ProviderId
    tracking_number: str
    tracking_url: str = ""
    courier_name: str = ""
    courier_code: str = ""
    shipping_cost: Decimal | None = None
    estimated_delivery: datetime | None = None
    status: ShipmentStatus = ShipmentStatus.CREATED
    provider_shipment_id: str = ""
    order_id: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class TrackingCheckpoint(_Frozen):
    status: ShipmentStatus
    provider_status: str = ""
    location: str | None = None
    timestamp: datetime | None = None
    description: str | None = None


class TrackingInfo(_Frozen):
    tracking_number: str
    provider_id: ProviderId
    courier_name: str = ""
    current: TrackingCheckpoint
    history: tuple[TrackingCheckpoint, ...] = ()
    estimated_delivery: datetime | None = None
    delivered_at: datetime | None = None
    tracking_url: str = ""


# --- Webhooks ---


class ParsedWebhook(_Frozen):
    """Provider payload parsed into canonical fields, before status mapping."""

    tracking_number: str
    provider_status: str
    timestamp: datetime
    location: str | None = None
    description: str | None = None
    order_id: str | None = None


class WebhookEvent(_Frozen):
    provider_id: ProviderId
    tracking_number: str
    status: ShipmentStatus
    provider_status: str = ""
    timestamp: datetime
    location: str | None = None
    description: str | None = None
    order_id: str | None = None
    signature_verified: bool = False
    raw_provider_payload: dict[str, Any] = Field(default_factory=dict)


# --- Provider configuration ---


class ProviderSettings(BaseModel):
    """Configuration record of one provider account."""

    provider_id: ProviderId
    code: str
    name: str = ""
    enabled: bool = True
    priority: int = 100
    supported_modes: tuple[str, ...] = ("surface", "air")
    credentials: dict[str, Any] = Field(default_factory=dict)
    options: dict[str, Any] = Field(default_factory=dict)

    @field_validator("supported_modes")
    @classmethod
    def _lower_modes(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(mode.strip().lower() for mode in value)

    def supports_mode(self, mode: str) -> bool:
        return not self.supported_modes or mode in self.supported_modes


class ProviderInfo(_Frozen):
    provider_id: ProviderId
    name: str
    priority: int
    enabled: bool
    supported_modes: tuple[str, ...]
