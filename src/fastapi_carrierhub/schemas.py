"""Request and response bodies of the shipping routes."""

from __future__ import annotations

from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field, ValidationError, model_validator

from fastapi_carrierhub.exceptions import ProviderFailure
from fastapi_carrierhub.types import (
    BalancedWeights,
    ProviderInfo,
    RateRequest,
    SelectionCriteria,
    SelectionResult,
    SelectionStrategy,
    ShipmentOrder,
    ShipmentStatus,
    ShippingRate,
)


class CriteriaBody(BaseModel):
    """Selection criteria as accepted over HTTP (no custom selector)."""

    strategy: Literal["cheapest", "fastest", "balanced", "priority", "specific"]
    specific_provider_id: str | None = None
    max_cost: Decimal | None = Field(default=None, ge=0)
    max_days: int | None = Field(default=None, ge=0)
    preferred_providers: list[str] = Field(default_factory=list)
    cost_weight: float | None = None
    speed_weight: float | None = None

    @model_validator(mode="after")
    def _check_combination(self) -> CriteriaBody:
        try:
            self.to_criteria()
        except ValidationError as exc:
            messages = "; ".join(error["msg"] for error in exc.errors())
            raise ValueError(messages) from None
        return self

    def to_criteria(self) -> SelectionCriteria:
        weights: dict[str, float] = {}
        if self.cost_weight is not None:
            weights["cost_weight"] = self.cost_weight
        if self.speed_weight is not None:
            weights["speed_weight"] = self.speed_weight
        return SelectionCriteria(
            strategy=SelectionStrategy(self.strategy),
            specific_provider_id=self.specific_provider_id,
            max_cost=self.max_cost,
            max_days=self.max_days,
            preferred_providers=tuple(self.preferred_providers),
            balanced_weights=BalancedWeights.model_validate(weights),
        )


class RatesRequest(RateRequest):
    criteria: CriteriaBody | None = None
    use_cache: bool = True

    def rate_request(self) -> RateRequest:
        return RateRequest.model_validate(
            self.model_dump(exclude={"criteria", "use_cache"})
        )


class RatesResponse(BaseModel):
    rates: list[ShippingRate]
    best_by_delivery_days: list[ShippingRate] = Field(default_factory=list)
    errors: list[ProviderFailure] = Field(default_factory=list)
    from_cache: bool = False
    selection: SelectionResult | None = None


class BestRateResponse(BaseModel):
    selection: SelectionResult | None


class ProvidersResponse(BaseModel):
    count: int
    providers: list[ProviderInfo]


class ServiceabilityResponse(BaseModel):
    pincode: str
    serviceable: bool
    providers: dict[str, bool]


class CreateShipmentRequest(BaseModel):
    order: ShipmentOrder
    criteria: CriteriaBody | None = None
    rate: ShippingRate | None = None


class CancelShipmentResponse(BaseModel):
    provider_id: str
    tracking_number: str
    cancelled: bool


class WebhookResponse(BaseModel):
    provider: str
    status: Literal["accepted", "rejected"]
    tracking_number: str | None = None
    shipment_status: ShipmentStatus | None = None
    signature_verified: bool = False
    detail: str | None = None
