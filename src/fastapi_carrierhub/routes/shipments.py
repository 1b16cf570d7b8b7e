"""Shipment endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from fastapi_carrierhub.dependencies import get_service
from fastapi_carrierhub.schemas import (
    CancelShipmentResponse,
    CreateShipmentRequest,
)
from fastapi_carrierhub.service import ShippingService
from fastapi_carrierhub.types import Shipment, TrackingInfo

router = APIRouter()


@router.post("/shipments", response_model=Shipment)
async def create_shipment(
    body: CreateShipmentRequest,
    service: ShippingService = Depends(get_service),
) -> Shipment:
    """Create a shipment, falling back across providers."""
    criteria = body.criteria.to_criteria() if body.criteria else None
    return await service.create_shipment_with_fallback(
        body.order, criteria, rate=body.rate
    )


@router.get(
    "/shipments/{provider_id}/{tracking_number}", response_model=TrackingInfo
)
async def track_shipment(
    provider_id: str,
    tracking_number: str,
    service: ShippingService = Depends(get_service),
) -> TrackingInfo:
    return await service.track_shipment(tracking_number, provider_id)


@router.post(
    "/shipments/{provider_id}/{tracking_number}/cancel",
    response_model=CancelShipmentResponse,
)
async def cancel_shipment(
    provider_id: str,
    tracking_number: str,
    service: ShippingService = Depends(get_service),
) -> CancelShipmentResponse:
    cancelled = await service.cancel_shipment(tracking_number, provider_id)
    return CancelShipmentResponse(
        provider_id=provider_id,
        tracking_number=tracking_number,
        cancelled=cancelled,
    )
