"""Provider listing, health and serviceability endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from fastapi_carrierhub.dependencies import get_service
from fastapi_carrierhub.schemas import ProvidersResponse, ServiceabilityResponse
from fastapi_carrierhub.service import ShippingService

router = APIRouter()


@router.get("/health")
async def shipping_health() -> dict[str, str]:
    """Healthcheck endpoint for the shipping routes."""
    return {"status": "ok"}


@router.get("/providers", response_model=ProvidersResponse)
async def list_providers(
    service: ShippingService = Depends(get_service),
) -> ProvidersResponse:
    """Enabled providers in try order."""
    return ProvidersResponse(
        count=service.get_provider_count(),
        providers=service.get_available_providers(),
    )


@router.get(
    "/serviceability/{pincode}", response_model=ServiceabilityResponse
)
async def check_serviceability(
    pincode: str,
    service: ShippingService = Depends(get_service),
) -> ServiceabilityResponse:
    results = await service.check_serviceability(pincode)
    return ServiceabilityResponse(
        pincode=pincode,
        serviceable=any(results.values()),
        providers=results,
    )
