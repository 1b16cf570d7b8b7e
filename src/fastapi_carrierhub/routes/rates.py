"""Rate quoting endpoints used by checkout."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from fastapi_carrierhub.dependencies import get_service
from fastapi_carrierhub.schemas import (
    BestRateResponse,
    RatesRequest,
    RatesResponse,
)
from fastapi_carrierhub.selector import best_rates_by_delivery_days
from fastapi_carrierhub.service import ShippingService

router = APIRouter()


@router.post("/rates", response_model=RatesResponse)
async def get_rates(
    body: RatesRequest,
    service: ShippingService = Depends(get_service),
) -> RatesResponse:
    """Aggregate rates from every provider; select one if criteria are sent."""
    aggregate = await service.get_rates_from_all_providers(
        body.rate_request(), use_cache=body.use_cache
    )
    selection = (
        service.select(aggregate.rates, body.criteria.to_criteria())
        if body.criteria is not None
        else None
    )
    return RatesResponse(
        rates=aggregate.rates,
        best_by_delivery_days=best_rates_by_delivery_days(aggregate.rates),
        errors=aggregate.errors,
        from_cache=aggregate.from_cache,
        selection=selection,
    )


@router.post("/rates/best", response_model=BestRateResponse)
async def get_best_rate(
    body: RatesRequest,
    service: ShippingService = Depends(get_service),
) -> BestRateResponse:
    """Best rate under the sent criteria, or the configured default."""
    criteria = body.criteria.to_criteria() if body.criteria else None
    selection = await service.get_best_rate(body.rate_request(), criteria)
    return BestRateResponse(selection=selection)
