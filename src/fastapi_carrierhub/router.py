"""Router factory for fastapi-carrierhub."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Mapping
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI

from fastapi_carrierhub.config import CarrierHubConfig
from fastapi_carrierhub.exceptions import register_exception_handlers
from fastapi_carrierhub.protocols import ProviderConfigSource
from fastapi_carrierhub.registry import ProviderFactory
from fastapi_carrierhub.routes.providers import router as providers_router
from fastapi_carrierhub.routes.rates import router as rates_router
from fastapi_carrierhub.routes.shipments import router as shipments_router
from fastapi_carrierhub.routes.webhooks import router as webhooks_router
from fastapi_carrierhub.service import ShippingService

logger = logging.getLogger(__name__)


def create_shipping_router(
    *,
    config: CarrierHubConfig | None = None,
    service: ShippingService | None = None,
    provider_source: ProviderConfigSource | None = None,
    factories: Mapping[str, ProviderFactory] | None = None,
    prefix: str = "/shipping",
) -> APIRouter:
    """Create a configured API router.

    Providers are loaded on startup from ``provider_source`` or, when it is
    not given, from ``config.providers``. A ready ``service`` whose
    registry was filled by the caller is used as is.
    """
    actual_config = config or (service.config if service else CarrierHubConfig())
    actual_service = service or ShippingService(actual_config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        app.state.carrierhub_config = actual_config
        app.state.carrierhub_service = actual_service
        register_exception_handlers(app)
        if provider_source is not None or actual_config.providers:
            await actual_service.load_providers(provider_source, factories)
        logger.info(
            "Shipping router ready with %d enabled provider(s)",
            actual_service.get_provider_count(),
        )
        yield

    router = APIRouter(prefix=prefix, lifespan=lifespan)
    router.include_router(providers_router)
    router.include_router(rates_router)
    router.include_router(shipments_router)
    router.include_router(webhooks_router)
    return router
