"""Multi-carrier shipping engine with a FastAPI router."""

from typing import TYPE_CHECKING

__version__ = "0.1.0"

__all__ = [
    "CarrierHubConfig",
    "CarrierHubError",
    "ProviderRegistry",
    "RateSelector",
    "SelectionCriteria",
    "SelectionStrategy",
    "ShipmentStatus",
    "ShippingProvider",
    "ShippingService",
    "__version__",
    "create_shipping_router",
    "register_exception_handlers",
]

if TYPE_CHECKING:
    from fastapi_carrierhub.config import CarrierHubConfig
    from fastapi_carrierhub.exceptions import (
        CarrierHubError,
        register_exception_handlers,
    )
    from fastapi_carrierhub.protocols import ShippingProvider
    from fastapi_carrierhub.registry import ProviderRegistry
    from fastapi_carrierhub.router import create_shipping_router
    from fastapi_carrierhub.selector import RateSelector
    from fastapi_carrierhub.service import ShippingService
    from fastapi_carrierhub.types import (
        SelectionCriteria,
        SelectionStrategy,
        ShipmentStatus,
    )


def __getattr__(name: str):
    # Lazy imports to avoid loading FastAPI and providers on package import.
    if name == "CarrierHubConfig":
        from fastapi_carrierhub.config import CarrierHubConfig

        return CarrierHubConfig
    if name == "create_shipping_router":
        from fastapi_carrierhub.router import create_shipping_router

        return create_shipping_router
    if name == "ShippingService":
        from fastapi_carrierhub.service import ShippingService

        return ShippingService
    if name == "ProviderRegistry":
        from fastapi_carrierhub.registry import ProviderRegistry

        return ProviderRegistry
    if name == "RateSelector":
        from fastapi_carrierhub.selector import RateSelector

        return RateSelector
    if name in ("CarrierHubError", "register_exception_handlers"):
        from fastapi_carrierhub import exceptions

        return getattr(exceptions, name)
    if name == "ShippingProvider":
        from fastapi_carrierhub import protocols

        return getattr(protocols, name)
    if name in ("SelectionCriteria", "SelectionStrategy", "ShipmentStatus"):
        from fastapi_carrierhub import types

        return getattr(types, name)
    raise AttributeError(
        f"module 'fastapi_carrierhub' has no attribute {name!r}"
    )
