"""Bundled carrier adapters."""

from fastapi_carrierhub.providers.dummy import DummyProvider
from fastapi_carrierhub.providers.shiprocket import ShiprocketProvider
from fastapi_carrierhub.registry import ProviderFactory

# Adapter factories keyed by ``ProviderSettings.code``.
DEFAULT_FACTORIES: dict[str, ProviderFactory] = {
    "shiprocket": ShiprocketProvider,
    "dummy": DummyProvider,
}

__all__ = ["DEFAULT_FACTORIES", "DummyProvider", "ShiprocketProvider"]
