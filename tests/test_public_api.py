"""Public API surface tests."""

import re

import fastapi_carrierhub


def test_all_exports_exact_set() -> None:
    expected = {
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
    }
    assert set(fastapi_carrierhub.__all__) == expected
    assert len(fastapi_carrierhub.__all__) == 12


def test_all_exports_importable() -> None:
    for name in fastapi_carrierhub.__all__:
        obj = getattr(fastapi_carrierhub, name)
        assert obj is not None, f"{name} resolved to None"


def test_lazy_exports_resolve_to_defining_modules() -> None:
    from fastapi_carrierhub.service import ShippingService
    from fastapi_carrierhub.types import ShipmentStatus

    assert fastapi_carrierhub.ShippingService is ShippingService
    assert fastapi_carrierhub.ShipmentStatus is ShipmentStatus


def test_version_semver_format() -> None:
    version = fastapi_carrierhub.__version__
    assert isinstance(version, str)
    assert re.match(r"^\d+\.\d+\.\d+", version), (
        f"Version {version!r} does not match semver format"
    )
