"""Provider registry tests."""

import pytest

from fastapi_carrierhub.exceptions import UnknownProviderError
from fastapi_carrierhub.providers import DummyProvider
from fastapi_carrierhub.registry import (
    UNKNOWN_PRIORITY,
    ConfigProviderSource,
    ProviderRegistry,
)
from fastapi_carrierhub.types import ProviderSettings
from conftest import ScriptedProvider


class TestProviderRegistry:
    def test_enabled_providers_in_priority_order(self, add_provider, registry):
        add_provider("zeta", priority=1)
        add_provider("alpha", priority=2)
        add_provider("beta", priority=1)
        add_provider("off", priority=0, enabled=False)

        assert registry.enabled_providers() == ["beta", "zeta", "alpha"]
        assert registry.count() == 3

    def test_enabled_providers_by_mode(self, add_provider, registry):
        add_provider("surface-only", supported_modes=("surface",))
        add_provider("both")

        assert registry.enabled_providers(mode="AIR") == ["both"]
        assert registry.enabled_providers(mode="surface") == [
            "both",
            "surface-only",
        ]

    def test_unknown_provider_raises(self, registry):
        with pytest.raises(UnknownProviderError):
            registry.adapter_for("ghost")
        with pytest.raises(UnknownProviderError):
            registry.settings_for("ghost")

    def test_priority_of_unknown_sorts_last(self, add_provider, registry):
        add_provider("a", priority=7)

        assert registry.priority_of("a") == 7
        assert registry.priority_of("ghost") == UNKNOWN_PRIORITY

    def test_register_replaces_existing(self, add_provider, registry):
        add_provider("a", priority=7)
        replacement = ScriptedProvider("a")
        registry.register(
            replacement, ProviderSettings(provider_id="a", code="x")
        )

        assert registry.adapter_for("a") is replacement
        assert registry.priority_of("a") == 100

    def test_unregister(self, add_provider, registry):
        add_provider("a")
        registry.unregister("a")
        registry.unregister("a")

        assert not registry.is_registered("a")
        assert not registry.is_enabled("a")

    def test_available_providers_skip_disabled(self, add_provider, registry):
        add_provider("a", priority=2)
        add_provider("b", priority=1, enabled=False)

        infos = registry.available_providers()

        assert [info.provider_id for info in infos] == ["a"]
        assert infos[0].name == "Scripted a"
        assert infos[0].supported_modes == ("surface", "air")


class _MutableSource:
    def __init__(self, settings: list[ProviderSettings]) -> None:
        self.settings = settings

    async def load_provider_settings(self) -> list[ProviderSettings]:
        return list(self.settings)


class TestLoad:
    async def test_load_from_config(self) -> None:
        registry = ProviderRegistry()
        source = ConfigProviderSource(
            {
                "sandbox": {"code": "dummy", "name": "Sandbox", "priority": 5},
                "other": {"code": "dummy", "enabled": False},
            }
        )

        loaded = await registry.load(source, {"dummy": DummyProvider})

        assert loaded == 2
        assert registry.enabled_providers() == ["sandbox"]
        assert isinstance(registry.adapter_for("sandbox"), DummyProvider)
        assert registry.settings_for("sandbox").priority == 5

    async def test_failed_authentication_skips_only_that_provider(
        self, caplog
    ) -> None:
        registry = ProviderRegistry()
        source = ConfigProviderSource(
            {
                "good": {"code": "dummy"},
                "bad": {"code": "dummy", "options": {"fail_auth": True}},
            }
        )

        loaded = await registry.load(source, {"dummy": DummyProvider})

        assert loaded == 1
        assert registry.enabled_providers() == ["good"]
        assert "Provider bad failed to authenticate" in caplog.text

    async def test_unknown_code_is_skipped(self) -> None:
        registry = ProviderRegistry()
        source = ConfigProviderSource({"x": {"code": "carrier-pigeon"}})

        assert await registry.load(source, {"dummy": DummyProvider}) == 0
        assert not registry.is_registered("x")

    async def test_reload_picks_up_configuration_changes(self) -> None:
        registry = ProviderRegistry()
        source = _MutableSource(
            [ProviderSettings(provider_id="a", code="dummy", enabled=False)]
        )
        await registry.load(source, {"dummy": DummyProvider})
        assert registry.count() == 0

        source.settings = [ProviderSettings(provider_id="a", code="dummy")]

        assert await registry.reload() == 1
        assert registry.enabled_providers() == ["a"]

    async def test_reload_without_source_keeps_current_set(
        self, add_provider, registry
    ) -> None:
        add_provider("a")

        assert await registry.reload() == 1
        assert registry.is_registered("a")
