"""Registry of initialized provider adapters."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from fastapi_carrierhub.exceptions import ProviderAuthError, UnknownProviderError
from fastapi_carrierhub.protocols import ProviderConfigSource, ShippingProvider
from fastapi_carrierhub.types import ProviderInfo, ProviderSettings

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[], ShippingProvider]

# Priority given to ids the registry does not know; sorts them last.
UNKNOWN_PRIORITY = 2**31


class ConfigProviderSource:
    """Reads provider records from ``CarrierHubConfig.providers``."""

    def __init__(self, providers: Mapping[str, Mapping[str, Any]]) -> None:
        self.providers = providers

    async def load_provider_settings(self) -> list[ProviderSettings]:
        return [
            ProviderSettings(provider_id=provider_id, **dict(record))
            for provider_id, record in self.providers.items()
        ]


class ProviderRegistry:
    """Live set of adapters keyed by provider id.

    Iteration order is always explicit: priority ascending (lower number
    is tried first), ties broken by provider id.
    """

    def __init__(self) -> None:
        self._adapters: dict[str, ShippingProvider] = {}
        self._settings: dict[str, ProviderSettings] = {}
        self._source: ProviderConfigSource | None = None
        self._factories: Mapping[str, ProviderFactory] = {}

    def register(
        self, adapter: ShippingProvider, settings: ProviderSettings
    ) -> None:
        """Add ``adapter``; an existing adapter with the same id is replaced."""
        provider_id = settings.provider_id
        if provider_id in self._adapters:
            logger.info("Replacing adapter for provider %s", provider_id)
        self._adapters[provider_id] = adapter
        self._settings[provider_id] = settings

    def unregister(self, provider_id: str) -> None:
        self._adapters.pop(provider_id, None)
        self._settings.pop(provider_id, None)

    def adapter_for(self, provider_id: str) -> ShippingProvider:
        try:
            return self._adapters[provider_id]
        except KeyError as exc:
            raise UnknownProviderError(provider_id) from exc

    def settings_for(self, provider_id: str) -> ProviderSettings:
        try:
            return self._settings[provider_id]
        except KeyError as exc:
            raise UnknownProviderError(provider_id) from exc

    def is_registered(self, provider_id: str) -> bool:
        return provider_id in self._adapters

    def is_enabled(self, provider_id: str) -> bool:
        settings = self._settings.get(provider_id)
        return settings is not None and settings.enabled

    def priority_of(self, provider_id: str) -> int:
        settings = self._settings.get(provider_id)
        return settings.priority if settings is not None else UNKNOWN_PRIORITY

    def _ordered(self) -> list[ProviderSettings]:
        return sorted(
            self._settings.values(),
            key=lambda s: (s.priority, s.provider_id),
        )

    def enabled_providers(self, mode: str | None = None) -> list[str]:
        """Enabled provider ids in try order, optionally for one mode."""
        return [
            settings.provider_id
            for settings in self._ordered()
            if settings.enabled
            and (mode is None or settings.supports_mode(mode.lower()))
        ]

    def count(self) -> int:
        return len(self.enabled_providers())

    def available_providers(self) -> list[ProviderInfo]:
        infos = []
        for settings in self._ordered():
            if not settings.enabled:
                continue
            _, name = self._adapters[settings.provider_id].identify()
            infos.append(
                ProviderInfo(
                    provider_id=settings.provider_id,
                    name=settings.name or name,
                    priority=settings.priority,
                    enabled=settings.enabled,
                    supported_modes=settings.supported_modes,
                )
            )
        return infos

    async def load(
        self,
        source: ProviderConfigSource,
        factories: Mapping[str, ProviderFactory],
    ) -> int:
        """Build and initialize adapters from ``source``.

        The live set is swapped only after every adapter was tried, so
        callers never observe a half-loaded registry. Adapters that fail
        authentication are skipped; the rest still load.
        """
        self._source = source
        self._factories = factories
        adapters: dict[str, ShippingProvider] = {}
        settings_by_id: dict[str, ProviderSettings] = {}

        for settings in await source.load_provider_settings():
            factory = factories.get(settings.code)
            if factory is None:
                logger.warning(
                    "No factory for provider code %s (provider %s), skipping",
                    settings.code,
                    settings.provider_id,
                )
                continue
            adapter = factory()
            try:
                await adapter.initialize(settings)
            except ProviderAuthError as exc:
                logger.error(
                    "Provider %s failed to authenticate: %s",
                    settings.provider_id,
                    exc.reason,
                )
                continue
            adapters[settings.provider_id] = adapter
            settings_by_id[settings.provider_id] = settings
            logger.info(
                "Initialized shipping provider %s (%s)",
                settings.provider_id,
                adapter.identify()[1],
            )

        self._adapters = adapters
        self._settings = settings_by_id
        logger.info("Shipping registry loaded %d provider(s)", len(adapters))
        return len(adapters)

    async def reload(self) -> int:
        """Re-read configuration, e.g. after an admin enabled a provider."""
        if self._source is None:
            return len(self._adapters)
        return await self.load(self._source, self._factories)
