"""Concurrent rate fan-out across every enabled provider."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from fastapi_carrierhub.cache import RateCache
from fastapi_carrierhub.config import CarrierHubConfig
from fastapi_carrierhub.exceptions import (
    CarrierHubError,
    NoServiceableRateError,
    ProviderError,
    ProviderFailure,
    ProviderRequestError,
    ProviderTimeoutError,
)
from fastapi_carrierhub.registry import ProviderRegistry
from fastapi_carrierhub.types import RateRequest, ShippingRate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateAggregate:
    """Merged rates of one request plus the providers that failed."""

    request: RateRequest
    rates: list[ShippingRate]
    errors: list[ProviderFailure] = field(default_factory=list)
    from_cache: bool = False


class RateAggregator:
    def __init__(
        self,
        registry: ProviderRegistry,
        cache: RateCache | None = None,
        config: CarrierHubConfig | None = None,
    ) -> None:
        self.registry = registry
        self.cache = cache
        self.config = config or CarrierHubConfig()

    async def get_rates_from_all_providers(
        self, request: RateRequest, *, use_cache: bool = True
    ) -> RateAggregate:
        """Quote ``request`` with every enabled provider supporting its mode.

        Fresh cached rate sets are returned without contacting providers.
        Raises ``NoServiceableRateError`` when no provider produced a rate
        and there is no stale entry to fall back on.
        """
        if self.cache is None or not use_cache or not self.config.cache_enabled:
            rates, errors = await self._fan_out(request)
            return RateAggregate(request=request, rates=rates, errors=errors)

        # Only the caller whose loader runs sees per-provider errors; callers
        # joining its refresh get the merged rates.
        errors: list[ProviderFailure] = []

        async def load() -> list[ShippingRate]:
            rates, failures = await self._fan_out(request)
            errors.extend(failures)
            return rates

        key = request.cache_key(self.config.weight_precision)
        entry, from_cache = await self.cache.get_or_refresh(key, load)
        return RateAggregate(
            request=request,
            rates=list(entry.rates),
            errors=errors,
            from_cache=from_cache,
        )

    async def warm(self, requests: Iterable[RateRequest]) -> int:
        """Load rate sets for ``requests`` into the cache ahead of demand.

        Requests run one after another. Keys that already hold a fresh entry
        are left alone and a request no provider can serve is skipped.
        Returns the number of rate sets loaded.
        """
        if self.cache is None or not self.config.cache_enabled:
            return 0
        loaded = 0
        for request in requests:
            try:
                aggregate = await self.get_rates_from_all_providers(request)
            except CarrierHubError as exc:
                logger.warning(
                    "Could not warm rates for %s -> %s: %s",
                    request.from_pincode,
                    request.to_pincode,
                    exc,
                )
                continue
            if not aggregate.from_cache:
                loaded += 1
        logger.info("Warmed %d rate set(s)", loaded)
        return loaded

    async def _fan_out(
        self, request: RateRequest
    ) -> tuple[list[ShippingRate], list[ProviderFailure]]:
        provider_ids = self.registry.enabled_providers(mode=request.mode)
        if not provider_ids:
            logger.warning(
                "No enabled provider supports mode %s for %s -> %s",
                request.mode,
                request.from_pincode,
                request.to_pincode,
            )
            raise NoServiceableRateError()

        results = await asyncio.gather(
            *(self._quote(provider_id, request) for provider_id in provider_ids),
            return_exceptions=True,
        )

        rates: list[ShippingRate] = []
        failures: list[ProviderFailure] = []
        for provider_id, result in zip(provider_ids, results, strict=True):
            if isinstance(result, ProviderError):
                logger.warning(
                    "Excluding provider %s from rates for %s -> %s: %s",
                    provider_id,
                    request.from_pincode,
                    request.to_pincode,
                    result.reason,
                )
                failures.append(result.to_failure())
            elif isinstance(result, BaseException):
                raise result
            elif not result:
                failures.append(
                    ProviderFailure(
                        provider_id=provider_id,
                        reason="no rates for this route",
                        error_type="no_rates",
                    )
                )
            else:
                rates.extend(result)

        merged = self._merge(rates)
        if not merged:
            raise NoServiceableRateError(failures)
        return merged, failures

    async def _quote(
        self, provider_id: str, request: RateRequest
    ) -> list[ShippingRate]:
        adapter = self.registry.adapter_for(provider_id)
        timeout = self.config.rate_timeout_seconds
        try:
            rates = await asyncio.wait_for(
                adapter.get_rates(request, timeout=timeout), timeout
            )
        except TimeoutError as exc:
            raise ProviderTimeoutError(
                provider_id, f"no rates within {timeout:g}s"
            ) from exc
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderRequestError(
                provider_id, str(exc) or type(exc).__name__
            ) from exc
        return [
            rate
            if rate.provider_id == provider_id
            else rate.model_copy(update={"provider_id": provider_id})
            for rate in rates
        ]

    def _merge(self, rates: list[ShippingRate]) -> list[ShippingRate]:
        """De-duplicate on rate identity and order independently of arrival."""
        unique: dict[tuple[str, str], ShippingRate] = {}
        for rate in rates:
            unique.setdefault(rate.key, rate)
        return sorted(
            unique.values(),
            key=lambda r: (
                self.registry.priority_of(r.provider_id),
                r.provider_id,
                r.courier_code,
            ),
        )

    async def check_serviceability(self, pincode: str) -> dict[str, bool]:
        """Ask every enabled provider whether it delivers to ``pincode``."""
        provider_ids = self.registry.enabled_providers()
        timeout = self.config.rate_timeout_seconds

        async def check(provider_id: str) -> bool:
            adapter = self.registry.adapter_for(provider_id)
            try:
                return await asyncio.wait_for(
                    adapter.check_serviceability(pincode, timeout=timeout),
                    timeout,
                )
            except (TimeoutError, ProviderError) as exc:
                logger.warning(
                    "Serviceability check for %s failed at provider %s: %s",
                    pincode,
                    provider_id,
                    exc,
                )
                return False

        results = await asyncio.gather(*(check(pid) for pid in provider_ids))
        return dict(zip(provider_ids, results, strict=True))
