"""Engine configuration."""

from typing import Any

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from fastapi_carrierhub.types import SelectionStrategy


class CarrierHubConfig(BaseSettings):
    """Runtime config for the shipping engine."""

    model_config = SettingsConfigDict(env_prefix="CARRIERHUB_")

    # Provider configuration records keyed by provider id. Each value is
    # the body of a ``ProviderSettings`` record without ``provider_id``.
    providers: dict[str, dict[str, Any]] = Field(default_factory=dict)
    default_strategy: SelectionStrategy = SelectionStrategy.CHEAPEST

    rate_timeout_seconds: float = Field(default=5.0, gt=0)
    shipment_timeout_seconds: float = Field(default=30.0, gt=0)
    tracking_timeout_seconds: float = Field(default=10.0, gt=0)

    cache_enabled: bool = True
    cache_min_ttl_seconds: int = Field(default=2 * 60 * 60, gt=0)
    cache_max_ttl_seconds: int = Field(default=12 * 60 * 60, gt=0)
    cache_hot_threshold: int = Field(default=5, ge=1)
    cache_hot_window_seconds: int = Field(default=15 * 60, gt=0)
    weight_precision: int = Field(default=1, ge=0, le=3)

    reject_unsigned_webhooks: bool = False

    retry_max_attempts: int = Field(default=3, ge=1)
    retry_backoff_seconds: float = Field(default=0.5, ge=0)
    retry_max_backoff_seconds: float = Field(default=5.0, ge=0)

    @model_validator(mode="after")
    def _check_ttl_window(self) -> "CarrierHubConfig":
        if self.cache_min_ttl_seconds > self.cache_max_ttl_seconds:
            raise ValueError(
                "cache_min_ttl_seconds must not exceed cache_max_ttl_seconds"
            )
        if self.default_strategy in (
            SelectionStrategy.SPECIFIC,
            SelectionStrategy.CUSTOM,
        ):
            raise ValueError(
                f"default_strategy cannot be {self.default_strategy.value}"
            )
        return self
