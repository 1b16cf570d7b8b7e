"""Webhook authentication and normalization."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

from fastapi_carrierhub.config import CarrierHubConfig
from fastapi_carrierhub.exceptions import (
    SignatureInvalidError,
    UnsignedWebhookError,
    WebhookError,
    WebhookPayloadError,
)
from fastapi_carrierhub.protocols import ShippingProvider, WebhookValidator
from fastapi_carrierhub.registry import ProviderRegistry
from fastapi_carrierhub.status import map_provider_status
from fastapi_carrierhub.types import WebhookEvent

logger = logging.getLogger(__name__)

RawPayload = bytes | str | Mapping[str, Any]


def canonical_body(payload: Mapping[str, Any]) -> bytes:
    """Byte form of an already-decoded payload, used for signing."""
    return json.dumps(
        payload, sort_keys=True, separators=(",", ":"), default=str
    ).encode()


class WebhookNormalizer:
    """Turns raw carrier callbacks into ``WebhookEvent`` records.

    Ingestion is pure: the same payload always yields an equal event.
    Applying the event to a shipment is the caller's job.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        config: CarrierHubConfig | None = None,
    ) -> None:
        self.registry = registry
        self.config = config or CarrierHubConfig()

    def _decode(
        self, provider_id: str, raw_payload: RawPayload
    ) -> tuple[bytes, dict[str, Any]]:
        if isinstance(raw_payload, Mapping):
            payload = dict(raw_payload)
            return canonical_body(payload), payload

        raw_body = (
            raw_payload.encode() if isinstance(raw_payload, str) else raw_payload
        )
        try:
            payload = json.loads(raw_body)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise WebhookPayloadError(provider_id, "body is not JSON") from exc
        if not isinstance(payload, dict):
            raise WebhookPayloadError(provider_id, "body is not a JSON object")
        return raw_body, payload

    def _authenticate(
        self,
        provider_id: str,
        adapter: ShippingProvider,
        raw_body: bytes,
        signature: str | None,
    ) -> bool:
        can_validate = isinstance(adapter, WebhookValidator)
        if can_validate and signature:
            if not adapter.validate_webhook(raw_body, signature):
                logger.warning(
                    "Rejected webhook from %s: signature mismatch", provider_id
                )
                raise SignatureInvalidError(provider_id, "signature mismatch")
            return True

        reason = (
            "signature missing"
            if can_validate
            else "provider does not sign webhooks"
        )
        if self.config.reject_unsigned_webhooks:
            logger.warning("Rejected webhook from %s: %s", provider_id, reason)
            raise UnsignedWebhookError(provider_id, reason)
        logger.warning(
            "Accepting unverified webhook from %s: %s", provider_id, reason
        )
        return False

    def ingest(
        self,
        provider_id: str,
        raw_payload: RawPayload,
        signature: str | None = None,
    ) -> WebhookEvent:
        """Authenticate, parse and map one webhook.

        Raises ``UnknownProviderError`` for ids the registry does not know
        and a ``WebhookError`` subclass when the payload must be dropped.
        """
        adapter = self.registry.adapter_for(provider_id)
        raw_body, payload = self._decode(provider_id, raw_payload)
        verified = self._authenticate(provider_id, adapter, raw_body, signature)

        try:
            parsed = adapter.handle_webhook(payload)
        except WebhookError:
            raise
        except (KeyError, TypeError, ValueError) as exc:
            raise WebhookPayloadError(
                provider_id, f"unparseable payload: {exc}"
            ) from exc

        status = map_provider_status(
            provider_id, parsed.provider_status, adapter.status_map
        )
        return WebhookEvent(
            provider_id=provider_id,
            tracking_number=parsed.tracking_number,
            status=status,
            provider_status=parsed.provider_status,
            timestamp=parsed.timestamp,
            location=parsed.location,
            description=parsed.description,
            order_id=parsed.order_id,
            signature_verified=verified,
            raw_provider_payload=payload,
        )
