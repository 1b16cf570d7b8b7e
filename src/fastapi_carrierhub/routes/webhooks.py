"""Inbound carrier webhook endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from fastapi_carrierhub.dependencies import get_service
from fastapi_carrierhub.exceptions import UnknownProviderError, WebhookError
from fastapi_carrierhub.schemas import WebhookResponse
from fastapi_carrierhub.service import ShippingService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhooks/{provider_id}", response_model=WebhookResponse)
async def provider_webhook(
    provider_id: str,
    request: Request,
    service: ShippingService = Depends(get_service),
) -> WebhookResponse:
    """Normalize a carrier webhook.

    Always answers 200 so carriers do not retry payloads that will never
    be accepted; ``status`` tells whether the event was applied.
    """
    signature = None
    if service.registry.is_registered(provider_id):
        adapter = service.registry.adapter_for(provider_id)
        header = getattr(adapter, "signature_header", None)
        if header:
            signature = request.headers.get(header)

    raw_body = await request.body()
    try:
        outcome = await service.ingest_webhook(provider_id, raw_body, signature)
    except (UnknownProviderError, WebhookError) as exc:
        logger.warning("Webhook for %s not processed: %s", provider_id, exc)
        return WebhookResponse(
            provider=provider_id,
            status="rejected",
            detail=exc.code,
        )

    return WebhookResponse(
        provider=provider_id,
        status="accepted",
        tracking_number=outcome.event.tracking_number,
        shipment_status=outcome.current_status,
        signature_verified=outcome.event.signature_verified,
    )
