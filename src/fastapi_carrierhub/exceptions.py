"""Engine error taxonomy and handlers mapping it to HTTP responses."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import asdict, dataclass

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


@dataclass(frozen=True)
class ProviderFailure:
    """Why one provider could not serve a call."""

    provider_id: str
    reason: str
    error_type: str = "provider_error"


class CarrierHubError(Exception):
    """Base class for all engine errors."""

    code = "shipping_error"


class ProviderError(CarrierHubError):
    """A single provider call failed."""

    code = "provider_error"

    def __init__(self, provider_id: str, reason: str) -> None:
        self.provider_id = provider_id
        self.reason = reason
        super().__init__(f"Provider {provider_id}: {reason}")

    def to_failure(self) -> ProviderFailure:
        return ProviderFailure(
            provider_id=self.provider_id,
            reason=self.reason,
            error_type=self.code,
        )


class ProviderAuthError(ProviderError):
    code = "provider_auth_error"


class ProviderTimeoutError(ProviderError):
    code = "provider_timeout"


class ProviderRequestError(ProviderError):
    code = "provider_request_error"


class UnknownProviderError(CarrierHubError):
    code = "unknown_provider"

    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id
        super().__init__(f"Provider {provider_id} is not registered")


class _AggregatedFailure(CarrierHubError):
    def __init__(self, message: str, failures: Sequence[ProviderFailure]) -> None:
        self.failures = list(failures)
        details = "; ".join(
            f"{failure.provider_id}: {failure.reason}" for failure in self.failures
        )
        super().__init__(f"{message} ({details})" if details else message)


class NoServiceableRateError(_AggregatedFailure):
    """No provider returned a usable rate for the route."""

    code = "not_serviceable"

    def __init__(self, failures: Sequence[ProviderFailure] = ()) -> None:
        super().__init__("No serviceable shipping rate", failures)


class AllProvidersFailedError(_AggregatedFailure):
    """Shipment creation failed with every provider in the fallback order.

    Callers must not blindly retry: an earlier attempt may still have
    reserved an AWB on the carrier side.
    """

    code = "all_providers_failed"

    def __init__(
        self, failures: Sequence[ProviderFailure], order_id: str = ""
    ) -> None:
        self.order_id = order_id
        super().__init__(
            f"Shipment creation failed for order {order_id}".strip(), failures
        )


class InvalidSelectionError(CarrierHubError):
    code = "invalid_selection"


class WebhookError(CarrierHubError):
    code = "invalid_webhook"

    def __init__(self, provider_id: str, reason: str) -> None:
        self.provider_id = provider_id
        self.reason = reason
        super().__init__(f"Webhook from {provider_id} rejected: {reason}")


class SignatureInvalidError(WebhookError):
    code = "invalid_signature"


class UnsignedWebhookError(WebhookError):
    code = "unsigned_webhook"


class WebhookPayloadError(WebhookError):
    code = "invalid_payload"


def _error_body(exc: CarrierHubError) -> dict:
    body: dict = {"detail": str(exc), "code": exc.code}
    provider_id = getattr(exc, "provider_id", None)
    if provider_id is not None:
        body["provider_id"] = provider_id
    failures = getattr(exc, "failures", None)
    if failures is not None:
        body["failures"] = [asdict(failure) for failure in failures]
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """Register engine exception handlers on a FastAPI app.

    More specific handlers must be registered first so FastAPI
    matches them before the generic CarrierHubError handler.

    Handler order (most specific first):
    1. UnknownProviderError -> 404
    2. NoServiceableRateError -> 422
    3. AllProvidersFailedError -> 502
    4. ProviderTimeoutError -> 504
    5. ProviderError -> 502
    6. CarrierHubError -> 400 (catch-all)
    """

    def _handler(status_code: int):
        async def handle(request: Request, exc: CarrierHubError) -> JSONResponse:
            return JSONResponse(status_code=status_code, content=_error_body(exc))

        return handle

    app.add_exception_handler(UnknownProviderError, _handler(404))
    app.add_exception_handler(NoServiceableRateError, _handler(422))
    app.add_exception_handler(AllProvidersFailedError, _handler(502))
    app.add_exception_handler(ProviderTimeoutError, _handler(504))
    app.add_exception_handler(ProviderError, _handler(502))
    app.add_exception_handler(CarrierHubError, _handler(400))
