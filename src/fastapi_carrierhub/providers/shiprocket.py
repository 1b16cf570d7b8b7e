"""Shiprocket carrier-aggregator adapter."""

from __future__ import annotations

import hmac
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from fastapi_carrierhub.exceptions import (
    ProviderAuthError,
    ProviderRequestError,
    ProviderTimeoutError,
    WebhookPayloadError,
)
from fastapi_carrierhub.retry import retry_with_backoff
from fastapi_carrierhub.status import map_provider_status
from fastapi_carrierhub.types import (
    ParsedWebhook,
    ProviderSettings,
    RateCharges,
    RateConstraints,
    RateFeatures,
    RatePerformance,
    RateRequest,
    Shipment,
    ShipmentOrder,
    ShipmentRequest,
    ShipmentStatus,
    ShippingRate,
    TrackingCheckpoint,
    TrackingInfo,
)
from fastapi_carrierhub.utils.pincode import is_valid_pincode, normalize_pincode
from fastapi_carrierhub.utils.session import TokenSession

logger = logging.getLogger(__name__)

BASE_URL = "https://apiv2.shiprocket.in/v1/external"
TRACKING_URL = "https://shiprocket.co/tracking/{awb}"
TOKEN_VALIDITY = timedelta(hours=240)

AUTH_PATH = "/auth/login"
SERVICEABILITY_PATH = "/courier/serviceability/"
CREATE_ORDER_PATH = "/orders/create/adhoc"
ASSIGN_AWB_PATH = "/courier/assign/awb"
TRACK_PATH = "/courier/track/awb/{awb}"
CANCEL_PATH = "/orders/cancel/shipment/awbs"

MIN_WEIGHT = Decimal("0.1")
MAX_WEIGHT = Decimal("50")
DEFAULT_DIMENSIONS = (Decimal("10"), Decimal("10"), Decimal("10"))
DEFAULT_MIN_RATING = 4.0

# Shiprocket reports local Indian time without an offset.
IST = timezone(timedelta(hours=5, minutes=30), "IST")

_TIMESTAMP_FORMATS = (
    "%d %m %Y %H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%d-%m-%Y %H:%M:%S",
    "%Y-%m-%d %H:%M",
)

SHIPROCKET_STATUS_MAP: dict[str, ShipmentStatus] = {
    # Numeric shipment status codes.
    "1": ShipmentStatus.PENDING,
    "2": ShipmentStatus.PICKED_UP,
    "3": ShipmentStatus.IN_TRANSIT,
    "4": ShipmentStatus.OUT_FOR_DELIVERY,
    "5": ShipmentStatus.DELIVERED,
    "6": ShipmentStatus.CANCELLED,
    "7": ShipmentStatus.RETURNED,
    "8": ShipmentStatus.RETURNED,
    "9": ShipmentStatus.RETURNED,
    "10": ShipmentStatus.FAILED,
    "11": ShipmentStatus.FAILED,
    "12": ShipmentStatus.PENDING,
    "13": ShipmentStatus.CREATED,
    "14": ShipmentStatus.CREATED,
    "15": ShipmentStatus.FAILED,
    "16": ShipmentStatus.FAILED,
    "17": ShipmentStatus.FAILED,
    "18": ShipmentStatus.IN_TRANSIT,
    "19": ShipmentStatus.DELIVERED,
    "20": ShipmentStatus.FAILED,
    "21": ShipmentStatus.FAILED,
    "22": ShipmentStatus.CREATED,
    "23": ShipmentStatus.CREATED,
    # Status labels sent in webhooks and tracking scans.
    "NEW": ShipmentStatus.PENDING,
    "AWB ASSIGNED": ShipmentStatus.CREATED,
    "LABEL GENERATED": ShipmentStatus.CREATED,
    "PICKUP SCHEDULED": ShipmentStatus.CREATED,
    "PICKUP GENERATED": ShipmentStatus.CREATED,
    "PICKUP QUEUED": ShipmentStatus.CREATED,
    "MANIFEST GENERATED": ShipmentStatus.CREATED,
    "MANIFESTED": ShipmentStatus.CREATED,
    "SHIPMENT BOOKED": ShipmentStatus.CREATED,
    "OUT FOR PICKUP": ShipmentStatus.CREATED,
    "PICKUP PENDING": ShipmentStatus.PENDING,
    "PICKED UP": ShipmentStatus.PICKED_UP,
    "SHIPPED": ShipmentStatus.IN_TRANSIT,
    "IN TRANSIT": ShipmentStatus.IN_TRANSIT,
    "REACHED AT DESTINATION HUB": ShipmentStatus.IN_TRANSIT,
    "DELAYED": ShipmentStatus.IN_TRANSIT,
    "OUT FOR DELIVERY": ShipmentStatus.OUT_FOR_DELIVERY,
    "DELIVERED": ShipmentStatus.DELIVERED,
    "PARTIAL_DELIVERED": ShipmentStatus.DELIVERED,
    "CANCELED": ShipmentStatus.CANCELLED,
    "CANCELLED": ShipmentStatus.CANCELLED,
    "RTO INITIATED": ShipmentStatus.RETURNED,
    "RTO IN TRANSIT": ShipmentStatus.RETURNED,
    "RTO DELIVERED": ShipmentStatus.RETURNED,
    "LOST": ShipmentStatus.FAILED,
    "DAMAGED": ShipmentStatus.FAILED,
    "DESTROYED": ShipmentStatus.FAILED,
    "NOT PICKED": ShipmentStatus.FAILED,
    "PICKUP EXCEPTION": ShipmentStatus.FAILED,
    "UNDELIVERED": ShipmentStatus.FAILED,
    "CONTACT CUSTOMER CARE": ShipmentStatus.FAILED,
}


# --- Mapping helpers ---


def _decimal(value: Any) -> Decimal | None:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _float(value: Any) -> float | None:
    try:
        return float(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse the timestamp formats Shiprocket uses, assuming IST."""
    if not value or not isinstance(value, str):
        return None
    parsed = None
    for fmt in _TIMESTAMP_FORMATS:
        try:
            parsed = datetime.strptime(value.strip(), fmt)
            break
        except ValueError:
            continue
    if parsed is None:
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=IST)


def courier_to_rate(courier: Mapping[str, Any], provider_id: str) -> ShippingRate:
    """Map one ``available_courier_companies`` entry to a rate."""
    try:
        days = int(courier.get("estimated_delivery_days") or 0)
    except (TypeError, ValueError):
        days = 0
    return ShippingRate(
        provider_id=provider_id,
        provider_name="Shiprocket",
        courier_name=str(courier.get("courier_name", "")),
        courier_code=str(
            courier.get("courier_company_id", courier.get("id", ""))
        ),
        rate=_decimal(courier.get("rate")) or Decimal("0"),
        estimated_days=days,
        mode=str(courier.get("mode") or "surface"),
        available=courier.get("blocked", 0) == 0,
        etd=courier.get("etd"),
        features=RateFeatures(
            cod=courier.get("cod") == 1,
            tracking=True,
            hyperlocal=bool(courier.get("is_hyperlocal")),
        ),
        performance=RatePerformance(
            rating=_float(courier.get("rating")),
            delivery_performance=_float(courier.get("delivery_performance")),
            pickup_performance=_float(courier.get("pickup_performance")),
        ),
        constraints=RateConstraints(
            min_weight=_decimal(courier.get("min_weight")),
            charge_weight=_decimal(courier.get("charge_weight")),
        ),
        charges=RateCharges(
            freight=_decimal(courier.get("freight_charge")),
            cod=_decimal(courier.get("cod_charges")),
            coverage=_decimal(courier.get("coverage_charges")),
            rto=_decimal(courier.get("rto_charges")),
        ),
        metadata={
            "courier_id": courier.get("id"),
            "courier_company_id": courier.get("courier_company_id"),
            "is_surface": courier.get("is_surface"),
        },
    )


def order_to_payload(
    order: ShipmentOrder, pickup_location: str, channel_id: str = ""
) -> dict[str, Any]:
    """Build the ``/orders/create/adhoc`` body for ``order``."""
    delivery = order.delivery
    dimensions = order.dimensions
    length, breadth, height = (
        (dimensions.length, dimensions.width, dimensions.height)
        if dimensions
        else DEFAULT_DIMENSIONS
    )
    created = order.created_at or datetime.now(tz=UTC)
    payload: dict[str, Any] = {
        "order_id": order.order_id,
        "order_date": created.astimezone(IST).strftime("%Y-%m-%d %H:%M"),
        "pickup_location": pickup_location,
        "billing_customer_name": delivery.name,
        "billing_last_name": delivery.last_name,
        "billing_address": delivery.line1,
        "billing_address_2": delivery.line2,
        "billing_city": delivery.city,
        "billing_pincode": delivery.pincode,
        "billing_state": delivery.state,
        "billing_country": delivery.country,
        "billing_email": delivery.email,
        "billing_phone": delivery.phone,
        "shipping_is_billing": True,
        "order_items": [
            {
                "name": item.name,
                "sku": item.sku,
                "units": item.units,
                "selling_price": str(item.selling_price),
            }
            for item in order.items
        ],
        "payment_method": "COD" if order.payment_method == "cod" else "Prepaid",
        "sub_total": str(order.sub_total),
        "length": str(length),
        "breadth": str(breadth),
        "height": str(height),
        "weight": str(max(order.total_weight(), MIN_WEIGHT)),
    }
    if channel_id:
        payload["channel_id"] = channel_id
    return payload


def _activity_status(activity: Mapping[str, Any]) -> tuple[str, str]:
    # Live API uses hyphenated keys, older payloads underscores.
    code = activity.get("sr-status", activity.get("sr_status", ""))
    label = activity.get("sr-status-label") or activity.get(
        "sr_status_label", activity.get("status", "")
    )
    return str(code), str(label)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.reason_phrase


class ShiprocketProvider:
    """Adapter for the Shiprocket v1 external API.

    Credentials are ``email`` and ``password``; a previously issued
    ``token`` with ``token_expires_at`` is reused when still valid.
    Webhooks are authenticated by the ``x-api-key`` header, which must
    equal the ``webhook_token`` configured in Shiprocket.
    """

    signature_header = "x-api-key"
    status_map: Mapping[str, ShipmentStatus] = SHIPROCKET_STATUS_MAP

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client
        self.settings: ProviderSettings | None = None
        self.session = TokenSession(self._login)
        self.base_url = BASE_URL
        self.min_rating = DEFAULT_MIN_RATING
        self.pickup_location = "Primary"
        self.pickup_pincode = ""
        self.channel_id = ""
        self.webhook_token = ""
        self.auth_timeout = 10.0
        self.retry_max_attempts = 3
        self.retry_backoff_seconds = 0.5
        self.retry_max_backoff_seconds = 5.0

    @property
    def provider_id(self) -> str:
        return self.settings.provider_id if self.settings else "shiprocket"

    def identify(self) -> tuple[str, str]:
        return self.provider_id, "Shiprocket"

    async def initialize(self, settings: ProviderSettings) -> None:
        credentials = settings.credentials
        if not credentials.get("email") or not credentials.get("password"):
            raise ProviderAuthError(
                settings.provider_id, "email and password credentials are required"
            )
        if self.settings is not None and self.settings != settings:
            self.session.invalidate()
        self.settings = settings

        options = settings.options
        self.base_url = str(options.get("base_url", BASE_URL)).rstrip("/")
        self.min_rating = float(options.get("min_rating", DEFAULT_MIN_RATING))
        self.pickup_location = str(options.get("pickup_location", "Primary"))
        self.pickup_pincode = str(options.get("pickup_pincode", ""))
        self.channel_id = str(options.get("channel_id", ""))
        self.auth_timeout = float(options.get("auth_timeout", 10.0))
        self.retry_max_attempts = int(options.get("retry_max_attempts", 3))
        self.retry_backoff_seconds = float(options.get("retry_backoff_seconds", 0.5))
        self.retry_max_backoff_seconds = float(
            options.get("retry_max_backoff_seconds", 5.0)
        )
        self.webhook_token = str(credentials.get("webhook_token", ""))

        token = credentials.get("token")
        expires_at = credentials.get("token_expires_at")
        if token and expires_at and not self.session.is_valid():
            if isinstance(expires_at, str):
                expires_at = datetime.fromisoformat(expires_at)
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=UTC)
            self.session.seed(token, expires_at)

        await self.session.get()

    # --- HTTP ---

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
        else:
            async with httpx.AsyncClient() as client:
                yield client

    async def _request(
        self,
        method: str,
        path: str,
        *,
        timeout: float,
        authenticated: bool = True,
        auth_statuses: tuple[int, ...] = (401, 403),
        allow_not_found: bool = False,
        **kwargs: Any,
    ) -> Any:
        url = f"{self.base_url}{path}"
        for attempt in (1, 2):
            headers = {"Content-Type": "application/json"}
            if authenticated:
                headers["Authorization"] = f"Bearer {await self.session.get()}"
            try:
                async with self._http() as client:
                    response = await client.request(
                        method, url, headers=headers, timeout=timeout, **kwargs
                    )
            except httpx.TimeoutException as exc:
                raise ProviderTimeoutError(
                    self.provider_id, f"{method} {path} timed out"
                ) from exc
            except httpx.HTTPError as exc:
                raise ProviderRequestError(
                    self.provider_id, f"{method} {path} failed: {exc}"
                ) from exc

            if response.status_code in auth_statuses:
                if authenticated and attempt == 1:
                    # Token revoked before its expiry: log in again once.
                    logger.info("Shiprocket token rejected, re-authenticating")
                    self.session.invalidate()
                    continue
                raise ProviderAuthError(self.provider_id, _error_message(response))
            break

        if allow_not_found and response.status_code == 404:
            return None
        if response.is_error:
            raise ProviderRequestError(
                self.provider_id,
                f"{method} {path} returned {response.status_code}: "
                f"{_error_message(response)}",
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderRequestError(
                self.provider_id, f"{method} {path} returned invalid JSON"
            ) from exc

    async def _retrying(
        self, call: Callable[[], Awaitable[Any]], description: str
    ) -> Any:
        return await retry_with_backoff(
            call,
            max_attempts=self.retry_max_attempts,
            backoff_seconds=self.retry_backoff_seconds,
            max_backoff_seconds=self.retry_max_backoff_seconds,
            description=description,
        )

    async def _login(self) -> tuple[str, datetime]:
        if self.settings is None:
            raise ProviderAuthError(self.provider_id, "provider is not initialized")
        credentials = self.settings.credentials

        async def call() -> Any:
            return await self._request(
                "POST",
                AUTH_PATH,
                timeout=self.auth_timeout,
                authenticated=False,
                auth_statuses=(400, 401, 403, 422),
                json={
                    "email": credentials["email"],
                    "password": credentials["password"],
                },
            )

        data = await self._retrying(call, "Shiprocket login")
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise ProviderAuthError(self.provider_id, "login returned no token")
        logger.info("Authenticated with Shiprocket as %s", credentials["email"])
        return token, datetime.now(tz=UTC) + TOKEN_VALIDITY

    # --- Rates ---

    async def _couriers(
        self,
        from_pincode: str,
        to_pincode: str,
        weight: Decimal,
        cod: bool,
        timeout: float,
    ) -> list[dict[str, Any]]:
        async def call() -> Any:
            return await self._request(
                "GET",
                SERVICEABILITY_PATH,
                timeout=timeout,
                allow_not_found=True,
                params={
                    "pickup_postcode": from_pincode,
                    "delivery_postcode": to_pincode,
                    "weight": str(weight),
                    "cod": 1 if cod else 0,
                },
            )

        body = await self._retrying(call, "Shiprocket serviceability")
        if not body or body.get("status") == 404:
            return []
        data = body.get("data") or {}
        return list(data.get("available_courier_companies") or [])

    def _check_pincodes(self, *pincodes: str) -> None:
        for pincode in pincodes:
            if not is_valid_pincode(pincode):
                raise ProviderRequestError(
                    self.provider_id, f"invalid pincode {pincode!r}"
                )

    async def check_serviceability(self, pincode: str, *, timeout: float) -> bool:
        if not is_valid_pincode(pincode):
            return False
        origin = self.pickup_pincode or pincode
        couriers = await self._couriers(
            normalize_pincode(origin),
            normalize_pincode(pincode),
            Decimal("0.5"),
            False,
            timeout,
        )
        return any(courier.get("blocked", 0) == 0 for courier in couriers)

    async def get_rates(
        self, request: RateRequest, *, timeout: float
    ) -> list[ShippingRate]:
        """Couriers that are not blocked and rated at least ``min_rating``."""
        self._check_pincodes(request.from_pincode, request.to_pincode)
        if request.weight > MAX_WEIGHT:
            raise ProviderRequestError(
                self.provider_id,
                f"weight {request.weight} kg exceeds the {MAX_WEIGHT} kg limit",
            )
        couriers = await self._couriers(
            request.from_pincode,
            request.to_pincode,
            max(request.weight, MIN_WEIGHT),
            request.is_cod,
            timeout,
        )
        rates = [
            courier_to_rate(courier, self.provider_id)
            for courier in couriers
            if courier.get("blocked", 0) == 0
            and (_float(courier.get("rating")) or 0.0) >= self.min_rating
        ]
        rates = [rate for rate in rates if rate.mode == request.mode]
        if not rates:
            logger.warning(
                "No Shiprocket courier rated >= %s for %s -> %s (%s)",
                self.min_rating,
                request.from_pincode,
                request.to_pincode,
                request.mode,
            )
        return rates

    # --- Shipments ---

    async def create_shipment(
        self, request: ShipmentRequest, *, timeout: float
    ) -> Shipment:
        """Create the order and assign an AWB. Never retried here."""
        order = request.order
        self._check_pincodes(order.pickup.pincode, order.delivery.pincode)

        created = await self._request(
            "POST",
            CREATE_ORDER_PATH,
            timeout=timeout,
            json=order_to_payload(order, self.pickup_location, self.channel_id),
        )
        shipment_id = created.get("shipment_id") if isinstance(created, dict) else None
        if not shipment_id:
            raise ProviderRequestError(
                self.provider_id,
                f"order {order.order_id} was not accepted: "
                f"{(created or {}).get('message', 'no shipment id')}",
            )

        assign: dict[str, Any] = {"shipment_id": shipment_id}
        if request.rate is not None and request.rate.courier_code:
            assign["courier_id"] = request.rate.courier_code
        assigned = await self._request(
            "POST", ASSIGN_AWB_PATH, timeout=timeout, json=assign
        )
        data = (assigned.get("response") or {}).get("data") or {}
        if assigned.get("awb_assign_status") != 1 or not data.get("awb_code"):
            reason = (
                assigned.get("message")
                or data.get("awb_assign_error")
                or "unknown error"
            )
            raise ProviderRequestError(
                self.provider_id,
                f"AWB assignment failed for shipment {shipment_id}: {reason}",
            )

        awb = str(data["awb_code"])
        return Shipment(
            provider_id=self.provider_id,
            tracking_number=awb,
            tracking_url=TRACKING_URL.format(awb=awb),
            courier_name=str(data.get("courier_name", "")),
            courier_code=str(data.get("courier_company_id", "")),
            shipping_cost=request.rate.rate if request.rate else None,
            status=ShipmentStatus.CREATED,
            provider_shipment_id=str(shipment_id),
            order_id=order.order_id,
            metadata={
                "shiprocket_order_id": created.get("order_id"),
                "applied_weight": data.get("applied_weight"),
                "routing_code": data.get("routing_code"),
                "pickup_scheduled_date": data.get("pickup_scheduled_date"),
            },
        )

    async def track_shipment(
        self, tracking_number: str, *, timeout: float
    ) -> TrackingInfo:
        path = TRACK_PATH.format(awb=tracking_number)

        async def call() -> Any:
            return await self._request("GET", path, timeout=timeout)

        body = await self._retrying(call, f"Shiprocket tracking {tracking_number}")
        if isinstance(body, dict) and tracking_number in body:
            body = body[tracking_number]
        data = (body or {}).get("tracking_data") or {}
        if data.get("error"):
            raise ProviderRequestError(self.provider_id, str(data["error"]))

        activities = data.get("shipment_track_activities") or []
        history = tuple(self._checkpoint(activity) for activity in activities)
        if history:
            current = history[0]
        else:
            tracks = data.get("shipment_track") or [{}]
            code = str(
                tracks[0].get("current_status")
                or data.get("shipment_status", "1")
            )
            current = TrackingCheckpoint(
                status=self._map_status(code),
                provider_status=code,
            )

        return TrackingInfo(
            tracking_number=tracking_number,
            provider_id=self.provider_id,
            courier_name="Shiprocket",
            current=current,
            history=history,
            estimated_delivery=parse_timestamp(data.get("etd")),
            delivered_at=(
                current.timestamp
                if current.status is ShipmentStatus.DELIVERED
                else None
            ),
            tracking_url=(
                data.get("track_url") or TRACKING_URL.format(awb=tracking_number)
            ),
        )

    def _map_status(self, code: str) -> ShipmentStatus:
        return map_provider_status(self.provider_id, code, self.status_map)

    def _checkpoint(self, activity: Mapping[str, Any]) -> TrackingCheckpoint:
        code, label = _activity_status(activity)
        return TrackingCheckpoint(
            status=self._map_status(code or label),
            provider_status=label or code,
            location=activity.get("location"),
            timestamp=parse_timestamp(activity.get("date")),
            description=activity.get("activity"),
        )

    async def cancel_shipment(self, tracking_number: str, *, timeout: float) -> bool:
        await self._request(
            "POST", CANCEL_PATH, timeout=timeout, json={"awbs": [tracking_number]}
        )
        logger.info("Cancelled Shiprocket shipment %s", tracking_number)
        return True

    # --- Webhooks ---

    def validate_webhook(self, raw_body: bytes, signature: str) -> bool:
        if not self.webhook_token:
            logger.warning(
                "Shiprocket webhook carries %s but no webhook_token is configured",
                self.signature_header,
            )
            return False
        return hmac.compare_digest(
            signature.encode(), self.webhook_token.encode()
        )

    def handle_webhook(self, payload: Mapping[str, Any]) -> ParsedWebhook:
        awb = payload.get("awb")
        if not awb:
            raise WebhookPayloadError(self.provider_id, "awb is missing")

        provider_status = payload.get("current_status") or payload.get(
            "shipment_status"
        )
        if not provider_status and payload.get("shipment_status_id") is not None:
            provider_status = str(payload["shipment_status_id"])
        if not provider_status:
            raise WebhookPayloadError(self.provider_id, "status is missing")

        scans = payload.get("scans") or []
        latest = scans[-1] if scans and isinstance(scans[-1], Mapping) else {}
        timestamp = parse_timestamp(payload.get("current_timestamp")) or (
            parse_timestamp(latest.get("date"))
        )
        if timestamp is None:
            raise WebhookPayloadError(self.provider_id, "timestamp is missing")

        order_id = payload.get("order_id")
        return ParsedWebhook(
            tracking_number=str(awb),
            provider_status=str(provider_status),
            timestamp=timestamp,
            location=latest.get("location") or payload.get("destination"),
            description=latest.get("activity"),
            order_id=str(order_id) if order_id is not None else None,
        )
