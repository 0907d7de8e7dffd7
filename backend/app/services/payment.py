"""
Payment service - Mercado Pago checkout preferences.

Only one provider call is made: creating a checkout preference for an order
and returning its `init_point` (the URL the buyer is redirected to).
Provider callbacks and refunds are handled outside this service.
"""
import asyncio
from decimal import Decimal
from typing import Optional, Dict, Any, List

import httpx

from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger
from backend.app.core.metrics import payment_preferences_total
from backend.app.core.settings import get_settings

logger = get_logger(__name__)

CURRENCY_ID = "BRL"
LOOPBACK_MARKERS = ("localhost", "127.0.0.1")
# Seconds the httpx client waits beyond the provider timeout
CLIENT_TIMEOUT_MARGIN = 5.0


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class PaymentServiceError(ServiceError):
    """Base exception for payment service errors."""

    def __init__(self, message: str, status_code: int = 400, details: Any = None):
        super().__init__(message, status_code)
        self.details = details


class PaymentNotConfiguredError(PaymentServiceError):
    """MP_ACCESS_TOKEN not set."""

    def __init__(self):
        super().__init__("Payment system is not configured", 503)


class PaymentTimeoutError(PaymentServiceError):
    def __init__(self, seconds: float):
        super().__init__(f"Payment provider did not answer within {seconds:g}s", 504)


class PaymentProviderError(PaymentServiceError):
    """Provider answered with a non-2xx status."""

    def __init__(self, provider_status: int, details: Any):
        message = "Payment provider rejected the request"
        if isinstance(details, dict) and details.get("message"):
            message = f"{message}: {details['message']}"
        super().__init__(message, 502, details)
        self.provider_status = provider_status


class PaymentTransportError(PaymentServiceError):
    def __init__(self, reason: str):
        super().__init__(f"Could not reach payment provider: {reason}", 502)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def resolve_return_origin(origin: Optional[str], placeholder: str) -> str:
    """
    Origin used for back_urls. The provider refuses loopback URLs, so local
    development origins are swapped for the configured placeholder.
    """
    if not origin or any(marker in origin for marker in LOOPBACK_MARKERS):
        return placeholder
    return origin.rstrip("/")


def build_preference_body(
    order_id: str,
    items: List[Dict[str, Any]],
    payer: Dict[str, Any],
    origin: str,
) -> Dict[str, Any]:
    back_url = f"{origin}/admin/orders?status="
    return {
        "items": [
            {
                "title": item["title"],
                "quantity": int(item["quantity"]),
                "unit_price": float(Decimal(str(item["unit_price"]))),
                "currency_id": CURRENCY_ID,
            }
            for item in items
        ],
        "payer": {
            "email": payer.get("email"),
            "name": payer.get("name"),
        },
        "back_urls": {
            "success": f"{back_url}success",
            "failure": f"{back_url}failure",
            "pending": f"{back_url}pending",
        },
        "auto_return": "approved",
        "external_reference": str(order_id),
    }


def failure_body(exc: PaymentServiceError) -> Dict[str, Any]:
    """Response body for a failed preference; callers always get HTTP 200."""
    return {"success": False, "error": exc.message, "details": exc.details}


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class PaymentService:
    """Creates Mercado Pago checkout preferences."""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: Optional[float] = None,
    ):
        settings = get_settings()
        self._access_token = settings.MP_ACCESS_TOKEN
        self._api_url = settings.MP_API_URL.rstrip("/")
        self._placeholder_origin = settings.PAYMENT_PLACEHOLDER_ORIGIN
        self._timeout = timeout_seconds if timeout_seconds is not None else settings.PAYMENT_TIMEOUT_SECONDS
        self._client = http_client

    def _new_client(self) -> httpx.AsyncClient:
        """Client whose own timeout outlasts the wait_for race, so a slow reply is never cut short."""
        return httpx.AsyncClient(timeout=httpx.Timeout(self._timeout + CLIENT_TIMEOUT_MARGIN))

    async def _post(self, body: Dict[str, Any]) -> httpx.Response:
        url = f"{self._api_url}/checkout/preferences"
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }
        if self._client is not None:
            return await self._client.post(url, json=body, headers=headers)
        async with self._new_client() as client:
            return await client.post(url, json=body, headers=headers)

    async def create_preference(
        self,
        order_id: str,
        items: List[Dict[str, Any]],
        payer: Dict[str, Any],
        origin: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a checkout preference.

        Returns:
            {"init_point", "id", "success": True}

        Raises:
            PaymentNotConfiguredError, PaymentTimeoutError,
            PaymentProviderError, PaymentTransportError
        """
        if not self._access_token:
            payment_preferences_total.labels(outcome="not_configured").inc()
            raise PaymentNotConfiguredError()

        body = build_preference_body(
            order_id,
            items,
            payer,
            resolve_return_origin(origin, self._placeholder_origin),
        )

        try:
            response = await asyncio.wait_for(self._post(body), timeout=self._timeout)
        except asyncio.TimeoutError:
            payment_preferences_total.labels(outcome="timeout").inc()
            logger.warning("Payment preference timed out", order_id=order_id, timeout=self._timeout)
            raise PaymentTimeoutError(self._timeout)
        except httpx.TimeoutException as exc:
            payment_preferences_total.labels(outcome="timeout").inc()
            logger.warning("Payment provider timed out", order_id=order_id, error=type(exc).__name__)
            raise PaymentTimeoutError(self._timeout) from exc
        except httpx.HTTPError as exc:
            payment_preferences_total.labels(outcome="transport_error").inc()
            reason = str(exc) or type(exc).__name__
            logger.error("Payment provider unreachable", order_id=order_id, error=reason)
            raise PaymentTransportError(reason) from exc

        try:
            data = response.json()
        except ValueError:
            data = {"message": response.text}

        if not response.is_success:
            payment_preferences_total.labels(outcome="provider_error").inc()
            logger.error(
                "Payment provider error",
                order_id=order_id,
                provider_status=response.status_code,
                details=data,
            )
            raise PaymentProviderError(response.status_code, data)

        payment_preferences_total.labels(outcome="success").inc()
        logger.info("Payment preference created", order_id=order_id, preference_id=data.get("id"))
        return {
            "init_point": data.get("init_point"),
            "id": data.get("id"),
            "success": True,
        }
