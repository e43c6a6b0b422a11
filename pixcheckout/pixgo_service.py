import logging
from dataclasses import dataclass
from decimal import Decimal

import httpx

from pixcheckout.exceptions import ConfigurationError, ProviderError, TransientNetworkError

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://pixgo.org/api/v1"


@dataclass(frozen=True)
class ChargeRequest:
    amount: Decimal
    description: str
    payer_name: str
    payer_tax_id: str
    payer_email: str
    payer_phone: str | None
    external_reference: str


@dataclass(frozen=True)
class ProviderCharge:
    payment_id: str
    qr_payload: str
    provider_status: str = "pending"


class PixGoClient:
    """Thin wrapper over the PixGo charge API."""

    def __init__(self, base_url: str = DEFAULT_API_BASE, timeout: float = 15.0, transport=None):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _request(self, method: str, path: str, api_key: str, json=None) -> dict:
        if not api_key:
            raise ConfigurationError("The PIX provider API key is not configured")

        try:
            with httpx.Client(base_url=self._base_url, timeout=self._timeout, transport=self._transport) as client:
                r = client.request(method, path, json=json, headers={"X-API-Key": api_key})
        except httpx.HTTPError as e:
            raise TransientNetworkError(
                "Could not reach the payment provider",
                {"error_type": type(e).__name__}
            ) from e

        if r.status_code >= 500:
            raise TransientNetworkError(
                "Payment provider is unavailable",
                {"status_code": r.status_code}
            )

        try:
            body = r.json()
        except ValueError:
            if r.is_error:
                raise ProviderError(f"Payment provider rejected the request ({r.status_code})")
            raise TransientNetworkError("Payment provider sent an unreadable response")
        if not isinstance(body, dict):
            raise TransientNetworkError("Payment provider sent an unreadable response")

        if r.is_error or not body.get("success"):
            message = body.get("message") or body.get("error") or "Payment provider rejected the request"
            raise ProviderError(message, {"status_code": r.status_code})

        data = body.get("data") or {}
        if not isinstance(data, dict):
            raise TransientNetworkError("Payment provider sent an unreadable response")
        return data

    def create_charge(self, api_key: str, request: ChargeRequest) -> ProviderCharge:
        payload = {
            "amount": float(request.amount),
            "description": request.description,
            "customer_name": request.payer_name,
            "customer_cpf": request.payer_tax_id,
            "customer_email": request.payer_email,
            "external_id": request.external_reference,
        }
        if request.payer_phone:
            payload["customer_phone"] = request.payer_phone

        data = self._request("POST", "/payment/create", api_key, json=payload)

        payment_id = data.get("payment_id")
        qr_code = data.get("qr_code")
        if not payment_id or not qr_code:
            raise ProviderError("Payment provider returned an incomplete charge")

        logger.info("Created PIX charge %s for intent %s", payment_id, request.external_reference)
        return ProviderCharge(
            payment_id=str(payment_id),
            qr_payload=qr_code,
            provider_status=data.get("status") or "pending",
        )

    def get_status(self, api_key: str, payment_id: str) -> str:
        data = self._request("GET", f"/payment/{payment_id}/status", api_key)
        status = data.get("status")
        if not status:
            raise ProviderError("Payment provider returned no status", {"payment_id": payment_id})
        return str(status).lower()
