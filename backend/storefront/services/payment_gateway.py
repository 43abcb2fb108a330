# Overview: Payment gateway collaborator (Stripe-style payment intents over HTTP).

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol

import httpx

from ..errors import PaymentGatewayError

INTENT_SUCCEEDED = "succeeded"


class PaymentGateway(Protocol):
    """
    What the payment flow needs from a processor.

    create_intent -> {"id", "client_secret", "status", "amount"}
    retrieve_intent -> {"id", "status", "amount", "metadata"}
    Amounts are integer cents.
    """

    def create_intent(self, amount_cents: int, currency: str, metadata: Dict[str, str]) -> Dict[str, Any]:
        ...

    def retrieve_intent(self, reference: str) -> Dict[str, Any]:
        ...


class HttpPaymentGateway:
    """
    Payment intents against a Stripe-compatible REST API.

    Stripe takes form-encoded bodies and bearer auth with the secret key;
    metadata goes in as metadata[key]=value.
    """

    def __init__(self, base_url: str, api_key: str, timeout: float = 15.0, transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.client = httpx.Client(timeout=timeout, transport=transport)

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _request(self, method: str, path: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.api_key:
            raise PaymentGatewayError("Payment gateway is not configured")
        try:
            response = self.client.request(
                method,
                f"{self.base_url}{path}",
                headers=self._headers(),
                data=data,
            )
        except httpx.HTTPError as exc:
            raise PaymentGatewayError(f"Payment gateway unreachable: {exc}") from exc

        if response.status_code >= 400:
            try:
                message = response.json().get("error", {}).get("message")
            except ValueError:
                message = None
            raise PaymentGatewayError(
                message or f"Payment gateway error (HTTP {response.status_code})",
                details={"gateway_status": response.status_code},
            )

        try:
            return response.json()
        except ValueError as exc:
            raise PaymentGatewayError("Payment gateway returned an invalid response") from exc

    def create_intent(self, amount_cents: int, currency: str, metadata: Dict[str, str]) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "amount": amount_cents,
            "currency": currency,
            "automatic_payment_methods[enabled]": "true",
        }
        for key, value in (metadata or {}).items():
            data[f"metadata[{key}]"] = value
        body = self._request("POST", "/payment_intents", data=data)
        return {
            "id": body.get("id"),
            "client_secret": body.get("client_secret"),
            "status": body.get("status"),
            "amount": body.get("amount"),
        }

    def retrieve_intent(self, reference: str) -> Dict[str, Any]:
        body = self._request("GET", f"/payment_intents/{reference}")
        return {
            "id": body.get("id"),
            "status": body.get("status"),
            "amount": body.get("amount"),
            "metadata": body.get("metadata") or {},
        }

    def close(self) -> None:
        self.client.close()
