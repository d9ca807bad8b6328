"""
MercadoPago REST client.

Thin typed wrapper over the endpoints the billing engine needs. The client is
stateless apart from its connection pool: every call takes the bearer token to
use, because the right credential depends on the caller (see
``core.credentials``). Retries happen only at the transport level (connection
failures); HTTP error statuses are raised as ``MercadoPagoError``.

API Documentation: https://www.mercadopago.com.ar/developers/en/reference
"""
import logging
from typing import Any, Dict, Optional

import httpx

from marketplace_billing.core import config

logger = logging.getLogger(__name__)


class MercadoPagoError(Exception):
    """Exception raised when a MercadoPago API call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @property
    def is_transient(self) -> bool:
        """Network errors, timeouts and 5xx responses."""
        return self.status_code is None or self.status_code >= 500 or self.status_code == 429


class MercadoPagoClient:
    """Synchronous client for payments, preapprovals and preapproval plans."""

    def __init__(
        self,
        base_url: str = config.MP_API_BASE_URL,
        timeout: float = config.MP_TIMEOUT_SECONDS,
        retries: int = config.MP_TRANSPORT_RETRIES,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            transport=transport or httpx.HTTPTransport(retries=retries),
            headers={"Content-Type": "application/json"},
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _request(
        self,
        method: str,
        path: str,
        access_token: str,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        if not access_token:
            raise MercadoPagoError("MercadoPago access token not configured")

        try:
            response = self._client.request(
                method,
                path,
                json=json,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.TimeoutException as e:
            raise MercadoPagoError(f"MercadoPago request timed out: {method} {path}") from e
        except httpx.HTTPError as e:
            raise MercadoPagoError(f"MercadoPago request failed: {method} {path}: {e}") from e

        if response.status_code >= 400:
            error_detail = response.text[:300] if response.text else "Unknown error"
            raise MercadoPagoError(
                f"MercadoPago API error {response.status_code} on {method} {path}: {error_detail}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            return response.json()
        except ValueError as e:
            raise MercadoPagoError(
                f"MercadoPago returned a non-JSON body on {method} {path}",
                status_code=response.status_code,
            ) from e

    def get_payment(self, payment_id, access_token: str) -> Dict[str, Any]:
        """GET /v1/payments/{id}"""
        payment = self._request("GET", f"/v1/payments/{payment_id}", access_token)
        logger.info(
            f"Payment retrieved: id={payment.get('id')}, status={payment.get('status')}, "
            f"operation_type={payment.get('operation_type')}"
        )
        return payment

    def get_preapproval(self, preapproval_id, access_token: str) -> Dict[str, Any]:
        """GET /preapproval/{id}"""
        preapproval = self._request("GET", f"/preapproval/{preapproval_id}", access_token)
        logger.info(f"Preapproval retrieved: id={preapproval.get('id')}, status={preapproval.get('status')}")
        return preapproval

    def create_preapproval(self, body: Dict[str, Any], access_token: str) -> Dict[str, Any]:
        """POST /preapproval"""
        preapproval = self._request("POST", "/preapproval", access_token, json=body)
        logger.info(f"Preapproval created: id={preapproval.get('id')}, status={preapproval.get('status')}")
        return preapproval

    def cancel_preapproval(self, preapproval_id, access_token: str) -> Dict[str, Any]:
        """PUT /preapproval/{id} with status=cancelled"""
        preapproval = self._request(
            "PUT", f"/preapproval/{preapproval_id}", access_token, json={"status": "cancelled"}
        )
        logger.info(f"Preapproval cancelled: id={preapproval_id}")
        return preapproval

    def create_preapproval_plan(self, body: Dict[str, Any], access_token: str) -> Dict[str, Any]:
        """POST /preapproval_plan"""
        preapproval_plan = self._request("POST", "/preapproval_plan", access_token, json=body)
        logger.info(f"Preapproval plan created: id={preapproval_plan.get('id')}")
        return preapproval_plan

    def get_preapproval_plan(self, preapproval_plan_id, access_token: str) -> Dict[str, Any]:
        """GET /preapproval_plan/{id}"""
        return self._request("GET", f"/preapproval_plan/{preapproval_plan_id}", access_token)

    def update_preapproval_plan(self, preapproval_plan_id, body: Dict[str, Any], access_token: str) -> Dict[str, Any]:
        """PUT /preapproval_plan/{id}"""
        preapproval_plan = self._request(
            "PUT", f"/preapproval_plan/{preapproval_plan_id}", access_token, json=body
        )
        logger.info(f"Preapproval plan updated: id={preapproval_plan_id}")
        return preapproval_plan
