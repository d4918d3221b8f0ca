"""
Razorpay Payment Links Client
=============================
Async client for the three Payment Links calls the service needs:

- POST /payment_links                    create a link
- GET  /payment_links/{id}               fetch a link
- GET  /payment_links?reference_id=...   list links by reference string

Authentication is HTTP basic with the key id / key secret pair. Gateway
errors are raised as GatewayError with Razorpay's own description; a 400
complaining about an existing reference id becomes DuplicateReference.

pip install httpx structlog
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx
import structlog

from config import ServiceConfig
from pipeline.errors import DuplicateReference, GatewayError
from schemas.order_models import Customer, PaymentLink

logger = structlog.get_logger(component="razorpay_client")


# =============================================================================
# GATEWAY INTERFACE
# =============================================================================

class IPaymentGateway(ABC):
    """Abstract remote payment-link gateway"""

    @abstractmethod
    async def create_link(
        self,
        amount: int,
        currency: str,
        reference: str,
        notes: Dict[str, Any],
        callback_url: str,
        description: str,
        customer: Optional[Customer] = None,
    ) -> PaymentLink:
        """Create a link for ``amount`` minor units (paise)."""
        pass

    @abstractmethod
    async def fetch_link(self, link_id: str) -> PaymentLink:
        pass

    @abstractmethod
    async def list_links_by_reference(self, reference: str) -> List[PaymentLink]:
        pass

    async def close(self) -> None:
        return None


def _is_duplicate_reference(status_code: int, description: str) -> bool:
    text = description.lower()
    return (
        status_code == 400
        and "reference" in text
        and ("already" in text or "exists" in text)
    )


# =============================================================================
# RAZORPAY IMPLEMENTATION
# =============================================================================

class RazorpayClient(IPaymentGateway):
    """
    Razorpay REST adapter.

    Pass ``client`` to inject a preconfigured httpx.AsyncClient (tests use
    one built on httpx.MockTransport); otherwise one is created lazily.
    """

    def __init__(self, config: ServiceConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client
        self._owns_client = client is None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.RAZORPAY_API_URL,
                timeout=self.config.RAZORPAY_TIMEOUT_SECONDS,
                auth=(self.config.RAZORPAY_KEY_ID, self.config.RAZORPAY_KEY_SECRET),
                headers={"Content-Type": "application/json"},
            )
            logger.info("razorpay_client_initialized", base_url=self.config.RAZORPAY_API_URL)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = await self._http().request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.error("razorpay_timeout", method=method, path=path)
            raise GatewayError("Payment gateway timed out", gateway_code="TIMEOUT") from e
        except httpx.HTTPError as e:
            logger.error("razorpay_transport_error", method=method, path=path, error=str(e))
            raise GatewayError(f"Payment gateway unreachable: {e}", gateway_code="TRANSPORT_ERROR") from e

        if response.is_success:
            return response.json()

        code, description = self._parse_error(response)
        logger.warning(
            "razorpay_error_response",
            method=method,
            path=path,
            http_status=response.status_code,
            gateway_code=code,
            description=description,
        )
        if _is_duplicate_reference(response.status_code, description):
            raise DuplicateReference(description, gateway_code=code, http_status=response.status_code)
        raise GatewayError(description, gateway_code=code, http_status=response.status_code)

    @staticmethod
    def _parse_error(response: httpx.Response):
        try:
            body = response.json()
        except ValueError:
            return None, response.text or f"HTTP {response.status_code}"
        error = body.get("error") if isinstance(body, dict) else None
        if not isinstance(error, dict):
            return None, f"HTTP {response.status_code}"
        return error.get("code"), error.get("description") or f"HTTP {response.status_code}"

    async def create_link(
        self,
        amount: int,
        currency: str,
        reference: str,
        notes: Dict[str, Any],
        callback_url: str,
        description: str,
        customer: Optional[Customer] = None,
    ) -> PaymentLink:
        customer = customer or Customer()
        payload = {
            "amount": amount,
            "currency": currency,
            "accept_partial": False,
            "reference_id": reference,
            "description": description,
            "customer": {
                key: value
                for key, value in (
                    ("name", customer.name or "Guest User"),
                    ("email", customer.email),
                    ("contact", customer.contact),
                )
                if value
            },
            "notify": {
                "sms": bool(customer.contact),
                "email": bool(customer.email),
            },
            "reminder_enable": True,
            "notes": notes,
            "callback_url": callback_url,
            "callback_method": "get",
        }
        data = await self._request("POST", "/payment_links", json=payload)
        link = PaymentLink.from_gateway(data)
        logger.info("payment_link_created", link_id=link.id, reference=reference, amount=amount)
        return link

    async def fetch_link(self, link_id: str) -> PaymentLink:
        data = await self._request("GET", f"/payment_links/{link_id}")
        return PaymentLink.from_gateway(data)

    async def list_links_by_reference(self, reference: str) -> List[PaymentLink]:
        data = await self._request("GET", "/payment_links", params={"reference_id": reference})
        return [PaymentLink.from_gateway(item) for item in data.get("payment_links") or []]
