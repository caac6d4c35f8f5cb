"""
This module provides communication clients for the external systems used by the checkout service:
- Mercado Pago payments API (REST)
- Supabase database (PostgREST REST API)
Each class encapsulates its protocol logic, error translation, and connection management.
"""

import logging
from typing import Any, Dict, Optional, Union

import httpx
from pydantic import ValidationError

from .models import OrderRecord, PaymentIntent, Product, utc_now_iso

log = logging.getLogger(__name__)


class ExternalServiceError(Exception):
    """Base class for failures talking to an external service."""


class PaymentProcessorError(ExternalServiceError):
    """The payment processor could not be reached or rejected the request."""


class PaymentNotFoundError(PaymentProcessorError):
    """The payment processor does not know the requested payment id."""


class DatabaseError(ExternalServiceError):
    """The database API could not be reached or rejected the request."""


# --- Payment Client (REST) ---
class MercadoPagoClient:
    """
    Client for the Mercado Pago payments API (REST).
    Handles the creation of PIX payments and status lookups.
    """
    def __init__(self, access_token: str, base_url: str = "https://api.mercadopago.com",
                 timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        """
        Initializes the HTTP client with proper timeout configuration.

        Args:
            access_token (str): Mercado Pago access token (Bearer).
            base_url (str): API root, overridable for sandboxes.
            timeout (float): Per-request timeout in seconds.
            client (httpx.AsyncClient, optional): Preconfigured client (used by tests).
        """
        self.access_token = access_token
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=httpx.Timeout(timeout))

    async def aclose(self):
        """Closes the HTTP client session."""
        await self.client.aclose()

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {self.access_token}"}
        if extra:
            headers.update(extra)
        return headers

    async def create_payment(self, body: Dict[str, Any], idempotency_key: str) -> PaymentIntent:
        """
        Creates a new payment via the Mercado Pago REST API.

        The idempotency key must stay the same for every retry of one checkout,
        so that a retried request after a lost response returns the payment
        already created instead of a second one.

        Args:
            body (dict): Payment payload (amount, method, payer, metadata).
            idempotency_key (str): Value of the X-Idempotency-Key header.
        Returns:
            PaymentIntent: The created payment, including the PIX QR data.
        Raises:
            PaymentProcessorError: On timeouts, connection problems or 4xx/5xx answers.
        """
        headers = self._headers({"X-Idempotency-Key": idempotency_key})
        payload = await self._request("POST", "/v1/payments", json=body, headers=headers)
        return self._parse(payload)

    async def get_payment(self, payment_id: Union[str, int]) -> PaymentIntent:
        """
        Fetches the current state of a payment.

        Args:
            payment_id (str | int): Processor-assigned payment id.
        Returns:
            PaymentIntent: Current status, amount and metadata.
        Raises:
            PaymentNotFoundError: If the processor answers 404.
            PaymentProcessorError: On any other transport or HTTP failure.
        """
        payload = await self._request("GET", f"/v1/payments/{payment_id}", headers=self._headers())
        return self._parse(payload)

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        try:
            response = await self.client.request(method, url, **kwargs)
            response.raise_for_status()  # Raises HTTPStatusError for 4xx/5xx
            return response.json()
        except httpx.TimeoutException as e:
            log.error(f"Mercado Pago Timeout em {method} {url}. Status desconhecido.")
            raise PaymentProcessorError(f"Timeout ao chamar Mercado Pago ({method} {url})") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 404:
                log.warning(f"Mercado Pago: recurso não encontrado ({method} {url})")
                raise PaymentNotFoundError(f"Pagamento não encontrado ({url})") from e
            log.error(f"Erro HTTP {status} do Mercado Pago em {method} {url}: {e.response.text}")
            raise PaymentProcessorError(f"Mercado Pago respondeu {status}") from e
        except httpx.HTTPError as e:
            log.error(f"Mercado Pago inacessível em {method} {url}: {e}")
            raise PaymentProcessorError(f"Falha de comunicação com Mercado Pago: {e}") from e
        except ValueError as e:
            raise PaymentProcessorError("Resposta inválida do Mercado Pago") from e

    @staticmethod
    def _parse(payload: Any) -> PaymentIntent:
        try:
            return PaymentIntent.model_validate(payload)
        except ValidationError as e:
            log.error(f"Resposta do Mercado Pago em formato inesperado: {e}")
            raise PaymentProcessorError("Resposta inválida do Mercado Pago") from e


# --- Database Client (PostgREST) ---
class SupabaseClient:
    """
    Client for the Supabase REST API (PostgREST).
    Reads and writes the `pagamentos` orders table and reads the `produtos` catalog.
    """
    ORDERS_TABLE = "pagamentos"
    PRODUCTS_TABLE = "produtos"

    def __init__(self, url: str, service_role_key: str, timeout: float = 10.0,
                 client: Optional[httpx.AsyncClient] = None):
        """
        Initializes the HTTP client for the project's REST endpoint.

        Args:
            url (str): Project URL, e.g. https://xyz.supabase.co.
            service_role_key (str): Service role key (bypasses row level security).
            timeout (float): Per-request timeout in seconds.
            client (httpx.AsyncClient, optional): Preconfigured client (used by tests).
        """
        self.service_role_key = service_role_key
        base_url = url.rstrip("/") + "/rest/v1"
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=httpx.Timeout(timeout))

    async def aclose(self):
        """Closes the HTTP client session."""
        await self.client.aclose()

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.service_role_key,
            "Authorization": f"Bearer {self.service_role_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def insert_order(self, record: OrderRecord) -> OrderRecord:
        """
        Inserts a new order row.

        Args:
            record (OrderRecord): Row keyed by the payment id.
        Returns:
            OrderRecord: The row as stored by the database.
        Raises:
            DatabaseError: On transport failures or rejected inserts (e.g. duplicate key).
        """
        rows = await self._request(
            "POST", f"/{self.ORDERS_TABLE}",
            json=[record.model_dump(mode="json")],
            headers=self._headers(prefer="return=representation"),
        )
        return OrderRecord.model_validate(rows[0]) if rows else record

    async def update_order_status(self, payment_id: str, status: str) -> int:
        """
        Overwrites status and updated_at of the order with the given payment id.

        Returns:
            int: Number of rows updated (0 when the order is unknown).
        Raises:
            DatabaseError: On transport failures or rejected updates.
        """
        rows = await self._request(
            "PATCH", f"/{self.ORDERS_TABLE}",
            params={"pagamento_id": f"eq.{payment_id}"},
            json={"status": status, "updated_at": utc_now_iso()},
            headers=self._headers(prefer="return=representation"),
        )
        return len(rows or [])

    async def get_order(self, payment_id: str) -> Optional[OrderRecord]:
        """Returns the stored order for a payment id, or None."""
        rows = await self._request(
            "GET", f"/{self.ORDERS_TABLE}",
            params={"pagamento_id": f"eq.{payment_id}", "select": "*", "limit": "1"},
            headers=self._headers(),
        )
        return OrderRecord.model_validate(rows[0]) if rows else None

    async def get_product(self, product_id: Union[str, int]) -> Optional[Product]:
        """Returns the catalog entry (id, name, download_url) of a product, or None."""
        rows = await self._request(
            "GET", f"/{self.PRODUCTS_TABLE}",
            params={"id": f"eq.{product_id}", "select": "id,name,download_url", "limit": "1"},
            headers=self._headers(),
        )
        return Product.model_validate(rows[0]) if rows else None

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        try:
            response = await self.client.request(method, url, **kwargs)
            response.raise_for_status()
            if not response.content:
                return []
            return response.json()
        except httpx.HTTPStatusError as e:
            log.error(f"Erro HTTP {e.response.status_code} do Supabase em {method} {url}: {e.response.text}")
            raise DatabaseError(f"Supabase respondeu {e.response.status_code}") from e
        except httpx.HTTPError as e:
            log.error(f"Supabase inacessível em {method} {url}: {e}")
            raise DatabaseError(f"Falha de comunicação com Supabase: {e}") from e
        except ValueError as e:
            raise DatabaseError("Resposta inválida do Supabase") from e
