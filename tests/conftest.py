"""Pytest configuration and shared fixtures for all tests."""

import sys
from pathlib import Path

# Add the project root to PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest
from fastapi.testclient import TestClient

from checkout_service.clients import DatabaseError, PaymentNotFoundError, PaymentProcessorError
from checkout_service.config import Settings
from checkout_service.main import create_app
from checkout_service.models import OrderRecord, PaymentIntent, Product, utc_now_iso
from checkout_service.services import Services


class FakePaymentGateway:
    """In-memory stand-in for MercadoPagoClient."""

    def __init__(self):
        self.payments = {}
        self.create_calls = []
        self.get_calls = []
        self.create_failures = 0
        self.next_id = 1000

    async def create_payment(self, body, idempotency_key):
        self.create_calls.append((body, idempotency_key))
        if self.create_failures:
            self.create_failures -= 1
            raise PaymentProcessorError("Mercado Pago respondeu 502")
        payment_id = self.next_id
        self.next_id += 1
        payload = {
            "id": payment_id,
            "status": "pending",
            "status_detail": "pending_waiting_transfer",
            "transaction_amount": body["transaction_amount"],
            "metadata": body["metadata"],
            "point_of_interaction": {
                "transaction_data": {
                    "qr_code": "00020126580014br.gov.bcb.pix",
                    "qr_code_base64": "iVBORw0KGgo=",
                    "ticket_url": "https://www.mercadopago.com.br/payments/ticket",
                }
            },
        }
        self.payments[str(payment_id)] = payload
        return PaymentIntent.model_validate(payload)

    async def get_payment(self, payment_id):
        self.get_calls.append(str(payment_id))
        payload = self.payments.get(str(payment_id))
        if payload is None:
            raise PaymentNotFoundError(f"Pagamento não encontrado ({payment_id})")
        return PaymentIntent.model_validate(payload)

    def set_status(self, payment_id, status):
        self.payments[str(payment_id)]["status"] = status

    async def aclose(self):
        pass


class FakeDatabase:
    """In-memory stand-in for SupabaseClient, unique on pagamento_id."""

    def __init__(self, products=None):
        self.orders = {}
        self.products = {str(p["id"]): p for p in products or []}
        self.failing_products = set()
        self.fail_writes = False
        self.status_updates = []

    async def insert_order(self, record):
        if self.fail_writes:
            raise DatabaseError("Supabase respondeu 500")
        if record.pagamento_id in self.orders:
            raise DatabaseError("Supabase respondeu 409")
        self.orders[record.pagamento_id] = record.model_dump(mode="json")
        return record

    async def update_order_status(self, payment_id, status):
        if self.fail_writes:
            raise DatabaseError("Supabase respondeu 500")
        self.status_updates.append((payment_id, status))
        row = self.orders.get(payment_id)
        if row is None:
            return 0
        row["status"] = status
        row["updated_at"] = utc_now_iso()
        return 1

    async def get_order(self, payment_id):
        row = self.orders.get(payment_id)
        return OrderRecord.model_validate(row) if row else None

    async def get_product(self, product_id):
        if str(product_id) in self.failing_products:
            raise DatabaseError("Supabase respondeu 503")
        row = self.products.get(str(product_id))
        return Product.model_validate(row) if row else None

    async def aclose(self):
        pass


@pytest.fixture
def settings():
    """Settings with both integrations configured and no retry delays."""
    return Settings(
        _env_file=None,
        mercado_pago_access_token="TEST-access-token",
        supabase_url="https://example.supabase.co",
        supabase_service_role_key="service-role-key",
        retry_base_delay=0,
        webhook_retry_base_delay=0,
        app_env="test",
    )


@pytest.fixture
def gateway():
    return FakePaymentGateway()


@pytest.fixture
def database():
    return FakeDatabase(products=[
        {"id": 1, "name": "Pack de Presets", "download_url": "https://files.example.com/presets.zip"},
        {"id": 2, "name": "Camiseta", "download_url": None},
        {"id": 3, "name": "E-book", "download_url": "https://files.example.com/ebook.pdf"},
    ])


@pytest.fixture
def services(settings, gateway, database):
    return Services(settings=settings, payments=gateway, database=database)


@pytest.fixture
def client(services):
    return TestClient(create_app(services=services))


@pytest.fixture
def address():
    return {
        "cep": "01310-100",
        "rua": "Avenida Paulista",
        "numero": "1000",
        "complemento": "Apto 12",
        "bairro": "Bela Vista",
        "cidade": "São Paulo",
        "estado": "SP",
    }


@pytest.fixture
def order_payload(address):
    return {
        "carrinho": [{"id": 1, "name": "Pack de Presets", "price": 10, "quantity": 2}],
        "nomeCliente": "Maria Souza",
        "email": "maria.souza@gmail.com",
        "telefone": "11999998888",
        "endereco": address,
        "total": 20,
    }
