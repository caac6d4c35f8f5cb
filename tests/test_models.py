"""Unit tests for checkout payload validation and processor data models."""

import pytest
from pydantic import ValidationError

from checkout_service.models import (
    IntentMetadata,
    OrderRecord,
    OrderRequest,
    PaymentIntent,
    PaymentStatus,
    WebhookNotification,
)


def error_fields(exc_info):
    return {".".join(str(p) for p in err["loc"]) for err in exc_info.value.errors()}


class TestOrderRequestValidation:
    """Tests for OrderRequest coercion and rejection rules."""

    def test_valid_payload(self, order_payload):
        order = OrderRequest.model_validate(order_payload)

        assert order.total == 20.0
        assert order.customer_name == "Maria Souza"
        assert order.cart[0].quantity == 2
        assert order.cart[0].variations == {}

    def test_string_price_and_total_are_coerced(self, order_payload):
        order_payload["carrinho"][0]["price"] = "10.50"
        order_payload["total"] = "21.00"

        order = OrderRequest.model_validate(order_payload)

        assert order.cart[0].price == 10.5
        assert order.total == 21.0

    def test_price_is_optional(self, order_payload):
        del order_payload["carrinho"][0]["price"]

        assert OrderRequest.model_validate(order_payload).cart[0].price is None

    def test_non_numeric_price_rejected(self, order_payload):
        order_payload["carrinho"][0]["price"] = "dez reais"

        with pytest.raises(ValidationError) as exc_info:
            OrderRequest.model_validate(order_payload)

        assert "carrinho.0.price" in error_fields(exc_info)

    @pytest.mark.parametrize("total", [0, -5, "0", "abc", "nan"])
    def test_invalid_total_rejected(self, order_payload, total):
        order_payload["total"] = total

        with pytest.raises(ValidationError) as exc_info:
            OrderRequest.model_validate(order_payload)

        assert "total" in error_fields(exc_info)

    @pytest.mark.parametrize("field, value", [("total", True), ("price", False), ("quantity", True)])
    def test_booleans_are_not_numbers(self, order_payload, field, value):
        if field == "total":
            order_payload["total"] = value
            expected = "total"
        else:
            order_payload["carrinho"][0][field] = value
            expected = f"carrinho.0.{field}"

        with pytest.raises(ValidationError) as exc_info:
            OrderRequest.model_validate(order_payload)

        assert expected in error_fields(exc_info)

    def test_email_kept_as_submitted(self, order_payload):
        order_payload["email"] = "Maria.Souza@Gmail.COM"

        order = OrderRequest.model_validate(order_payload)

        assert order.email == "Maria.Souza@Gmail.COM"
        assert IntentMetadata.from_order(order).email == "Maria.Souza@Gmail.COM"

    def test_quantity_must_be_positive(self, order_payload):
        order_payload["carrinho"][0]["quantity"] = 0

        with pytest.raises(ValidationError):
            OrderRequest.model_validate(order_payload)

    def test_empty_cart_rejected(self, order_payload):
        order_payload["carrinho"] = []

        with pytest.raises(ValidationError) as exc_info:
            OrderRequest.model_validate(order_payload)

        assert "carrinho" in error_fields(exc_info)

    def test_complemento_is_optional(self, order_payload):
        del order_payload["endereco"]["complemento"]

        assert OrderRequest.model_validate(order_payload).address.complemento is None

    def test_all_violations_reported_at_once(self, order_payload):
        order_payload["email"] = "not-an-email"
        order_payload["telefone"] = ""
        order_payload["endereco"]["cidade"] = ""
        order_payload["total"] = -1

        with pytest.raises(ValidationError) as exc_info:
            OrderRequest.model_validate(order_payload)

        assert {"email", "telefone", "endereco.cidade", "total"} <= error_fields(exc_info)

    def test_variations_and_string_ids(self, order_payload):
        order_payload["carrinho"] = [
            {"id": "sku-9", "name": "Camiseta", "price": 50, "quantity": 1,
             "variacoes": {"cor": "azul", "tamanho": "M"}},
        ]

        item = OrderRequest.model_validate(order_payload).cart[0]

        assert item.id == "sku-9"
        assert item.variations == {"cor": "azul", "tamanho": "M"}

    def test_description_for_single_and_multiple_items(self, order_payload):
        single = OrderRequest.model_validate(order_payload)
        order_payload["carrinho"].append({"id": 3, "name": "E-book", "quantity": 1})
        multiple = OrderRequest.model_validate(order_payload)

        assert single.description() == "Pack de Presets"
        assert multiple.description() == "Compra de 2 produtos - Pack de Presets e outros"


class TestIntentMetadata:
    """Tests for the tagged metadata blob."""

    def test_built_from_order(self, order_payload):
        order = OrderRequest.model_validate(order_payload)

        metadata = IntentMetadata.from_order(order).model_dump(mode="json")

        assert metadata["kind"] == "checkout"
        assert metadata["schema_version"] == 1
        assert metadata["carrinho"] == [{
            "produto_id": 1,
            "nome": "Pack de Presets",
            "quantidade": 2,
            "preco_unitario": 10.0,
            "variacoes": {},
        }]
        assert metadata["total_itens"] == 1
        assert metadata["endereco"]["cidade"] == "São Paulo"

    def test_read_back_validates(self, order_payload):
        order = OrderRequest.model_validate(order_payload)
        blob = IntentMetadata.from_order(order).model_dump(mode="json")

        assert IntentMetadata.model_validate(blob).email == "maria.souza@gmail.com"

    def test_foreign_kind_rejected(self, order_payload):
        order = OrderRequest.model_validate(order_payload)
        blob = IntentMetadata.from_order(order).model_dump(mode="json")
        blob["kind"] = "subscription"

        with pytest.raises(ValidationError):
            IntentMetadata.model_validate(blob)

    def test_missing_cart_rejected(self):
        with pytest.raises(ValidationError):
            IntentMetadata.model_validate({"email": "maria.souza@gmail.com"})


class TestPaymentIntent:
    """Tests for parsing processor payments."""

    def test_transaction_data_is_flattened(self):
        intent = PaymentIntent.model_validate({
            "id": 123,
            "status": "pending",
            "transaction_amount": 20,
            "point_of_interaction": {"transaction_data": {"qr_code": "pix-code", "ticket_url": "https://t"}},
            "metadata": None,
        })

        assert intent.qr_code == "pix-code"
        assert intent.qr_code_base64 is None
        assert intent.ticket_url == "https://t"
        assert intent.metadata == {}
        assert intent.payment_id == "123"
        assert not intent.is_approved

    def test_approved(self):
        intent = PaymentIntent.model_validate({"id": "9", "status": PaymentStatus.APPROVED.value})

        assert intent.is_approved


class TestOrderRecord:
    def test_from_checkout_denormalizes_order(self, order_payload):
        order = OrderRequest.model_validate(order_payload)
        intent = PaymentIntent.model_validate({"id": 77, "status": "pending"})

        record = OrderRecord.from_checkout(intent, order)

        assert record.pagamento_id == "77"
        assert record.status == "pending"
        assert record.valor == 20.0
        assert record.itens[0].preco_total == 20.0
        assert record.endereco_entrega == order_payload["endereco"]
        assert record.created_at == record.updated_at

    def test_missing_price_stored_as_zero(self, order_payload):
        del order_payload["carrinho"][0]["price"]
        order = OrderRequest.model_validate(order_payload)
        intent = PaymentIntent.model_validate({"id": 78, "status": "pending"})

        item = OrderRecord.from_checkout(intent, order).itens[0]

        assert item.preco_unitario == 0
        assert item.preco_total == 0


class TestWebhookNotification:
    def test_payment_notification(self):
        notification = WebhookNotification.model_validate({"type": "payment", "data": {"id": 123}})

        assert notification.is_payment
        assert notification.payment_id == "123"

    def test_ipn_query_string_fills_missing_fields(self):
        notification = WebhookNotification().with_query_fallback({"topic": "payment", "id": "123"})

        assert notification.is_payment
        assert notification.payment_id == "123"

    def test_body_wins_over_query_string(self):
        notification = WebhookNotification.model_validate({"type": "payment", "data": {"id": "9"}})

        merged = notification.with_query_fallback({"type": "merchant_order", "data.id": "1"})

        assert merged.type == "payment"
        assert merged.payment_id == "9"

    @pytest.mark.parametrize("payload", [
        {"type": "merchant_order", "data": {"id": "1"}},
        {"type": "payment", "data": {}},
        {"type": "payment"},
        {},
    ])
    def test_not_actionable(self, payload):
        assert not WebhookNotification.model_validate(payload).is_payment
