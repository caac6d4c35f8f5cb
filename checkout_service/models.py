"""
models.py — Data Models for Checkout and Payment Reconciliation

This module defines the data structures exchanged with the storefront, the
payment processor and the orders table. It uses Pydantic models to validate
incoming data and to give the untyped JSON of the external services a fixed
shape.

Models:
    - CartItem / ShippingAddress / OrderRequest: validated checkout payload.
    - PaymentStatus: status vocabulary of the processor plus "delivered".
    - IntentMetadata: tagged metadata blob stored on the payment intent.
    - PaymentIntent: projection of a processor payment.
    - OrderRecord: row of the `pagamentos` table.
    - DownloadLink: resolved per-product download URL.
    - WebhookNotification: inbound processor notification.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

NonEmptyStr = Annotated[str, Field(min_length=1)]
ProductId = Union[str, int]
Variations = Dict[str, Optional[str]]

_email_format = TypeAdapter(EmailStr)


def _check_email_format(value: str) -> str:
    # The address is stored and echoed exactly as submitted.
    try:
        _email_format.validate_python(value)
    except ValidationError:
        raise ValueError("value is not a valid email address") from None
    return value


SubmittedEmail = Annotated[str, AfterValidator(_check_email_format)]


def _reject_bool(value: Any) -> Any:
    if isinstance(value, bool):
        raise ValueError("Input should be a number, not a boolean")
    return value


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class PaymentStatus(str, Enum):
    """
    Payment status vocabulary.

    All values except DELIVERED come from the payment processor. DELIVERED is
    written by this service once the download links of an approved payment
    have been resolved.
    """
    CREATED = "created"
    PENDING = "pending"
    APPROVED = "approved"
    AUTHORIZED = "authorized"
    IN_PROCESS = "in_process"
    IN_MEDIATION = "in_mediation"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    CHARGED_BACK = "charged_back"
    DELIVERED = "delivered"


class CartItem(BaseModel):
    """
    Represents a single product line in the storefront cart.

    Attributes:
        id (str | int): Product identifier in the catalog.
        name (str): Display name.
        price (float, optional): Unit price; numeric strings are coerced,
            booleans are rejected.
        quantity (int): Number of units. Must be at least 1.
        variations (dict): Free-form attributes such as color or size.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: ProductId
    name: str
    price: Optional[float] = Field(default=None, allow_inf_nan=False)
    quantity: int = Field(..., ge=1)
    variations: Variations = Field(default_factory=dict, alias="variacoes")

    @field_validator("price", "quantity", mode="before")
    @classmethod
    def _numbers_not_bool(cls, value: Any) -> Any:
        return _reject_bool(value)


class ShippingAddress(BaseModel):
    """Delivery address. Every field except `complemento` is required."""
    model_config = ConfigDict(frozen=True)

    cep: NonEmptyStr
    rua: NonEmptyStr
    numero: NonEmptyStr
    complemento: Optional[str] = None
    bairro: NonEmptyStr
    cidade: NonEmptyStr
    estado: NonEmptyStr


class OrderRequest(BaseModel):
    """
    Checkout payload sent by the storefront to create a PIX payment.

    Wire names are the storefront's keys (`carrinho`, `nomeCliente`,
    `telefone`, `endereco`); attributes use English names.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    cart: List[CartItem] = Field(..., min_length=1, alias="carrinho")
    customer_name: NonEmptyStr = Field(..., alias="nomeCliente")
    email: SubmittedEmail
    phone: NonEmptyStr = Field(..., alias="telefone")
    address: ShippingAddress = Field(..., alias="endereco")
    total: float = Field(..., gt=0, allow_inf_nan=False)

    @field_validator("total", mode="before")
    @classmethod
    def _total_not_bool(cls, value: Any) -> Any:
        return _reject_bool(value)

    def description(self) -> str:
        first = self.cart[0].name
        if len(self.cart) == 1:
            return first
        return f"Compra de {len(self.cart)} produtos - {first} e outros"


class MetadataItem(BaseModel):
    produto_id: ProductId
    nome: str
    quantidade: int = Field(..., ge=1)
    preco_unitario: Optional[float] = None
    variacoes: Variations = Field(default_factory=dict)


class IntentMetadata(BaseModel):
    """
    Metadata attached to the payment intent and read back on reconciliation.

    `kind` and `schema_version` tag the blob; payments whose metadata carries
    another kind or version are rejected on read.
    """
    kind: Literal["checkout"] = "checkout"
    schema_version: Literal[1] = 1
    carrinho: List[MetadataItem] = Field(..., min_length=1)
    cliente: str
    email: SubmittedEmail
    telefone: str
    endereco: ShippingAddress
    total_itens: int

    @classmethod
    def from_order(cls, order: OrderRequest) -> "IntentMetadata":
        return cls(
            carrinho=[
                MetadataItem(
                    produto_id=item.id,
                    nome=item.name,
                    quantidade=item.quantity,
                    preco_unitario=item.price,
                    variacoes=dict(item.variations),
                )
                for item in order.cart
            ],
            cliente=order.customer_name,
            email=order.email,
            telefone=order.phone,
            endereco=order.address,
            total_itens=len(order.cart),
        )


class PaymentIntent(BaseModel):
    """
    Projection of a payment as returned by the processor.

    The PIX QR payload lives under `point_of_interaction.transaction_data`
    in the processor's response and is flattened here.
    """
    model_config = ConfigDict(extra="ignore")

    id: Union[int, str]
    status: str
    status_detail: Optional[str] = None
    transaction_amount: Optional[float] = None
    qr_code: Optional[str] = None
    qr_code_base64: Optional[str] = None
    ticket_url: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _flatten_transaction_data(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        poi = data.get("point_of_interaction") or {}
        transaction_data = poi.get("transaction_data") or {}
        flattened = dict(data)
        for key in ("qr_code", "qr_code_base64", "ticket_url"):
            flattened.setdefault(key, transaction_data.get(key))
        if flattened.get("metadata") is None:
            flattened["metadata"] = {}
        return flattened

    @property
    def payment_id(self) -> str:
        return str(self.id)

    @property
    def is_approved(self) -> bool:
        return self.status == PaymentStatus.APPROVED.value


class OrderItemRecord(BaseModel):
    produto_id: ProductId
    nome: str
    quantidade: int
    preco_unitario: float = 0
    preco_total: float = 0
    variacoes: Variations = Field(default_factory=dict)


class OrderRecord(BaseModel):
    """Row of the `pagamentos` table, one per payment intent."""
    model_config = ConfigDict(extra="ignore")

    pagamento_id: str
    status: str
    email: str
    nome_cliente: str
    telefone: str
    valor: float
    itens: List[OrderItemRecord] = Field(default_factory=list)
    endereco_entrega: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_checkout(cls, intent: PaymentIntent, order: OrderRequest) -> "OrderRecord":
        now = utc_now_iso()
        return cls(
            pagamento_id=intent.payment_id,
            status=intent.status,
            email=order.email,
            nome_cliente=order.customer_name,
            telefone=order.phone,
            valor=order.total,
            itens=[
                OrderItemRecord(
                    produto_id=item.id,
                    nome=item.name,
                    quantidade=item.quantity,
                    preco_unitario=item.price or 0,
                    preco_total=(item.price or 0) * item.quantity,
                    variacoes=dict(item.variations),
                )
                for item in order.cart
            ],
            endereco_entrega=order.address.model_dump(),
            created_at=now,
            updated_at=now,
        )


class DownloadLink(BaseModel):
    produto_id: ProductId
    nome: str
    download_url: str
    quantidade: int
    variacoes: Variations = Field(default_factory=dict)


class WebhookData(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[Union[str, int]] = None


class WebhookNotification(BaseModel):
    """Notification posted by the payment processor, e.g. `{"type": "payment", "data": {"id": "123"}}`."""
    model_config = ConfigDict(extra="allow")

    type: Optional[str] = None
    action: Optional[str] = None
    data: Optional[WebhookData] = None

    @property
    def payment_id(self) -> Optional[str]:
        if self.data is None or self.data.id in (None, ""):
            return None
        return str(self.data.id)

    @property
    def is_payment(self) -> bool:
        return self.type == "payment" and self.payment_id is not None

    def with_query_fallback(self, params: Mapping[str, str]) -> "WebhookNotification":
        """
        Fills a missing type or payment id from the notification URL.

        Feed-style notifications carry `?type=payment&data.id=123`, and the
        older IPN format carries `?topic=payment&id=123` with no body at all.
        Values already present in the body win.
        """
        kind = self.type or params.get("type") or params.get("topic")
        payment_id = self.payment_id or params.get("data.id") or params.get("id")
        update: Dict[str, Any] = {"type": kind}
        if payment_id != self.payment_id:
            update["data"] = WebhookData(id=payment_id)
        return self.model_copy(update=update)


class Product(BaseModel):
    """Catalog row of the `produtos` table; `download_url` may be unset."""
    model_config = ConfigDict(extra="ignore")

    id: ProductId
    name: str
    download_url: Optional[str] = None
