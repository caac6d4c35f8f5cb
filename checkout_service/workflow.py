"""
workflow.py — Core Orchestration Logic for PIX Checkout and Reconciliation

This module contains the payment workflow of the checkout service.
It coordinates the payment processor, the orders table and the product catalog
in the correct sequence.

Workflow Overview:
1. Create the PIX payment at Mercado Pago (with bounded retries)
2. Persist the order row in Supabase (best effort)
3. Later, on webhook or status poll: fetch the payment and sync its status
4. On approval: resolve the download links and mark the order as delivered

Error model:
    Failures that end a request are raised as exceptions
    (ServiceUnavailableError, PaymentProcessorError). Failures of the
    best-effort steps (order persistence, status sync, catalog lookups) are
    logged and returned as StepResult / FulfillmentResult values, so the caller
    still receives the payment.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .clients import PaymentNotFoundError, PaymentProcessorError, SupabaseClient
from .models import (
    DownloadLink,
    IntentMetadata,
    OrderRecord,
    OrderRequest,
    PaymentIntent,
    PaymentStatus,
    WebhookNotification,
)
from .notifications import send_download_links
from .retry import retry_with_backoff
from .services import Services

log = logging.getLogger(__name__)


class ServiceUnavailableError(Exception):
    """A required external service is not configured."""


@dataclass
class StepResult:
    """Outcome of a best-effort step. A failed step has been logged already."""
    ok: bool
    detail: str = ""


@dataclass
class CheckoutResult:
    intent: PaymentIntent
    order: OrderRequest
    persisted: StepResult


@dataclass
class LinkResolution:
    links: List[DownloadLink] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


@dataclass
class FulfillmentResult:
    links: List[DownloadLink] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    delivered: bool = False
    detail: str = ""


@dataclass
class ReconciliationResult:
    payment: PaymentIntent
    persisted: StepResult
    fulfillment: Optional[FulfillmentResult] = None


def build_payment_body(order: OrderRequest, notification_url: Optional[str] = None) -> Dict[str, Any]:
    """Builds the Mercado Pago payment payload for a PIX charge of `order`."""
    body = {
        "transaction_amount": order.total,
        "description": order.description(),
        "payment_method_id": "pix",
        "payer": {
            "email": order.email,
            "first_name": order.customer_name,
            "phone": {"number": order.phone},
        },
        "metadata": IntentMetadata.from_order(order).model_dump(mode="json"),
    }
    if notification_url:
        body["notification_url"] = notification_url
    return body


async def create_checkout(order: OrderRequest, services: Services) -> CheckoutResult:
    """
    Creates the PIX payment for a validated order and stores the order row.

    The payment is created through the retry executor with one idempotency key
    for all attempts. Persisting the order afterwards is best effort: the
    payment already exists at the processor, so a database failure is only
    reported in `CheckoutResult.persisted`.

    Args:
        order (OrderRequest): Validated checkout payload.
        services (Services): Configured external clients.

    Returns:
        CheckoutResult: The created payment and the persistence outcome.

    Raises:
        ServiceUnavailableError: If Mercado Pago is not configured.
        PaymentProcessorError: If every creation attempt failed.
    """
    payments = services.payments
    if payments is None:
        raise ServiceUnavailableError("Mercado Pago não configurado. Configure MERCADO_PAGO_ACCESS_TOKEN.")

    settings = services.settings
    body = build_payment_body(order, settings.public_webhook_url)
    idempotency_key = str(uuid.uuid4())

    log.info(
        f"Criando pagamento PIX: valor={order.total} cliente={order.customer_name} "
        f"destino={order.address.cidade}, {order.address.estado} itens={len(order.cart)}"
    )
    intent = await retry_with_backoff(
        lambda: payments.create_payment(body, idempotency_key),
        max_attempts=settings.retry_max_attempts,
        base_delay=settings.retry_base_delay,
    )
    log.info(f"[Pagamento: {intent.id}] Criado no Mercado Pago com status {intent.status}.")

    persisted = await persist_order(intent, order, services.database)
    return CheckoutResult(intent=intent, order=order, persisted=persisted)


async def persist_order(intent: PaymentIntent, order: OrderRequest,
                        database: Optional[SupabaseClient]) -> StepResult:
    log_prefix = f"[Pagamento: {intent.id}]"
    if database is None:
        log.warning(f"{log_prefix} Supabase não configurado - pagamento não foi salvo no banco.")
        return StepResult(ok=False, detail="Supabase não configurado")

    try:
        await database.insert_order(OrderRecord.from_checkout(intent, order))
    except Exception as e:
        log.error(f"{log_prefix} Erro ao salvar pedido no Supabase: {e}", exc_info=True)
        return StepResult(ok=False, detail=str(e))

    log.info(f"{log_prefix} Pedido salvo no Supabase.")
    return StepResult(ok=True)


async def record_status(payment_id: str, status: str, database: Optional[SupabaseClient]) -> StepResult:
    """
    Overwrites the stored status of an order (last write wins).

    Never raises; failures are logged and returned.
    """
    log_prefix = f"[Pagamento: {payment_id}]"
    if database is None:
        log.warning(f"{log_prefix} Supabase não configurado - status {status} não foi salvo.")
        return StepResult(ok=False, detail="Supabase não configurado")

    try:
        updated = await database.update_order_status(payment_id, status)
    except Exception as e:
        log.error(f"{log_prefix} Erro ao atualizar status para {status}: {e}", exc_info=True)
        return StepResult(ok=False, detail=str(e))

    if not updated:
        log.warning(f"{log_prefix} Nenhum pedido encontrado para atualizar o status para {status}.")
        return StepResult(ok=False, detail="Pedido não encontrado")

    log.info(f"{log_prefix} Status atualizado no Supabase: {status}")
    return StepResult(ok=True)


async def mark_delivered(payment_id: str, database: Optional[SupabaseClient]) -> StepResult:
    """Marks the order as delivered. Repeating the call leaves the same row in the same state."""
    return await record_status(payment_id, PaymentStatus.DELIVERED.value, database)


async def is_delivered(payment_id: str, database: Optional[SupabaseClient]) -> bool:
    """Tells whether the stored order is already delivered. Read failures count as not delivered."""
    if database is None:
        return False
    try:
        order = await database.get_order(payment_id)
    except Exception as e:
        log.warning(f"[Pagamento: {payment_id}] Não foi possível ler o pedido antes de atualizar o status: {e}")
        return False
    return order is not None and order.status == PaymentStatus.DELIVERED.value


async def resolve_download_links(metadata: IntentMetadata, database: SupabaseClient) -> LinkResolution:
    """
    Looks up the download URL of every cart line in the product catalog.

    Lookup errors, unknown products and products without a download URL are
    logged and listed in `LinkResolution.skipped`; none of them is fatal.
    """
    resolution = LinkResolution()
    log.info(f"Buscando links de download para {len(metadata.carrinho)} produtos")

    for item in metadata.carrinho:
        product_id = str(item.produto_id)
        try:
            product = await database.get_product(item.produto_id)
        except Exception as e:
            log.error(f"Erro ao buscar produto {product_id}: {e}")
            resolution.skipped.append(product_id)
            continue

        if product is None:
            log.error(f"Produto {product_id} não encontrado no catálogo")
            resolution.skipped.append(product_id)
            continue

        if not product.download_url:
            log.warning(f"Produto {product.name} não possui download_url")
            resolution.skipped.append(product_id)
            continue

        resolution.links.append(DownloadLink(
            produto_id=product.id,
            nome=product.name,
            download_url=product.download_url,
            quantidade=item.quantidade,
            variacoes=item.variacoes,
        ))
        log.info(f"Link encontrado para produto {product.name}")

    return resolution


async def fulfill_approved_payment(payment: PaymentIntent, services: Services) -> FulfillmentResult:
    """
    Delivers the digital goods of an approved payment.

    Resolves the download links from the payment metadata, hands them to the
    notification step and, if at least one link resolved, marks the order as
    delivered. Safe to repeat for the same payment.
    """
    log_prefix = f"[Pagamento: {payment.id}]"
    log.info(f"{log_prefix} Processando pagamento aprovado.")

    database = services.database
    if database is None:
        log.error(f"{log_prefix} Supabase não configurado - entrega não realizada.")
        return FulfillmentResult(detail="Supabase não configurado")

    try:
        metadata = IntentMetadata.model_validate(payment.metadata)
    except ValidationError as e:
        log.error(f"{log_prefix} Dados insuficientes no metadata: {e}")
        return FulfillmentResult(detail="Metadata inválido")

    resolution = await resolve_download_links(metadata, database)
    if not resolution.links:
        log.warning(f"{log_prefix} Nenhum link de download encontrado.")
        return FulfillmentResult(skipped=resolution.skipped, detail="Nenhum link de download encontrado")

    send_download_links(metadata.email, resolution.links)
    delivered = await mark_delivered(payment.payment_id, database)
    if delivered.ok:
        log.info(f"{log_prefix} Pagamento marcado como entregue.")
    return FulfillmentResult(
        links=resolution.links,
        skipped=resolution.skipped,
        delivered=delivered.ok,
        detail=delivered.detail,
    )


async def sync_payment_status(payment_id: str, services: Services,
                              base_delay: Optional[float] = None) -> ReconciliationResult:
    """
    Fetches the current payment state, stores it and fulfills approved payments.

    Used by both the webhook and the status poll; concurrent runs for the same
    payment are safe because every write is an overwrite of the status field.
    An approved payment never moves a delivered order back to `approved`.

    Args:
        payment_id (str): Processor-assigned payment id.
        services (Services): Configured external clients.
        base_delay (float, optional): Retry delay unit, defaults to the configured one.

    Raises:
        ServiceUnavailableError: If Mercado Pago is not configured.
        PaymentNotFoundError: If the processor does not know the payment.
        PaymentProcessorError: If every fetch attempt failed.
    """
    payments = services.payments
    if payments is None:
        raise ServiceUnavailableError("Mercado Pago não configurado")

    settings = services.settings
    delay = settings.retry_base_delay if base_delay is None else base_delay
    payment = await retry_with_backoff(
        lambda: payments.get_payment(payment_id),
        max_attempts=settings.retry_max_attempts,
        base_delay=delay,
    )
    log.info(f"[Pagamento: {payment_id}] Status no Mercado Pago: {payment.status}")

    if payment.is_approved and await is_delivered(payment.payment_id, services.database):
        log.info(f"[Pagamento: {payment_id}] Pedido já entregue - status mantido como delivered.")
        persisted = StepResult(ok=True, detail="Pedido já entregue")
    else:
        persisted = await record_status(payment.payment_id, payment.status, services.database)

    fulfillment = None
    if payment.is_approved:
        fulfillment = await fulfill_approved_payment(payment, services)

    return ReconciliationResult(payment=payment, persisted=persisted, fulfillment=fulfillment)


async def process_webhook(notification: WebhookNotification, services: Services):
    """
    Processes a webhook notification in the background.

    This function is scheduled by the API after the notification has been
    acknowledged, so it never raises: every failure is logged for manual
    recovery and the processor's own resend policy.
    """
    if not notification.is_payment:
        log.info(f"Webhook ignorado (type={notification.type}, sem id de pagamento ou não é pagamento).")
        return

    payment_id = notification.payment_id
    log_prefix = f"[Pagamento: {payment_id}]"
    log.info(f"{log_prefix} Webhook recebido (action={notification.action}).")

    try:
        await sync_payment_status(payment_id, services, base_delay=services.settings.webhook_retry_base_delay)
    except PaymentNotFoundError:
        log.error(f"{log_prefix} Pagamento desconhecido no Mercado Pago. Webhook descartado.")
    except PaymentProcessorError as e:
        log.error(f"{log_prefix} Falha ao consultar pagamento após retentativas: {e}")
    except Exception as e:
        log.critical(f"{log_prefix} Erro inesperado no processamento do webhook: {e}", exc_info=True)
