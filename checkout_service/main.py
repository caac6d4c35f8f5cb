"""
main.py — FastAPI Entry Point for the PIX Checkout Service

This module provides the REST API used by the storefront frontend and by the
Mercado Pago notification system.

Responsibilities:
    • Accept checkout requests and create PIX payments
    • Receive payment webhooks and reconcile them in the background
    • Expose payment status (with download links) and stored orders
    • Provide service health information
"""

import logging
import time
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import uvicorn
from fastapi import APIRouter, BackgroundTasks, Body, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .clients import DatabaseError, PaymentNotFoundError, PaymentProcessorError
from .config import Settings, get_settings
from .logging_config import setup_logging
from .models import OrderRequest, WebhookNotification
from .security import verify_webhook_signature
from .services import Services
from .workflow import (
    CheckoutResult,
    ServiceUnavailableError,
    create_checkout,
    process_webhook,
    sync_payment_status,
)

log = logging.getLogger(__name__)
router = APIRouter()


def get_services(request: Request) -> Services:
    return request.app.state.services


def error_response(status_code: int, error: str, details: Any = None) -> JSONResponse:
    content = {"error": error}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def checkout_response(result: CheckoutResult) -> Dict[str, Any]:
    """Projection of a created payment returned to the storefront."""
    intent, order = result.intent, result.order
    return {
        "id": intent.id,
        "status": intent.status,
        "qr_code": intent.qr_code,
        "qr_code_base64": intent.qr_code_base64,
        "ticket_url": intent.ticket_url,
        "total": order.total,
        "cliente": order.customer_name,
        "email": order.email,
        "telefone": order.phone,
        "endereco": order.address.model_dump(),
        "produtos": [
            {
                "id": item.id,
                "nome": item.name,
                "quantidade": item.quantity,
                "variacoes": dict(item.variations),
            }
            for item in order.cart
        ],
    }


# Health Check Endpoints
@router.get("/health")
def health_check(request: Request):
    """
    Liveness check for the hosting platform.

    Returns:
        dict: Service availability, timestamp, version and environment.
    """
    settings = request.app.state.settings
    return {
        "status": "ok",
        "timestamp": utc_timestamp(),
        "version": settings.version,
        "environment": settings.app_env,
    }


@router.get("/api/status")
def api_status(request: Request, services: Services = Depends(get_services)):
    """
    Reports which external integrations are configured.

    Returns:
        dict: `services.mercadoPago` and `services.supabase` booleans.
    """
    return {
        "status": "online",
        "timestamp": utc_timestamp(),
        "services": {
            "mercadoPago": services.payments is not None,
            "supabase": services.database is not None,
        },
        "environment": request.app.state.settings.app_env,
    }


# API Endpoint: Storefront → Checkout Service
@router.post("/api/payments/criar-pagamento")
async def create_payment(order: OrderRequest, services: Services = Depends(get_services)):
    """
    Creates a PIX payment for the submitted cart and stores the order.

    The payload is validated against `OrderRequest` before this handler runs;
    invalid payloads are answered with 400 by the validation handler.

    Returns:
        dict: Payment id, status, PIX QR data and an echo of the order.

    Errors:
        503: Mercado Pago is not configured.
        500: The payment could not be created.
    """
    log.info(
        f"Dados recebidos do carrinho: {len(order.cart)} itens, total {order.total}, cliente {order.customer_name}"
    )
    try:
        result = await create_checkout(order, services)
    except ServiceUnavailableError as e:
        return error_response(503, "Serviço de pagamento indisponível", str(e))
    except PaymentProcessorError as e:
        log.error(f"Erro ao criar pagamento no Mercado Pago: {e}")
        return error_response(500, "Erro ao criar pagamento no Mercado Pago", str(e))
    except Exception as e:
        log.critical(f"Erro inesperado ao criar pagamento: {e}", exc_info=True)
        return error_response(500, "Erro interno do servidor", str(e))

    log.info(
        f"[Pagamento: {result.intent.id}] Processado com sucesso "
        f"(qr_code={'sim' if result.intent.qr_code else 'não'}, salvo={result.persisted.ok})"
    )
    return checkout_response(result)


# Webhook: Mercado Pago → Checkout Service
@router.post("/api/payments/webhook")
async def payment_webhook(
        request: Request,
        background_tasks: BackgroundTasks,
        notification: Optional[WebhookNotification] = Body(default=None),
        services: Services = Depends(get_services),
):
    """
    Receives a Mercado Pago notification and schedules its reconciliation.

    The notification is acknowledged with 200 as soon as it is parsed (and its
    signature checked, when a webhook secret is configured); fetching the
    payment, syncing the order and delivering the links happen in a background
    task whose failures are only logged. Notifications that carry their type
    and id only in the query string (with or without a body) are accepted.
    """
    notification = (notification or WebhookNotification()).with_query_fallback(request.query_params)
    secret = services.settings.mercado_pago_webhook_secret
    data_id = notification.payment_id
    if secret and not verify_webhook_signature(
            secret,
            request.headers.get("x-signature"),
            request.headers.get("x-request-id"),
            data_id,
    ):
        log.warning(f"Webhook com assinatura inválida rejeitado (id={data_id}).")
        return error_response(401, "Assinatura inválida")

    if notification.is_payment and services.payments is None:
        log.error("Mercado Pago não configurado para processar webhook")
        return error_response(503, "Mercado Pago não configurado")

    background_tasks.add_task(process_webhook, notification, services)
    return {"received": True}


@router.get("/api/payments/status/{payment_id}")
async def payment_status(payment_id: str, services: Services = Depends(get_services)):
    """
    Fetches the current payment status from Mercado Pago.

    The observed status is written to the order; approved payments are
    fulfilled and their download links included in the response.
    """
    try:
        result = await sync_payment_status(payment_id, services)
    except ServiceUnavailableError:
        return error_response(503, "Serviço de pagamento indisponível", "Mercado Pago não configurado")
    except PaymentNotFoundError:
        return error_response(404, "Pagamento não encontrado")
    except PaymentProcessorError as e:
        log.error(f"[Pagamento: {payment_id}] Erro ao verificar status: {e}")
        return error_response(500, "Erro interno", str(e))

    payment = result.payment
    response = {
        "id": payment.id,
        "status": payment.status,
        "status_detail": payment.status_detail,
        "transaction_amount": payment.transaction_amount,
    }
    if payment.is_approved:
        links = result.fulfillment.links if result.fulfillment else []
        response["download_links"] = [link.model_dump(mode="json") for link in links]
    return response


@router.get("/api/payments/pedido/{payment_id}")
async def get_order(payment_id: str, services: Services = Depends(get_services)):
    """Returns the stored order for a payment id."""
    if services.database is None:
        return error_response(503, "Base de dados indisponível", "Supabase não configurado")

    try:
        order = await services.database.get_order(payment_id)
    except DatabaseError as e:
        return error_response(500, "Erro interno", str(e))

    if order is None:
        return error_response(404, "Pedido não encontrado", "Pedido não existe")

    return {
        "id": order.pagamento_id,
        "status": order.status,
        "cliente": order.nome_cliente,
        "email": order.email,
        "telefone": order.telefone,
        "valor": order.valor,
        "itens": [item.model_dump(mode="json") for item in order.itens],
        "endereco_entrega": order.endereco_entrega,
        "created_at": order.created_at,
        "updated_at": order.updated_at,
    }


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """
    Builds the FastAPI application.

    Args:
        settings (Settings, optional): Configuration; read from the environment when omitted.
        services (Services, optional): Prebuilt external clients. When omitted they
            are built from `settings` at startup and closed at shutdown.
    """
    if settings is None:
        settings = services.settings if services is not None else get_settings()

    setup_logging(settings.log_level, settings.log_file)

    app = FastAPI(title="Checkout PIX", version=settings.version)
    app.state.settings = settings
    app.state.services = services
    app.state.owns_services = services is None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else settings.origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "x-requested-with"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        if request.url.path.startswith("/api"):
            duration_ms = (time.perf_counter() - start) * 1000
            log.info(f"{request.method} {request.url.path} {response.status_code} in {duration_ms:.0f}ms")
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        details = [
            {
                "field": ".".join(str(part) for part in err["loc"] if part != "body"),
                "message": err["msg"],
                "type": err["type"],
            }
            for err in exc.errors()
        ]
        log.error(f"Erro de validação em {request.url.path}: {details}")
        return error_response(400, "Dados inválidos", details)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse(status_code=404, content={
                "error": "Endpoint não encontrado",
                "path": request.url.path,
                "method": request.method,
            })
        return error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        log.critical(f"Erro 500 em {request.method} {request.url.path}: {exc}", exc_info=True)
        content = {"error": "Erro interno do servidor", "details": str(exc)}
        if settings.is_development:
            content["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return JSONResponse(status_code=500, content=content)

    @app.on_event("startup")
    async def on_startup():
        log.info(f"Checkout PIX iniciando (ambiente: {settings.app_env})")
        if app.state.services is None:
            app.state.services = Services.from_settings(settings)
        if not settings.mercado_pago_webhook_secret:
            log.warning("MERCADO_PAGO_WEBHOOK_SECRET não configurado; assinaturas de webhook não serão verificadas.")
        log.info(f"CORS configurado para: {'*' if settings.is_development else settings.origins}")

    @app.on_event("shutdown")
    async def on_shutdown():
        if app.state.owns_services and app.state.services is not None:
            await app.state.services.aclose()
        log.info("Servidor encerrado.")

    app.include_router(router)
    return app


app = create_app()


def run():
    """Runs the service with uvicorn on HOST:PORT."""
    settings = get_settings()
    uvicorn.run("checkout_service.main:app", host=settings.host, port=settings.port)
