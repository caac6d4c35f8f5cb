"""
services.py — Dependency container for the external collaborators.

The payment and database clients are built once at startup from `Settings`
and handed explicitly to the workflow functions. A client is None when its
credentials are not configured.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .clients import MercadoPagoClient, SupabaseClient
from .config import Settings

log = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    payments: Optional[MercadoPagoClient] = None
    database: Optional[SupabaseClient] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "Services":
        """Builds the clients whose credentials are present in `settings`."""
        payments = None
        if settings.payments_configured:
            payments = MercadoPagoClient(
                access_token=settings.mercado_pago_access_token,
                base_url=settings.mercado_pago_base_url,
                timeout=settings.mercado_pago_timeout,
            )
            log.info("Mercado Pago: configurado.")
        else:
            log.error("MERCADO_PAGO_ACCESS_TOKEN não configurado. Pagamentos não funcionarão.")

        database = None
        if settings.database_configured:
            database = SupabaseClient(
                url=settings.supabase_url,
                service_role_key=settings.supabase_service_role_key,
                timeout=settings.supabase_timeout,
            )
            log.info("Supabase: configurado.")
        else:
            log.warning("Supabase não configurado. Pedidos não serão persistidos.")

        return cls(settings=settings, payments=payments, database=database)

    async def aclose(self):
        if self.payments is not None:
            await self.payments.aclose()
        if self.database is not None:
            await self.database.aclose()
