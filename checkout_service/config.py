"""
config.py — Environment Configuration

All runtime settings are read from environment variables (and an optional
`.env` file) through pydantic-settings. Nothing here talks to the network;
`Settings` only tells the rest of the service which integrations are
configured.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:5173",
    "http://localhost:3000",
    "http://localhost:5000",
    "https://nectix.netlify.app",
    "https://nectix.vercel.app",
]


class Settings(BaseSettings):
    """Settings of the checkout service, loaded from the environment."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    # Mercado Pago
    mercado_pago_access_token: Optional[str] = None
    mercado_pago_base_url: str = "https://api.mercadopago.com"
    mercado_pago_timeout: float = 10.0
    mercado_pago_webhook_secret: Optional[str] = None
    public_webhook_url: Optional[str] = None

    # Supabase (PostgREST)
    supabase_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("SUPABASE_URL", "VITE_SUPABASE_URL"),
    )
    supabase_service_role_key: Optional[str] = None
    supabase_timeout: float = 10.0

    # HTTP server
    app_env: str = "development"
    allowed_origins: str = ",".join(DEFAULT_ALLOWED_ORIGINS)
    host: str = "0.0.0.0"
    port: int = 5000
    version: str = "1.0.0"

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # Retry executor (seconds)
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0)
    webhook_retry_base_delay: float = Field(default=2.0, ge=0)

    @property
    def is_development(self) -> bool:
        return self.app_env.lower() == "development"

    @property
    def origins(self) -> List[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    @property
    def payments_configured(self) -> bool:
        return bool(self.mercado_pago_access_token)

    @property
    def database_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role_key)


@lru_cache
def get_settings() -> Settings:
    return Settings()
