"""
Configuration management for the Casa Piñón payments backend.

Loads settings from .env via pydantic-settings.

The Settings instance is handed to the payment reconciler when the app
starts (see main.lifespan); services never read gateway credentials from
module globals of their own.

Security notes:
    - Webhook signature verification fails closed when a secret is missing
    - validate_production_settings() enforces strict CORS and signed webhooks
"""
import logging

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── Application ─────────────────────────────────────────────────
    environment: str = "development"
    base_url: str = "http://localhost:5173"       # storefront (redirect-back target)
    api_url: str = "http://localhost:8000"        # this API (webhook target)

    # ── Database ────────────────────────────────────────────────────
    database_url: str = "sqlite:///./data/casa_pinon.db"

    # ── MercadoPago ─────────────────────────────────────────────────
    mercadopago_access_token: str = ""
    mercadopago_webhook_secret: str = ""
    mercadopago_api_base: str = "https://api.mercadopago.com"

    # ── Bold / ePayco ───────────────────────────────────────────────
    bold_api_key: str = ""                   # "Llave de identidad" for the integrations API
    bold_secret_key: str = ""                # webhook signing key
    bold_api_base: str = "https://integrations.api.bold.co"
    epayco_customer_id: str = ""
    epayco_p_key: str = ""

    # ── Payment reconciliation ─────────────────────────────────────
    webhook_verification: bool = True        # reject unsigned webhooks
    verify_redirect_approvals: bool = True   # confirm "approved" redirects with the gateway
    gateway_timeout_seconds: float = 10.0
    gateway_max_retries: int = 1
    notification_claim_ttl_seconds: int = 300

    # ── Email (SMTP via fastapi-mail) ───────────────────────────────
    mail_username: str = ""
    mail_password: str = ""
    mail_from: str = "pedidos@casapinon.co"
    mail_from_name: str = "Casa Piñón Ebanistería"
    mail_server: str = "smtp.gmail.com"
    mail_port: int = 587
    mail_starttls: bool = True
    mail_ssl_tls: bool = False
    mail_suppress_send: bool = False

    # ── Maintenance ─────────────────────────────────────────────────
    maintenance_enabled: bool = True
    maintenance_interval_seconds: int = 3600
    abandoned_order_hours: int = 24

    # ── CORS ────────────────────────────────────────────────────────
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173,http://127.0.0.1:5173"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # allow unknown .env keys without crashing
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def email_configured(self) -> bool:
        return bool(self.mail_username and self.mail_password)

    @property
    def mercadopago_configured(self) -> bool:
        return bool(self.mercadopago_access_token)

    @property
    def bold_configured(self) -> bool:
        return bool(self.bold_api_key)

    def validate_production_settings(self):
        """
        Validate settings for production safety.

        Called during app startup. Raises ValueError on unsafe production
        configuration, logs warnings otherwise.
        """
        token = self.mercadopago_access_token
        if token and not token.startswith(("APP_USR-", "TEST-")):
            raise ValueError(
                "MERCADOPAGO_ACCESS_TOKEN has an invalid format. "
                "It must start with APP_USR- or TEST-."
            )

        if self.environment == "production":
            if "*" in self.cors_origins:
                raise ValueError(
                    "CORS_ORIGINS must not contain '*' in production. "
                    "Set explicit allowed origins."
                )
            if not self.webhook_verification:
                raise ValueError(
                    "WEBHOOK_VERIFICATION must be true in production. "
                    "Unsigned webhooks could mark orders as paid."
                )
            if not self.mercadopago_webhook_secret:
                raise ValueError(
                    "MERCADOPAGO_WEBHOOK_SECRET must be set in production."
                )
            if not token:
                raise ValueError("MERCADOPAGO_ACCESS_TOKEN must be set in production.")
            logger.info("Production settings validated")
        else:
            warnings = []
            if not self.webhook_verification:
                warnings.append("WEBHOOK_VERIFICATION=false (unsigned webhooks accepted)")
            if not token:
                warnings.append("MERCADOPAGO_ACCESS_TOKEN not set (gateway lookups disabled)")
            if not self.email_configured:
                warnings.append("MAIL_USERNAME/MAIL_PASSWORD not set (emails will not be sent)")
            if "*" in self.cors_origins:
                warnings.append("CORS_ORIGINS contains '*' (open access)")
            for w in warnings:
                logger.warning(w)


# Global settings instance
settings = Settings()
