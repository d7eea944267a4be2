"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Environment variables use the ``PAYMENT__`` prefix, e.g.
``PAYMENT__MIDTRANS__SERVER_KEY`` or ``PAYMENT__WEBHOOK__RATE_LIMIT_PER_MINUTE``.
"""
from __future__ import annotations

from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    connect: float = 1.0
    read: float = 3.0
    write: float = 3.0
    total: float = 5.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class WebhookSettings(BaseModel):
    rate_limit_per_minute: int = 100
    rate_limit_window_seconds: int = 60
    # Gateway dashboard "test notification" order ids start with this prefix
    test_order_prefix: str = "payment_notif_test_"
    dedupe_ttl_seconds: int = 24 * 3600
    response_timeout_seconds: float = 5.0
    ip_allowlist: list[str] | None = None  # Optional IPs/CIDRs allowed to post webhooks


class MidtransSettings(BaseModel):
    server_key: Optional[str] = None
    is_production: bool = False
    api_base_url: str = "https://api.sandbox.midtrans.com"
    production_api_base_url: str = "https://api.midtrans.com"

    @property
    def base_url(self) -> str:
        return self.production_api_base_url if self.is_production else self.api_base_url


class InvoiceSettings(BaseModel):
    # celery: enqueue notifications.send_invoice; http: POST to url; log: only log
    mode: Literal["celery", "http", "log"] = "log"
    url: Optional[str] = None
    internal_secret: Optional[str] = None
    timeout_seconds: float = 10.0
    dedupe_ttl_seconds: int = 7 * 24 * 3600


class PaymentSettings(BaseSettings):
    default_provider: str = "midtrans"
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    midtrans: MidtransSettings = Field(default_factory=MidtransSettings)
    invoice: InvoiceSettings = Field(default_factory=InvoiceSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PAYMENT__",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
