"""
Payment DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Optional
from pydantic import BaseModel, Field, field_validator


class PaymentNotification(BaseModel):
    """Inbound gateway notification (Midtrans HTTP notification body).

    ``gross_amount`` stays the raw string the gateway sent; the signature
    covers that exact text.
    """

    order_id: str = Field(min_length=1)
    transaction_status: str = Field(min_length=1)
    status_code: str = Field(min_length=1)
    gross_amount: str = Field(min_length=1)
    signature_key: str = Field(min_length=1)
    payment_type: Optional[str] = None
    transaction_id: Optional[str] = None
    transaction_time: Optional[str] = None
    fraud_status: Optional[str] = None

    @field_validator("gross_amount")
    @classmethod
    def _must_be_decimal(cls, v: str) -> str:
        try:
            amount = Decimal(v)
        except InvalidOperation as exc:
            raise ValueError("gross_amount must be a decimal string") from exc
        if not amount.is_finite():
            raise ValueError("gross_amount must be a finite amount")
        return v

    @field_validator("transaction_status", "fraud_status")
    @classmethod
    def _lower(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().lower() if v else v

    @property
    def dedupe_key(self) -> str:
        return f"{self.order_id}:{self.status_code}:{self.gross_amount}"


class GatewayTransactionStatus(BaseModel):
    """Result of querying the gateway's transaction status API."""

    order_id: str
    transaction_status: Optional[str] = None
    status_code: Optional[str] = None
    gross_amount: Optional[str] = None
    payment_type: Optional[str] = None
    fraud_status: Optional[str] = None
    found: bool = True


class WebhookResult(BaseModel):
    """What the webhook processor did with a notification."""

    success: bool = True
    outcome: str
    order_id: Optional[str] = None
    order_status: Optional[str] = None
    payment_status: Optional[str] = None
    detail: Optional[str] = None


class PaymentStatusCheckResult(BaseModel):
    order_id: str
    order_number: str
    status: str
    payment_status: str
    paid_at: Optional[str] = None
    gateway_status: Optional[str] = None
    changed: bool = False
