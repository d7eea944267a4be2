"""
Voucher DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic.types import condecimal

from domain.voucher.entity import Voucher, normalize_code
from domain.voucher.service import VoucherQuote


class ApplyVoucherRequest(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    subtotal: condecimal(ge=0, max_digits=14, decimal_places=2)  # type: ignore[valid-type]

    @field_validator("code")
    @classmethod
    def _normalize(cls, v: str) -> str:
        v = normalize_code(v)
        if not v:
            raise ValueError("code must not be blank")
        return v


class VoucherOut(BaseModel):
    id: str
    code: str
    description: Optional[str] = None
    discount_type: str
    discount_value: Decimal
    min_purchase: Optional[Decimal] = None
    max_discount: Optional[Decimal] = None
    usage_limit: Optional[int] = None
    usage_count: int = 0
    user_usage_limit: Optional[int] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool = True
    allowed_tiers: List[str] = Field(default_factory=list)

    @classmethod
    def from_entity(cls, voucher: Voucher) -> "VoucherOut":
        return cls(
            id=voucher.id,
            code=voucher.code,
            description=voucher.description,
            discount_type=voucher.discount_type.value,
            discount_value=voucher.discount_value,
            min_purchase=voucher.min_purchase,
            max_discount=voucher.max_discount,
            usage_limit=voucher.usage_limit,
            usage_count=voucher.usage_count,
            user_usage_limit=voucher.user_usage_limit,
            valid_from=voucher.valid_from,
            valid_until=voucher.valid_until,
            is_active=voucher.is_active,
            allowed_tiers=list(voucher.allowed_tiers),
        )


class VoucherQuoteOut(BaseModel):
    voucher: VoucherOut
    subtotal: Decimal
    discount: Decimal

    @classmethod
    def from_quote(cls, quote: VoucherQuote) -> "VoucherQuoteOut":
        return cls(voucher=VoucherOut.from_entity(quote.voucher), subtotal=quote.subtotal, discount=quote.discount)
