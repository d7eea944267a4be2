"""
优惠券领域实体
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from domain.common.exceptions import DomainValidationException


class DiscountType(str, Enum):
    """折扣类型"""
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class VoucherRejection(str, Enum):
    """优惠券拒绝原因（按校验顺序排列）"""
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    NOT_YET_VALID = "not_yet_valid"
    EXPIRED = "expired"
    BELOW_MINIMUM = "below_minimum"
    USAGE_EXHAUSTED = "usage_exhausted"
    USER_LIMIT_REACHED = "user_limit_reached"
    TIER_NOT_ALLOWED = "tier_not_allowed"


# 面向买家的提示文案（印尼语，与前端一致）
REJECTION_MESSAGES = {
    VoucherRejection.NOT_FOUND: "Voucher tidak ditemukan",
    VoucherRejection.INACTIVE: "Voucher tidak aktif",
    VoucherRejection.NOT_YET_VALID: "Voucher belum dapat digunakan",
    VoucherRejection.EXPIRED: "Voucher sudah kadaluarsa",
    VoucherRejection.BELOW_MINIMUM: "Minimum pembelian Rp {min_purchase}",
    VoucherRejection.USAGE_EXHAUSTED: "Voucher sudah mencapai batas penggunaan",
    VoucherRejection.USER_LIMIT_REACHED: "Anda sudah mencapai batas penggunaan voucher ini",
    VoucherRejection.TIER_NOT_ALLOWED: "Voucher ini hanya untuk tier: {tiers}",
}
MISSING_MEMBER_MESSAGE = "Data member tidak ditemukan"


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class Voucher:
    """
    优惠券实体

    不变式：
    1. code 统一为大写
    2. usage_limit / user_usage_limit 为空或 0 表示不限；限额为正数时 usage_count <= usage_limit
    3. max_discount 只对百分比券生效
    """

    id: str
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    description: Optional[str] = None
    min_purchase: Optional[Decimal] = None
    max_discount: Optional[Decimal] = None
    usage_limit: Optional[int] = None
    usage_count: int = 0
    user_usage_limit: Optional[int] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool = True
    allowed_tiers: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.code = normalize_code(self.code)
        self.discount_type = DiscountType(self.discount_type)
        self.usage_count = self.usage_count or 0
        self.allowed_tiers = list(self.allowed_tiers or [])
        self.valid_from = _ensure_utc(self.valid_from)
        self.valid_until = _ensure_utc(self.valid_until)
        if self.discount_value < 0:
            raise DomainValidationException(
                f"Discount value must not be negative: {self.discount_value}",
                field="discount_value",
            )
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise DomainValidationException(
                f"Percentage discount must not exceed 100: {self.discount_value}",
                field="discount_value",
            )

    @property
    def limits_total_usage(self) -> bool:
        return bool(self.usage_limit) and self.usage_limit > 0

    @property
    def limits_per_user(self) -> bool:
        return bool(self.user_usage_limit) and self.user_usage_limit > 0

    @property
    def usage_exhausted(self) -> bool:
        return self.limits_total_usage and self.usage_count >= self.usage_limit


@dataclass(frozen=True)
class VoucherUsage:
    """优惠券核销记录，(voucher_id, user_id, order_id) 唯一，只增不删"""

    voucher_id: str
    user_id: str
    order_id: str
    discount_amount: Decimal
    id: Optional[str] = None
    created_at: Optional[datetime] = None
