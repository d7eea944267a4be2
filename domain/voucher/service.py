"""
优惠券领域服务 - 校验流水线与折扣计算

校验按固定顺序执行，遇到第一个失败即返回：
not_found -> inactive -> not_yet_valid/expired -> below_minimum
-> usage_exhausted -> user_limit_reached -> tier_not_allowed

除只读查询外没有任何副作用，下单时会在服务端重新计算一次折扣。
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from domain.common.exceptions import VoucherRejectedException
from .entity import (
    DiscountType,
    MISSING_MEMBER_MESSAGE,
    REJECTION_MESSAGES,
    Voucher,
    VoucherRejection,
    normalize_code,
)
from .repository import MemberTierRepository, VoucherRepository


_CENT = Decimal("0.01")


def round_money(value: Decimal) -> Decimal:
    """金额统一保留两位小数，四舍五入（ROUND_HALF_UP）"""
    return Decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


def format_rupiah(value: Decimal) -> str:
    """按 id-ID 习惯格式化金额：千分位用点号，小数用逗号"""
    value = round_money(value)
    whole, _, frac = f"{value:,.2f}".partition(".")
    whole = whole.replace(",", ".")
    return whole if frac == "00" else f"{whole},{frac}"


def calculate_discount(voucher: Optional[Voucher], subtotal: Decimal) -> Decimal:
    """
    计算折扣金额

    百分比券：subtotal * value / 100，再按 max_discount 封顶；
    固定金额券：value。最终结果不超过 subtotal，且不为负数。
    """
    if voucher is None:
        return Decimal("0.00")
    subtotal = Decimal(subtotal)
    if voucher.discount_type == DiscountType.PERCENTAGE:
        discount = subtotal * voucher.discount_value / Decimal(100)
        if voucher.max_discount is not None and discount > voucher.max_discount:
            discount = voucher.max_discount
    else:
        discount = voucher.discount_value
    discount = min(discount, subtotal)
    return round_money(max(discount, Decimal("0")))


def check_voucher(
    voucher: Optional[Voucher],
    subtotal: Decimal,
    now: datetime,
    *,
    user_usage_count: int = 0,
    user_tier: Optional[str] = None,
) -> None:
    """纯函数校验；失败时抛出 VoucherRejectedException"""
    if voucher is None:
        _reject(VoucherRejection.NOT_FOUND)
    if not voucher.is_active:
        _reject(VoucherRejection.INACTIVE, voucher)

    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    if voucher.valid_from is not None and now < voucher.valid_from:
        _reject(VoucherRejection.NOT_YET_VALID, voucher)
    if voucher.valid_until is not None and now > voucher.valid_until:
        _reject(VoucherRejection.EXPIRED, voucher)

    if voucher.min_purchase is not None and Decimal(subtotal) < voucher.min_purchase:
        _reject(
            VoucherRejection.BELOW_MINIMUM,
            voucher,
            min_purchase=format_rupiah(voucher.min_purchase),
        )

    if voucher.usage_exhausted:
        _reject(VoucherRejection.USAGE_EXHAUSTED, voucher)

    if voucher.limits_per_user and user_usage_count >= voucher.user_usage_limit:
        _reject(VoucherRejection.USER_LIMIT_REACHED, voucher)

    if voucher.allowed_tiers:
        if user_tier is None:
            raise VoucherRejectedException(
                VoucherRejection.TIER_NOT_ALLOWED.value,
                MISSING_MEMBER_MESSAGE,
                code=voucher.code,
                details={"allowed_tiers": voucher.allowed_tiers},
            )
        if user_tier not in voucher.allowed_tiers:
            _reject(VoucherRejection.TIER_NOT_ALLOWED, voucher, tiers=", ".join(voucher.allowed_tiers))


def _reject(reason: VoucherRejection, voucher: Optional[Voucher] = None, **params) -> None:
    message = REJECTION_MESSAGES[reason].format(**params)
    raise VoucherRejectedException(
        reason.value,
        message,
        code=voucher.code if voucher else None,
    )


@dataclass(frozen=True)
class VoucherQuote:
    """校验通过的优惠券及服务端计算出的折扣"""
    voucher: Voucher
    subtotal: Decimal
    discount: Decimal


class VoucherValidator:
    """负责查询校验所需的数据，然后交给 check_voucher"""

    def __init__(self, voucher_repository: VoucherRepository, member_tier_repository: MemberTierRepository):
        self.voucher_repository = voucher_repository
        self.member_tier_repository = member_tier_repository

    async def validate(
        self,
        code: str,
        subtotal: Decimal,
        *,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> VoucherQuote:
        now = now or datetime.now(timezone.utc)
        normalized = normalize_code(code)
        voucher = await self.voucher_repository.get_by_code(normalized) if normalized else None

        user_usage_count = 0
        user_tier = None
        if voucher is not None and user_id is not None:
            # 按需查询
            if voucher.limits_per_user:
                user_usage_count = await self.voucher_repository.count_user_usage(voucher.id, user_id)
            if voucher.allowed_tiers:
                user_tier = await self.member_tier_repository.get_current_tier(user_id)

        check_voucher(
            voucher,
            subtotal,
            now,
            user_usage_count=user_usage_count,
            user_tier=user_tier,
        )
        return VoucherQuote(voucher=voucher, subtotal=round_money(subtotal), discount=calculate_discount(voucher, subtotal))
