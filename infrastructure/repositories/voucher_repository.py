"""
优惠券仓储实现 - 使用SQLAlchemy实现数据访问
"""
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.voucher.entity import DiscountType, Voucher, VoucherUsage
from domain.voucher.repository import MemberTierRepository, VoucherRepository
from infrastructure.models.voucher import MemberProgressModel, VoucherModel, VoucherUsageModel


logger = get_logger(__name__)


class SQLAlchemyVoucherRepository(VoucherRepository):
    """优惠券仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: VoucherModel) -> Voucher:
        return Voucher(
            id=model.id,
            code=model.code,
            description=model.description,
            discount_type=DiscountType(model.discount_type),
            discount_value=Decimal(str(model.discount_value)),
            min_purchase=Decimal(str(model.min_purchase)) if model.min_purchase is not None else None,
            max_discount=Decimal(str(model.max_discount)) if model.max_discount is not None else None,
            usage_limit=model.usage_limit,
            usage_count=model.usage_count or 0,
            user_usage_limit=model.user_usage_limit,
            valid_from=model.valid_from,
            valid_until=model.valid_until,
            is_active=bool(model.is_active),
            allowed_tiers=list(model.allowed_tiers or []),
            created_at=model.created_at,
        )

    async def get_by_code(self, code: str) -> Optional[Voucher]:
        result = await self.session.execute(
            select(VoucherModel)
            .where(VoucherModel.code == code.upper())
            .execution_options(populate_existing=True)
        )
        db_voucher = result.scalar_one_or_none()
        return self._to_entity(db_voucher) if db_voucher else None

    async def count_user_usage(self, voucher_id: str, user_id: str) -> int:
        result = await self.session.execute(
            select(func.count(VoucherUsageModel.id)).where(
                VoucherUsageModel.voucher_id == voucher_id,
                VoucherUsageModel.user_id == user_id,
            )
        )
        return int(result.scalar() or 0)

    async def try_increment_usage(self, voucher_id: str) -> bool:
        """单条条件 UPDATE，名额用尽时 rowcount 为 0"""
        result = await self.session.execute(
            update(VoucherModel)
            .where(
                VoucherModel.id == voucher_id,
                or_(
                    VoucherModel.usage_limit.is_(None),
                    VoucherModel.usage_limit <= 0,
                    VoucherModel.usage_count < VoucherModel.usage_limit,
                ),
            )
            .values(usage_count=VoucherModel.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount > 0:
            return True
        logger.info("voucher_usage_exhausted", voucher_id=voucher_id)
        return False

    async def add_usage(self, usage: VoucherUsage) -> VoucherUsage:
        db_usage = VoucherUsageModel(
            voucher_id=usage.voucher_id,
            user_id=usage.user_id,
            order_id=usage.order_id,
            discount_amount=usage.discount_amount,
            created_at=usage.created_at,
        )
        self.session.add(db_usage)
        await self.session.flush()
        logger.info(
            "voucher_usage_recorded",
            voucher_id=usage.voucher_id,
            order_id=usage.order_id,
            discount_amount=str(usage.discount_amount),
        )
        return VoucherUsage(
            id=str(db_usage.id),
            voucher_id=db_usage.voucher_id,
            user_id=db_usage.user_id,
            order_id=db_usage.order_id,
            discount_amount=usage.discount_amount,
            created_at=db_usage.created_at,
        )


class SQLAlchemyMemberTierRepository(MemberTierRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_current_tier(self, user_id: str) -> Optional[str]:
        result = await self.session.execute(
            select(MemberProgressModel.current_tier).where(MemberProgressModel.user_id == user_id)
        )
        return result.scalar_one_or_none()
