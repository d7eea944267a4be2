"""
优惠券/核销/会员等级数据库模型
"""
from sqlalchemy import (
    Boolean, Column, Integer, String, Numeric, DateTime, Text, JSON,
    CheckConstraint, ForeignKey, UniqueConstraint
)
from datetime import datetime, timezone

from .base import Base


class VoucherModel(Base):
    __tablename__ = "vouchers"

    id = Column(String(64), primary_key=True)
    code = Column(String(64), unique=True, nullable=False, comment="券码（大写）")
    description = Column(Text, nullable=True)
    discount_type = Column(String(16), nullable=False, comment="percentage/fixed")
    discount_value = Column(Numeric(precision=15, scale=2), nullable=False)
    min_purchase = Column(Numeric(precision=15, scale=2), nullable=True)
    max_discount = Column(Numeric(precision=15, scale=2), nullable=True, comment="仅百分比券生效")
    usage_limit = Column(Integer, nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)
    user_usage_limit = Column(Integer, nullable=True)
    valid_from = Column(DateTime(timezone=True), nullable=True)
    valid_until = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    allowed_tiers = Column(JSON, nullable=True, comment="允许的会员等级，空表示不限")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("usage_limit IS NULL OR usage_limit <= 0 OR usage_count <= usage_limit", name="ck_vouchers_usage_within_limit"),
    )

    def __repr__(self):
        return f"<VoucherModel(code='{self.code}', usage={self.usage_count}/{self.usage_limit})>"


class VoucherUsageModel(Base):
    """核销记录，只增不删"""
    __tablename__ = "voucher_usage"

    id = Column(Integer, primary_key=True, autoincrement=True)
    voucher_id = Column(String(64), ForeignKey("vouchers.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    order_id = Column(String(64), ForeignKey("orders.id"), nullable=False)
    discount_amount = Column(Numeric(precision=15, scale=2), nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("voucher_id", "user_id", "order_id", name="uq_voucher_usage_triple"),
    )


class MemberProgressModel(Base):
    """会员等级（由会员系统维护，本服务只读）"""
    __tablename__ = "member_progress"

    user_id = Column(String(64), primary_key=True)
    current_tier = Column(String(32), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
