"""Infrastructure models package exports."""
from .base import Base, metadata
from .order import OrderModel, OrderItemModel
from .voucher import VoucherModel, VoucherUsageModel, MemberProgressModel

__all__ = [
    "Base",
    "metadata",
    "OrderModel",
    "OrderItemModel",
    "VoucherModel",
    "VoucherUsageModel",
    "MemberProgressModel",
]
