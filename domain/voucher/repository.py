"""
优惠券仓储接口
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import Voucher, VoucherUsage


class VoucherRepository(ABC):
    """优惠券仓储抽象接口"""

    @abstractmethod
    async def get_by_code(self, code: str) -> Optional[Voucher]:
        """根据（已规范化的）券码获取优惠券"""
        pass

    @abstractmethod
    async def count_user_usage(self, voucher_id: str, user_id: str) -> int:
        """用户对该券的历史核销次数"""
        pass

    @abstractmethod
    async def try_increment_usage(self, voucher_id: str) -> bool:
        """
        条件自增 usage_count

        单条 UPDATE ... WHERE usage_limit 为空或 <= 0（不限）OR usage_count < usage_limit，
        返回是否抢到名额。
        """
        pass

    @abstractmethod
    async def add_usage(self, usage: VoucherUsage) -> VoucherUsage:
        """记录核销（与订单创建同一事务）"""
        pass


class MemberTierRepository(ABC):
    """会员等级只读查询"""

    @abstractmethod
    async def get_current_tier(self, user_id: str) -> Optional[str]:
        """返回用户当前等级；没有会员记录时返回 None"""
        pass
