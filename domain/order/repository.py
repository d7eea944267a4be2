"""
订单仓储接口 - 定义订单数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List

from .entity import Order
from .state_machine import OrderState


class OrderRepository(ABC):
    """订单仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """创建订单及其商品快照（同一事务内）"""
        pass

    @abstractmethod
    async def get_by_id(self, order_id: str) -> Optional[Order]:
        """根据ID获取订单（总是读取最新已提交数据）"""
        pass

    @abstractmethod
    async def get_by_order_number(self, order_number: str) -> Optional[Order]:
        """根据订单号获取订单"""
        pass

    @abstractmethod
    async def exists_by_order_number(self, order_number: str) -> bool:
        pass

    @abstractmethod
    async def compare_and_swap(self, order_id: str, expected: OrderState, changes: dict) -> bool:
        """
        原子条件更新

        仅当当前行的状态仍等于 expected 时写入 changes；返回是否写入成功。
        """
        pass

    @abstractmethod
    async def list_expired_unpaid(self, now: datetime, limit: int = 500) -> List[Order]:
        """待支付且支付截止时间早于 now 的订单（按截止时间升序）"""
        pass
