"""
订单领域事件

状态迁移提交后发布到订单事件频道，下游（后台页面、通知）据此刷新，
领域层不依赖任何基础设施。
"""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class OrderEvent:
    order_id: str
    order_number: str
    user_id: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def event_type(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        data = asdict(self)
        data["occurred_at"] = self.occurred_at.isoformat()
        data["event_type"] = self.event_type
        return data


@dataclass
class OrderPlaced(OrderEvent):
    total_amount: str = ""
    voucher_id: Optional[str] = None


@dataclass
class OrderTransitioned(OrderEvent):
    trigger: str = ""
    from_status: str = ""
    to_status: str = ""
    from_payment_status: str = ""
    to_payment_status: str = ""
