"""Small dispatching helpers to decouple Celery from callers."""
from __future__ import annotations

from typing import Optional

from ..config.celery import celery_app


class TaskDispatcher:
    """Internal facade used by infrastructure adapters to schedule tasks."""

    def send_invoice(self, order_id: str, order_number: str, paid_at: str, user_id: Optional[str] = None) -> None:
        """Fire-and-forget invoice delivery for a newly paid order."""
        celery_app.send_task(
            "notifications.send_invoice",
            kwargs={
                "order_id": order_id,
                "order_number": order_number,
                "paid_at": paid_at,
                "user_id": user_id,
            },
        )

