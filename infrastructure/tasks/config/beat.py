"""Celery beat schedule configuration.

Keep the structure close to the Celery docs so new periodic jobs can be
copied in directly.
"""
from __future__ import annotations

from core.config import settings

CELERY_BEAT_SCHEDULE = {
    # Drive unpaid orders past their payment deadline to cancelled/expired
    "orders-expire-unpaid": {
        "task": "orders.expire_unpaid",
        "schedule": float(settings.orders.expiry_sweep_interval_seconds),
        "options": {"queue": "default", "expires": settings.orders.expiry_sweep_interval_seconds},
    },
}
