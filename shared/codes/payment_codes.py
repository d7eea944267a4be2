"""
Payment specific codes and gateway status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    RATE_LIMITED = 60004


# Gateway transaction_status -> internal trigger name (see domain.order.state_machine.Trigger)
GATEWAY_STATUS_TO_TRIGGER = {
    "midtrans": {
        "capture": "payment_captured",
        "settlement": "payment_captured",
        "pending": "payment_pending",
        "deny": "payment_failed",
        "cancel": "payment_failed",
        "expire": "payment_expired",
    },
}
