import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest

from application.ports.notifications import InvoiceRequest
from application.services.notification_service import InvoiceNotifier
from infrastructure.external.notifications import get_invoice_dispatcher
from infrastructure.external.notifications.http_dispatcher import (
    SIGNATURE_HEADER,
    HttpInvoiceDispatcher,
    sign_order_id,
)
from infrastructure.external.notifications.log_dispatcher import LogInvoiceDispatcher
from infrastructure.rate_limit import InMemoryIdempotencyStore
from tests.fakes import RecordingDispatcher


PAID_AT = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)


def _request(order_id="order-1", paid_at=PAID_AT):
    return InvoiceRequest(order_id=order_id, order_number="ORD-20261018-ABC123", paid_at=paid_at, user_id="user-1")


@pytest.mark.asyncio
async def test_same_payment_is_invoiced_once():
    dispatcher = RecordingDispatcher()
    notifier = InvoiceNotifier(dispatcher, InMemoryIdempotencyStore())

    assert await notifier.send(_request())
    assert not await notifier.send(_request())
    assert len(dispatcher.requests) == 1


@pytest.mark.asyncio
async def test_failed_dispatch_can_be_retried():
    dispatcher = RecordingDispatcher(fail=True)
    notifier = InvoiceNotifier(dispatcher, InMemoryIdempotencyStore())

    assert not await notifier.send(_request())
    dispatcher.fail = False
    assert await notifier.send(_request())
    assert len(dispatcher.requests) == 1


@pytest.mark.asyncio
async def test_slow_dispatch_times_out():
    notifier = InvoiceNotifier(RecordingDispatcher(delay=0.5), InMemoryIdempotencyStore(), timeout_seconds=0.05)
    assert not await notifier.send(_request())


@pytest.mark.asyncio
async def test_schedule_does_not_block_caller():
    dispatcher = RecordingDispatcher(delay=0.05)
    notifier = InvoiceNotifier(dispatcher, InMemoryIdempotencyStore())

    task = notifier.schedule(_request())
    assert not task.done()
    await notifier.drain(timeout=1)
    assert task.done() and task.result() is True
    assert len(dispatcher.requests) == 1


@pytest.mark.asyncio
async def test_http_dispatcher_signs_order_id():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        seen["signature"] = request.headers.get(SIGNATURE_HEADER)
        return httpx.Response(200, json={"ok": True})

    dispatcher = HttpInvoiceDispatcher(
        "https://storefront.test/api/invoices/send", "internal-secret", transport=httpx.MockTransport(handler)
    )
    await dispatcher.dispatch_invoice(_request())

    assert seen["body"] == {"orderId": "order-1"}
    assert seen["signature"] == sign_order_id("order-1", "internal-secret")
    assert len(seen["signature"]) == 64


@pytest.mark.asyncio
async def test_http_dispatcher_error_status_is_reported_to_notifier():
    dispatcher = HttpInvoiceDispatcher(
        "https://storefront.test/api/invoices/send",
        "internal-secret",
        transport=httpx.MockTransport(lambda request: httpx.Response(500)),
    )
    with pytest.raises(httpx.HTTPStatusError):
        await dispatcher.dispatch_invoice(_request())

    notifier = InvoiceNotifier(dispatcher, InMemoryIdempotencyStore())
    assert not await notifier.send(_request())


def test_dispatcher_factory():
    assert isinstance(get_invoice_dispatcher("log"), LogInvoiceDispatcher)
    with pytest.raises(ValueError):
        get_invoice_dispatcher("carrier-pigeon")


@pytest.mark.asyncio
async def test_log_dispatcher_accepts_request():
    await asyncio.wait_for(LogInvoiceDispatcher().dispatch_invoice(_request()), timeout=1)
