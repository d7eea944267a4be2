import hashlib
import json

import httpx
import pytest
from pydantic import ValidationError

from application.dtos.payments import PaymentNotification
from domain.common.exceptions import WebhookSignatureException
from infrastructure.external.payments import get_payment_gateway
from infrastructure.external.payments.exceptions import PaymentProviderError, PaymentRecoverableError
from infrastructure.external.payments.midtrans_client import MidtransClient, compute_signature


SERVER_KEY = "SB-Mid-server-abc"


def _client(handler) -> MidtransClient:
    return MidtransClient(
        server_key=SERVER_KEY,
        base_url="https://api.sandbox.midtrans.com/",
        retry={"max": 1, "base": 0.01},
        transport=httpx.MockTransport(handler),
    )


def test_signature_is_sha512_of_concatenated_fields():
    expected = hashlib.sha512(b"ORDER-1" + b"200" + b"150000.00" + SERVER_KEY.encode()).hexdigest()
    assert compute_signature("ORDER-1", "200", "150000.00", SERVER_KEY) == expected


def test_verify_notification_accepts_valid_signature_case_insensitively():
    client = MidtransClient(server_key=SERVER_KEY)
    sig = compute_signature("ORDER-1", "200", "150000.00", SERVER_KEY)
    notification = PaymentNotification(
        order_id="ORDER-1",
        transaction_status="settlement",
        status_code="200",
        gross_amount="150000.00",
        signature_key=sig.upper(),
    )
    client.verify_notification(notification)

    wrong_key = notification.model_copy(update={"signature_key": compute_signature("ORDER-1", "200", "150000.00", "other")})
    with pytest.raises(WebhookSignatureException):
        client.verify_notification(wrong_key)


@pytest.mark.parametrize("amount", ["NaN", "Infinity", "-inf", "abc"])
def test_notification_rejects_non_numeric_amounts(amount):
    with pytest.raises(ValidationError):
        PaymentNotification(
            order_id="ORDER-1",
            transaction_status="settlement",
            status_code="200",
            gross_amount=amount,
            signature_key="x",
        )


def test_missing_server_key_is_a_provider_error():
    client = MidtransClient(server_key="")
    notification = PaymentNotification(
        order_id="ORDER-1",
        transaction_status="settlement",
        status_code="200",
        gross_amount="1.00",
        signature_key="x",
    )
    with pytest.raises(PaymentProviderError):
        client.verify_notification(notification)


def test_factory_returns_midtrans_and_rejects_unknown():
    assert isinstance(get_payment_gateway("midtrans"), MidtransClient)
    with pytest.raises(ValueError):
        get_payment_gateway("paypal")


@pytest.mark.asyncio
async def test_status_query_uses_basic_auth_and_parses_body():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json={
            "status_code": "200",
            "transaction_status": "Settlement",
            "gross_amount": "150000.00",
            "payment_type": "gopay",
            "fraud_status": "accept",
        })

    client = _client(handler)
    status = await client.get_transaction_status("order-1")
    await client.aclose()

    assert seen["url"] == "https://api.sandbox.midtrans.com/v2/order-1/status"
    assert seen["auth"].startswith("Basic ")
    assert status.found
    assert status.transaction_status == "settlement"
    assert status.payment_type == "gopay"


@pytest.mark.asyncio
async def test_status_query_not_found_variants():
    responses = iter([
        httpx.Response(404, json={"status_code": "404"}),
        httpx.Response(200, content=json.dumps({"status_code": "404", "status_message": "Transaction doesn't exist."})),
    ])
    client = _client(lambda request: next(responses))

    for _ in range(2):
        status = await client.get_transaction_status("order-1")
        assert not status.found
        assert status.transaction_status is None


@pytest.mark.asyncio
async def test_status_query_error_classes():
    client = _client(lambda request: httpx.Response(503))
    with pytest.raises(PaymentRecoverableError):
        await client.get_transaction_status("order-1")

    client = _client(lambda request: httpx.Response(401, json={"status_code": "401"}))
    with pytest.raises(PaymentProviderError):
        await client.get_transaction_status("order-1")


@pytest.mark.asyncio
async def test_transport_errors_are_retried_then_recoverable():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("boom", request=request)

    client = _client(handler)
    with pytest.raises(PaymentRecoverableError):
        await client.get_transaction_status("order-1")
    assert len(calls) == 2
