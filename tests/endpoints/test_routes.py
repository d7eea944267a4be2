import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import jwt
import pytest
from fastapi.testclient import TestClient

from api.dependencies import (
    get_order_service,
    get_payment_expiry_service,
    get_payment_webhook_service,
    get_voucher_service,
)
from application.services.order_service import OrderApplicationService
from application.services.payment_expiry_service import PaymentExpiryService
from application.services.payment_webhook_service import PaymentWebhookService
from application.services.voucher_service import VoucherApplicationService
from core.config import settings
from core.settings import payment_settings
from domain.order.entity import PaymentStatus
from domain.voucher.entity import DiscountType, Voucher
from infrastructure.rate_limit import InMemoryIdempotencyStore, InMemorySlidingWindowRateLimiter
from main import app
from tests.fakes import (
    FakeUnitOfWork,
    InMemoryStore,
    StubGateway,
    make_order,
    signed_notification,
    uow_factory,
)


def _token(sub="user-1", **claims):
    payload = {"sub": sub, "exp": datetime.now(timezone.utc) + timedelta(minutes=5), **claims}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def _auth(**claims):
    return {"Authorization": f"Bearer {_token(**claims)}"}


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def client(store):
    gateway = StubGateway()
    factory = uow_factory(store)
    limiter = InMemorySlidingWindowRateLimiter(3, 60)

    app.dependency_overrides[get_order_service] = lambda: OrderApplicationService(factory, gateway=gateway)
    app.dependency_overrides[get_voucher_service] = lambda: VoucherApplicationService(factory)
    app.dependency_overrides[get_payment_expiry_service] = lambda: PaymentExpiryService(uow_factory=factory)
    app.dependency_overrides[get_payment_webhook_service] = lambda: PaymentWebhookService(
        uow_factory=factory,
        gateway=gateway,
        rate_limiter=limiter,
        idempotency=InMemoryIdempotencyStore(),
    )
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["data"] == {"status": "healthy"}


def test_routes_registered():
    paths = {r.path for r in app.routes}
    assert "/api/v1/payments/webhooks/midtrans" in paths
    assert "/api/v1/payments/{order_id}/check" in paths
    assert "/api/v1/vouchers/apply" in paths
    assert "/api/v1/orders/{order_id}/cancellation/approve" in paths


def test_place_order_requires_authentication(client):
    body = {"items": [{"product_name": "Kaos", "price": "50000", "quantity": 1}]}
    resp = client.post("/api/v1/orders", json=body)
    assert resp.status_code == 401
    assert resp.headers.get("WWW-Authenticate") == "Bearer"

    resp = client.post("/api/v1/orders", json=body, headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


def test_place_and_fetch_order(client, store):
    body = {
        "items": [{"product_id": "p-1", "product_name": "Kaos", "price": "50000", "quantity": 2}],
        "shipping_cost": "10000",
    }
    resp = client.post("/api/v1/orders", json=body, headers=_auth())
    assert resp.status_code == 201
    data = resp.json()["data"]
    assert Decimal(data["total_amount"]) == Decimal("110000")
    assert data["status"] == "awaiting_payment"

    fetched = client.get(f"/api/v1/orders/{data['id']}", headers=_auth())
    assert fetched.status_code == 200
    assert client.get(f"/api/v1/orders/{data['id']}", headers=_auth(sub="user-2")).status_code == 403
    assert client.get("/api/v1/orders/missing", headers=_auth()).status_code == 404


def test_admin_routes_require_admin_role(client, store):
    store.orders["order-1"] = make_order("order-1")
    assert client.post("/api/v1/orders/order-1/ship", headers=_auth()).status_code == 403

    # unpaid orders cannot be shipped
    resp = client.post("/api/v1/orders/order-1/ship", headers=_auth(sub="admin-1", roles=["admin"]))
    assert resp.status_code == 409

    resp = client.post("/api/v1/orders/order-1/cancellation/approve", headers=_auth(sub="admin-1", is_admin=True))
    assert resp.status_code == 200
    assert resp.json()["data"]["order"]["status"] == "cancelled"


def test_webhook_applies_settlement(client, store):
    store.orders["order-1"] = make_order("order-1")
    resp = client.post(
        "/api/v1/payments/webhooks/midtrans",
        json=signed_notification("order-1", "settlement").model_dump(),
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["outcome"] == "applied"
    assert store.orders["order-1"].payment_status == PaymentStatus.PAID


def test_webhook_rejects_bad_signature(client, store):
    store.orders["order-1"] = make_order("order-1")
    payload = signed_notification("order-1", "settlement").model_dump()
    payload["signature_key"] = "f" * 128
    resp = client.post("/api/v1/payments/webhooks/midtrans", json=payload)
    assert resp.status_code == 401
    assert "WWW-Authenticate" not in resp.headers
    assert store.orders["order-1"].payment_status == PaymentStatus.PENDING


def test_webhook_malformed_body(client):
    resp = client.post("/api/v1/payments/webhooks/midtrans", json={"order_id": "order-1"})
    assert resp.status_code == 422


def test_webhook_rate_limit_ignores_forwarded_for_from_untrusted_peer(client):
    payload = signed_notification("payment_notif_test_1", "settlement").model_dump()
    url = "/api/v1/payments/webhooks/midtrans"

    statuses = [
        client.post(url, json=payload, headers={"X-Forwarded-For": f"203.0.113.{i}"}).status_code
        for i in range(4)
    ]
    assert statuses == [200, 200, 200, 429]


def test_webhook_rate_limited_per_source_behind_trusted_proxy(client, monkeypatch):
    monkeypatch.setattr(settings, "TRUSTED_PROXIES", ["testclient", "10.0.0.0/8"])
    payload = signed_notification("payment_notif_test_1", "settlement").model_dump()
    url = "/api/v1/payments/webhooks/midtrans"

    for i in range(3):
        # a caller-supplied left-most hop does not change the bucket
        headers = {"X-Forwarded-For": f"198.51.100.{i}, 203.0.113.7, 10.1.2.3"}
        assert client.post(url, json=payload, headers=headers).status_code == 200

    resp = client.post(url, json=payload, headers={"X-Forwarded-For": "203.0.113.7"})
    assert resp.status_code == 429
    assert int(resp.headers["Retry-After"]) >= 1

    other = client.post(url, json=payload, headers={"X-Forwarded-For": "203.0.113.8"})
    assert other.status_code == 200


def test_webhook_timeout_returns_503_and_allows_redelivery(client, store, monkeypatch):
    class SlowUnitOfWork(FakeUnitOfWork):
        delay = 5.0

        async def __aenter__(self):
            await asyncio.sleep(self.delay)
            return self

    def slow_factory(readonly: bool = False) -> SlowUnitOfWork:
        return SlowUnitOfWork(store, readonly=readonly)

    idempotency = InMemoryIdempotencyStore()
    app.dependency_overrides[get_payment_webhook_service] = lambda: PaymentWebhookService(
        uow_factory=slow_factory,
        gateway=StubGateway(),
        rate_limiter=InMemorySlidingWindowRateLimiter(10, 60),
        idempotency=idempotency,
    )
    monkeypatch.setattr(payment_settings.webhook, "response_timeout_seconds", 0.05)
    store.orders["order-1"] = make_order("order-1")
    payload = signed_notification("order-1", "settlement").model_dump()
    url = "/api/v1/payments/webhooks/midtrans"

    resp = client.post(url, json=payload)
    assert resp.status_code == 503
    assert resp.json()["error"]["details"]["order_id"] == "order-1"
    assert store.orders["order-1"].payment_status == PaymentStatus.PENDING

    # the gateway retry is processed, not swallowed as a duplicate
    SlowUnitOfWork.delay = 0.0
    retry = client.post(url, json=payload)
    assert retry.status_code == 200
    assert retry.json()["data"]["outcome"] == "applied"
    assert store.orders["order-1"].payment_status == PaymentStatus.PAID


def test_payment_check_requires_owner(client, store):
    store.orders["order-1"] = make_order("order-1")
    assert client.post("/api/v1/payments/order-1/check").status_code == 401
    resp = client.post("/api/v1/payments/order-1/check", headers=_auth())
    assert resp.status_code == 200
    assert resp.json()["data"]["payment_status"] == "pending"


def test_voucher_apply(client, store):
    store.vouchers["SAVE10"] = Voucher(
        id="v-1",
        code="SAVE10",
        discount_type=DiscountType.PERCENTAGE,
        discount_value=Decimal("10"),
        min_purchase=Decimal("100000"),
        max_discount=Decimal("50000"),
    )
    resp = client.post("/api/v1/vouchers/apply", json={"code": "save10", "subtotal": "900000"})
    assert resp.status_code == 200
    assert Decimal(resp.json()["data"]["discount"]) == Decimal("50000")

    rejected = client.post("/api/v1/vouchers/apply", json={"code": "SAVE10", "subtotal": "50000"})
    assert rejected.status_code == 400
    assert rejected.json()["error"]["details"]["reason"] == "below_minimum"


def test_expire_unpaid_is_admin_only(client, store):
    store.orders["late"] = make_order("late", deadline=datetime.now(timezone.utc) - timedelta(minutes=1))
    assert client.post("/api/v1/orders/expire-unpaid", headers=_auth()).status_code == 403

    resp = client.post("/api/v1/orders/expire-unpaid", headers=_auth(sub="admin-1", roles=["admin"]))
    assert resp.status_code == 200
    assert resp.json()["data"]["expired_count"] == 1
