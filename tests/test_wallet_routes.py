import hashlib
import hmac
import json

import pytest

from wallet_service.core.security import sign_razorpay_payment
from wallet_service.services import gateway
from wallet_service.services.limits import get_limiter

pytestmark = pytest.mark.asyncio


@pytest.fixture
def login(client, cookies_for):
    def _login(user):
        client.cookies.clear()
        client.cookies.update(cookies_for(user))
        return client

    return _login


async def test_requires_session(client):
    r = await client.get("/v1/wallet")
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "UNAUTHORIZED"

    client.cookies.set("wallet_session", "garbage")
    r = await client.get("/v1/wallet")
    assert r.status_code == 401


async def test_stale_session_version_rejected(login, user):
    client = login(user)
    user.session_version = 1
    await user.save()
    r = await client.get("/v1/wallet")
    assert r.status_code == 401
    assert r.json()["error"]["message"] == "Session invalidated"


async def test_summary_creates_empty_wallet(login, user):
    r = await login(user).get("/v1/wallet")
    assert r.status_code == 200
    assert r.json() == {"balance": 0, "currency": "INR", "total_spent": 0, "total_topups": 0}


async def test_topup_charge_and_history(login, user):
    client = login(user)
    r = await client.post("/v1/wallet/topup/test", json={"amount": 500})
    assert r.status_code == 200
    assert r.json()["new_balance"] == 500

    r = await client.post("/v1/wallet/interview/charge", json={"interview_type": "System design"})
    assert r.status_code == 200
    assert r.json()["charged"] == 100
    assert r.json()["new_balance"] == 400

    r = await client.get("/v1/wallet/transactions", params={"limit": 1})
    body = r.json()
    assert body["total"] == 2
    assert body["pages"] == 2
    assert body["items"][0]["type"] == "interview_charge"
    assert body["items"][0]["amount"] == -100
    assert body["items"][0]["balance_after"] == 400

    r = await client.get("/v1/wallet/transactions", params={"type": "topup"})
    assert [t["amount"] for t in r.json()["items"]] == [500]


async def test_charge_with_insufficient_funds(login, user):
    r = await login(user).post("/v1/wallet/interview/charge", json={})
    assert r.status_code == 400
    error = r.json()["error"]
    assert error["code"] == "INSUFFICIENT_FUNDS"
    assert error["details"] == {"balance": 0, "required": 100, "shortfall": 100}
    assert "request_id" in r.json()


async def test_interview_charge_global_limit(login, user, admin):
    await get_limiter().set_limits({"mockInterview": 1})
    client = login(user)
    await client.post("/v1/wallet/topup/test", json={"amount": 1000})

    assert (await client.post("/v1/wallet/interview/charge", json={})).status_code == 200
    r = await client.post("/v1/wallet/interview/charge", json={})
    assert r.status_code == 429
    assert r.json()["error"]["code"] == "LIMIT_EXCEEDED"
    assert (await client.get("/v1/wallet")).json()["balance"] == 900

    client = login(admin)
    await client.post("/v1/wallet/topup/test", json={"amount": 500})
    assert (await client.post("/v1/wallet/interview/charge", json={})).status_code == 200


async def test_unlock_feature(login, user):
    client = login(user)
    await client.post("/v1/wallet/topup/test", json={"amount": 100})

    r = await client.post("/v1/wallet/unlock-feature", json={"feature": "adaptiveRevision"})
    assert r.status_code == 200
    assert r.json()["charged"] == 60
    assert r.json()["new_balance"] == 40

    r = await client.post("/v1/wallet/unlock-feature", json={"feature": "teleport"})
    assert r.status_code == 400

    r = await client.post("/v1/wallet/unlock-feature", json={"feature": "mentorCircle"})
    assert r.json()["error"]["code"] == "INSUFFICIENT_FUNDS"


async def test_check_coupon(login, user, make_coupon):
    await make_coupon()
    client = login(user)

    r = await client.post("/v1/wallet/check-coupon", json={"code": "save10", "amount": 1000})
    assert r.status_code == 200
    body = r.json()
    assert body["valid"] is True
    assert body["discount"] == 50.0
    assert body["final_amount"] == 950.0

    r = await client.post("/v1/wallet/check-coupon", json={"code": "SAVE10", "amount": 50})
    assert r.json()["valid"] is False
    assert r.json()["reason"] == "below_min_purchase"

    r = await client.post("/v1/wallet/check-coupon", json={"code": "NOPE", "amount": 50})
    assert r.status_code == 404


async def test_request_validation_error(login, user):
    r = await login(user).post("/v1/wallet/topup/create-order", json={"amount": 0})
    assert r.status_code == 422
    assert r.json()["error"]["code"] == "VALIDATION_ERROR"


async def test_gateway_topup_flow(login, user, make_coupon, monkeypatch):
    async def fake_create_order(amount_paise, currency, receipt, notes):
        return {"id": "order_route_1", "amount": amount_paise, "currency": currency}

    monkeypatch.setattr(gateway, "create_order", fake_create_order)
    await make_coupon()
    client = login(user)

    r = await client.post("/v1/wallet/topup/create-order", json={"amount": 1000, "coupon_code": "SAVE10"})
    assert r.status_code == 200
    assert r.json()["amount"] == 95000

    payload = {
        "order_id": "order_route_1",
        "payment_id": "pay_route_1",
        "signature": sign_razorpay_payment("order_route_1", "pay_route_1", "rzp_test_secret"),
    }
    r = await client.post("/v1/wallet/topup/verify", json=payload)
    assert r.status_code == 200
    assert r.json()["new_balance"] == 1000

    r = await client.post("/v1/wallet/topup/verify", json={**payload, "signature": "forged"})
    assert r.status_code == 400


async def test_full_discount_route(login, user, make_coupon):
    await make_coupon(code="FREE100", discount_value=100, max_discount=None, min_purchase=0)
    r = await login(user).post("/v1/wallet/topup/create-order", json={"amount": 200, "coupon_code": "FREE100"})
    assert r.json()["instant_success"] is True
    assert r.json()["new_balance"] == 200


async def test_webhook_route(client, user, monkeypatch):
    async def fake_create_order(amount_paise, currency, receipt, notes):
        return {"id": "order_hook_1", "amount": amount_paise, "currency": currency}

    monkeypatch.setattr(gateway, "create_order", fake_create_order)
    from wallet_service.services import topups
    await topups.create_topup_order(str(user.id), 400)

    raw = json.dumps({
        "event": "payment.captured",
        "payload": {"payment": {"entity": {"id": "pay_hook_1", "order_id": "order_hook_1"}}},
    }).encode()
    sig = hmac.new(b"whsec_test", raw, hashlib.sha256).hexdigest()

    r = await client.post("/v1/payments/webhook", content=raw, headers={"X-Razorpay-Signature": "nope"})
    assert r.status_code == 400
    r = await client.post("/v1/payments/webhook", content=raw, headers={"X-Razorpay-Signature": sig})
    assert r.status_code == 200

    from wallet_service.services import ledger
    assert (await ledger.get_wallet(str(user.id))).balance == 400


async def test_webhook_route_with_null_payload(client):
    raw = json.dumps({"event": "payment.captured", "payload": None}).encode()
    sig = hmac.new(b"whsec_test", raw, hashlib.sha256).hexdigest()
    r = await client.post("/v1/payments/webhook", content=raw, headers={"X-Razorpay-Signature": sig})
    assert r.status_code == 200
