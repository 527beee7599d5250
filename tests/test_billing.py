import hashlib
import hmac
import json
import time

import pytest

from fitos.core.exceptions import WebhookSignatureError
from fitos.models.billing import Invoice, Subscription
from fitos.models.tenant import Tenant, TenantType
from fitos.models.user import UserRole
from fitos.services import payments

STRIPE_SECRET = "whsec_test_secret"
MP_SECRET = "mp_test_secret"


def _stripe_header(payload: bytes, secret: str = STRIPE_SECRET, timestamp: int = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signature = hmac.new(
        secret.encode(), f"{timestamp}.".encode() + payload, hashlib.sha256
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


def _mp_headers(data_id: str, request_id: str = "req-1", secret: str = MP_SECRET) -> dict:
    ts = str(int(time.time()))
    manifest = f"id:{data_id};request-id:{request_id};ts:{ts};"
    signature = hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()
    return {"x-signature": f"ts={ts},v1={signature}", "x-request-id": request_id}


@pytest.fixture
def webhook_secrets(settings, monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", STRIPE_SECRET)
    monkeypatch.setattr(settings, "MERCADOPAGO_WEBHOOK_SECRET", MP_SECRET)


def _subscribe(client, headers, provider="stripe", plan_id="professional"):
    response = client.post(
        "/api/v1/billing/subscribe",
        headers=headers,
        json={"plan_id": plan_id, "billing_cycle": "monthly", "provider": provider},
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_plans_are_public(client):
    response = client.get("/api/v1/billing/plans")

    assert response.status_code == 200
    assert [plan["id"] for plan in response.json()] == ["individual", "starter", "professional", "enterprise"]


def test_subscription_overview_without_subscription(client, owner_headers):
    response = client.get("/api/v1/billing/subscription", headers=owner_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["subscription"] is None
    assert body["plan"]["id"] == "starter"
    assert body["usage"]["users"]["current"] == 1


def test_stripe_subscription_is_active_with_open_invoice(client, db, tenant, owner_headers):
    body = _subscribe(client, owner_headers)

    assert body["subscription"]["status"] == "active"
    assert body["subscription"]["plan_id"] == "professional"
    assert body["invoice"]["status"] == "open"
    assert float(body["invoice"]["amount"]) == pytest.approx(199.90)
    assert body["payment"]["provider"] == "stripe"

    db.expire_all()
    refreshed = db.get(Tenant, tenant.id)
    assert refreshed.plan == "professional"
    assert refreshed.stripe_customer_id.startswith("cus_mock_")


def test_mercadopago_subscription_waits_for_pix(client, tenant, owner_headers):
    body = _subscribe(client, owner_headers, provider="mercadopago")

    assert body["subscription"]["status"] == "pending"
    assert body["payment"]["qr_code"]
    assert body["payment"]["payment_id"].startswith("mp_mock_")
    assert body["invoice"]["provider_reference"] == body["payment"]["payment_id"]


def test_second_subscription_conflicts(client, owner_headers):
    _subscribe(client, owner_headers)

    response = client.post(
        "/api/v1/billing/subscribe",
        headers=owner_headers,
        json={"plan_id": "enterprise"},
    )

    assert response.status_code == 409


def test_individual_tenant_cannot_subscribe(client, make_tenant, make_user, auth_headers):
    solo = make_tenant(name="Solo", slug="solo", plan="individual", tenant_type=TenantType.INDIVIDUAL)
    person = make_user(solo, "solo@acme.com", role=UserRole.OWNER)

    response = client.post(
        "/api/v1/billing/subscribe",
        headers=auth_headers(person),
        json={"plan_id": "starter"},
    )

    assert response.status_code == 400


def test_only_owner_subscribes(client, tenant, make_user, auth_headers):
    admin = make_user(tenant, "admin@acme.com", role=UserRole.ADMIN)

    response = client.post("/api/v1/billing/subscribe", headers=auth_headers(admin), json={"plan_id": "starter"})

    assert response.status_code == 403


def test_change_plan_upgrade_and_downgrade(client, db, tenant, owner_headers):
    _subscribe(client, owner_headers, plan_id="starter")

    upgrade = client.post("/api/v1/billing/change-plan", headers=owner_headers, json={"plan_id": "enterprise"})
    assert upgrade.status_code == 200
    assert upgrade.json()["direction"] == "upgrade"
    assert upgrade.json()["previous_plan"] == "starter"

    db.expire_all()
    assert db.get(Tenant, tenant.id).ads_enabled is False

    downgrade = client.post("/api/v1/billing/change-plan", headers=owner_headers, json={"plan_id": "professional"})
    assert downgrade.json()["direction"] == "downgrade"

    same = client.post("/api/v1/billing/change-plan", headers=owner_headers, json={"plan_id": "professional"})
    assert same.status_code == 400


def test_change_plan_without_subscription(client, owner_headers):
    response = client.post("/api/v1/billing/change-plan", headers=owner_headers, json={"plan_id": "enterprise"})

    assert response.status_code == 404
    assert response.json()["type"] == "subscription_not_found"


def test_cancel_at_period_end(client, owner_headers):
    _subscribe(client, owner_headers)

    response = client.post("/api/v1/billing/cancel", headers=owner_headers, json={"reason": "Too expensive"})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "active"
    assert body["cancel_at_period_end"] is True
    assert body["cancel_reason"] == "Too expensive"


def test_cancel_immediately_voids_open_invoices(client, db, owner_headers):
    subscribed = _subscribe(client, owner_headers)

    response = client.post("/api/v1/billing/cancel", headers=owner_headers, json={"immediately": True})

    assert response.json()["status"] == "canceled"
    invoice = db.get(Invoice, subscribed["invoice"]["id"])
    assert invoice.status == "void"


def test_invoices_are_paginated(client, owner_headers):
    _subscribe(client, owner_headers)

    response = client.get("/api/v1/billing/invoices", headers=owner_headers, params={"limit": 1})

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert len(body["invoices"]) == 1
    assert body["has_more"] is False


def test_stripe_webhook_marks_invoice_paid(client, db, owner_headers, webhook_secrets):
    subscribed = _subscribe(client, owner_headers)
    subscription_id = subscribed["subscription"]["id"]
    provider_id = db.get(Subscription, subscription_id).provider_subscription_id
    payload = json.dumps({
        "type": "invoice.payment_succeeded",
        "data": {"object": {"id": "in_123", "subscription": provider_id, "amount_paid": 19990}},
    }).encode()

    response = client.post(
        "/api/v1/billing/webhooks/stripe",
        content=payload,
        headers={"Stripe-Signature": _stripe_header(payload), "Content-Type": "application/json"},
    )

    assert response.status_code == 200
    assert response.json() == {"received": True, "result": "processed"}
    db.expire_all()
    assert db.get(Invoice, subscribed["invoice"]["id"]).status == "paid"


def test_stripe_webhook_payment_failed_sets_past_due(client, db, owner_headers, webhook_secrets):
    subscribed = _subscribe(client, owner_headers)
    subscription = db.get(Subscription, subscribed["subscription"]["id"])
    payload = json.dumps({
        "type": "invoice.payment_failed",
        "data": {"object": {"subscription": subscription.provider_subscription_id}},
    }).encode()

    client.post("/api/v1/billing/webhooks/stripe", content=payload, headers={"Stripe-Signature": _stripe_header(payload)})

    db.expire_all()
    assert db.get(Subscription, subscription.id).status == "past_due"
    assert db.get(Invoice, subscribed["invoice"]["id"]).status == "failed"


def test_stripe_webhook_subscription_deleted(client, db, owner_headers, webhook_secrets):
    subscribed = _subscribe(client, owner_headers)
    subscription = db.get(Subscription, subscribed["subscription"]["id"])
    payload = json.dumps({
        "type": "customer.subscription.deleted",
        "data": {"object": {"id": subscription.provider_subscription_id}},
    }).encode()

    client.post("/api/v1/billing/webhooks/stripe", content=payload, headers={"Stripe-Signature": _stripe_header(payload)})

    db.expire_all()
    assert db.get(Subscription, subscription.id).status == "canceled"


def test_stripe_webhook_rejects_bad_signature(client, webhook_secrets):
    payload = b'{"type": "invoice.payment_succeeded"}'

    response = client.post(
        "/api/v1/billing/webhooks/stripe",
        content=payload,
        headers={"Stripe-Signature": _stripe_header(payload, secret="wrong")},
    )

    assert response.status_code == 400
    assert response.json()["type"] == "invalid_webhook_signature"


def test_stripe_webhook_refused_without_secret(client):
    payload = b'{"type": "invoice.payment_succeeded"}'

    response = client.post(
        "/api/v1/billing/webhooks/stripe",
        content=payload,
        headers={"Stripe-Signature": _stripe_header(payload)},
    )

    assert response.status_code == 400


def test_stripe_webhook_ignores_unknown_events(client, webhook_secrets):
    payload = b'{"type": "charge.refunded", "data": {"object": {}}}'

    response = client.post(
        "/api/v1/billing/webhooks/stripe",
        content=payload,
        headers={"Stripe-Signature": _stripe_header(payload)},
    )

    assert response.json()["result"] == "ignored"


def test_mercadopago_approved_payment_activates(client, db, owner_headers, webhook_secrets):
    subscribed = _subscribe(client, owner_headers, provider="mercadopago")
    payment_id = subscribed["payment"]["payment_id"]

    response = client.post(
        "/api/v1/billing/webhooks/mercadopago",
        json={"type": "payment", "data": {"id": payment_id}},
        headers=_mp_headers(payment_id),
    )

    assert response.status_code == 200
    assert response.json()["result"] == "processed"
    db.expire_all()
    assert db.get(Subscription, subscribed["subscription"]["id"]).status == "active"
    assert db.get(Invoice, subscribed["invoice"]["id"]).status == "paid"


def test_mercadopago_rejected_payment_fails_invoice(client, db, owner_headers, webhook_secrets, monkeypatch):
    subscribed = _subscribe(client, owner_headers, provider="mercadopago")
    payment_id = subscribed["payment"]["payment_id"]
    monkeypatch.setattr(
        payments.MercadoPagoGateway,
        "get_payment",
        lambda self, pid: {"id": pid, "status": "rejected"},
    )

    client.post(
        "/api/v1/billing/webhooks/mercadopago",
        json={"type": "payment", "data": {"id": payment_id}},
        headers=_mp_headers(payment_id),
    )

    db.expire_all()
    assert db.get(Invoice, subscribed["invoice"]["id"]).status == "failed"
    assert db.get(Subscription, subscribed["subscription"]["id"]).status == "pending"


def test_mercadopago_bad_signature(client, webhook_secrets):
    response = client.post(
        "/api/v1/billing/webhooks/mercadopago",
        json={"type": "payment", "data": {"id": "123"}},
        headers=_mp_headers("123", secret="wrong"),
    )

    assert response.status_code == 400


def test_mercadopago_other_topics_are_ignored(client, webhook_secrets):
    response = client.post(
        "/api/v1/billing/webhooks/mercadopago",
        json={"type": "merchant_order", "data": {"id": "555"}},
        headers=_mp_headers("555"),
    )

    assert response.json() == {"received": True, "result": "ignored"}


@pytest.mark.parametrize("payload", [b"[]", b"\"invoice.payment_succeeded\"", b"{\"type\": \"invoice.paid\", \"data\": \"x\"}"])
def test_stripe_webhook_rejects_signed_non_object(client, webhook_secrets, payload):
    response = client.post(
        "/api/v1/billing/webhooks/stripe", content=payload, headers={"Stripe-Signature": _stripe_header(payload)}
    )

    assert response.status_code == 400
    assert response.json()["type"] == "invalid_input"


def test_stripe_webhook_signs_raw_bytes(client, webhook_secrets):
    payload = b"\xff\xfe"

    unsigned = client.post(
        "/api/v1/billing/webhooks/stripe", content=payload, headers={"Stripe-Signature": _stripe_header(b"{}")}
    )
    signed = client.post(
        "/api/v1/billing/webhooks/stripe", content=payload, headers={"Stripe-Signature": _stripe_header(payload)}
    )

    assert unsigned.status_code == 400
    assert unsigned.json()["type"] == "invalid_webhook_signature"
    assert signed.status_code == 400
    assert signed.json()["type"] == "invalid_input"


@pytest.mark.parametrize("payload", [b"[]", b"42", b"{\"type\": \"payment\", \"data\": \"123\"}", b"not json"])
def test_mercadopago_rejects_malformed_body(client, webhook_secrets, payload):
    response = client.post("/api/v1/billing/webhooks/mercadopago", content=payload, headers=_mp_headers("123"))

    assert response.status_code == 400
    assert response.json()["type"] == "invalid_input"


class TestSignatures:
    def test_stripe_timestamp_tolerance(self):
        payload = b"{}"
        old = int(time.time()) - 600
        with pytest.raises(WebhookSignatureError):
            payments.verify_stripe_signature(payload, _stripe_header(payload, timestamp=old), STRIPE_SECRET)

    def test_stripe_accepts_any_matching_v1(self):
        payload = b"{}"
        header = _stripe_header(payload) + ",v1=deadbeef"
        payments.verify_stripe_signature(payload, header, STRIPE_SECRET)

    def test_stripe_malformed_header(self):
        with pytest.raises(WebhookSignatureError):
            payments.verify_stripe_signature(b"{}", "garbage", STRIPE_SECRET)

    def test_mercadopago_manifest(self):
        headers = _mp_headers("987")
        payments.verify_mercadopago_signature(headers["x-signature"], "req-1", "987", MP_SECRET)
        with pytest.raises(WebhookSignatureError):
            payments.verify_mercadopago_signature(headers["x-signature"], "req-2", "987", MP_SECRET)
