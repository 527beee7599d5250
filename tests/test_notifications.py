from datetime import datetime
from types import SimpleNamespace

import pytest
from pywebpush import WebPushException

from fitos.models.notification import PushSubscription
from fitos.models.user import UserRole
from fitos.services import notifications as push_service

ENDPOINT = "https://push.example.com/device-1"


def _subscription(endpoint=ENDPOINT):
    return {"endpoint": endpoint, "keys": {"p256dh": "BNcRdreALRFXTkOOUHK1EtK2wtaz5Ry4YfYCA", "auth": "tBHItJI5svbpez7KI4CCXg"}}


@pytest.fixture
def vapid(settings, monkeypatch):
    monkeypatch.setattr(settings, "VAPID_PUBLIC_KEY", "public-key")
    monkeypatch.setattr(settings, "VAPID_PRIVATE_KEY", "private-key")


@pytest.fixture
def push_calls(monkeypatch):
    """Replace webpush; endpoints containing 'gone' answer 410, 'broken' answer 500."""
    calls = []

    def fake_webpush(subscription_info, data, vapid_private_key, vapid_claims):
        endpoint = subscription_info["endpoint"]
        calls.append(endpoint)
        if "gone" in endpoint:
            raise WebPushException("Push failed: 410 Gone", response=SimpleNamespace(status_code=410))
        if "broken" in endpoint:
            raise WebPushException("Push failed: 500", response=SimpleNamespace(status_code=500))

    monkeypatch.setattr(push_service, "webpush", fake_webpush)
    return calls


@pytest.fixture
def member(tenant, make_user):
    return make_user(tenant, "member@acme.com")


def test_vapid_key_not_configured(client):
    response = client.get("/api/v1/notifications/vapid-public-key")

    assert response.status_code == 400


def test_vapid_key_is_public(client, vapid):
    response = client.get("/api/v1/notifications/vapid-public-key")

    assert response.json() == {"public_key": "public-key"}


def test_subscribe_and_list(client, owner_headers):
    response = client.post("/api/v1/notifications/subscribe", headers=owner_headers, json=_subscription())

    assert response.status_code == 201
    assert response.json()["endpoint"] == ENDPOINT
    listed = client.get("/api/v1/notifications/subscriptions", headers=owner_headers).json()
    assert [sub["endpoint"] for sub in listed] == [ENDPOINT]


def test_subscribe_requires_https(client, owner_headers):
    response = client.post(
        "/api/v1/notifications/subscribe",
        headers=owner_headers,
        json=_subscription("http://push.example.com/device"),
    )

    assert response.status_code == 400


def test_resubscribing_moves_the_endpoint(client, db, owner_headers, member, auth_headers):
    client.post("/api/v1/notifications/subscribe", headers=owner_headers, json=_subscription())
    client.post("/api/v1/notifications/subscribe", headers=auth_headers(member), json=_subscription())

    rows = db.query(PushSubscription).all()
    assert len(rows) == 1
    assert rows[0].user_id == member.id


def test_unsubscribe_one_or_all(client, owner_headers):
    for index in range(3):
        client.post(
            "/api/v1/notifications/subscribe",
            headers=owner_headers,
            json=_subscription(f"https://push.example.com/device-{index}"),
        )

    one = client.post(
        "/api/v1/notifications/unsubscribe",
        headers=owner_headers,
        json={"endpoint": "https://push.example.com/device-0"},
    )
    rest = client.post("/api/v1/notifications/unsubscribe", headers=owner_headers, json={})

    assert one.json() == {"revoked": 1}
    assert rest.json() == {"revoked": 2}


def test_delivery_without_vapid_keys_fails_everything(client, owner_headers, push_calls):
    client.post("/api/v1/notifications/subscribe", headers=owner_headers, json=_subscription())

    report = client.post("/api/v1/notifications/test", headers=owner_headers).json()

    assert report["sent"] == 0
    assert report["failed"] == 1
    assert report["errors"] == ["VAPID keys not configured"]
    assert push_calls == []


def test_send_removes_gone_endpoints(client, db, owner_headers, member, auth_headers, vapid, push_calls):
    member_headers = auth_headers(member)
    for endpoint in ("https://push.example.com/ok", "https://push.example.com/gone", "https://push.example.com/broken"):
        client.post("/api/v1/notifications/subscribe", headers=member_headers, json=_subscription(endpoint))

    response = client.post(
        "/api/v1/notifications/send",
        headers=owner_headers,
        json={"title": "Class moved", "body": "Spinning starts at 7pm", "user_ids": [member.id]},
    )

    assert response.status_code == 200
    report = response.json()
    assert report["sent"] == 1
    assert report["failed"] == 1
    assert report["removed"] == 1
    assert report["attempted"] == 3
    assert len(push_calls) == 3
    remaining = {row.endpoint for row in db.query(PushSubscription).all()}
    assert remaining == {"https://push.example.com/ok", "https://push.example.com/broken"}


def test_send_by_role_stays_inside_tenant(
    client, tenant, owner_headers, make_tenant, make_user, auth_headers, vapid, push_calls
):
    coach = make_user(tenant, "coach@acme.com", role=UserRole.TRAINER)
    member = make_user(tenant, "member@acme.com")
    rival = make_tenant(name="Rival", slug="rival")
    outsider = make_user(rival, "coach@rival.com", role=UserRole.TRAINER)
    client.post("/api/v1/notifications/subscribe", headers=auth_headers(coach), json=_subscription("https://push.example.com/coach"))
    client.post("/api/v1/notifications/subscribe", headers=auth_headers(member), json=_subscription("https://push.example.com/member"))
    client.post("/api/v1/notifications/subscribe", headers=auth_headers(outsider), json=_subscription("https://push.example.com/rival"))

    report = client.post(
        "/api/v1/notifications/send",
        headers=owner_headers,
        json={"title": "Staff meeting", "body": "Tomorrow 9am", "roles": ["TRAINER"]},
    ).json()

    assert report["sent"] == 1
    assert push_calls == ["https://push.example.com/coach"]


def test_clients_cannot_send(client, member, auth_headers):
    response = client.post(
        "/api/v1/notifications/send",
        headers=auth_headers(member),
        json={"title": "Hi", "body": "Hello"},
    )

    assert response.status_code == 403


def test_payload_builders():
    reminder = push_service.workout_reminder_payload("Leg day", datetime(2030, 5, 1, 7, 30))
    assert reminder["requireInteraction"] is True
    assert reminder["data"]["scheduledTime"] == "2030-05-01T07:30:00"

    message = push_service.direct_message_payload("Ana", "x" * 150, conversation_id="c1")
    assert len(message["body"]) == 100
    assert message["body"].endswith("...")
    assert message["tag"] == "message_c1"

    assert push_service.progress_update_payload("New PR!")["data"]["type"] == "progress_update"


def test_report_attempted_counts_everything():
    report = push_service.DeliveryReport(sent=2, failed=1, removed=3)

    assert report.attempted == 6
    assert report.to_dict()["attempted"] == 6
