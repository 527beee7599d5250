from fitos.models.billing import Subscription
from fitos.models.tenant import TenantType
from fitos.models.user import UserRole

from tests.conftest import PASSWORD


def _tenant_payload(**overrides):
    payload = {
        "name": "Iron Temple",
        "slug": "iron-temple",
        "plan": "professional",
        "owner_email": "Boss@IronTemple.com",
        "owner_password": PASSWORD,
        "owner_first_name": "Rui",
    }
    payload.update(overrides)
    return payload


def test_list_tenants(client, admin_headers, tenant):
    response = client.get("/api/v1/admin/tenants", headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["total"] == 2
    business = client.get("/api/v1/admin/tenants", headers=admin_headers, params={"tenant_type": "business"}).json()
    assert [item["slug"] for item in business["tenants"]] == ["acme"]


def test_create_paid_tenant_with_subscription(client, db, admin_headers):
    response = client.post("/api/v1/admin/tenants", headers=admin_headers, json=_tenant_payload())

    assert response.status_code == 201
    body = response.json()
    assert body["tenant"]["plan"] == "professional"
    assert body["tenant"]["admin_email"] == "boss@irontemple.com"
    subscription = db.get(Subscription, body["subscription_id"])
    assert subscription.provider == "none"
    assert subscription.status == "active"

    login = client.post(
        "/api/v1/auth/login",
        json={"email": "boss@irontemple.com", "password": PASSWORD, "tenant_slug": "iron-temple"},
    )
    assert login.status_code == 200


def test_create_tenant_conflicts_on_slug(client, admin_headers, tenant):
    response = client.post("/api/v1/admin/tenants", headers=admin_headers, json=_tenant_payload(slug="acme"))

    assert response.status_code == 409


def test_individual_plan_not_allowed_for_business(client, admin_headers):
    response = client.post("/api/v1/admin/tenants", headers=admin_headers, json=_tenant_payload(plan="individual"))

    assert response.status_code == 400


def test_suspend_revokes_sessions_and_activate_restores(client, admin_headers, tenant, owner, owner_headers):
    suspended = client.post(f"/api/v1/admin/tenants/{tenant.id}/suspend", headers=admin_headers)

    assert suspended.json()["is_active"] is False
    assert client.get("/api/v1/users/me", headers=owner_headers).status_code == 403

    client.post(f"/api/v1/admin/tenants/{tenant.id}/activate", headers=admin_headers)
    # Sessions stay revoked after reactivation
    assert client.get("/api/v1/users/me", headers=owner_headers).status_code == 401


def test_system_tenant_cannot_be_suspended(client, admin_headers, system_tenant):
    response = client.post(f"/api/v1/admin/tenants/{system_tenant.id}/suspend", headers=admin_headers)

    assert response.status_code == 400


def test_convert_individual_tenant(client, admin_headers, make_tenant):
    solo = make_tenant(name="Solo", slug="solo", plan="individual", tenant_type=TenantType.INDIVIDUAL)

    response = client.post(
        f"/api/v1/admin/tenants/{solo.id}/convert-to-business",
        headers=admin_headers,
        json={"subdomain": "solo-fit"},
    )

    assert response.status_code == 200
    assert response.json()["tenant_type"] == "business"
    assert response.json()["subdomain"] == "solo-fit"


def test_extra_slots_and_usage(client, admin_headers, tenant, owner):
    response = client.post(
        f"/api/v1/admin/tenants/{tenant.id}/extra-slots",
        headers=admin_headers,
        json={"role": "TRAINER", "quantity": 3},
    )

    assert response.json()["extra_slots"] == {"TRAINER": 3}
    usage = client.get(f"/api/v1/admin/tenants/{tenant.id}/usage", headers=admin_headers).json()
    assert usage["users"] == {"current": 1, "limit": 8}


def test_unknown_tenant(client, admin_headers):
    response = client.get("/api/v1/admin/tenants/does-not-exist", headers=admin_headers)

    assert response.status_code == 404


def test_tenant_admins_are_not_platform_admins(client, tenant, make_user, auth_headers):
    admin = make_user(tenant, "admin@acme.com", role=UserRole.ADMIN)
    headers = {"Authorization": auth_headers(admin)["Authorization"]}

    assert client.get("/api/v1/admin/tenants", headers=headers).status_code == 403
