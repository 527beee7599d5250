from fitos.models.user import UserRole

from tests.conftest import PASSWORD


def _new_user(email, role="CLIENT"):
    return {"email": email, "password": PASSWORD, "first_name": "New", "role": role}


def test_owner_creates_trainer(client, owner_headers):
    response = client.post("/api/v1/users", headers=owner_headers, json=_new_user("coach@acme.com", "TRAINER"))

    assert response.status_code == 201
    body = response.json()
    assert body["role"] == "TRAINER"
    assert body["status"] == "ACTIVE"
    assert "hashed_password" not in body


def test_duplicate_email_conflicts(client, owner_headers):
    response = client.post("/api/v1/users", headers=owner_headers, json=_new_user("owner@acme.com"))

    assert response.status_code == 409


def test_admin_cannot_create_owner(client, tenant, make_user, auth_headers):
    admin = make_user(tenant, "admin@acme.com", role=UserRole.ADMIN)

    response = client.post("/api/v1/users", headers=auth_headers(admin), json=_new_user("boss@acme.com", "OWNER"))

    assert response.status_code == 403


def test_nobody_creates_super_admin(client, owner_headers):
    response = client.post("/api/v1/users", headers=owner_headers, json=_new_user("root@acme.com", "SUPER_ADMIN"))

    assert response.status_code == 403


def test_trainer_cannot_create_users(client, tenant, make_user, auth_headers):
    trainer = make_user(tenant, "coach@acme.com", role=UserRole.TRAINER)

    response = client.post("/api/v1/users", headers=auth_headers(trainer), json=_new_user("member@acme.com"))

    assert response.status_code == 403
    assert response.json()["type"] == "insufficient_permissions"


def test_staff_limit_of_starter_plan(client, tenant, owner_headers, make_user):
    # Starter allows 5 staff; the owner is one of them
    for index in range(4):
        make_user(tenant, f"coach{index}@acme.com", role=UserRole.TRAINER)

    response = client.post("/api/v1/users", headers=owner_headers, json=_new_user("extra@acme.com", "TRAINER"))

    assert response.status_code == 402
    assert response.json()["type"] == "plan_limit_exceeded"

    # Clients have their own bucket
    member = client.post("/api/v1/users", headers=owner_headers, json=_new_user("member@acme.com"))
    assert member.status_code == 201


def test_extra_slots_raise_the_limit(client, make_tenant, make_user, auth_headers):
    gym = make_tenant(name="Big Gym", slug="big", extra_slots={"TRAINER": 1})
    owner = make_user(gym, "owner@big.com", role=UserRole.OWNER)
    for index in range(4):
        make_user(gym, f"coach{index}@big.com", role=UserRole.TRAINER)

    response = client.post("/api/v1/users", headers=auth_headers(owner), json=_new_user("sixth@big.com", "TRAINER"))

    assert response.status_code == 201


def test_enterprise_plan_is_unlimited(client, make_tenant, make_user, auth_headers):
    gym = make_tenant(name="Chain", slug="chain", plan="enterprise")
    owner = make_user(gym, "owner@chain.com", role=UserRole.OWNER)
    for index in range(20):
        make_user(gym, f"coach{index}@chain.com", role=UserRole.TRAINER)

    response = client.post("/api/v1/users", headers=auth_headers(owner), json=_new_user("more@chain.com", "TRAINER"))

    assert response.status_code == 201


def test_list_users_is_scoped_to_tenant(client, tenant, make_tenant, make_user, owner_headers):
    make_user(tenant, "member@acme.com")
    rival = make_tenant(name="Rival", slug="rival")
    make_user(rival, "spy@rival.com")

    response = client.get("/api/v1/users", headers=owner_headers)

    assert response.status_code == 200
    emails = {user["email"] for user in response.json()["users"]}
    assert emails == {"owner@acme.com", "member@acme.com"}
    assert response.json()["total"] == 2


def test_list_users_filters_by_role(client, tenant, make_user, owner_headers):
    make_user(tenant, "member@acme.com")
    make_user(tenant, "coach@acme.com", role=UserRole.TRAINER)

    response = client.get("/api/v1/users", headers=owner_headers, params={"role": "TRAINER"})

    assert [user["email"] for user in response.json()["users"]] == ["coach@acme.com"]


def test_clients_cannot_list_users(client, tenant, make_user, auth_headers):
    member = make_user(tenant, "member@acme.com")

    response = client.get("/api/v1/users", headers=auth_headers(member))

    assert response.status_code == 403


def test_user_from_other_tenant_is_not_found(client, make_tenant, make_user, owner_headers):
    rival = make_tenant(name="Rival", slug="rival")
    spy = make_user(rival, "spy@rival.com")

    response = client.get(f"/api/v1/users/{spy.id}", headers=owner_headers)

    assert response.status_code == 404


def test_client_reads_only_self(client, tenant, owner, make_user, auth_headers):
    member = make_user(tenant, "member@acme.com")
    headers = auth_headers(member)

    assert client.get(f"/api/v1/users/{member.id}", headers=headers).status_code == 200
    assert client.get(f"/api/v1/users/{owner.id}", headers=headers).status_code == 403


def test_user_cannot_change_own_role(client, tenant, make_user, auth_headers):
    admin = make_user(tenant, "admin@acme.com", role=UserRole.ADMIN)

    response = client.patch(f"/api/v1/users/{admin.id}", headers=auth_headers(admin), json={"role": "OWNER"})

    assert response.status_code == 403


def test_user_updates_own_profile(client, tenant, make_user, auth_headers):
    member = make_user(tenant, "member@acme.com")

    response = client.patch(
        f"/api/v1/users/{member.id}",
        headers=auth_headers(member),
        json={"first_name": "Joana", "sidebar_view": "standard"},
    )

    assert response.status_code == 200
    assert response.json()["first_name"] == "Joana"


def test_admin_cannot_modify_owner(client, tenant, owner, make_user, auth_headers):
    admin = make_user(tenant, "admin@acme.com", role=UserRole.ADMIN)

    response = client.patch(f"/api/v1/users/{owner.id}", headers=auth_headers(admin), json={"first_name": "X"})

    assert response.status_code == 403


def test_suspending_a_user_signs_them_out(client, tenant, owner_headers, make_user, auth_headers):
    member = make_user(tenant, "member@acme.com")
    member_headers = auth_headers(member)

    response = client.patch(f"/api/v1/users/{member.id}", headers=owner_headers, json={"status": "SUSPENDED"})

    assert response.status_code == 200
    assert response.json()["status"] == "SUSPENDED"
    assert client.get("/api/v1/users/me", headers=member_headers).status_code == 401


def test_promoting_client_to_staff_checks_staff_limit(client, tenant, owner_headers, make_user):
    for index in range(4):
        make_user(tenant, f"coach{index}@acme.com", role=UserRole.TRAINER)
    member = make_user(tenant, "member@acme.com")

    response = client.patch(f"/api/v1/users/{member.id}", headers=owner_headers, json={"role": "TRAINER"})

    assert response.status_code == 402


def test_delete_user(client, tenant, owner_headers, make_user):
    member = make_user(tenant, "member@acme.com")

    response = client.delete(f"/api/v1/users/{member.id}", headers=owner_headers)

    assert response.status_code == 204
    assert client.get(f"/api/v1/users/{member.id}", headers=owner_headers).status_code == 404


def test_cannot_delete_self(client, owner, owner_headers):
    response = client.delete(f"/api/v1/users/{owner.id}", headers=owner_headers)

    assert response.status_code == 400
