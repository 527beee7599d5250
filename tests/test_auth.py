from datetime import datetime, timedelta

from fitos.models.session import Session
from fitos.models.tenant import Tenant, TenantType
from fitos.models.user import User, UserRole
from fitos.services import auth as auth_service

from tests.conftest import PASSWORD

SIGNUP = "/api/v1/auth/signup"
LOGIN = "/api/v1/auth/login"


def test_signup_without_tenant_creates_individual_account(client, db):
    response = client.post(SIGNUP, json={
        "email": "Maria@Acme.com",
        "password": PASSWORD,
        "first_name": "Maria",
        "last_name": "Silva",
    })

    assert response.status_code == 201
    body = response.json()
    assert body["user"]["email"] == "maria@acme.com"
    assert body["user"]["role"] == "CLIENT"
    assert body["tenant"]["tenant_type"] == "individual"
    assert body["tenant"]["plan"] == "individual"
    assert body["role_redirect"] == "/client/workouts"
    assert body["access_token"]
    assert body["session_token"]
    assert "fitos.session_token" in response.cookies


def test_signup_with_organization_creates_business_owner(client, db):
    response = client.post(SIGNUP, json={
        "email": "boss@ironworks.com",
        "password": PASSWORD,
        "organization_name": "Iron Works Gym",
    })

    assert response.status_code == 201
    body = response.json()
    assert body["user"]["role"] == "OWNER"
    assert body["tenant"]["tenant_type"] == "business"
    assert body["tenant"]["plan"] == "starter"
    assert body["tenant"]["slug"] == "iron-works-gym"
    assert body["role_redirect"] == "/admin/dashboard"


def test_signup_joins_existing_tenant_as_client(client, tenant):
    response = client.post(SIGNUP, json={
        "email": "member@acme.com",
        "password": PASSWORD,
        "tenant_slug": "acme",
    })

    assert response.status_code == 201
    body = response.json()
    assert body["user"]["tenant_id"] == tenant.id
    assert body["user"]["role"] == "CLIENT"


def test_signup_duplicate_email_in_tenant_conflicts(client, owner):
    response = client.post(SIGNUP, json={
        "email": "owner@acme.com",
        "password": PASSWORD,
        "tenant_slug": "acme",
    })

    assert response.status_code == 409
    assert response.json()["type"] == "already_exists"


def test_signup_unknown_tenant(client):
    response = client.post(SIGNUP, json={
        "email": "member@acme.com",
        "password": PASSWORD,
        "tenant_slug": "nowhere",
    })

    assert response.status_code == 404
    assert response.json()["type"] == "tenant_not_found"


def test_signup_rejects_weak_password(client):
    response = client.post(SIGNUP, json={"email": "weak@acme.com", "password": "alllowercase"})

    assert response.status_code == 400
    assert response.json()["type"] == "invalid_input"


def test_login_returns_tokens_and_redirect(client, owner):
    response = client.post(LOGIN, json={"email": "owner@acme.com", "password": PASSWORD})

    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["role_redirect"] == "/admin/dashboard"
    assert body["tenant"]["slug"] == "acme"


def test_login_wrong_password_is_generic(client, owner):
    response = client.post(LOGIN, json={"email": "owner@acme.com", "password": "Wr0ngPassword"})

    assert response.status_code == 401
    assert response.json() == {"detail": "Invalid credentials", "type": "invalid_credentials"}


def test_login_unknown_user_is_generic(client, owner):
    response = client.post(LOGIN, json={"email": "ghost@acme.com", "password": PASSWORD})

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid credentials"


def test_login_needs_tenant_slug_for_shared_email(client, make_tenant, make_user):
    first = make_tenant(name="First", slug="first")
    second = make_tenant(name="Second", slug="second")
    make_user(first, "coach@acme.com", role=UserRole.TRAINER)
    make_user(second, "coach@acme.com", role=UserRole.TRAINER)

    ambiguous = client.post(LOGIN, json={"email": "coach@acme.com", "password": PASSWORD})
    assert ambiguous.status_code == 400

    scoped = client.post(LOGIN, json={"email": "coach@acme.com", "password": PASSWORD, "tenant_slug": "second"})
    assert scoped.status_code == 200
    assert scoped.json()["tenant"]["id"] == second.id


def test_repeated_failures_lock_the_account(client, db, owner, settings):
    for _ in range(settings.MAX_LOGIN_ATTEMPTS - 1):
        response = client.post(LOGIN, json={"email": "owner@acme.com", "password": "Wr0ngPassword"})
        assert response.status_code == 401

    locking = client.post(LOGIN, json={"email": "owner@acme.com", "password": "Wr0ngPassword"})
    assert locking.status_code == 423
    assert locking.json()["type"] == "account_locked"
    assert int(locking.headers["Retry-After"]) == settings.LOCKOUT_MINUTES * 60

    # Even the right password is refused while locked
    locked = client.post(LOGIN, json={"email": "owner@acme.com", "password": PASSWORD})
    assert locked.status_code == 423

    db.expire_all()
    user = db.get(User, owner.id)
    assert user.locked_until is not None


def test_successful_login_resets_failure_counter(client, db, owner):
    client.post(LOGIN, json={"email": "owner@acme.com", "password": "Wr0ngPassword"})
    client.post(LOGIN, json={"email": "owner@acme.com", "password": PASSWORD})

    db.expire_all()
    user = db.get(User, owner.id)
    assert user.failed_login_attempts == 0
    assert user.last_login_at is not None


def test_login_to_suspended_tenant_is_refused(client, make_tenant, make_user):
    closed = make_tenant(name="Closed", slug="closed", is_active=False)
    make_user(closed, "staff@closed.com", role=UserRole.ADMIN)

    response = client.post(LOGIN, json={"email": "staff@closed.com", "password": PASSWORD})

    assert response.status_code == 403
    assert response.json()["type"] == "tenant_inactive"


def test_session_cookie_authenticates(client, owner):
    login = client.post(LOGIN, json={"email": "owner@acme.com", "password": PASSWORD})
    assert login.status_code == 200

    response = client.get("/api/v1/auth/session", headers={"X-Tenant-Slug": "acme"})

    assert response.status_code == 200
    body = response.json()
    assert body["user"]["id"] == owner.id
    assert body["session"]["is_current"] is True


def test_cookie_request_from_untrusted_origin_is_rejected(client, owner):
    client.post(LOGIN, json={"email": "owner@acme.com", "password": PASSWORD})

    response = client.post(
        "/api/v1/auth/refresh",
        headers={"X-Tenant-Slug": "acme", "Origin": "https://evil.example.com"},
    )

    assert response.status_code == 403
    assert response.json()["type"] == "insufficient_permissions"


def test_logout_invalidates_the_access_token(client, owner_headers):
    assert client.get("/api/v1/auth/session", headers=owner_headers).status_code == 200

    logout = client.post("/api/v1/auth/logout", headers=owner_headers)
    assert logout.status_code == 200

    response = client.get("/api/v1/auth/session", headers=owner_headers)
    assert response.status_code == 401
    assert response.json()["type"] == "session_expired"


def test_refresh_issues_new_token_for_same_session(client, owner_headers):
    response = client.post("/api/v1/auth/refresh", headers=owner_headers)

    assert response.status_code == 200
    token = response.json()["access_token"]
    headers = {"Authorization": f"Bearer {token}", "X-Tenant-Slug": "acme"}
    assert client.get("/api/v1/users/me", headers=headers).status_code == 200


def test_invalid_bearer_token(client, tenant):
    response = client.get(
        "/api/v1/users/me",
        headers={"Authorization": "Bearer not-a-jwt", "X-Tenant-Slug": "acme"},
    )

    assert response.status_code == 401


def test_list_and_revoke_other_sessions(client, owner, auth_headers):
    first = auth_headers(owner)
    second = auth_headers(owner)

    listed = client.get("/api/v1/auth/sessions", headers=first)
    assert listed.status_code == 200
    sessions = listed.json()["sessions"]
    assert len(sessions) == 2
    assert sum(1 for item in sessions if item["is_current"]) == 1

    revoked = client.post("/api/v1/auth/sessions/revoke-all", headers=first)
    assert revoked.json() == {"revoked": 1}

    assert client.get("/api/v1/auth/session", headers=first).status_code == 200
    assert client.get("/api/v1/auth/session", headers=second).status_code == 401


def test_expired_session_is_rejected(client, db, owner, owner_headers):
    session = db.query(Session).filter(Session.user_id == owner.id).one()
    session.expires_at = datetime.utcnow() - timedelta(minutes=1)
    db.commit()

    response = client.get("/api/v1/auth/session", headers=owner_headers)

    assert response.status_code == 401
    assert response.json()["type"] == "session_expired"


def test_session_expiry_slides_when_due(db, owner, settings):
    session, _ = auth_service.create_session(db, owner)
    old_expiry = session.expires_at
    later = session.refreshed_at + timedelta(hours=settings.SESSION_UPDATE_AGE_HOURS, minutes=1)

    auth_service.touch_session(db, session, now=later)

    assert session.expires_at > old_expiry
    assert session.refreshed_at == later


def test_session_token_is_stored_hashed(db, owner):
    session, raw_token = auth_service.create_session(db, owner)

    assert session.token_hash != raw_token
    assert len(session.token_hash) == 64


def test_forgot_and_reset_password(client, db, owner, owner_headers, settings, monkeypatch):
    monkeypatch.setattr(settings, "DEBUG", True)

    forgot = client.post("/api/v1/auth/forgot-password", json={"email": "owner@acme.com"})
    assert forgot.status_code == 200
    token = forgot.json()["reset_token"]

    reset = client.post("/api/v1/auth/reset-password", json={"token": token, "new_password": "An0therPass"})
    assert reset.status_code == 200

    # All sessions are revoked by the reset
    assert client.get("/api/v1/auth/session", headers=owner_headers).status_code == 401

    login = client.post(LOGIN, json={"email": "owner@acme.com", "password": "An0therPass"})
    assert login.status_code == 200

    reused = client.post("/api/v1/auth/reset-password", json={"token": token, "new_password": "Y3tAnotherPass"})
    assert reused.status_code == 400


def test_forgot_password_answer_does_not_reveal_accounts(client, owner):
    known = client.post("/api/v1/auth/forgot-password", json={"email": "owner@acme.com"})
    unknown = client.post("/api/v1/auth/forgot-password", json={"email": "nobody@acme.com"})

    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json()
    assert "reset_token" not in known.json()


def test_change_password_revokes_other_sessions(client, owner, auth_headers):
    current = auth_headers(owner)
    other = auth_headers(owner)

    wrong = client.post(
        "/api/v1/auth/change-password",
        headers=current,
        json={"current_password": "Wr0ngPassword", "new_password": "N3wPassword"},
    )
    assert wrong.status_code == 401

    response = client.post(
        "/api/v1/auth/change-password",
        headers=current,
        json={"current_password": PASSWORD, "new_password": "N3wPassword"},
    )
    assert response.status_code == 200
    assert response.json() == {"revoked": 1}
    assert client.get("/api/v1/auth/session", headers=current).status_code == 200
    assert client.get("/api/v1/auth/session", headers=other).status_code == 401


def test_password_strength_is_public(client):
    response = client.post("/api/v1/auth/password-strength", json={"password": "abc"})

    assert response.status_code == 200
    body = response.json()
    assert body["is_valid"] is False
    assert body["errors"]


def test_route_access(client, make_user, tenant, auth_headers):
    trainer = make_user(tenant, "trainer@acme.com", role=UserRole.TRAINER)
    headers = auth_headers(trainer)

    allowed = client.get("/api/v1/auth/route-access", params={"path": "/workouts/123"}, headers=headers)
    assert allowed.json()["allowed"] is True
    assert allowed.json()["redirect"] is None

    denied = client.get("/api/v1/auth/route-access", params={"path": "/admin/settings"}, headers=headers)
    assert denied.json()["allowed"] is False
    assert denied.json()["redirect"] == "/trainer/dashboard"


def test_cleanup_removes_dead_sessions(db, owner):
    live, _ = auth_service.create_session(db, owner)
    dead, _ = auth_service.create_session(db, owner)
    auth_service.revoke_session(db, dead)

    assert auth_service.cleanup_expired_sessions(db) == 1
    db.expire_all()
    assert db.query(Session).count() == 1
    assert db.query(Session).one().id == live.id


def test_signup_individual_tenant_is_limited_to_one_user(client, db):
    client.post(SIGNUP, json={"email": "solo@acme.com", "password": PASSWORD})
    tenant = db.query(Tenant).filter(Tenant.tenant_type == TenantType.INDIVIDUAL).one()

    response = client.post(SIGNUP, json={
        "email": "friend@acme.com",
        "password": PASSWORD,
        "tenant_slug": tenant.slug,
    })

    assert response.status_code == 402
    assert response.json()["type"] == "plan_limit_exceeded"
