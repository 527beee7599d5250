"""
Shared pytest fixtures.

Every test gets a fresh SQLite database (tables created before, dropped
after). Redis-backed features are switched off through the environment,
and the payment gateways run in mock mode because no credentials are set.

Fixture overview
----------------
db              session on the test database
client          FastAPI TestClient
make_tenant     factory for tenants
make_user       factory for users (password: PASSWORD)
auth_headers    Bearer + X-Tenant-Slug headers for a user
tenant, owner   a starter-plan business tenant and its OWNER
super_admin     SUPER_ADMIN of the system tenant
"""
import os
import tempfile

_TEST_DIR = tempfile.mkdtemp(prefix="fitos-tests-")

os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DIR, 'fitos.db')}"
os.environ["ENVIRONMENT"] = "test"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["CACHE_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"
for _name in (
    "STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET",
    "MERCADOPAGO_ACCESS_TOKEN", "MERCADOPAGO_WEBHOOK_SECRET",
    "VAPID_PUBLIC_KEY", "VAPID_PRIVATE_KEY",
):
    os.environ[_name] = ""

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import fitos.models  # noqa: E402,F401
from fitos.config import get_settings  # noqa: E402
from fitos.core.plans import find_plan  # noqa: E402
from fitos.core.security import get_password_hash  # noqa: E402
from fitos.database import Base, SessionLocal, engine  # noqa: E402
from fitos.main import app  # noqa: E402
from fitos.models.tenant import Tenant, TenantType  # noqa: E402
from fitos.models.user import User, UserRole, UserStatus  # noqa: E402
from fitos.services import auth as auth_service  # noqa: E402

PASSWORD = "Str0ngPass!"
_PASSWORD_HASH = get_password_hash(PASSWORD)


@pytest.fixture(autouse=True)
def database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def make_tenant(db):
    def factory(
        name="Acme Gym",
        slug="acme",
        plan="starter",
        tenant_type=TenantType.BUSINESS,
        subdomain=None,
        is_active=True,
        extra_slots=None,
    ):
        plan_info = find_plan(plan)
        tenant = Tenant(
            name=name,
            slug=slug,
            subdomain=subdomain,
            tenant_type=tenant_type,
            plan=plan,
            ads_enabled=plan_info["ads_enabled"],
            is_active=is_active,
            admin_email=f"admin@{slug}.com",
            extra_slots=extra_slots or {},
        )
        db.add(tenant)
        db.commit()
        db.refresh(tenant)
        return tenant

    return factory


@pytest.fixture
def make_user(db):
    def factory(tenant, email, role=UserRole.CLIENT, status=UserStatus.ACTIVE, first_name="Test"):
        user = User(
            tenant_id=tenant.id,
            email=email,
            hashed_password=_PASSWORD_HASH,
            first_name=first_name,
            last_name="User",
            role=role,
            status=status,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return factory


@pytest.fixture
def auth_headers(db):
    """Start a session for `user` and return headers for the API."""
    def factory(user, tenant_slug=None):
        tenant = db.get(Tenant, user.tenant_id)
        result = auth_service.login(db, user.email, PASSWORD, tenant.slug)
        return {
            "Authorization": f"Bearer {result.access_token}",
            "X-Tenant-Slug": tenant_slug or tenant.slug,
        }

    return factory


@pytest.fixture
def tenant(make_tenant):
    return make_tenant()


@pytest.fixture
def owner(make_user, tenant):
    return make_user(tenant, "owner@acme.com", role=UserRole.OWNER)


@pytest.fixture
def owner_headers(auth_headers, owner):
    return auth_headers(owner)


@pytest.fixture
def system_tenant(make_tenant):
    return make_tenant(name="FitOS", slug="fitos", plan="enterprise", tenant_type=TenantType.SYSTEM)


@pytest.fixture
def super_admin(make_user, system_tenant):
    return make_user(system_tenant, "root@fitos.io", role=UserRole.SUPER_ADMIN)


@pytest.fixture
def admin_headers(auth_headers, super_admin):
    """Platform admin credentials; /api/v1/admin needs no tenant header."""
    headers = auth_headers(super_admin)
    headers.pop("X-Tenant-Slug")
    return headers
