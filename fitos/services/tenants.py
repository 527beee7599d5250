"""
Tenant administration: self-service updates for OWNER/ADMIN and the
platform operator's create / suspend / activate actions.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
import logging
from sqlalchemy.orm import Session

from fitos.cache import invalidate_tenant
from fitos.core.exceptions import ConflictError, InvalidInputError, TenantNotFoundError
from fitos.core.plans import PAID_PLAN_IDS, PLAN_IDS, find_plan
from fitos.core.security import get_password_hash
from fitos.models.billing import PaymentProvider, Subscription, SubscriptionStatus
from fitos.models.tenant import Tenant, TenantType
from fitos.models.user import User, UserRole, UserStatus
from fitos.services import auth as auth_service
from fitos.services import plan_limits
from fitos.services.billing import BILLING_CYCLES, period_end

logger = logging.getLogger(__name__)

# Fields an OWNER/ADMIN may change on their own tenant
SELF_SERVICE_FIELDS = ("name", "admin_email", "billing_email")


def get_tenant(db: Session, tenant_id: str) -> Tenant:
    tenant = db.get(Tenant, tenant_id)
    if tenant is None:
        raise TenantNotFoundError(tenant_id)
    return tenant


def update_tenant(db: Session, tenant: Tenant, data: Dict[str, Any]) -> Tenant:
    for key, value in data.items():
        if key not in SELF_SERVICE_FIELDS:
            raise InvalidInputError(f"Field '{key}' cannot be changed")
        setattr(tenant, key, value)
    db.commit()
    db.refresh(tenant)
    invalidate_tenant(tenant.id)
    return tenant


def list_tenants(
    db: Session,
    tenant_type: Optional[str] = None,
    is_active: Optional[bool] = None,
    skip: int = 0,
    limit: int = 100,
) -> Tuple[List[Tenant], int]:
    query = db.query(Tenant)
    if tenant_type:
        query = query.filter(Tenant.tenant_type == tenant_type)
    if is_active is not None:
        query = query.filter(Tenant.is_active.is_(is_active))
    total = query.count()
    tenants = query.order_by(Tenant.created_at.desc()).offset(skip).limit(limit).all()
    return tenants, total


def create_tenant(
    db: Session,
    name: str,
    slug: str,
    plan_id: str,
    owner_email: str,
    owner_password: str,
    owner_first_name: Optional[str] = None,
    owner_last_name: Optional[str] = None,
    subdomain: Optional[str] = None,
    billing_cycle: str = "monthly",
) -> Tuple[Tenant, User, Optional[Subscription]]:
    """
    Create a business tenant with its OWNER.

    Paid plans get a subscription with provider "none" that is active right
    away; the operator bills such tenants outside the payment gateways.
    """
    if plan_id not in PLAN_IDS or plan_id == "individual":
        raise InvalidInputError(f"Plan '{plan_id}' is not available for business tenants")
    if billing_cycle not in BILLING_CYCLES:
        raise InvalidInputError(f"Unknown billing cycle: {billing_cycle}")

    slug = auth_service.slugify(slug)
    if db.query(Tenant.id).filter((Tenant.slug == slug) | (Tenant.subdomain == slug)).first():
        raise ConflictError(f"Tenant slug already in use: {slug}")
    if subdomain:
        plan_limits.validate_subdomain(subdomain)
        if db.query(Tenant.id).filter((Tenant.subdomain == subdomain) | (Tenant.slug == subdomain)).first():
            raise ConflictError("Subdomain already in use")
    auth_service.ensure_password_policy(owner_password)

    plan = find_plan(plan_id)
    owner_email = owner_email.lower()
    tenant = Tenant(
        name=name,
        slug=slug,
        subdomain=subdomain,
        tenant_type=TenantType.BUSINESS,
        plan=plan_id,
        ads_enabled=plan["ads_enabled"],
        admin_email=owner_email,
        billing_email=owner_email,
        extra_slots={},
    )
    db.add(tenant)
    db.flush()

    owner = User(
        tenant_id=tenant.id,
        email=owner_email,
        hashed_password=get_password_hash(owner_password),
        first_name=owner_first_name,
        last_name=owner_last_name,
        role=UserRole.OWNER,
        status=UserStatus.ACTIVE,
        email_verified=True,
    )
    db.add(owner)

    subscription = None
    if plan_id in PAID_PLAN_IDS:
        now = datetime.utcnow()
        subscription = Subscription(
            tenant_id=tenant.id,
            plan_id=plan_id,
            billing_cycle=billing_cycle,
            status=SubscriptionStatus.ACTIVE,
            provider=PaymentProvider.NONE,
            current_period_start=now,
            current_period_end=period_end(now, billing_cycle),
        )
        db.add(subscription)

    db.commit()
    db.refresh(tenant)
    db.refresh(owner)

    logger.info(f"Tenant created by platform admin: {tenant.slug}", extra={"tenant_id": tenant.id})
    return tenant, owner, subscription


def set_active(db: Session, tenant: Tenant, active: bool) -> Tenant:
    """Activate or suspend a tenant. Suspension logs everyone out."""
    if tenant.is_system and not active:
        raise InvalidInputError("The system tenant cannot be suspended")

    tenant.is_active = active
    db.commit()
    if not active:
        revoked = auth_service.revoke_tenant_sessions(db, tenant.id)
        logger.warning(f"Tenant {tenant.slug} suspended; {revoked} session(s) revoked", extra={"tenant_id": tenant.id})
    else:
        logger.info(f"Tenant {tenant.slug} activated", extra={"tenant_id": tenant.id})
    db.refresh(tenant)
    invalidate_tenant(tenant.id)
    return tenant
