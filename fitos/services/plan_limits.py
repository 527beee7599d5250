"""
Plan Limits

User quotas per tenant:
- system tenant (platform operator): unlimited
- individual tenant: exactly one user
- business tenant: staff roles count against the plan's `users` limit,
  CLIENT against `clients`, each raised by purchased extra slots

A limit of -1 means unlimited.
"""
from dataclasses import dataclass, asdict
from typing import Any, Dict
import logging
import re
from sqlalchemy import func
from sqlalchemy.orm import Session

from fitos.cache import cache_get, cache_set, invalidate_tenant, make_key
from fitos.core.exceptions import ConflictError, InvalidInputError, PlanLimitExceeded
from fitos.core.permissions import STAFF_ROLES
from fitos.core.plans import UNLIMITED, find_plan, is_unlimited
from fitos.models.tenant import Tenant, TenantType
from fitos.models.user import User, UserRole

logger = logging.getLogger(__name__)

USAGE_CACHE_TTL = 300

SUBDOMAIN_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]{1,61})[a-z0-9]$")

RESERVED_SUBDOMAINS = frozenset({
    "www", "api", "app", "admin", "mail", "ftp", "static", "cdn",
    "dashboard", "support", "help", "status", "blog", "docs",
    "super-admin", "fitos",
})


@dataclass
class LimitCheck:
    allowed: bool
    current: int
    limit: int
    available: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def limit_bucket(role: UserRole) -> str:
    """Which plan limit a role counts against."""
    return "clients" if role == UserRole.CLIENT else "users"


def _extra_slots_for(tenant: Tenant, bucket: str) -> int:
    extra = tenant.extra_slots or {}
    if bucket == "clients":
        return int(extra.get(UserRole.CLIENT.value, 0))
    return sum(int(extra.get(role.value, 0)) for role in STAFF_ROLES)


def get_limits(tenant: Tenant) -> Dict[str, int]:
    """Plan limits for users and clients, extra slots included."""
    if tenant.tenant_type == TenantType.SYSTEM:
        return {"users": UNLIMITED, "clients": UNLIMITED}
    if tenant.tenant_type == TenantType.INDIVIDUAL:
        return {"users": 1, "clients": 0}

    plan = find_plan(tenant.plan) or find_plan("starter")
    limits = {}
    for bucket in ("users", "clients"):
        base = plan["limits"][bucket]
        limits[bucket] = UNLIMITED if is_unlimited(base) else base + _extra_slots_for(tenant, bucket)
    return limits


def count_users(db: Session, tenant_id: str) -> Dict[str, int]:
    """User count per bucket: {"users": staff, "clients": CLIENT, "total": all}."""
    rows = (
        db.query(User.role, func.count(User.id))
        .filter(User.tenant_id == tenant_id)
        .group_by(User.role)
        .all()
    )
    by_role = {role: count for role, count in rows}
    staff = sum(by_role.get(role, 0) for role in STAFF_ROLES)
    clients = by_role.get(UserRole.CLIENT, 0)
    return {"users": staff, "clients": clients, "total": sum(by_role.values())}


def check_user_limit(db: Session, tenant: Tenant, role: UserRole) -> LimitCheck:
    """Whether one more user with `role` fits in the tenant's plan."""
    if tenant.tenant_type == TenantType.SYSTEM:
        return LimitCheck(allowed=True, current=0, limit=UNLIMITED, available=UNLIMITED)

    counts = count_users(db, tenant.id)

    if tenant.tenant_type == TenantType.INDIVIDUAL:
        current = counts["total"]
        return LimitCheck(
            allowed=current < 1,
            current=current,
            limit=1,
            available=max(0, 1 - current),
        )

    bucket = limit_bucket(role)
    limit = get_limits(tenant)[bucket]
    current = counts[bucket]
    if is_unlimited(limit):
        return LimitCheck(allowed=True, current=current, limit=UNLIMITED, available=UNLIMITED)
    return LimitCheck(
        allowed=current < limit,
        current=current,
        limit=limit,
        available=max(0, limit - current),
    )


def enforce_user_limit(db: Session, tenant: Tenant, role: UserRole) -> None:
    """Raise PlanLimitExceeded when a user with `role` can't be added."""
    check = check_user_limit(db, tenant, role)
    if not check.allowed:
        logger.info(
            f"Plan limit reached for tenant {tenant.slug}: {role.value}",
            extra={"tenant_id": tenant.id}
        )
        raise PlanLimitExceeded(limit_bucket(role), check.limit, check.current)


def add_extra_slots(db: Session, tenant: Tenant, role: UserRole, quantity: int) -> Dict[str, int]:
    """Buy extra slots for a role. Individual tenants can't have extras."""
    if tenant.tenant_type == TenantType.INDIVIDUAL:
        raise InvalidInputError("Individual accounts cannot have extra slots")
    if quantity <= 0:
        raise InvalidInputError("Quantity must be positive")

    slots = dict(tenant.extra_slots or {})
    slots[role.value] = int(slots.get(role.value, 0)) + quantity
    # Reassign so SQLAlchemy sees the JSON change
    tenant.extra_slots = slots
    db.commit()
    invalidate_tenant(tenant.id)

    logger.info(f"Added {quantity} extra {role.value} slot(s) to tenant {tenant.slug}", extra={"tenant_id": tenant.id})
    return slots


def usage_stats(db: Session, tenant: Tenant) -> Dict[str, Any]:
    """Current user counts against limits, cached for a few minutes."""
    key = make_key("tenant", tenant.id, "usage")
    cached = cache_get(key)
    if cached:
        return cached

    counts = count_users(db, tenant.id)
    limits = get_limits(tenant)
    stats = {
        "tenant_id": tenant.id,
        "plan": tenant.plan,
        "tenant_type": tenant.tenant_type,
        "users": {"current": counts["users"], "limit": limits["users"]},
        "clients": {"current": counts["clients"], "limit": limits["clients"]},
        "total_users": counts["total"],
        "extra_slots": dict(tenant.extra_slots or {}),
    }
    cache_set(key, stats, ttl=USAGE_CACHE_TTL)
    return stats


def validate_subdomain(subdomain: str) -> None:
    if not SUBDOMAIN_PATTERN.match(subdomain or ""):
        raise InvalidInputError(
            "Subdomain must be 3-63 characters of lowercase letters, digits and hyphens"
        )
    if subdomain in RESERVED_SUBDOMAINS:
        raise InvalidInputError(f"Subdomain '{subdomain}' is reserved")


def convert_to_business(db: Session, tenant: Tenant, subdomain: str) -> Tenant:
    """
    Turn an individual account into a business tenant.

    The tenant gets a subdomain and moves to the starter plan.
    """
    if tenant.tenant_type != TenantType.INDIVIDUAL:
        raise InvalidInputError("Only individual accounts can be converted to business")
    if tenant.subdomain:
        raise InvalidInputError("Tenant already has a subdomain")

    validate_subdomain(subdomain)

    taken = db.query(Tenant).filter(
        (Tenant.subdomain == subdomain) | (Tenant.slug == subdomain)
    ).first()
    if taken and taken.id != tenant.id:
        raise ConflictError("Subdomain already in use")

    plan = find_plan("starter")
    tenant.tenant_type = TenantType.BUSINESS
    tenant.subdomain = subdomain
    tenant.plan = plan["id"]
    tenant.ads_enabled = plan["ads_enabled"]
    db.commit()
    db.refresh(tenant)
    invalidate_tenant(tenant.id)

    logger.info(f"Tenant {tenant.slug} converted to business ({subdomain})", extra={"tenant_id": tenant.id})
    return tenant
