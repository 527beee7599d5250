"""
Tenant Endpoints

The current tenant's profile and usage. Platform-wide tenant management
lives under /admin/tenants.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from fitos.database import get_db
from fitos.models.tenant import Tenant
from fitos.models.user import User, UserRole
from fitos.schemas.tenant import TenantResponse, TenantUpdate, UsageResponse
from fitos.api.deps import ensure_tenant_access, get_current_tenant, get_current_user, require_roles
from fitos.services import plan_limits
from fitos.services import tenants as tenant_service
from fitos.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/tenants", tags=["tenants"])


@router.get("/current", response_model=TenantResponse)
async def get_current(
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant)
):
    return tenant


@router.patch("/current", response_model=TenantResponse)
async def update_current(
    payload: TenantUpdate,
    current_user: User = Depends(require_roles(UserRole.OWNER, UserRole.ADMIN)),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    tenant = tenant_service.update_tenant(db, tenant, payload.model_dump(exclude_unset=True))
    logger.info(f"Tenant updated by {current_user.id}", extra={"tenant_id": tenant.id})
    return tenant


@router.get("/current/usage", response_model=UsageResponse)
async def get_usage(
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """Users and clients against the plan limits."""
    return plan_limits.usage_stats(db, tenant)


@router.get("/{tenant_id}", response_model=TenantResponse)
async def get_tenant(
    tenant_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Path-scoped read.

    TENANT_ISOLATION: only your own tenant, unless SUPER_ADMIN.
    """
    ensure_tenant_access(current_user, tenant_id)
    return tenant_service.get_tenant(db, tenant_id)
