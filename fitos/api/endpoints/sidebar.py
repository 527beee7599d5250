"""
Sidebar Endpoints

The menu for the current user, and the tenant's customization of it.
Plan-wide defaults are managed under /admin/sidebar.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from fitos.database import get_db
from fitos.models.tenant import Tenant
from fitos.models.user import User, UserRole
from fitos.schemas.sidebar import CustomizationRequest, CustomizationResponse, SidebarResponse
from fitos.api.deps import get_current_tenant, get_current_user, require_roles
from fitos.services import sidebar as sidebar_service

router = APIRouter(prefix="/sidebar", tags=["sidebar"])


@router.get("", response_model=SidebarResponse)
async def get_sidebar(
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    items = sidebar_service.get_sidebar_for_tenant(db, tenant, current_user.role)
    return {"plan": tenant.plan, "role": current_user.role.value, "items": items}


@router.get("/customization", response_model=CustomizationResponse)
async def get_customization(
    current_user: User = Depends(require_roles(UserRole.OWNER, UserRole.ADMIN)),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    customization = sidebar_service.get_customization(db, tenant.id)
    if customization is None:
        return {
            "tenant_id": tenant.id,
            "hidden_items": [],
            "renamed_items": {},
            "item_order": {},
            "updated_at": tenant.updated_at,
        }
    return customization


@router.put("/customization", response_model=CustomizationResponse)
async def save_customization(
    payload: CustomizationRequest,
    current_user: User = Depends(require_roles(UserRole.OWNER, UserRole.ADMIN)),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """Hide, rename and reorder items for everyone in the tenant."""
    return sidebar_service.save_customization(
        db, tenant.id, payload.hidden_items, payload.renamed_items, payload.item_order
    )
