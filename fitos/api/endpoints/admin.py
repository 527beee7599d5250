"""
Platform Admin Endpoints

SUPER_ADMIN only. These routes are tenant-less (no X-Tenant-Slug needed):
tenant management, platform cost tracking and plan-wide sidebar defaults.
"""
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime

from fitos.database import get_db
from fitos.models.user import User, UserRole
from fitos.schemas.cost import (
    BudgetCreate,
    BudgetResponse,
    CostAlertResponse,
    CostDashboardResponse,
    CostEntryCreate,
    CostEntryListResponse,
    CostEntryResponse,
    CostEntryUpdate,
)
from fitos.schemas.sidebar import PlanMenuRequest, PlanMenuResponse, SidebarItem
from fitos.schemas.tenant import (
    ConvertToBusinessRequest,
    ExtraSlotsRequest,
    TenantCreate,
    TenantCreateResponse,
    TenantListResponse,
    TenantResponse,
    UsageResponse,
)
from fitos.api.deps import get_platform_admin
from fitos.services import costs as cost_service
from fitos.services import plan_limits
from fitos.services import sidebar as sidebar_service
from fitos.services import tenants as tenant_service
from fitos.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# ============================================================================
# Tenants
# ============================================================================

@router.get("/tenants", response_model=TenantListResponse)
async def list_tenants(
    tenant_type: Optional[str] = Query(None, pattern="^(system|individual|business)$"),
    is_active: Optional[bool] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    admin: User = Depends(get_platform_admin),
    db: Session = Depends(get_db)
):
    tenants, total = tenant_service.list_tenants(db, tenant_type, is_active, skip, limit)
    return {"tenants": tenants, "total": total}


@router.post("/tenants", response_model=TenantCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_tenant(
    payload: TenantCreate,
    admin: User = Depends(get_platform_admin),
    db: Session = Depends(get_db)
):
    """Create a business tenant, its OWNER and (for paid plans) a subscription."""
    tenant, owner, subscription = tenant_service.create_tenant(
        db,
        name=payload.name,
        slug=payload.slug,
        plan_id=payload.plan,
        owner_email=payload.owner_email,
        owner_password=payload.owner_password,
        owner_first_name=payload.owner_first_name,
        owner_last_name=payload.owner_last_name,
        subdomain=payload.subdomain,
        billing_cycle=payload.billing_cycle,
    )
    return {
        "tenant": tenant,
        "owner_id": owner.id,
        "subscription_id": subscription.id if subscription else None,
    }


@router.get("/tenants/{tenant_id}", response_model=TenantResponse)
async def get_tenant(
    tenant_id: str,
    admin: User = Depends(get_platform_admin),
    db: Session = Depends(get_db)
):
    return tenant_service.get_tenant(db, tenant_id)


@router.get("/tenants/{tenant_id}/usage", response_model=UsageResponse)
async def get_tenant_usage(
    tenant_id: str,
    admin: User = Depends(get_platform_admin),
    db: Session = Depends(get_db)
):
    return plan_limits.usage_stats(db, tenant_service.get_tenant(db, tenant_id))


@router.post("/tenants/{tenant_id}/activate", response_model=TenantResponse)
async def activate_tenant(
    tenant_id: str,
    admin: User = Depends(get_platform_admin),
    db: Session = Depends(get_db)
):
    return tenant_service.set_active(db, tenant_service.get_tenant(db, tenant_id), True)


@router.post("/tenants/{tenant_id}/suspend", response_model=TenantResponse)
async def suspend_tenant(
    tenant_id: str,
    admin: User = Depends(get_platform_admin),
    db: Session = Depends(get_db)
):
    """Suspend a tenant and sign out all of its users."""
    return tenant_service.set_active(db, tenant_service.get_tenant(db, tenant_id), False)


@router.post("/tenants/{tenant_id}/convert-to-business", response_model=TenantResponse)
async def convert_to_business(
    tenant_id: str,
    payload: ConvertToBusinessRequest,
    admin: User = Depends(get_platform_admin),
    db: Session = Depends(get_db)
):
    tenant = tenant_service.get_tenant(db, tenant_id)
    return plan_limits.convert_to_business(db, tenant, payload.subdomain)


@router.post("/tenants/{tenant_id}/extra-slots", response_model=TenantResponse)
async def add_extra_slots(
    tenant_id: str,
    payload: ExtraSlotsRequest,
    admin: User = Depends(get_platform_admin),
    db: Session = Depends(get_db)
):
    tenant = tenant_service.get_tenant(db, tenant_id)
    plan_limits.add_extra_slots(db, tenant, payload.role, payload.quantity)
    db.refresh(tenant)
    return tenant


# ============================================================================
# Costs
# ============================================================================

def _cost_filters(category, service, tenant_id, start_date, end_date) -> dict:
    return {
        "category": category,
        "service": service,
        "tenant_id": tenant_id,
        "start_date": start_date,
        "end_date": end_date,
    }


@router.get("/costs/entries", response_model=CostEntryListResponse)
async def list_cost_entries(
    category: Optional[str] = Query(None),
    service: Optional[str] = Query(None),
    tenant_id: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    admin: User = Depends(get_platform_admin),
    db: Session = Depends(get_db)
):
    filters = _cost_filters(category, service, tenant_id, start_date, end_date)
    entries, total = cost_service.list_entries(db, filters, page, page_size)
    return {"entries": entries, "total": total, "page": page, "page_size": page_size}


@router.post("/costs/entries", response_model=CostEntryResponse, status_code=status.HTTP_201_CREATED)
async def create_cost_entry(
    payload: CostEntryCreate,
    admin: User = Depends(get_platform_admin),
    db: Session = Depends(get_db)
):
    """Record a cost; budgets covering it are re-checked and may raise alerts."""
    return cost_service.create_entry(db, payload.model_dump(), created_by=admin.id)


@router.get("/costs/entries/{entry_id}", response_model=CostEntryResponse)
async def get_cost_entry(
    entry_id: str,
    admin: User = Depends(get_platform_admin),
    db: Session = Depends(get_db)
):
    return cost_service.get_entry(db, entry_id)


@router.patch("/costs/entries/{entry_id}", response_model=CostEntryResponse)
async def update_cost_entry(
    entry_id: str,
    payload: CostEntryUpdate,
    admin: User = Depends(get_platform_admin),
    db: Session = Depends(get_db)
):
    entry = cost_service.get_entry(db, entry_id)
    return cost_service.update_entry(db, entry, payload.model_dump(exclude_unset=True))


@router.delete("/costs/entries/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_cost_entry(
    entry_id: str,
    admin: User = Depends(get_platform_admin),
    db: Session = Depends(get_db)
):
    cost_service.delete_entry(db, cost_service.get_entry(db, entry_id))
    return None


@router.get("/costs/budgets", response_model=List[BudgetResponse])
async def list_budgets(
    active_only: bool = Query(True),
    admin: User = Depends(get_platform_admin),
    db: Session = Depends(get_db)
):
    return cost_service.list_budgets(db, active_only)


@router.post("/costs/budgets", response_model=BudgetResponse, status_code=status.HTTP_201_CREATED)
async def create_budget(
    payload: BudgetCreate,
    admin: User = Depends(get_platform_admin),
    db: Session = Depends(get_db)
):
    return cost_service.create_budget(db, payload.model_dump())


@router.get("/costs/alerts", response_model=List[CostAlertResponse])
async def list_alerts(
    active_only: bool = Query(True),
    admin: User = Depends(get_platform_admin),
    db: Session = Depends(get_db)
):
    return cost_service.list_alerts(db, active_only)


@router.post("/costs/alerts/{alert_id}/acknowledge", response_model=CostAlertResponse)
async def acknowledge_alert(
    alert_id: str,
    admin: User = Depends(get_platform_admin),
    db: Session = Depends(get_db)
):
    return cost_service.acknowledge_alert(db, alert_id, admin.id)


@router.get("/costs/dashboard", response_model=CostDashboardResponse)
async def cost_dashboard(
    admin: User = Depends(get_platform_admin),
    db: Session = Depends(get_db)
):
    return cost_service.dashboard(db)


@router.get("/costs/export")
async def export_costs(
    export_format: str = Query("csv", alias="format", pattern="^(csv|json)$"),
    category: Optional[str] = Query(None),
    service: Optional[str] = Query(None),
    tenant_id: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    admin: User = Depends(get_platform_admin),
    db: Session = Depends(get_db)
):
    filters = _cost_filters(category, service, tenant_id, start_date, end_date)
    content = cost_service.export_report(db, filters, export_format)
    media_type = "text/csv" if export_format == "csv" else "application/json"
    filename = f"costs-{datetime.utcnow():%Y%m%d}.{export_format}"
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ============================================================================
# Sidebar defaults
# ============================================================================

@router.get("/sidebar/{plan}", response_model=List[SidebarItem])
async def get_plan_menu(
    plan: str,
    admin: User = Depends(get_platform_admin),
    db: Session = Depends(get_db)
):
    """The plan's current default menu, before any filtering."""
    sidebar_service.validate_plan(plan)
    return sidebar_service.get_plan_menu(db, plan)


@router.put("/sidebar/{plan}", response_model=PlanMenuResponse)
async def save_plan_menu(
    plan: str,
    payload: PlanMenuRequest,
    admin: User = Depends(get_platform_admin),
    db: Session = Depends(get_db)
):
    """Store a new version of the plan's default menu."""
    items = [item.model_dump(exclude_none=True) for item in payload.menu_items]
    return sidebar_service.save_plan_default(db, plan, items, created_by=admin.id)


@router.get("/sidebar/{plan}/preview", response_model=List[SidebarItem])
async def preview_plan_menu(
    plan: str,
    role: UserRole = Query(UserRole.OWNER),
    admin: User = Depends(get_platform_admin),
    db: Session = Depends(get_db)
):
    return sidebar_service.preview(db, plan, role)


@router.get("/sidebar/{plan}/history", response_model=List[PlanMenuResponse])
async def plan_menu_history(
    plan: str,
    limit: int = Query(10, ge=1, le=50),
    admin: User = Depends(get_platform_admin),
    db: Session = Depends(get_db)
):
    return sidebar_service.version_history(db, plan, limit)
