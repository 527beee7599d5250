"""
Database Models

Tenant-owned models carry tenant_id for multi-tenant isolation.
Cost tracking and sidebar plan defaults are platform-level.
"""
from fitos.models.tenant import Tenant, TenantType
from fitos.models.user import User, UserRole, UserStatus
from fitos.models.session import Session
from fitos.models.billing import Subscription, Invoice
from fitos.models.advertisement import Advertisement, AdImpression
from fitos.models.sidebar import SidebarMenuConfig, SidebarCustomization
from fitos.models.notification import PushSubscription
from fitos.models.cost import CostEntry, CostBudget, CostAlert

__all__ = [
    "Tenant", "TenantType",
    "User", "UserRole", "UserStatus",
    "Session",
    "Subscription", "Invoice",
    "Advertisement", "AdImpression",
    "SidebarMenuConfig", "SidebarCustomization",
    "PushSubscription",
    "CostEntry", "CostBudget", "CostAlert",
]
