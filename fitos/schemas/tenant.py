"""
Tenant Schemas
"""
from pydantic import BaseModel, EmailStr, Field
from typing import Dict, List, Optional
from datetime import datetime

from fitos.models.user import UserRole


class TenantSummary(BaseModel):
    """What a member of the tenant sees."""
    id: str
    name: str
    slug: str
    subdomain: Optional[str]
    tenant_type: str
    plan: str
    ads_enabled: bool

    class Config:
        from_attributes = True


class TenantResponse(TenantSummary):
    is_active: bool
    extra_slots: Dict[str, int]
    admin_email: str
    billing_email: Optional[str]
    rate_limit_per_minute: Optional[int]
    rate_limit_burst: Optional[int]
    created_at: datetime
    updated_at: datetime


class TenantUpdate(BaseModel):
    """OWNER/ADMIN self-service fields."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    admin_email: Optional[EmailStr] = None
    billing_email: Optional[EmailStr] = None


class TenantCreate(BaseModel):
    """Platform admin: create a business tenant with its owner."""
    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=3, max_length=100)
    subdomain: Optional[str] = Field(None, min_length=3, max_length=63)
    plan: str = "starter"
    billing_cycle: str = Field("monthly", pattern="^(monthly|yearly)$")
    owner_email: EmailStr
    owner_password: str = Field(..., min_length=8, max_length=128)
    owner_first_name: Optional[str] = None
    owner_last_name: Optional[str] = None


class TenantCreateResponse(BaseModel):
    tenant: TenantResponse
    owner_id: str
    subscription_id: Optional[str]


class TenantListResponse(BaseModel):
    tenants: List[TenantResponse]
    total: int


class ConvertToBusinessRequest(BaseModel):
    subdomain: str = Field(..., min_length=3, max_length=63)


class ExtraSlotsRequest(BaseModel):
    role: UserRole
    quantity: int = Field(..., gt=0, le=1000)


class LimitBucket(BaseModel):
    current: int
    limit: int


class UsageResponse(BaseModel):
    tenant_id: str
    plan: str
    tenant_type: str
    users: LimitBucket
    clients: LimitBucket
    total_users: int
    extra_slots: Dict[str, int]
