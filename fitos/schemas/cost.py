"""
Cost Tracking Schemas
"""
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

CATEGORY_PATTERN = (
    "^(INFRASTRUCTURE|API_SERVICES|STORAGE|DATABASE|MONITORING|SECURITY|"
    "PAYMENT_PROCESSING|MARKETING|LICENSES|OTHER)$"
)


class CostEntryCreate(BaseModel):
    category: str = Field(..., pattern=CATEGORY_PATTERN)
    service: str = Field(..., min_length=1, max_length=100)
    amount: float = Field(..., ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    date: Optional[datetime] = None
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    tenant_id: Optional[str] = None


class CostEntryUpdate(BaseModel):
    category: Optional[str] = Field(None, pattern=CATEGORY_PATTERN)
    service: Optional[str] = Field(None, min_length=1, max_length=100)
    amount: Optional[float] = Field(None, ge=0)
    date: Optional[datetime] = None
    description: Optional[str] = None
    tags: Optional[List[str]] = None


class CostEntryResponse(BaseModel):
    id: str
    category: str
    service: str
    amount: float
    currency: str
    date: datetime
    month: int
    year: int
    description: Optional[str]
    tags: List[str]
    tenant_id: Optional[str]
    created_by: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class CostEntryListResponse(BaseModel):
    entries: List[CostEntryResponse]
    total: int
    page: int
    page_size: int


class BudgetCreate(BaseModel):
    # None means the budget covers all categories
    category: Optional[str] = Field(None, pattern=CATEGORY_PATTERN)
    monthly_limit: float = Field(..., gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    alert_at_75: bool = True
    alert_at_90: bool = True
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class BudgetResponse(BaseModel):
    id: str
    category: Optional[str]
    monthly_limit: float
    currency: str
    alert_at_75: bool
    alert_at_90: bool
    start_date: datetime
    end_date: Optional[datetime]
    is_active: bool

    class Config:
        from_attributes = True


class CostAlertResponse(BaseModel):
    id: str
    budget_id: str
    alert_type: str
    severity: str
    current_cost: float
    limit_amount: float
    percentage: float
    message: str
    is_active: bool
    acknowledged_at: Optional[datetime]
    acknowledged_by: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class CategoryTotal(BaseModel):
    category: str
    total: float
    percentage: float


class CostDashboardResponse(BaseModel):
    year: int
    month: int
    currency: str
    total_current_month: float
    total_previous_month: float
    variation_percentage: float
    categories: List[CategoryTotal]
    active_alerts: int
