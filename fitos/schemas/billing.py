"""
Billing Schemas

Request/response models for plans, subscriptions and invoices.
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime
from decimal import Decimal

from fitos.schemas.tenant import UsageResponse


class SubscribeRequest(BaseModel):
    plan_id: str = Field(..., pattern="^(starter|professional|enterprise)$")
    billing_cycle: str = Field("monthly", pattern="^(monthly|yearly)$")
    provider: str = Field("stripe", pattern="^(stripe|mercadopago)$")


class ChangePlanRequest(BaseModel):
    plan_id: str = Field(..., pattern="^(starter|professional|enterprise)$")


class CancelRequest(BaseModel):
    immediately: bool = False
    reason: Optional[str] = Field(None, max_length=1000)


class SubscriptionResponse(BaseModel):
    id: str
    tenant_id: str
    plan_id: str
    billing_cycle: str
    status: str
    provider: str
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool
    cancel_reason: Optional[str]
    canceled_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class InvoiceResponse(BaseModel):
    id: str
    subscription_id: Optional[str]
    number: str
    amount: Decimal
    currency: str
    status: str
    description: Optional[str]
    provider: str
    provider_reference: Optional[str]
    issued_at: datetime
    due_at: Optional[datetime]
    paid_at: Optional[datetime]

    class Config:
        from_attributes = True


class SubscriptionOverview(BaseModel):
    """Subscription (None for free or admin-created tenants), plan and usage."""
    subscription: Optional[SubscriptionResponse]
    plan: Dict[str, Any]
    usage: UsageResponse


class SubscribeResponse(BaseModel):
    subscription: SubscriptionResponse
    invoice: InvoiceResponse
    # Stripe client secret or PIX QR code data
    payment: Dict[str, Any]


class ChangePlanResponse(BaseModel):
    subscription: SubscriptionResponse
    previous_plan: str
    direction: str


class InvoiceListResponse(BaseModel):
    invoices: List[InvoiceResponse]
    total: int
    limit: int
    offset: int
    has_more: bool


class WebhookResponse(BaseModel):
    received: bool = True
    result: str
