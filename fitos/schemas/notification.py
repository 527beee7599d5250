"""
Push Notification Schemas
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime

from fitos.models.user import UserRole


class SubscriptionKeys(BaseModel):
    p256dh: str = Field(..., min_length=1)
    auth: str = Field(..., min_length=1)


class PushSubscribeRequest(BaseModel):
    """The browser's PushSubscription.toJSON()."""
    endpoint: str = Field(..., min_length=1)
    keys: SubscriptionKeys


class PushSubscriptionResponse(BaseModel):
    id: str
    endpoint: str
    created_at: datetime

    class Config:
        from_attributes = True


class UnsubscribeRequest(BaseModel):
    # Omit to remove every device of the user
    endpoint: Optional[str] = None


class SendNotificationRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=120)
    body: str = Field(..., min_length=1, max_length=1000)
    data: Dict[str, Any] = Field(default_factory=dict)
    url: Optional[str] = None
    # Target users; when empty, everyone in the tenant (optionally by role)
    user_ids: List[str] = Field(default_factory=list)
    roles: List[UserRole] = Field(default_factory=list)


class DeliveryReportResponse(BaseModel):
    sent: int
    failed: int
    removed: int
    attempted: int
    errors: List[str]


class VapidKeyResponse(BaseModel):
    public_key: str
