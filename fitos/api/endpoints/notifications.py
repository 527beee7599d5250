"""
Push Notification Endpoints

Browsers register their push subscription here; staff can send
notifications to users of their own tenant.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List

from fitos.database import get_db
from fitos.models.tenant import Tenant
from fitos.models.user import User, UserRole
from fitos.schemas.auth import RevokeResponse
from fitos.schemas.notification import (
    DeliveryReportResponse,
    PushSubscribeRequest,
    PushSubscriptionResponse,
    SendNotificationRequest,
    UnsubscribeRequest,
    VapidKeyResponse,
)
from fitos.api.deps import get_current_tenant, get_current_user, require_roles
from fitos.config import get_settings
from fitos.core.exceptions import InvalidInputError
from fitos.services import notifications as push_service
from fitos.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/vapid-public-key", response_model=VapidKeyResponse)
async def vapid_public_key():
    """Public key the browser needs for PushManager.subscribe()."""
    key = get_settings().VAPID_PUBLIC_KEY
    if not key:
        raise InvalidInputError("Push notifications are not configured")
    return {"public_key": key}


@router.get("/subscriptions", response_model=List[PushSubscriptionResponse])
async def list_subscriptions(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return push_service.list_subscriptions(db, current_user)


@router.post("/subscribe", response_model=PushSubscriptionResponse, status_code=status.HTTP_201_CREATED)
async def subscribe(
    payload: PushSubscribeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return push_service.save_subscription(
        db, current_user, payload.endpoint, payload.keys.p256dh, payload.keys.auth
    )


@router.post("/unsubscribe", response_model=RevokeResponse)
async def unsubscribe(
    payload: UnsubscribeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Remove one device (endpoint) or all of them."""
    return {"revoked": push_service.remove_subscription(db, current_user, payload.endpoint)}


@router.post("/test", response_model=DeliveryReportResponse)
async def send_test(
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """Send a test notification to the caller's own devices."""
    payload = push_service.build_payload(
        title="FitOS",
        body="Push notifications are working.",
        data={"type": "test"},
        tag="test",
    )
    report = push_service.send_to_users(db, tenant.id, [current_user.id], payload)
    return report.to_dict()


@router.post("/send", response_model=DeliveryReportResponse)
async def send(
    request: SendNotificationRequest,
    current_user: User = Depends(require_roles(
        UserRole.OWNER, UserRole.ADMIN, UserRole.TRAINER, UserRole.NUTRITIONIST
    )),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """
    Notify users of the current tenant.

    With user_ids, only those users; otherwise everyone (optionally only the
    given roles). Recipients are always restricted to the caller's tenant.
    """
    data = dict(request.data)
    if request.url:
        data["url"] = request.url
    payload = push_service.build_payload(request.title, request.body, data=data)

    if request.user_ids:
        report = push_service.send_to_users(db, tenant.id, request.user_ids, payload)
    else:
        report = push_service.send_to_tenant(db, tenant.id, payload, roles=request.roles or None)

    logger.info(
        f"Push notification sent by {current_user.id}: {report.sent} delivered",
        extra={"tenant_id": tenant.id}
    )
    return report.to_dict()
