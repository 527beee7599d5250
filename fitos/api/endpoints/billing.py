"""
Billing Endpoints

Plan catalog (public), the tenant's subscription and invoices
(OWNER/ADMIN), and the payment provider webhooks (public, signed).
"""
from fastapi import APIRouter, Depends, Header, Query, Request, status
from sqlalchemy.orm import Session
from typing import Any, Dict, List, Optional
import json

from fitos.database import get_db
from fitos.models.tenant import Tenant
from fitos.models.user import User, UserRole
from fitos.schemas.billing import (
    CancelRequest,
    ChangePlanRequest,
    ChangePlanResponse,
    InvoiceListResponse,
    SubscribeRequest,
    SubscribeResponse,
    SubscriptionOverview,
    SubscriptionResponse,
    WebhookResponse,
)
from fitos.api.deps import get_current_tenant, require_roles
from fitos.config import get_settings
from fitos.core.exceptions import InvalidInputError, WebhookSignatureError
from fitos.services import billing as billing_service
from fitos.services import payments
from fitos.utils.logging import get_logger, log_security_event

logger = get_logger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])

require_billing_manager = require_roles(UserRole.OWNER, UserRole.ADMIN)


def _json_object(raw: bytes) -> Dict[str, Any]:
    """Decode a webhook body; providers always send a JSON object."""
    try:
        body = json.loads(raw)
    except ValueError:
        raise InvalidInputError("Webhook body is not valid JSON")
    if not isinstance(body, dict):
        raise InvalidInputError("Webhook body must be a JSON object")
    return body


@router.get("/plans", response_model=List[Dict[str, Any]])
async def list_plans():
    """Public plan catalog (Redis cached)."""
    return billing_service.list_plans()


@router.get("/subscription", response_model=SubscriptionOverview)
async def get_subscription(
    current_user: User = Depends(require_billing_manager),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    return billing_service.subscription_overview(db, tenant)


@router.post("/subscribe", response_model=SubscribeResponse, status_code=status.HTTP_201_CREATED)
async def subscribe(
    payload: SubscribeRequest,
    current_user: User = Depends(require_roles(UserRole.OWNER)),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """
    Start a paid subscription.

    Stripe activates right away; MercadoPago returns PIX data and stays
    pending until the payment notification arrives.
    """
    return billing_service.subscribe(
        db, tenant, current_user, payload.plan_id, payload.billing_cycle, payload.provider
    )


@router.post("/change-plan", response_model=ChangePlanResponse)
async def change_plan(
    payload: ChangePlanRequest,
    current_user: User = Depends(require_roles(UserRole.OWNER)),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    return billing_service.change_plan(db, tenant, payload.plan_id)


@router.post("/cancel", response_model=SubscriptionResponse)
async def cancel(
    payload: CancelRequest,
    current_user: User = Depends(require_roles(UserRole.OWNER)),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    return billing_service.cancel_subscription(db, tenant, payload.immediately, payload.reason)


@router.get("/invoices", response_model=InvoiceListResponse)
async def list_invoices(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(require_billing_manager),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    invoices, total, has_more = billing_service.list_invoices(db, tenant.id, limit, offset)
    return {"invoices": invoices, "total": total, "limit": limit, "offset": offset, "has_more": has_more}


# ============================================================================
# Webhooks
# ============================================================================

@router.post("/webhooks/stripe", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    db: Session = Depends(get_db)
):
    """Stripe events, verified against STRIPE_WEBHOOK_SECRET."""
    payload = await request.body()
    try:
        payments.verify_stripe_signature(payload, stripe_signature or "", get_settings().STRIPE_WEBHOOK_SECRET)
    except WebhookSignatureError:
        log_security_event("invalid_webhook_signature", {"provider": "stripe"}, logger)
        raise

    event = _json_object(payload)
    result = billing_service.handle_stripe_event(db, event)
    return {"received": True, "result": result}


@router.post("/webhooks/mercadopago", response_model=WebhookResponse)
async def mercadopago_webhook(
    request: Request,
    x_signature: Optional[str] = Header(None, alias="x-signature"),
    x_request_id: Optional[str] = Header(None, alias="x-request-id"),
    db: Session = Depends(get_db)
):
    """
    MercadoPago notifications.

    The notification only names the payment; its status is looked up
    through the API after the signature check.
    """
    raw = await request.body()
    body = _json_object(raw) if raw else {}
    data = body.get("data") or {}
    if not isinstance(data, dict):
        raise InvalidInputError("Notification data must be an object")

    params = request.query_params
    topic = body.get("type") or params.get("type") or params.get("topic")
    data_id = data.get("id") or params.get("data.id") or params.get("id")
    if not data_id:
        raise InvalidInputError("Notification without data.id")

    try:
        payments.verify_mercadopago_signature(
            x_signature or "", x_request_id or "", str(data_id), get_settings().MERCADOPAGO_WEBHOOK_SECRET
        )
    except WebhookSignatureError:
        log_security_event("invalid_webhook_signature", {"provider": "mercadopago"}, logger)
        raise

    if topic != "payment":
        logger.info(f"Ignoring MercadoPago notification of type {topic}")
        return {"received": True, "result": "ignored"}

    result = billing_service.handle_mercadopago_payment(db, str(data_id))
    return {"received": True, "result": result}
