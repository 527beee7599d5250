"""
Billing Service

Subscriptions and invoices on top of the payment gateways.

- Stripe: recurring card subscription. The subscription is active right
  away and its first invoice stays open until Stripe reports the payment.
- MercadoPago: one PIX charge per period. The subscription stays pending
  until the payment is approved.

Every change invalidates the tenant's cached usage/subscription data.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
import logging
import uuid
from sqlalchemy.orm import Session

from fitos.cache import invalidate_tenant
from fitos.core.exceptions import (
    ConflictError,
    InvalidInputError,
    SubscriptionNotFoundError,
)
from fitos.core.plans import PAID_PLAN_IDS, PLAN_IDS, get_all_plans, get_plan, plan_price
from fitos.models.billing import (
    Invoice,
    InvoiceStatus,
    PaymentProvider,
    Subscription,
    SubscriptionStatus,
)
from fitos.models.tenant import Tenant, TenantType
from fitos.models.user import User
from fitos.services import payments, plan_limits

logger = logging.getLogger(__name__)

BILLING_CYCLES = {"monthly": 30, "yearly": 365}

# Stripe subscription status -> local status
STRIPE_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "incomplete": SubscriptionStatus.PENDING,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "canceled": SubscriptionStatus.CANCELED,
}


def list_plans() -> List[Dict[str, Any]]:
    return get_all_plans()


def _invoice_number() -> str:
    return f"INV-{datetime.utcnow():%Y%m}-{uuid.uuid4().hex[:8].upper()}"


def period_end(start: datetime, billing_cycle: str) -> datetime:
    return start + timedelta(days=BILLING_CYCLES[billing_cycle])


def _apply_plan(tenant: Tenant, plan_id: str) -> None:
    plan = get_plan(plan_id)
    tenant.plan = plan["id"]
    tenant.ads_enabled = plan["ads_enabled"]


def get_current_subscription(db: Session, tenant_id: str) -> Optional[Subscription]:
    """Newest subscription that is not canceled."""
    return (
        db.query(Subscription)
        .filter(
            Subscription.tenant_id == tenant_id,
            Subscription.status != SubscriptionStatus.CANCELED,
        )
        .order_by(Subscription.created_at.desc())
        .first()
    )


def require_subscription(db: Session, tenant_id: str) -> Subscription:
    subscription = get_current_subscription(db, tenant_id)
    if subscription is None:
        raise SubscriptionNotFoundError()
    return subscription


def subscription_overview(db: Session, tenant: Tenant) -> Dict[str, Any]:
    """Current subscription (may be None), its plan and usage against limits."""
    return {
        "subscription": get_current_subscription(db, tenant.id),
        "plan": get_plan(tenant.plan),
        "usage": plan_limits.usage_stats(db, tenant),
    }


def subscribe(
    db: Session,
    tenant: Tenant,
    user: User,
    plan_id: str,
    billing_cycle: str = "monthly",
    provider: str = PaymentProvider.STRIPE,
) -> Dict[str, Any]:
    """
    Start a paid subscription.

    Returns {"subscription", "invoice", "payment"}; `payment` holds the
    Stripe client secret or the PIX QR code data.
    """
    if plan_id not in PAID_PLAN_IDS:
        raise InvalidInputError(f"Plan '{plan_id}' cannot be subscribed to")
    if billing_cycle not in BILLING_CYCLES:
        raise InvalidInputError(f"Unknown billing cycle: {billing_cycle}")
    if tenant.tenant_type != TenantType.BUSINESS:
        raise InvalidInputError("Only business tenants can subscribe to a paid plan")
    if get_current_subscription(db, tenant.id):
        raise ConflictError("Tenant already has a subscription; change the plan instead")

    plan = get_plan(plan_id)
    amount = plan_price(plan_id, billing_cycle)
    now = datetime.utcnow()

    if provider == PaymentProvider.STRIPE:
        gateway = payments.get_stripe_gateway()
        if not tenant.stripe_customer_id:
            tenant.stripe_customer_id = gateway.create_customer(
                tenant.id, tenant.billing_email or tenant.admin_email, tenant.name
            )
        result = gateway.create_subscription(
            tenant.stripe_customer_id,
            plan["stripe_price_id"][billing_cycle],
            tenant.id,
        )
        subscription = Subscription(
            tenant_id=tenant.id,
            plan_id=plan_id,
            billing_cycle=billing_cycle,
            status=SubscriptionStatus.ACTIVE,
            provider=PaymentProvider.STRIPE,
            provider_subscription_id=result.subscription_id,
            current_period_start=now,
            current_period_end=period_end(now, billing_cycle),
        )
        db.add(subscription)
        db.flush()
        invoice = Invoice(
            tenant_id=tenant.id,
            subscription_id=subscription.id,
            number=_invoice_number(),
            amount=amount,
            currency=plan["currency"],
            status=InvoiceStatus.OPEN,
            description=f"{plan['name']} ({billing_cycle})",
            provider=PaymentProvider.STRIPE,
            provider_reference=result.subscription_id,
            issued_at=now,
            due_at=now + timedelta(days=7),
        )
        db.add(invoice)
        _apply_plan(tenant, plan_id)
        payment = {"provider": PaymentProvider.STRIPE, "client_secret": result.client_secret}

    elif provider == PaymentProvider.MERCADOPAGO:
        gateway = payments.get_mercadopago_gateway()
        subscription = Subscription(
            tenant_id=tenant.id,
            plan_id=plan_id,
            billing_cycle=billing_cycle,
            status=SubscriptionStatus.PENDING,
            provider=PaymentProvider.MERCADOPAGO,
            current_period_start=now,
            current_period_end=period_end(now, billing_cycle),
        )
        db.add(subscription)
        db.flush()
        invoice = Invoice(
            tenant_id=tenant.id,
            subscription_id=subscription.id,
            number=_invoice_number(),
            amount=amount,
            currency=plan["currency"],
            status=InvoiceStatus.OPEN,
            description=f"{plan['name']} ({billing_cycle})",
            provider=PaymentProvider.MERCADOPAGO,
            issued_at=now,
        )
        db.add(invoice)
        db.flush()
        pix = gateway.create_pix_payment(
            amount,
            f"FitOS {plan['name']} - {billing_cycle}",
            user.email,
            external_reference=invoice.id,
        )
        invoice.provider_reference = pix.payment_id
        invoice.due_at = pix.expires_at
        subscription.provider_subscription_id = pix.payment_id
        payment = {
            "provider": PaymentProvider.MERCADOPAGO,
            "payment_id": pix.payment_id,
            "qr_code": pix.qr_code,
            "qr_code_base64": pix.qr_code_base64,
            "expires_at": pix.expires_at,
        }
    else:
        raise InvalidInputError(f"Unknown payment provider: {provider}")

    db.commit()
    db.refresh(subscription)
    db.refresh(invoice)
    invalidate_tenant(tenant.id)

    logger.info(
        f"Tenant {tenant.slug} subscribed to {plan_id} ({billing_cycle}) via {provider}",
        extra={"tenant_id": tenant.id, "user_id": user.id}
    )
    return {"subscription": subscription, "invoice": invoice, "payment": payment}


def change_plan(db: Session, tenant: Tenant, plan_id: str) -> Dict[str, Any]:
    """Upgrade or downgrade the active subscription."""
    if plan_id not in PAID_PLAN_IDS:
        raise InvalidInputError(f"Plan '{plan_id}' cannot be subscribed to")
    subscription = require_subscription(db, tenant.id)
    if subscription.plan_id == plan_id:
        raise InvalidInputError("Tenant is already on this plan")

    new_plan = get_plan(plan_id)
    old_plan_id = subscription.plan_id
    direction = "upgrade" if PLAN_IDS.index(plan_id) > PLAN_IDS.index(old_plan_id) else "downgrade"

    if subscription.provider == PaymentProvider.STRIPE and subscription.provider_subscription_id:
        payments.get_stripe_gateway().change_price(
            subscription.provider_subscription_id,
            new_plan["stripe_price_id"][subscription.billing_cycle],
        )

    subscription.plan_id = plan_id
    _apply_plan(tenant, plan_id)
    db.commit()
    db.refresh(subscription)
    invalidate_tenant(tenant.id)

    logger.info(f"Tenant {tenant.slug} {direction}: {old_plan_id} -> {plan_id}", extra={"tenant_id": tenant.id})
    return {"subscription": subscription, "previous_plan": old_plan_id, "direction": direction}


def cancel_subscription(
    db: Session,
    tenant: Tenant,
    immediately: bool = False,
    reason: Optional[str] = None,
) -> Subscription:
    """Cancel at the end of the period (default) or right away."""
    subscription = require_subscription(db, tenant.id)

    if subscription.provider == PaymentProvider.STRIPE and subscription.provider_subscription_id:
        payments.get_stripe_gateway().cancel_subscription(
            subscription.provider_subscription_id, at_period_end=not immediately
        )

    subscription.cancel_reason = reason
    if immediately:
        subscription.status = SubscriptionStatus.CANCELED
        subscription.canceled_at = datetime.utcnow()
        subscription.cancel_at_period_end = False
        (
            db.query(Invoice)
            .filter(Invoice.subscription_id == subscription.id, Invoice.status == InvoiceStatus.OPEN)
            .update({Invoice.status: InvoiceStatus.VOID}, synchronize_session=False)
        )
    else:
        subscription.cancel_at_period_end = True
    db.commit()
    db.refresh(subscription)
    invalidate_tenant(tenant.id)

    logger.info(
        f"Subscription {subscription.id} canceled ({'now' if immediately else 'at period end'})",
        extra={"tenant_id": tenant.id}
    )
    return subscription


def list_invoices(db: Session, tenant_id: str, limit: int = 20, offset: int = 0) -> Tuple[List[Invoice], int, bool]:
    """Newest first. Returns (invoices, total, has_more)."""
    query = db.query(Invoice).filter(Invoice.tenant_id == tenant_id)
    total = query.count()
    invoices = query.order_by(Invoice.issued_at.desc()).offset(offset).limit(limit).all()
    return invoices, total, offset + len(invoices) < total


# ============================================================================
# Webhooks
# ============================================================================

def _subscription_by_provider_id(db: Session, provider_id: Optional[str]) -> Optional[Subscription]:
    if not provider_id:
        return None
    return db.query(Subscription).filter(Subscription.provider_subscription_id == provider_id).first()


def _open_invoice(db: Session, subscription: Subscription) -> Optional[Invoice]:
    return (
        db.query(Invoice)
        .filter(Invoice.subscription_id == subscription.id, Invoice.status == InvoiceStatus.OPEN)
        .order_by(Invoice.issued_at.desc())
        .first()
    )


def _activate(db: Session, subscription: Subscription) -> None:
    subscription.status = SubscriptionStatus.ACTIVE
    tenant = db.get(Tenant, subscription.tenant_id)
    if tenant is not None:
        _apply_plan(tenant, subscription.plan_id)


def handle_stripe_event(db: Session, event: Dict[str, Any]) -> str:
    """
    Apply a verified Stripe event. Returns "processed" or "ignored".

    Events for unknown subscriptions are ignored (Stripe retries failures,
    and an unknown id will never start matching).
    """
    event_type = event.get("type") or ""
    data = event.get("data") or {}
    obj = (data.get("object") or {}) if isinstance(data, dict) else None
    if not isinstance(event_type, str) or not isinstance(obj, dict):
        raise InvalidInputError("Malformed Stripe event")

    if event_type.startswith("invoice."):
        subscription = _subscription_by_provider_id(db, obj.get("subscription"))
    elif event_type.startswith("customer.subscription."):
        subscription = _subscription_by_provider_id(db, obj.get("id"))
    else:
        logger.debug(f"Ignoring Stripe event {event_type}")
        return "ignored"

    if subscription is None:
        logger.warning(f"Stripe event {event_type} for unknown subscription")
        return "ignored"

    now = datetime.utcnow()

    if event_type == "invoice.payment_succeeded":
        invoice = _open_invoice(db, subscription)
        if invoice is None:
            # Renewal: Stripe created the invoice on its own
            invoice = Invoice(
                tenant_id=subscription.tenant_id,
                subscription_id=subscription.id,
                number=_invoice_number(),
                amount=(obj.get("amount_paid") or 0) / 100,
                currency=(obj.get("currency") or "brl").upper(),
                provider=PaymentProvider.STRIPE,
                provider_reference=obj.get("id"),
                issued_at=now,
            )
            db.add(invoice)
        invoice.status = InvoiceStatus.PAID
        invoice.paid_at = now
        _activate(db, subscription)
        paid_through = obj.get("period_end")
        if paid_through:
            subscription.current_period_end = datetime.utcfromtimestamp(paid_through)

    elif event_type == "invoice.payment_failed":
        invoice = _open_invoice(db, subscription)
        if invoice is not None:
            invoice.status = InvoiceStatus.FAILED
        subscription.status = SubscriptionStatus.PAST_DUE

    elif event_type == "customer.subscription.updated":
        status = STRIPE_STATUS_MAP.get(obj.get("status"), subscription.status)
        if status == SubscriptionStatus.ACTIVE:
            _activate(db, subscription)
        else:
            subscription.status = status
        subscription.cancel_at_period_end = bool(obj.get("cancel_at_period_end", subscription.cancel_at_period_end))
        if obj.get("current_period_start"):
            subscription.current_period_start = datetime.utcfromtimestamp(obj["current_period_start"])
        if obj.get("current_period_end"):
            subscription.current_period_end = datetime.utcfromtimestamp(obj["current_period_end"])

    elif event_type == "customer.subscription.deleted":
        subscription.status = SubscriptionStatus.CANCELED
        subscription.canceled_at = now

    else:
        logger.debug(f"Ignoring Stripe event {event_type}")
        return "ignored"

    db.commit()
    invalidate_tenant(subscription.tenant_id)
    logger.info(f"Processed Stripe event {event_type}", extra={"tenant_id": subscription.tenant_id})
    return "processed"


def handle_mercadopago_payment(db: Session, payment_id: str) -> str:
    """
    Look the payment up and apply its status.

    approved: invoice paid and subscription active
    rejected / cancelled: invoice failed
    """
    payment = payments.get_mercadopago_gateway().get_payment(payment_id)
    status = payment.get("status")

    invoice = db.query(Invoice).filter(Invoice.provider_reference == str(payment_id)).first()
    if invoice is None and payment.get("external_reference"):
        invoice = db.get(Invoice, payment["external_reference"])
    if invoice is None:
        logger.warning(f"MercadoPago notification for unknown payment {payment_id}")
        return "ignored"

    subscription = db.get(Subscription, invoice.subscription_id) if invoice.subscription_id else None

    if status == "approved":
        invoice.status = InvoiceStatus.PAID
        invoice.paid_at = datetime.utcnow()
        if subscription is not None:
            _activate(db, subscription)
    elif status in ("rejected", "cancelled"):
        invoice.status = InvoiceStatus.FAILED
    else:
        logger.info(f"MercadoPago payment {payment_id} is {status}; nothing to do")
        return "ignored"

    db.commit()
    invalidate_tenant(invoice.tenant_id)
    logger.info(f"Processed MercadoPago payment {payment_id}: {status}", extra={"tenant_id": invoice.tenant_id})
    return "processed"
