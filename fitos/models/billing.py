"""
Billing Models

Subscription: the tenant's current plan and its payment-provider state.
Invoice: one charge per billing period (Stripe invoice or MercadoPago
PIX payment).
"""
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index, Numeric, Text
from sqlalchemy.orm import relationship
from datetime import datetime
from fitos.database import Base
import uuid


class SubscriptionStatus:
    PENDING = "pending"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class InvoiceStatus:
    OPEN = "open"
    PAID = "paid"
    FAILED = "failed"
    VOID = "void"


class PaymentProvider:
    STRIPE = "stripe"
    MERCADOPAGO = "mercadopago"
    NONE = "none"


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    plan_id = Column(String(30), nullable=False)
    billing_cycle = Column(String(10), default="monthly", nullable=False)  # monthly, yearly
    status = Column(String(20), default=SubscriptionStatus.PENDING, nullable=False, index=True)

    provider = Column(String(20), default=PaymentProvider.NONE, nullable=False)
    # Stripe sub_xxx or MercadoPago payment id
    provider_subscription_id = Column(String(100), nullable=True, index=True)

    current_period_start = Column(DateTime, nullable=False, default=datetime.utcnow)
    current_period_end = Column(DateTime, nullable=False)

    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    cancel_reason = Column(Text, nullable=True)
    canceled_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    tenant = relationship("Tenant", back_populates="subscriptions")
    invoices = relationship("Invoice", back_populates="subscription", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_subscription_tenant_status', 'tenant_id', 'status'),
    )

    def __repr__(self):
        return f"<Subscription {self.plan_id} {self.status} (tenant={self.tenant_id})>"


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    subscription_id = Column(
        String(36),
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )

    number = Column(String(40), nullable=False, unique=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), default="BRL", nullable=False)
    status = Column(String(20), default=InvoiceStatus.OPEN, nullable=False, index=True)
    description = Column(String(255), nullable=True)

    provider = Column(String(20), default=PaymentProvider.NONE, nullable=False)
    provider_reference = Column(String(100), nullable=True, index=True)

    issued_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    due_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)

    subscription = relationship("Subscription", back_populates="invoices")

    __table_args__ = (
        Index('idx_invoice_tenant_issued', 'tenant_id', 'issued_at'),
    )

    def __repr__(self):
        return f"<Invoice {self.number} {self.status}>"
