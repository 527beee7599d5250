"""
Tenant Model

The tenant is the isolation boundary: one gym, studio or personal trainer
business (or a single person on the free individual plan). All tenant-owned
rows carry tenant_id and share one database.

tenant_type:
- system: the platform operator's own tenant (SUPER_ADMIN lives here)
- individual: a single person tracking their own progress, one user
- business: gyms and professionals, per-role user limits from the plan
"""
from sqlalchemy import Column, String, Boolean, DateTime, Integer, JSON, Index
from sqlalchemy.orm import relationship
from datetime import datetime
from fitos.database import Base
import uuid


class TenantType:
    SYSTEM = "system"
    INDIVIDUAL = "individual"
    BUSINESS = "business"


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    name = Column(String(255), nullable=False)
    slug = Column(String(100), unique=True, nullable=False, index=True)

    # Only business tenants get a subdomain (acme.fitos.app)
    subdomain = Column(String(63), unique=True, nullable=True, index=True)

    tenant_type = Column(String(20), default=TenantType.BUSINESS, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False, index=True)

    # Plan id from fitos.core.plans; the Subscription row holds billing state
    plan = Column(String(30), default="starter", nullable=False)

    # Free, starter and professional plans show ads
    ads_enabled = Column(Boolean, default=True, nullable=False)

    # Purchased slots on top of the plan, e.g. {"TRAINER": 2}
    extra_slots = Column(JSON, nullable=False, default=dict)

    # Rate limiting overrides; NULL = use default
    rate_limit_per_minute = Column(Integer, nullable=True)
    rate_limit_burst = Column(Integer, nullable=True)

    admin_email = Column(String(255), nullable=False)
    billing_email = Column(String(255), nullable=True)
    stripe_customer_id = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    users = relationship("User", back_populates="tenant", cascade="all, delete-orphan")
    subscriptions = relationship("Subscription", back_populates="tenant", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_tenant_active_subdomain', 'is_active', 'subdomain'),
    )

    def __repr__(self):
        return f"<Tenant {self.slug}>"

    @property
    def is_system(self) -> bool:
        return self.tenant_type == TenantType.SYSTEM

    @property
    def is_individual(self) -> bool:
        return self.tenant_type == TenantType.INDIVIDUAL
