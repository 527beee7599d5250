"""
User Model

Users belong to a tenant and have role-based access control.

IMPORTANT: tenant_id is the critical field for data isolation.
Every query MUST filter by tenant_id to prevent cross-tenant data leaks.
"""
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index, Integer, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
from fitos.database import Base
import uuid
import enum


class UserRole(str, enum.Enum):
    """
    User roles for RBAC.

    SUPER_ADMIN: Platform operator, bypasses tenant scoping
    OWNER: Owns the tenant, manages billing and staff
    ADMIN: Manages staff, clients and configuration
    TRAINER / NUTRITIONIST: Professionals working with clients
    CLIENT: Gym member / end user
    """
    SUPER_ADMIN = "SUPER_ADMIN"
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    TRAINER = "TRAINER"
    NUTRITIONIST = "NUTRITIONIST"
    CLIENT = "CLIENT"


ROLE_HIERARCHY = {
    UserRole.CLIENT: 1,
    UserRole.TRAINER: 2,
    UserRole.NUTRITIONIST: 2,
    UserRole.ADMIN: 3,
    UserRole.OWNER: 4,
    UserRole.SUPER_ADMIN: 5,
}


class UserStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"
    PENDING = "PENDING"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Every user belongs to exactly one tenant
    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    email = Column(String(255), nullable=False, index=True)
    hashed_password = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    phone = Column(String(32), nullable=True)

    role = Column(
        SQLEnum(UserRole),
        default=UserRole.CLIENT,
        nullable=False,
        index=True
    )
    status = Column(SQLEnum(UserStatus), default=UserStatus.ACTIVE, nullable=False, index=True)
    email_verified = Column(Boolean, default=False, nullable=False)

    # Login lockout bookkeeping
    failed_login_attempts = Column(Integer, default=0, nullable=False)
    locked_until = Column(DateTime, nullable=True)
    last_login_at = Column(DateTime, nullable=True)

    # Only the SHA-256 of the reset token is stored
    password_reset_token = Column(String(64), nullable=True, index=True)
    password_reset_expires = Column(DateTime, nullable=True)

    # "standard" or "admin" sidebar layout
    sidebar_view = Column(String(20), default="standard", nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    tenant = relationship("Tenant", back_populates="users")
    sessions = relationship("Session", back_populates="user", cascade="all, delete-orphan")
    push_subscriptions = relationship("PushSubscription", back_populates="user", cascade="all, delete-orphan")

    __table_args__ = (
        # Same email may exist in different tenants
        Index('idx_user_tenant_email', 'tenant_id', 'email', unique=True),
        Index('idx_user_tenant_status', 'tenant_id', 'status'),
        Index('idx_user_tenant_role', 'tenant_id', 'role'),
    )

    def __repr__(self):
        return f"<User {self.email} (tenant={self.tenant_id})>"

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    @property
    def is_super_admin(self) -> bool:
        return self.role == UserRole.SUPER_ADMIN

    def has_permission(self, required_role: UserRole) -> bool:
        """
        Check if user has required permission level.

        Hierarchy: SUPER_ADMIN > OWNER > ADMIN > TRAINER = NUTRITIONIST > CLIENT
        """
        return ROLE_HIERARCHY[self.role] >= ROLE_HIERARCHY[required_role]

    def is_locked(self, now: datetime = None) -> bool:
        now = now or datetime.utcnow()
        return self.locked_until is not None and self.locked_until > now
