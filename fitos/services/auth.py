"""
Authentication Service

Login, signup, server-side sessions and password management.

Session model:
- login creates a Session row and hands the client an opaque token once
  (only its SHA-256 is stored)
- the JWT access token carries the session id (`sid`); every request
  re-checks that the session is live, so logout invalidates the JWT too
- sessions last SESSION_EXPIRE_DAYS and slide forward when used more than
  SESSION_UPDATE_AGE_HOURS after their last refresh
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
import logging
import re
import secrets
from sqlalchemy.orm import Session as DBSession

from fitos.cache import invalidate_tenant
from fitos.config import get_settings
from fitos.core.exceptions import (
    AccountLockedError,
    AuthenticationError,
    ConflictError,
    InvalidInputError,
    TenantInactiveError,
    TenantNotFoundError,
)
from fitos.core.plans import find_plan
from fitos.core.security import (
    create_access_token,
    generate_session_token,
    get_password_hash,
    hash_token,
    validate_password_strength,
    verify_password,
)
from fitos.models.session import Session
from fitos.models.tenant import Tenant, TenantType
from fitos.models.user import User, UserRole, UserStatus
from fitos.services import plan_limits
from fitos.utils.logging import log_security_event

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass
class AuthResult:
    """Everything a successful login or signup hands back to the client."""
    user: User
    tenant: Tenant
    session: Session
    session_token: str
    access_token: str


# ============================================================================
# Sessions
# ============================================================================

def create_session(
    db: DBSession,
    user: User,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Tuple[Session, str]:
    """Create a session; returns (session, raw token)."""
    raw_token = generate_session_token()
    now = datetime.utcnow()
    session = Session(
        user_id=user.id,
        tenant_id=user.tenant_id,
        token_hash=hash_token(raw_token),
        ip_address=ip_address,
        user_agent=(user_agent or "")[:255] or None,
        expires_at=now + timedelta(days=settings.SESSION_EXPIRE_DAYS),
        refreshed_at=now,
        last_activity_at=now,
    )
    db.add(session)
    db.commit()
    db.refresh(session)
    return session, raw_token


def issue_access_token(user: User, session: Session) -> str:
    return create_access_token({
        "sub": user.id,
        "tenant_id": user.tenant_id,
        "role": user.role.value,
        "sid": session.id,
    })


def touch_session(db: DBSession, session: Session, now: Optional[datetime] = None) -> Session:
    """
    Record activity and slide the expiry when the session is due.

    Writes at most once per minute per session.
    """
    now = now or datetime.utcnow()
    changed = False
    if now - session.refreshed_at >= timedelta(hours=settings.SESSION_UPDATE_AGE_HOURS):
        session.expires_at = now + timedelta(days=settings.SESSION_EXPIRE_DAYS)
        session.refreshed_at = now
        changed = True
    if now - session.last_activity_at >= timedelta(minutes=1):
        session.last_activity_at = now
        changed = True
    if changed:
        db.commit()
    return session


def _require_live(session: Optional[Session]) -> Session:
    if session is None or not session.is_live():
        raise AuthenticationError("Session expired or revoked", code="SESSION_EXPIRED")
    return session


def get_live_session(db: DBSession, session_id: str) -> Session:
    """Load a session by id; raises SESSION_EXPIRED when revoked or expired."""
    session = _require_live(db.query(Session).filter(Session.id == session_id).first())
    return touch_session(db, session)


def get_session_by_token(db: DBSession, raw_token: str) -> Session:
    """Load a session from the opaque token (cookie or body)."""
    session = db.query(Session).filter(Session.token_hash == hash_token(raw_token)).first()
    return touch_session(db, _require_live(session))


def list_sessions(db: DBSession, user: User) -> List[Session]:
    now = datetime.utcnow()
    return (
        db.query(Session)
        .filter(
            Session.user_id == user.id,
            Session.revoked_at.is_(None),
            Session.expires_at > now,
        )
        .order_by(Session.last_activity_at.desc())
        .all()
    )


def revoke_session(db: DBSession, session: Session) -> None:
    if session.revoked_at is None:
        session.revoked_at = datetime.utcnow()
        db.commit()


def revoke_all_sessions(db: DBSession, user_id: str, except_session_id: Optional[str] = None) -> int:
    """Revoke every live session of a user, optionally keeping one."""
    query = db.query(Session).filter(Session.user_id == user_id, Session.revoked_at.is_(None))
    if except_session_id:
        query = query.filter(Session.id != except_session_id)
    count = query.update({Session.revoked_at: datetime.utcnow()}, synchronize_session=False)
    db.commit()
    return count


def revoke_tenant_sessions(db: DBSession, tenant_id: str) -> int:
    count = (
        db.query(Session)
        .filter(Session.tenant_id == tenant_id, Session.revoked_at.is_(None))
        .update({Session.revoked_at: datetime.utcnow()}, synchronize_session=False)
    )
    db.commit()
    return count


def cleanup_expired_sessions(db: DBSession) -> int:
    """Delete sessions that are expired or were revoked. Returns rows removed."""
    now = datetime.utcnow()
    count = (
        db.query(Session)
        .filter((Session.expires_at <= now) | (Session.revoked_at.isnot(None)))
        .delete(synchronize_session=False)
    )
    db.commit()
    logger.info(f"Removed {count} expired or revoked sessions")
    return count


# ============================================================================
# Login
# ============================================================================

def _find_login_user(db: DBSession, email: str, tenant_slug: Optional[str]) -> Optional[User]:
    if tenant_slug:
        tenant = db.query(Tenant).filter(Tenant.slug == tenant_slug).first()
        if not tenant:
            log_security_event("failed_login", {"reason": "tenant_not_found", "tenant_slug": tenant_slug}, logger)
            return None
        return db.query(User).filter(User.tenant_id == tenant.id, User.email == email).first()

    users = db.query(User).filter(User.email == email).all()
    if len(users) > 1:
        raise InvalidInputError("This email belongs to more than one organization; tenant_slug is required")
    return users[0] if users else None


def authenticate(
    db: DBSession,
    email: str,
    password: str,
    tenant_slug: Optional[str] = None,
) -> User:
    """
    Verify credentials, applying the login lockout policy.

    After MAX_LOGIN_ATTEMPTS consecutive failures the account is locked for
    LOCKOUT_MINUTES; the attempt that triggers the lock already answers
    ACCOUNT_LOCKED.
    """
    email = email.lower()
    user = _find_login_user(db, email, tenant_slug)

    if not user:
        log_security_event("failed_login", {"reason": "user_not_found", "email": email}, logger)
        raise AuthenticationError("Invalid credentials")

    now = datetime.utcnow()
    if user.is_locked(now):
        retry_after = int((user.locked_until - now).total_seconds()) + 1
        raise AccountLockedError(retry_after)

    if not verify_password(password, user.hashed_password):
        user.failed_login_attempts += 1
        if user.failed_login_attempts >= settings.MAX_LOGIN_ATTEMPTS:
            user.locked_until = now + timedelta(minutes=settings.LOCKOUT_MINUTES)
            user.failed_login_attempts = 0
            db.commit()
            log_security_event(
                "account_locked",
                {"user_id": user.id, "tenant_id": user.tenant_id},
                logger
            )
            raise AccountLockedError(settings.LOCKOUT_MINUTES * 60)
        db.commit()
        log_security_event(
            "failed_login",
            {"reason": "invalid_password", "user_id": user.id, "tenant_id": user.tenant_id},
            logger
        )
        raise AuthenticationError("Invalid credentials")

    if not user.is_active:
        log_security_event("failed_login", {"reason": "user_inactive", "user_id": user.id}, logger)
        raise AuthenticationError("User account is inactive", code="USER_INACTIVE")

    if not user.tenant.is_active:
        log_security_event(
            "failed_login",
            {"reason": "tenant_inactive", "tenant_id": user.tenant_id},
            logger
        )
        raise TenantInactiveError()

    user.failed_login_attempts = 0
    user.locked_until = None
    user.last_login_at = now
    db.commit()
    return user


def login(
    db: DBSession,
    email: str,
    password: str,
    tenant_slug: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> AuthResult:
    user = authenticate(db, email, password, tenant_slug)
    session, raw_token = create_session(db, user, ip_address, user_agent)
    logger.info(
        f"Successful login: user={user.id}",
        extra={"user_id": user.id, "tenant_id": user.tenant_id}
    )
    return AuthResult(
        user=user,
        tenant=user.tenant,
        session=session,
        session_token=raw_token,
        access_token=issue_access_token(user, session),
    )


# ============================================================================
# Signup
# ============================================================================

def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug[:80] or "tenant"


def unique_slug(db: DBSession, base: str) -> str:
    slug = slugify(base)
    candidate = slug
    while db.query(Tenant.id).filter(Tenant.slug == candidate).first():
        candidate = f"{slug}-{secrets.token_hex(3)}"
    return candidate


def ensure_password_policy(password: str) -> None:
    result = validate_password_strength(password)
    if not result["is_valid"]:
        raise InvalidInputError("; ".join(result["errors"]))


def _create_tenant(db: DBSession, name: str, slug_base: str, tenant_type: str, plan_id: str, admin_email: str) -> Tenant:
    plan = find_plan(plan_id)
    tenant = Tenant(
        name=name,
        slug=unique_slug(db, slug_base),
        tenant_type=tenant_type,
        plan=plan_id,
        ads_enabled=plan["ads_enabled"],
        admin_email=admin_email,
        billing_email=admin_email,
        extra_slots={},
    )
    db.add(tenant)
    db.flush()
    return tenant


def signup(
    db: DBSession,
    email: str,
    password: str,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    phone: Optional[str] = None,
    tenant_slug: Optional[str] = None,
    organization_name: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> AuthResult:
    """
    Register a user.

    - tenant_slug: join an existing tenant as CLIENT (plan limits apply)
    - organization_name: create a business tenant on the starter plan, as OWNER
    - neither: create a personal tenant on the free individual plan
    """
    email = email.lower()
    ensure_password_policy(password)

    if tenant_slug:
        tenant = db.query(Tenant).filter(Tenant.slug == tenant_slug).first()
        if not tenant:
            raise TenantNotFoundError(tenant_slug)
        if not tenant.is_active:
            raise TenantInactiveError("Tenant is not accepting new registrations")
        if db.query(User.id).filter(User.tenant_id == tenant.id, User.email == email).first():
            raise ConflictError("User with this email already exists in this tenant")
        role = UserRole.CLIENT
        plan_limits.enforce_user_limit(db, tenant, role)
    elif organization_name:
        tenant = _create_tenant(db, organization_name, organization_name, TenantType.BUSINESS, "starter", email)
        role = UserRole.OWNER
    else:
        display = " ".join(part for part in (first_name, last_name) if part) or email
        tenant = _create_tenant(db, display, email.split("@")[0], TenantType.INDIVIDUAL, "individual", email)
        role = UserRole.CLIENT

    user = User(
        tenant_id=tenant.id,
        email=email,
        hashed_password=get_password_hash(password),
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        role=role,
        status=UserStatus.ACTIVE,
        email_verified=False,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    invalidate_tenant(tenant.id)

    logger.info(
        f"New user signed up: {user.id} as {role.value} in tenant {tenant.slug}",
        extra={"user_id": user.id, "tenant_id": tenant.id}
    )

    session, raw_token = create_session(db, user, ip_address, user_agent)
    return AuthResult(
        user=user,
        tenant=tenant,
        session=session,
        session_token=raw_token,
        access_token=issue_access_token(user, session),
    )


# ============================================================================
# Passwords
# ============================================================================

def request_password_reset(db: DBSession, email: str, tenant_slug: Optional[str] = None) -> Optional[str]:
    """
    Start a password reset.

    Returns the raw reset token (to be e-mailed), or None when no single
    account matches. Callers must answer the same way in both cases.
    """
    email = email.lower()
    query = db.query(User).filter(User.email == email)
    if tenant_slug:
        query = query.join(Tenant, Tenant.id == User.tenant_id).filter(Tenant.slug == tenant_slug)
    users = query.all()
    if len(users) != 1:
        logger.info("Password reset requested for unknown or ambiguous email")
        return None

    user = users[0]
    raw_token = secrets.token_urlsafe(32)
    user.password_reset_token = hash_token(raw_token)
    user.password_reset_expires = datetime.utcnow() + timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES)
    db.commit()
    logger.info("Password reset token issued", extra={"user_id": user.id, "tenant_id": user.tenant_id})
    return raw_token


def reset_password(db: DBSession, token: str, new_password: str) -> User:
    """Consume a reset token, set the password and revoke all sessions."""
    user = db.query(User).filter(User.password_reset_token == hash_token(token)).first()
    if not user or not user.password_reset_expires or user.password_reset_expires < datetime.utcnow():
        raise InvalidInputError("Invalid or expired reset token")

    ensure_password_policy(new_password)
    user.hashed_password = get_password_hash(new_password)
    user.password_reset_token = None
    user.password_reset_expires = None
    user.failed_login_attempts = 0
    user.locked_until = None
    db.commit()

    revoke_all_sessions(db, user.id)
    logger.info("Password reset completed", extra={"user_id": user.id, "tenant_id": user.tenant_id})
    return user


def change_password(
    db: DBSession,
    user: User,
    current_password: str,
    new_password: str,
    keep_session_id: Optional[str] = None,
) -> int:
    """Change the password; other sessions are revoked. Returns how many."""
    if not verify_password(current_password, user.hashed_password):
        log_security_event("failed_password_change", {"user_id": user.id}, logger)
        raise AuthenticationError("Current password is incorrect")
    ensure_password_policy(new_password)
    if verify_password(new_password, user.hashed_password):
        raise InvalidInputError("New password must differ from the current one")

    user.hashed_password = get_password_hash(new_password)
    db.commit()
    return revoke_all_sessions(db, user.id, except_session_id=keep_session_id)
