"""
API Dependencies

Reusable FastAPI dependencies for authentication and authorization.
These are used across all API endpoints to ensure consistent security.

Credentials come from `Authorization: Bearer <jwt>` or the session cookie.
Either way the server-side session must still be live, so logging out
invalidates outstanding JWTs too.
"""
from typing import Optional, Tuple
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session as DBSession

from fitos.config import get_settings
from fitos.database import get_db
from fitos.models.session import Session
from fitos.models.tenant import Tenant
from fitos.models.user import User, UserRole
from fitos.core.security import decode_access_token
from fitos.core.permissions import require_any_role
from fitos.core.exceptions import (
    AuthenticationError,
    PermissionDenied,
    TenantIsolationError,
    TenantNotFoundError,
)
from fitos.services import auth as auth_service
from fitos.utils.logging import bind_context
import logging

logger = logging.getLogger(__name__)

# auto_error=False: the session cookie is an alternative credential
security = HTTPBearer(auto_error=False)

UNSAFE_METHODS = ("POST", "PUT", "PATCH", "DELETE")


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def get_current_tenant(request: Request, db: DBSession = Depends(get_db)) -> Tenant:
    """
    Get current tenant, as resolved by TenantMiddleware.

    The tenant is re-loaded in the request's database session so handlers
    can modify it.
    """
    state_tenant = getattr(request.state, "tenant", None)
    if not state_tenant:
        logger.error("No tenant in request state - middleware may have failed")
        raise TenantIsolationError("Tenant context not available")

    tenant = db.get(Tenant, state_tenant.id)
    if tenant is None:
        raise TenantNotFoundError(state_tenant.id)
    return tenant


def _check_origin(request: Request) -> None:
    """Cookie credentials on unsafe methods need a trusted Origin (when sent)."""
    if request.method not in UNSAFE_METHODS:
        return
    origin = request.headers.get("Origin")
    if origin and origin not in get_settings().TRUSTED_ORIGINS:
        logger.warning(f"Rejected cookie-authenticated request from origin {origin}")
        raise PermissionDenied("Untrusted origin")


def _authenticate(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials],
    db: DBSession,
) -> Tuple[User, Session]:
    """
    Resolve the caller's user and live session.

    1. Bearer JWT: verify it, then require its `sid` session to be live
    2. Otherwise the session cookie (with the Origin check)
    3. Load the user of the session and require it to be active
    """
    if credentials is not None:
        payload = decode_access_token(credentials.credentials)
        session_id = payload.get("sid")
        if not payload.get("sub") or not session_id:
            raise AuthenticationError("Invalid token payload", code="INVALID_TOKEN")
        session = auth_service.get_live_session(db, session_id)
        if session.user_id != payload["sub"] or session.tenant_id != payload.get("tenant_id"):
            raise AuthenticationError("Token does not match its session", code="INVALID_TOKEN")
    else:
        raw_token = request.cookies.get(get_settings().SESSION_COOKIE_NAME)
        if not raw_token:
            raise AuthenticationError("Not authenticated")
        _check_origin(request)
        session = auth_service.get_session_by_token(db, raw_token)

    # Load user from database; the session pins both user and tenant
    user = db.query(User).filter(
        User.id == session.user_id,
        User.tenant_id == session.tenant_id
    ).first()

    if not user:
        logger.warning(f"User not found for session {session.id}")
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthenticationError("User account is inactive", code="USER_INACTIVE")

    return user, session


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: DBSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant)
) -> User:
    """
    Get current authenticated user.

    CRITICAL SECURITY CHECK: the user's tenant must be the request tenant.
    Only SUPER_ADMIN may act inside another tenant.
    """
    user, session = _authenticate(request, credentials, db)

    if user.tenant_id != tenant.id and not user.is_super_admin:
        logger.error(
            f"Tenant mismatch: token={user.tenant_id}, request={tenant.id}",
            extra={"user_id": user.id, "tenant_id": tenant.id}
        )
        raise TenantIsolationError("Token tenant mismatch")

    request.state.session = session
    request.state.user_id = user.id
    bind_context(user_id=user.id)
    return user


def get_current_session(
    request: Request,
    current_user: User = Depends(get_current_user)
) -> Session:
    return request.state.session


async def get_platform_admin(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: DBSession = Depends(get_db),
) -> User:
    """SUPER_ADMIN for the tenant-less /api/v1/admin routes."""
    user, session = _authenticate(request, credentials, db)
    if not user.is_super_admin:
        raise PermissionDenied("Platform administrator privileges required")
    request.state.session = session
    request.state.user_id = user.id
    bind_context(user_id=user.id)
    return user


def require_roles(*roles: UserRole):
    """
    Dependency factory: the current user must hold one of `roles`.

    SUPER_ADMIN always passes.
    """
    async def checker(current_user: User = Depends(get_current_user)) -> User:
        require_any_role(current_user, roles)
        return current_user

    return checker


def ensure_tenant_access(user: User, tenant_id: str) -> None:
    """Path-scoped check: a `tenant_id` in the URL must be the user's own."""
    if user.is_super_admin:
        return
    if user.tenant_id != tenant_id:
        raise TenantIsolationError("Access to another tenant's data is not allowed")
