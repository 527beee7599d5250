"""
User Management Endpoints

CRUD operations for users within a tenant.
All operations are scoped to the current tenant (enforced by middleware).

RBAC:
- List users: staff (OWNER, ADMIN, TRAINER, NUTRITIONIST)
- Get user: staff, or the user themselves
- Create user: OWNER/ADMIN, within plan limits
- Update user: see can_modify_user; role changes need can_assign_role
- Delete user: OWNER/ADMIN
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional

from fitos.database import get_db
from fitos.models.user import User, UserRole, UserStatus
from fitos.models.tenant import Tenant
from fitos.schemas.user import (
    UserResponse,
    UserCreate,
    UserUpdate,
    UserListResponse
)
from fitos.api.deps import (
    get_current_user,
    get_current_tenant,
    require_roles,
)
from fitos.core.security import get_password_hash
from fitos.core.permissions import STAFF_ROLES, can_assign_role, can_modify_user, require_any_role
from fitos.core.exceptions import ConflictError, InvalidInputError, PermissionDenied, UserNotFoundError
from fitos.cache import invalidate_tenant
from fitos.services import auth as auth_service
from fitos.services import plan_limits
from fitos.utils.logging import get_logger, log_security_event

logger = get_logger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

require_manager = require_roles(UserRole.OWNER, UserRole.ADMIN)


def _load_user(db: Session, tenant: Tenant, user_id: str) -> User:
    user = db.query(User).filter(
        User.id == user_id,
        User.tenant_id == tenant.id  # CRITICAL: Tenant isolation
    ).first()
    if not user:
        raise UserNotFoundError(user_id)
    return user


@router.get("", response_model=UserListResponse)
async def list_users(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    role: Optional[UserRole] = Query(None),
    user_status: Optional[UserStatus] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """
    List users in current tenant.

    TENANT_ISOLATION: Automatically filtered by current tenant.
    """
    require_any_role(current_user, STAFF_ROLES)

    query = db.query(User).filter(User.tenant_id == tenant.id)
    if role:
        query = query.filter(User.role == role)
    if user_status:
        query = query.filter(User.status == user_status)

    total = query.count()
    offset = (page - 1) * page_size
    users = query.order_by(User.created_at).offset(offset).limit(page_size).all()

    logger.debug(f"Listed {len(users)} users for tenant {tenant.id}")

    return {"users": users, "total": total, "page": page, "page_size": page_size}


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    return current_user


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: str,
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """TENANT_ISOLATION: Can only access users in same tenant."""
    if user_id != current_user.id:
        require_any_role(current_user, STAFF_ROLES)
    return _load_user(db, tenant, user_id)


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_data: UserCreate,
    current_user: User = Depends(require_manager),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """
    Create a new user in current tenant.

    Counts against the plan: staff roles use the `users` limit, CLIENT the
    `clients` limit (402 PLAN_LIMIT_EXCEEDED when full).
    """
    if not can_assign_role(current_user, user_data.role):
        log_security_event(
            "privilege_escalation",
            {"user_id": current_user.id, "tenant_id": tenant.id, "role": user_data.role.value},
            logger
        )
        raise PermissionDenied(f"You cannot create users with role {user_data.role.value}")

    email = user_data.email
    existing_user = db.query(User.id).filter(
        User.tenant_id == tenant.id,
        User.email == email
    ).first()
    if existing_user:
        raise ConflictError("User with this email already exists")

    plan_limits.enforce_user_limit(db, tenant, user_data.role)
    auth_service.ensure_password_policy(user_data.password)

    new_user = User(
        tenant_id=tenant.id,  # CRITICAL: Set tenant_id
        email=email,
        hashed_password=get_password_hash(user_data.password),
        first_name=user_data.first_name,
        last_name=user_data.last_name,
        phone=user_data.phone,
        role=user_data.role,
        status=UserStatus.ACTIVE,
    )

    db.add(new_user)
    db.commit()
    db.refresh(new_user)
    invalidate_tenant(tenant.id)

    logger.info(f"User created: {new_user.id} by {current_user.id}", extra={"tenant_id": tenant.id})

    return new_user


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    user_data: UserUpdate,
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """
    Update user information.

    SECURITY: users may not change their own role or status; a new role
    must not exceed the caller's own and still fit the plan.
    """
    user = _load_user(db, tenant, user_id)

    if not can_modify_user(current_user, user):
        raise PermissionDenied("Not authorized to modify this user")

    update_data = user_data.model_dump(exclude_unset=True)
    is_self = user.id == current_user.id and not current_user.is_super_admin

    new_role = update_data.get("role")
    if new_role and new_role != user.role:
        if is_self or not can_assign_role(current_user, new_role):
            log_security_event(
                "privilege_escalation",
                {"user_id": current_user.id, "target_user_id": user.id, "role": new_role.value},
                logger
            )
            raise PermissionDenied("Not authorized to assign this role")
        if plan_limits.limit_bucket(new_role) != plan_limits.limit_bucket(user.role):
            plan_limits.enforce_user_limit(db, tenant, new_role)

    new_status = update_data.get("status")
    if new_status and new_status != user.status and is_self:
        raise PermissionDenied("You cannot change your own status")

    for field, value in update_data.items():
        setattr(user, field, value)

    db.commit()
    db.refresh(user)

    if new_status and new_status != UserStatus.ACTIVE:
        auth_service.revoke_all_sessions(db, user.id)
    invalidate_tenant(tenant.id)

    logger.info(f"User updated: {user.id} by {current_user.id}", extra={"tenant_id": tenant.id})

    return user


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: str,
    current_user: User = Depends(require_manager),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """Hard delete; the user's sessions and push subscriptions go with it."""
    user = _load_user(db, tenant, user_id)

    if user.id == current_user.id:
        raise InvalidInputError("Cannot delete your own account")

    if not can_modify_user(current_user, user):
        raise PermissionDenied("Not authorized to delete this user")

    db.delete(user)
    db.commit()
    invalidate_tenant(tenant.id)

    logger.info(f"User deleted: {user_id} by {current_user.id}", extra={"tenant_id": tenant.id})

    return None
