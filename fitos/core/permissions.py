"""
Permission System (RBAC)

Role-based access control with a simple hierarchy:

    SUPER_ADMIN > OWNER > ADMIN > TRAINER = NUTRITIONIST > CLIENT

SUPER_ADMIN is the platform operator and passes every role check. It is
also the only role allowed to act outside its own tenant (see
fitos.api.deps.ensure_tenant_access).

Besides the API-side checks, this module owns the maps the front end uses
for its route guard (ROLE_PROTECTED_ROUTES), post-login redirect
(ROLE_REDIRECTS) and sidebar filtering (ROLE_MODULE_MAP).
"""
from typing import Dict, List, Optional, Sequence
from fitos.core.exceptions import PermissionDenied
from fitos.models.user import User, UserRole

ALL_ROLES: List[UserRole] = list(UserRole)

STAFF_ROLES: List[UserRole] = [
    UserRole.OWNER,
    UserRole.ADMIN,
    UserRole.TRAINER,
    UserRole.NUTRITIONIST,
]

# Longest prefix wins; see can_access_route()
ROLE_PROTECTED_ROUTES: Dict[str, List[UserRole]] = {
    "/super-admin": [UserRole.SUPER_ADMIN],
    "/empresas": [UserRole.SUPER_ADMIN],
    "/users": [UserRole.SUPER_ADMIN],
    "/plans": [UserRole.SUPER_ADMIN],
    "/custom-plans": [UserRole.SUPER_ADMIN],
    "/ai-agents": [UserRole.SUPER_ADMIN],
    "/marketplace": [UserRole.SUPER_ADMIN],
    "/wearables": [UserRole.SUPER_ADMIN],
    "/admin": [UserRole.SUPER_ADMIN, UserRole.OWNER, UserRole.ADMIN],
    "/clients": [UserRole.SUPER_ADMIN, UserRole.OWNER, UserRole.ADMIN, UserRole.TRAINER],
    "/exercises": [UserRole.SUPER_ADMIN, UserRole.OWNER, UserRole.ADMIN, UserRole.TRAINER],
    "/workouts": [UserRole.SUPER_ADMIN, UserRole.OWNER, UserRole.ADMIN, UserRole.TRAINER],
    "/analytics": [UserRole.SUPER_ADMIN, UserRole.OWNER, UserRole.ADMIN, UserRole.TRAINER],
    "/trainer": [UserRole.SUPER_ADMIN, UserRole.OWNER, UserRole.ADMIN, UserRole.TRAINER],
    "/nutritionist": [UserRole.SUPER_ADMIN, UserRole.OWNER, UserRole.ADMIN, UserRole.NUTRITIONIST],
    "/dashboard": ALL_ROLES,
    "/client": ALL_ROLES,
}

ROLE_REDIRECTS: Dict[UserRole, str] = {
    UserRole.SUPER_ADMIN: "/super-admin/dashboard",
    UserRole.OWNER: "/admin/dashboard",
    UserRole.ADMIN: "/admin/dashboard",
    UserRole.TRAINER: "/trainer/dashboard",
    UserRole.NUTRITIONIST: "/nutritionist/dashboard",
    UserRole.CLIENT: "/client/workouts",
}

SIDEBAR_MODULES = (
    "core", "training", "scheduling", "nutrition", "crm",
    "communication", "analytics", "marketplace", "admin",
)

ROLE_MODULE_MAP: Dict[UserRole, Sequence[str]] = {
    UserRole.SUPER_ADMIN: SIDEBAR_MODULES,
    UserRole.OWNER: SIDEBAR_MODULES,
    UserRole.ADMIN: SIDEBAR_MODULES,
    UserRole.TRAINER: ("core", "training", "scheduling", "communication"),
    UserRole.NUTRITIONIST: ("core", "nutrition", "scheduling", "communication"),
    UserRole.CLIENT: ("core", "marketplace"),
}


def require_any_role(user: User, roles: Sequence[UserRole]) -> None:
    """
    Check that the user holds one of the listed roles.

    Exact match, not a hierarchy check (TRAINER does not satisfy
    NUTRITIONIST). SUPER_ADMIN always passes.
    """
    if user.role == UserRole.SUPER_ADMIN or user.role in roles:
        return
    allowed = ", ".join(role.value for role in roles)
    raise PermissionDenied(detail=f"This action requires one of: {allowed}")


def can_modify_user(current_user: User, target_user: User) -> bool:
    """
    Check if current_user can modify target_user.

    Rules:
    - SUPER_ADMIN can modify anyone
    - Users can modify themselves
    - OWNER/ADMIN can modify anyone in their tenant, but only an OWNER
      may touch another OWNER
    - No cross-tenant modifications
    """
    if current_user.role == UserRole.SUPER_ADMIN:
        return True
    if current_user.id == target_user.id:
        return True
    if current_user.tenant_id != target_user.tenant_id:
        return False
    if target_user.role == UserRole.OWNER:
        return current_user.role == UserRole.OWNER
    if target_user.role == UserRole.SUPER_ADMIN:
        return False
    return current_user.role in (UserRole.OWNER, UserRole.ADMIN)


def can_assign_role(current_user: User, role: UserRole) -> bool:
    """Nobody may grant a role above their own; only SUPER_ADMIN grants SUPER_ADMIN."""
    if role == UserRole.SUPER_ADMIN:
        return current_user.role == UserRole.SUPER_ADMIN
    return current_user.has_permission(role)


def _match_route(path: str) -> Optional[str]:
    best = None
    for prefix in ROLE_PROTECTED_ROUTES:
        if path == prefix or path.startswith(prefix + "/"):
            if best is None or len(prefix) > len(best):
                best = prefix
    return best


def can_access_route(role: UserRole, path: str) -> bool:
    """
    Front-end route guard.

    Routes not listed in ROLE_PROTECTED_ROUTES are open to any
    authenticated user.
    """
    if role == UserRole.SUPER_ADMIN:
        return True
    prefix = _match_route(path)
    if prefix is None:
        return True
    return role in ROLE_PROTECTED_ROUTES[prefix]


def redirect_for_role(role: UserRole) -> str:
    return ROLE_REDIRECTS.get(role, "/dashboard")
