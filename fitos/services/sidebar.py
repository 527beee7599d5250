"""
Sidebar Configuration

The menu a user sees is built in layers:

1. plan default: newest active SidebarMenuConfig for the plan (Redis
   cached), else the built-in DEFAULT_MENUS
2. tenant customization: hide, rename, reorder
3. role filter: module allowed by ROLE_MODULE_MAP and role listed in the
   item's requiredRoles (SUPER_ADMIN skips this step)
4. feature filter: requiredFeature must be enabled by the tenant's plan
"""
from copy import deepcopy
from typing import Any, Dict, List, Optional
import logging
from sqlalchemy.orm import Session

from fitos.cache import cache_delete, cache_get, cache_set, make_key
from fitos.core.exceptions import InvalidInputError
from fitos.core.permissions import ROLE_MODULE_MAP
from fitos.core.plans import PLAN_IDS, plan_has_feature
from fitos.models.sidebar import SidebarCustomization, SidebarMenuConfig
from fitos.models.tenant import Tenant
from fitos.models.user import UserRole

logger = logging.getLogger(__name__)

PLAN_MENU_CACHE_TTL = 3600
HISTORY_LIMIT = 10

_STAFF = ["SUPER_ADMIN", "OWNER", "ADMIN", "TRAINER", "NUTRITIONIST"]
_MANAGERS = ["SUPER_ADMIN", "OWNER", "ADMIN"]


def _item(id, title, url, icon, module, order, required_roles=None, required_feature=None):
    item = {
        "id": id,
        "title": title,
        "url": url,
        "icon": icon,
        "module": module,
        "isVisible": True,
        "order": order,
    }
    if required_roles:
        item["requiredRoles"] = list(required_roles)
    if required_feature:
        item["requiredFeature"] = required_feature
    return item


_CLIENT_ITEMS = [
    _item("my-workouts", "My workouts", "/client/workouts", "Dumbbell", "core", 50, ["CLIENT"]),
    _item("my-progress", "My progress", "/client/progress", "TrendingUp", "core", 51, ["CLIENT"]),
]

_STARTER = [
    _item("dashboard", "Dashboard", "/dashboard", "BarChart3", "core", 0, _STAFF),
    _item("clients", "Clients", "/trainer/clients", "Users", "training", 1, _MANAGERS + ["TRAINER"]),
    _item("workouts", "Workouts", "/trainer/workouts", "Target", "training", 2, _MANAGERS + ["TRAINER"]),
    _item("exercises", "Exercises", "/trainer/exercises", "Dumbbell", "training", 3, _MANAGERS + ["TRAINER"]),
    _item("schedule", "Schedule", "/schedule", "CalendarDays", "scheduling", 4, _STAFF),
    _item("chat", "AI Chat", "/trainer/chat", "MessageSquare", "core", 5, _STAFF),
    _item("profile", "Profile", "/settings/profile", "User", "core", 60),
] + _CLIENT_ITEMS

_PROFESSIONAL = [
    _item("dashboard", "Dashboard", "/dashboard", "BarChart3", "core", 0, _STAFF),
    _item("clients", "Clients", "/trainer/clients", "Users", "training", 1, _MANAGERS + ["TRAINER"]),
    _item("workouts", "Workouts", "/trainer/workouts", "Target", "training", 2, _MANAGERS + ["TRAINER"]),
    _item("exercises", "Exercises", "/trainer/exercises", "Dumbbell", "training", 3, _MANAGERS + ["TRAINER"]),
    _item("assessments", "Assessments", "/trainer/assessments", "Stethoscope", "training", 4, _MANAGERS + ["TRAINER"]),
    _item("nutrition", "Nutrition", "/nutritionist/dashboard", "Apple", "nutrition", 5,
          _MANAGERS + ["NUTRITIONIST"], "aiNutritionPlanning"),
    _item("nutrition-clients", "Nutrition clients", "/nutritionist/clients", "Users2", "nutrition", 6,
          _MANAGERS + ["NUTRITIONIST"], "aiNutritionPlanning"),
    _item("meal-plans", "Meal plans", "/nutritionist/meal-plans", "UtensilsCrossed", "nutrition", 7,
          _MANAGERS + ["NUTRITIONIST"], "aiNutritionPlanning"),
    _item("bioimpedance", "Bioimpedance", "/nutritionist/bioimpedance", "Activity", "nutrition", 8,
          _MANAGERS + ["NUTRITIONIST"], "biometricAnalysis"),
    _item("schedule", "Schedule", "/schedule", "CalendarDays", "scheduling", 9, _STAFF),
    _item("crm", "CRM", "/crm", "MessageCircle", "crm", 10, _MANAGERS, "crmFeatures"),
    _item("whatsapp", "WhatsApp", "/whatsapp", "MessageSquare", "communication", 11, _MANAGERS, "whatsappIntegration"),
    _item("analytics", "Analytics", "/analytics", "PieChart", "analytics", 12, _MANAGERS),
    _item("chat", "AI Chat", "/trainer/chat", "MessageSquare", "core", 13, _STAFF),
    _item("profile", "Profile", "/settings/profile", "User", "core", 60),
] + _CLIENT_ITEMS

_ENTERPRISE = _PROFESSIONAL + [
    _item("marketplace", "Marketplace", "/marketplace", "Store", "marketplace", 15),
    _item("integrations", "Integrations", "/integrations", "Zap", "admin", 16, ["SUPER_ADMIN", "OWNER"], "apiAccess"),
    _item("white-label", "White label", "/admin/white-label", "Palette", "admin", 17,
          ["SUPER_ADMIN", "OWNER"], "customBranding"),
]

_INDIVIDUAL = _CLIENT_ITEMS + [
    _item("profile", "Profile", "/settings/profile", "User", "core", 60),
]

DEFAULT_MENUS: Dict[str, List[Dict[str, Any]]] = {
    "individual": _INDIVIDUAL,
    "starter": _STARTER,
    "professional": _PROFESSIONAL,
    "enterprise": _ENTERPRISE,
}


def builtin_menu(plan: str) -> List[Dict[str, Any]]:
    return deepcopy(DEFAULT_MENUS.get(plan, DEFAULT_MENUS["starter"]))


def _cache_key(plan: str) -> str:
    return make_key("sidebar", "plan", plan)


def validate_plan(plan: str) -> None:
    if plan not in PLAN_IDS:
        raise InvalidInputError(f"Unknown plan: {plan}")


def get_plan_menu(db: Session, plan: str) -> List[Dict[str, Any]]:
    """Plan default menu: Redis, then the newest active DB version, then built-in."""
    cached = cache_get(_cache_key(plan))
    if cached:
        return cached

    config = (
        db.query(SidebarMenuConfig)
        .filter(SidebarMenuConfig.plan == plan, SidebarMenuConfig.is_active.is_(True))
        .order_by(SidebarMenuConfig.version.desc())
        .first()
    )
    if config is not None:
        items = deepcopy(config.menu_items)
    else:
        logger.debug(f"No stored sidebar config for plan {plan}; using built-in defaults")
        items = builtin_menu(plan)

    cache_set(_cache_key(plan), items, ttl=PLAN_MENU_CACHE_TTL)
    return items


def apply_customization(items: List[Dict[str, Any]], customization: Optional[SidebarCustomization]) -> List[Dict[str, Any]]:
    if customization is None:
        return items
    hidden = set(customization.hidden_items or [])
    renamed = customization.renamed_items or {}
    order = customization.item_order or {}

    result = []
    for item in items:
        if item["id"] in hidden:
            continue
        item = dict(item)
        if item["id"] in renamed:
            item["title"] = renamed[item["id"]]
        if item["id"] in order:
            item["order"] = order[item["id"]]
        result.append(item)
    return result


def filter_items(items: List[Dict[str, Any]], plan: str, role: UserRole) -> List[Dict[str, Any]]:
    allowed_modules = ROLE_MODULE_MAP.get(role, ("core",))
    result = []
    for item in items:
        if not item.get("isVisible", True):
            continue
        feature = item.get("requiredFeature")
        if feature and not plan_has_feature(plan, feature):
            continue
        if role != UserRole.SUPER_ADMIN:
            if item.get("module", "core") not in allowed_modules:
                continue
            required_roles = item.get("requiredRoles")
            if required_roles and role.value not in required_roles:
                continue
        result.append(item)
    return sorted(result, key=lambda item: item.get("order", 0))


def get_customization(db: Session, tenant_id: str) -> Optional[SidebarCustomization]:
    return db.query(SidebarCustomization).filter(SidebarCustomization.tenant_id == tenant_id).first()


def get_sidebar_for_tenant(db: Session, tenant: Tenant, role: UserRole) -> List[Dict[str, Any]]:
    items = get_plan_menu(db, tenant.plan)
    items = apply_customization(items, get_customization(db, tenant.id))
    return filter_items(items, tenant.plan, role)


def save_customization(
    db: Session,
    tenant_id: str,
    hidden_items: List[str],
    renamed_items: Dict[str, str],
    item_order: Dict[str, int],
) -> SidebarCustomization:
    customization = get_customization(db, tenant_id)
    if customization is None:
        customization = SidebarCustomization(tenant_id=tenant_id)
        db.add(customization)
    customization.hidden_items = list(hidden_items)
    customization.renamed_items = dict(renamed_items)
    customization.item_order = dict(item_order)
    db.commit()
    db.refresh(customization)
    logger.info("Sidebar customization saved", extra={"tenant_id": tenant_id})
    return customization


def save_plan_default(db: Session, plan: str, menu_items: List[Dict[str, Any]], created_by: Optional[str] = None) -> SidebarMenuConfig:
    """Store a new version of a plan's default menu and make it the active one."""
    validate_plan(plan)
    latest = (
        db.query(SidebarMenuConfig)
        .filter(SidebarMenuConfig.plan == plan)
        .order_by(SidebarMenuConfig.version.desc())
        .first()
    )
    (
        db.query(SidebarMenuConfig)
        .filter(SidebarMenuConfig.plan == plan, SidebarMenuConfig.is_active.is_(True))
        .update({SidebarMenuConfig.is_active: False}, synchronize_session=False)
    )
    config = SidebarMenuConfig(
        plan=plan,
        version=(latest.version if latest else 0) + 1,
        menu_items=menu_items,
        is_active=True,
        created_by=created_by,
    )
    db.add(config)
    db.commit()
    db.refresh(config)
    cache_delete(_cache_key(plan))

    logger.info(f"Sidebar config for plan {plan} saved as version {config.version}")
    return config


def preview(db: Session, plan: str, role: UserRole) -> List[Dict[str, Any]]:
    """What a role would see on a plan, before tenant customization."""
    validate_plan(plan)
    return filter_items(get_plan_menu(db, plan), plan, role)


def version_history(db: Session, plan: str, limit: int = HISTORY_LIMIT) -> List[SidebarMenuConfig]:
    validate_plan(plan)
    return (
        db.query(SidebarMenuConfig)
        .filter(SidebarMenuConfig.plan == plan)
        .order_by(SidebarMenuConfig.version.desc())
        .limit(limit)
        .all()
    )


def seed_plan_defaults(db: Session, created_by: Optional[str] = None) -> int:
    """Store the built-in menus as version 1 for plans that have none. Returns how many."""
    created = 0
    for plan in DEFAULT_MENUS:
        exists = db.query(SidebarMenuConfig.id).filter(SidebarMenuConfig.plan == plan).first()
        if exists:
            continue
        db.add(SidebarMenuConfig(plan=plan, version=1, menu_items=builtin_menu(plan), created_by=created_by))
        created += 1
    db.commit()
    return created
