"""
Subscription Plans

Static plan catalog. Limits use -1 for unlimited. `features` are the
feature flags the sidebar and the API check (crmFeatures,
whatsappIntegration, ...). Prices are in BRL; the yearly price carries a
20% discount.
"""
from copy import deepcopy
from typing import Any, Dict, List, Optional
from fitos.cache import cache_get, cache_set, make_key
from fitos.core.exceptions import PlanNotFoundError

UNLIMITED = -1

PLANS_CACHE_TTL = 3600

FEATURE_FLAGS = (
    "crmFeatures",
    "whatsappIntegration",
    "aiNutritionPlanning",
    "biometricAnalysis",
    "apiAccess",
    "customBranding",
)

_PLANS: List[Dict[str, Any]] = [
    {
        "id": "individual",
        "name": "Individual",
        "description": "Free plan for people tracking their own progress",
        "price": {"monthly": 0.0, "yearly": 0.0},
        "currency": "BRL",
        "limits": {"users": 1, "clients": 0, "storage": 1, "apiCalls": 100, "reports": 3},
        "features": {
            "crmFeatures": False,
            "whatsappIntegration": False,
            "aiNutritionPlanning": False,
            "biometricAnalysis": False,
            "apiAccess": False,
            "customBranding": False,
        },
        "popular": False,
        "ads_enabled": True,
        "stripe_price_id": {"monthly": "price_free", "yearly": "price_free"},
    },
    {
        "id": "starter",
        "name": "Starter",
        "description": "Small gyms and personal trainers",
        "price": {"monthly": 99.90, "yearly": 799.20},
        "currency": "BRL",
        "limits": {"users": 5, "clients": 50, "storage": 10, "apiCalls": 1000, "reports": 10},
        "features": {
            "crmFeatures": False,
            "whatsappIntegration": True,
            "aiNutritionPlanning": False,
            "biometricAnalysis": False,
            "apiAccess": False,
            "customBranding": False,
        },
        "popular": False,
        "ads_enabled": True,
        "stripe_price_id": {
            "monthly": "price_1SfS7B0aTWFI2uJk0N6BzbHg",
            "yearly": "price_1SfS7B0aTWFI2uJkkxjbTdzb",
        },
    },
    {
        "id": "professional",
        "name": "Professional",
        "description": "Growing gyms and established professionals",
        "price": {"monthly": 199.90, "yearly": 1599.20},
        "currency": "BRL",
        "limits": {"users": 15, "clients": 200, "storage": 50, "apiCalls": 5000, "reports": 50},
        "features": {
            "crmFeatures": True,
            "whatsappIntegration": True,
            "aiNutritionPlanning": True,
            "biometricAnalysis": True,
            "apiAccess": True,
            "customBranding": False,
        },
        "popular": True,
        "ads_enabled": True,
        "stripe_price_id": {
            "monthly": "price_1SfS7C0aTWFI2uJkpcJzmABE",
            "yearly": "price_1SfS7C0aTWFI2uJklGdLCSit",
        },
    },
    {
        "id": "enterprise",
        "name": "Enterprise",
        "description": "Large gyms and chains",
        "price": {"monthly": 399.90, "yearly": 3199.20},
        "currency": "BRL",
        "limits": {
            "users": UNLIMITED,
            "clients": UNLIMITED,
            "storage": 200,
            "apiCalls": UNLIMITED,
            "reports": UNLIMITED,
        },
        "features": {flag: True for flag in FEATURE_FLAGS},
        "popular": False,
        "ads_enabled": False,
        "stripe_price_id": {
            "monthly": "price_1SfS7D0aTWFI2uJkaVHSmL9K",
            "yearly": "price_1SfS7E0aTWFI2uJkfQMHjTsx",
        },
    },
]

PLAN_IDS = tuple(plan["id"] for plan in _PLANS)

# Plans a tenant can pay for
PAID_PLAN_IDS = ("starter", "professional", "enterprise")


def get_all_plans() -> List[Dict[str, Any]]:
    """Plan catalog, served from Redis when available."""
    key = make_key("billing", "plans", "all")
    cached = cache_get(key)
    if cached:
        return cached
    plans = deepcopy(_PLANS)
    cache_set(key, plans, ttl=PLANS_CACHE_TTL)
    return plans


def find_plan(plan_id: str) -> Optional[Dict[str, Any]]:
    for plan in _PLANS:
        if plan["id"] == plan_id:
            return deepcopy(plan)
    return None


def get_plan(plan_id: str) -> Dict[str, Any]:
    """Like find_plan() but raises PlanNotFoundError."""
    plan = find_plan(plan_id)
    if plan is None:
        raise PlanNotFoundError(plan_id)
    return plan


def plan_price(plan_id: str, billing_cycle: str) -> float:
    return get_plan(plan_id)["price"][billing_cycle]


def plan_has_feature(plan_id: str, feature: str) -> bool:
    plan = find_plan(plan_id)
    if plan is None:
        return False
    return bool(plan["features"].get(feature, False))


def is_unlimited(limit: int) -> bool:
    return limit == UNLIMITED
