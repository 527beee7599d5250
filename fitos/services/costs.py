"""
Cost Management

Platform operating costs for the SUPER_ADMIN dashboard: entries, monthly
budgets and the alerts raised when spending approaches a budget.

Alert thresholds (percentage of the budget's monthly limit):
- >= 100%: LIMIT_REACHED
- >= COST_ALERT_CRITICAL (90) and alert_at_90: CRITICAL
- >= COST_ALERT_WARNING (75) and alert_at_75: WARNING

At most one active alert exists per budget and alert type.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
import csv
import io
import json
import logging
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from fitos.config import get_settings
from fitos.core.exceptions import InvalidInputError, NotFoundError
from fitos.models.cost import AlertType, CostAlert, CostBudget, CostCategory, CostEntry

logger = logging.getLogger(__name__)

CSV_HEADERS = ["date", "category", "service", "amount", "currency", "description", "tags", "tenant_id", "created_by"]


def _validate_category(category: Optional[str]) -> None:
    if category is not None and category not in CostCategory.ALL:
        raise InvalidInputError(f"Unknown cost category: {category}")


def _filtered(db: Session, filters: Dict[str, Any]):
    query = db.query(CostEntry)
    if filters.get("category"):
        query = query.filter(CostEntry.category == filters["category"])
    if filters.get("service"):
        query = query.filter(CostEntry.service == filters["service"])
    if filters.get("tenant_id"):
        query = query.filter(CostEntry.tenant_id == filters["tenant_id"])
    if filters.get("start_date"):
        query = query.filter(CostEntry.date >= filters["start_date"])
    if filters.get("end_date"):
        query = query.filter(CostEntry.date <= filters["end_date"])
    return query


# ============================================================================
# Entries
# ============================================================================

def create_entry(db: Session, data: Dict[str, Any], created_by: Optional[str] = None) -> CostEntry:
    """Store a cost entry, then re-check the budgets it counts against."""
    _validate_category(data.get("category"))
    if data.get("amount") is None or data["amount"] < 0:
        raise InvalidInputError("Amount must be zero or positive")

    date = data.get("date") or datetime.utcnow()
    entry = CostEntry(
        category=data["category"],
        service=data["service"],
        amount=data["amount"],
        currency=data.get("currency") or get_settings().COST_DEFAULT_CURRENCY,
        date=date,
        month=date.month,
        year=date.year,
        description=data.get("description"),
        tags=list(data.get("tags") or []),
        tenant_id=data.get("tenant_id"),
        created_by=created_by,
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)

    check_budgets(db, entry)
    return entry


def get_entry(db: Session, entry_id: str) -> CostEntry:
    entry = db.get(CostEntry, entry_id)
    if entry is None:
        raise NotFoundError("Cost entry", entry_id)
    return entry


def update_entry(db: Session, entry: CostEntry, data: Dict[str, Any]) -> CostEntry:
    if "category" in data:
        _validate_category(data["category"])
    for key, value in data.items():
        setattr(entry, key, value)
    if "date" in data and data["date"] is not None:
        entry.month = data["date"].month
        entry.year = data["date"].year
    db.commit()
    db.refresh(entry)
    return entry


def delete_entry(db: Session, entry: CostEntry) -> None:
    db.delete(entry)
    db.commit()


def list_entries(db: Session, filters: Dict[str, Any], page: int = 1, page_size: int = 50) -> Tuple[List[CostEntry], int]:
    query = _filtered(db, filters)
    total = query.count()
    entries = (
        query.order_by(CostEntry.date.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return entries, total


# ============================================================================
# Budgets and alerts
# ============================================================================

def create_budget(db: Session, data: Dict[str, Any]) -> CostBudget:
    _validate_category(data.get("category"))
    if data.get("monthly_limit") is None or data["monthly_limit"] <= 0:
        raise InvalidInputError("monthly_limit must be positive")
    budget = CostBudget(
        category=data.get("category"),
        monthly_limit=data["monthly_limit"],
        currency=data.get("currency") or get_settings().COST_DEFAULT_CURRENCY,
        alert_at_75=data.get("alert_at_75", True),
        alert_at_90=data.get("alert_at_90", True),
        start_date=data.get("start_date") or datetime.utcnow(),
        end_date=data.get("end_date"),
        is_active=True,
    )
    db.add(budget)
    db.commit()
    db.refresh(budget)
    return budget


def list_budgets(db: Session, active_only: bool = True) -> List[CostBudget]:
    query = db.query(CostBudget)
    if active_only:
        query = query.filter(CostBudget.is_active.is_(True))
    return query.order_by(CostBudget.created_at.desc()).all()


def _month_total(db: Session, year: int, month: int, category: Optional[str] = None) -> float:
    query = db.query(func.coalesce(func.sum(CostEntry.amount), 0.0)).filter(
        CostEntry.year == year,
        CostEntry.month == month,
    )
    if category:
        query = query.filter(CostEntry.category == category)
    return float(query.scalar() or 0.0)


def classify(percentage: float, budget: CostBudget) -> Optional[Tuple[str, str]]:
    """(alert_type, severity) for a spending percentage, or None."""
    settings = get_settings()
    if percentage >= 100:
        return AlertType.LIMIT_REACHED, "high"
    if percentage >= settings.COST_ALERT_CRITICAL and budget.alert_at_90:
        return AlertType.CRITICAL, "high"
    if percentage >= settings.COST_ALERT_WARNING and budget.alert_at_75:
        return AlertType.WARNING, "medium"
    return None


def _alert_message(alert_type: str, current: float, percentage: float, currency: str) -> str:
    if alert_type == AlertType.LIMIT_REACHED:
        return f"Budget reached! Current spend: {currency} {current:.2f} ({percentage:.1f}%)"
    if alert_type == AlertType.CRITICAL:
        return f"Critical: current spend {currency} {current:.2f} ({percentage:.1f}%) is close to the limit"
    return f"Warning: current spend {currency} {current:.2f} ({percentage:.1f}%), keep an eye on costs"


def check_budgets(db: Session, entry: CostEntry) -> List[CostAlert]:
    """Raise alerts for the active budgets covering `entry`. Returns new alerts."""
    budgets = (
        db.query(CostBudget)
        .filter(
            CostBudget.is_active.is_(True),
            or_(CostBudget.category == entry.category, CostBudget.category.is_(None)),
            CostBudget.start_date <= entry.date,
            or_(CostBudget.end_date.is_(None), CostBudget.end_date >= entry.date),
        )
        .all()
    )

    created = []
    for budget in budgets:
        current = _month_total(db, entry.year, entry.month, budget.category)
        percentage = (current / budget.monthly_limit) * 100
        level = classify(percentage, budget)
        if level is None:
            continue
        alert_type, severity = level

        existing = db.query(CostAlert.id).filter(
            CostAlert.budget_id == budget.id,
            CostAlert.alert_type == alert_type,
            CostAlert.is_active.is_(True),
        ).first()
        if existing:
            continue

        alert = CostAlert(
            budget_id=budget.id,
            alert_type=alert_type,
            severity=severity,
            current_cost=current,
            limit_amount=budget.monthly_limit,
            percentage=round(percentage, 2),
            message=_alert_message(alert_type, current, percentage, budget.currency),
        )
        db.add(alert)
        created.append(alert)
        logger.warning(f"Cost alert {alert_type} for budget {budget.id}: {percentage:.1f}%")

    if created:
        db.commit()
    return created


def list_alerts(db: Session, active_only: bool = True) -> List[CostAlert]:
    query = db.query(CostAlert)
    if active_only:
        query = query.filter(CostAlert.is_active.is_(True))
    return query.order_by(CostAlert.created_at.desc()).all()


def acknowledge_alert(db: Session, alert_id: str, user_id: str) -> CostAlert:
    alert = db.get(CostAlert, alert_id)
    if alert is None:
        raise NotFoundError("Cost alert", alert_id)
    alert.is_active = False
    alert.acknowledged_at = datetime.utcnow()
    alert.acknowledged_by = user_id
    db.commit()
    db.refresh(alert)
    return alert


# ============================================================================
# Reporting
# ============================================================================

def dashboard(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Current vs previous month, with a per-category breakdown."""
    now = now or datetime.utcnow()
    prev_year, prev_month = (now.year - 1, 12) if now.month == 1 else (now.year, now.month - 1)

    current_total = _month_total(db, now.year, now.month)
    previous_total = _month_total(db, prev_year, prev_month)
    variation = ((current_total - previous_total) / previous_total) * 100 if previous_total > 0 else 0.0

    rows = (
        db.query(CostEntry.category, func.sum(CostEntry.amount))
        .filter(CostEntry.year == now.year, CostEntry.month == now.month)
        .group_by(CostEntry.category)
        .all()
    )
    categories = [
        {
            "category": category,
            "total": round(float(total), 2),
            "percentage": round((float(total) / current_total) * 100, 2) if current_total else 0.0,
        }
        for category, total in sorted(rows, key=lambda row: row[1], reverse=True)
    ]

    return {
        "year": now.year,
        "month": now.month,
        "currency": get_settings().COST_DEFAULT_CURRENCY,
        "total_current_month": round(current_total, 2),
        "total_previous_month": round(previous_total, 2),
        "variation_percentage": round(variation, 2),
        "categories": categories,
        "active_alerts": db.query(CostAlert).filter(CostAlert.is_active.is_(True)).count(),
    }


def _entry_row(entry: CostEntry) -> Dict[str, Any]:
    return {
        "date": entry.date.date().isoformat(),
        "category": entry.category,
        "service": entry.service,
        "amount": entry.amount,
        "currency": entry.currency,
        "description": entry.description or "",
        "tags": ";".join(entry.tags or []),
        "tenant_id": entry.tenant_id or "",
        "created_by": entry.created_by or "",
    }


def export_report(db: Session, filters: Dict[str, Any], fmt: str = "csv") -> str:
    """Cost entries as CSV or JSON text, newest first."""
    if fmt not in ("csv", "json"):
        raise InvalidInputError(f"Unsupported export format: {fmt}")
    entries = _filtered(db, filters).order_by(CostEntry.date.desc()).all()
    rows = [_entry_row(entry) for entry in entries]

    if fmt == "json":
        return json.dumps(rows, indent=2)

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_HEADERS, quoting=csv.QUOTE_ALL)
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue()
