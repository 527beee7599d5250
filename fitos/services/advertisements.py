"""
Advertisements

Ads are shown only to tenants whose plan has ads enabled. Selection:

1. candidates: active ads for the tenant and position, inside their date
   window, by priority then recency (at most MAX_CANDIDATES)
2. drop ads already shown to this user FREQUENCY_LIMIT times today
3. score relevance against the user's context, keep >= MIN_RELEVANCE
4. best score wins, priority breaks ties; each served ad logs an impression
"""
from dataclasses import dataclass, field
from datetime import datetime, time
from typing import Any, Dict, List, Optional, Tuple
import logging
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from fitos.core.exceptions import NotFoundError
from fitos.models.advertisement import AdImpression, Advertisement
from fitos.models.tenant import Tenant

logger = logging.getLogger(__name__)

MAX_CANDIDATES = 20
FREQUENCY_LIMIT = 2
MIN_RELEVANCE = 0.8

BASE_SCORE = 0.5
GOAL_BOOST = 0.3
NUTRITION_BOOST = 0.2
MAX_PRIORITY_BOOST = 0.1


@dataclass
class AdContext:
    """What we know about the viewer."""
    user_id: Optional[str] = None
    current_goal: Optional[str] = None
    nutrition_preferences: List[str] = field(default_factory=list)


def calculate_relevance(ad: Advertisement, context: AdContext) -> float:
    score = BASE_SCORE
    targeting = ad.targeting or {}

    goals = targeting.get("goals") or []
    if context.current_goal and context.current_goal in goals:
        score += GOAL_BOOST

    preferences = targeting.get("nutritionPreferences") or []
    if any(pref in preferences for pref in context.nutrition_preferences):
        score += NUTRITION_BOOST

    if ad.priority and ad.priority > 0:
        score += min(ad.priority / 10, MAX_PRIORITY_BOOST)

    return round(min(score, 1.0), 4)


def _candidates(db: Session, tenant_id: str, position: str, now: datetime) -> List[Advertisement]:
    return (
        db.query(Advertisement)
        .filter(
            Advertisement.tenant_id == tenant_id,
            Advertisement.position == position,
            Advertisement.is_active.is_(True),
            or_(Advertisement.start_date.is_(None), Advertisement.start_date <= now),
            or_(Advertisement.end_date.is_(None), Advertisement.end_date >= now),
        )
        .order_by(Advertisement.priority.desc(), Advertisement.created_at.desc())
        .limit(MAX_CANDIDATES)
        .all()
    )


def _shown_today(db: Session, user_id: str, ad_ids: List[str], now: datetime) -> Dict[str, int]:
    if not ad_ids:
        return {}
    day_start = datetime.combine(now.date(), time.min)
    rows = (
        db.query(AdImpression.advertisement_id, func.count(AdImpression.id))
        .filter(
            AdImpression.user_id == user_id,
            AdImpression.advertisement_id.in_(ad_ids),
            AdImpression.created_at >= day_start,
        )
        .group_by(AdImpression.advertisement_id)
        .all()
    )
    return dict(rows)


def record_impression(db: Session, ad: Advertisement, relevance_score: float, user_id: Optional[str] = None) -> None:
    ad.impressions += 1
    db.add(AdImpression(
        advertisement_id=ad.id,
        tenant_id=ad.tenant_id,
        user_id=user_id,
        relevance_score=relevance_score,
    ))


def get_relevant_ads(
    db: Session,
    tenant: Tenant,
    position: str,
    context: AdContext,
    limit: int = 1,
    now: Optional[datetime] = None,
) -> List[Tuple[Advertisement, float]]:
    """Best ads for a position, as (ad, score) pairs. Records impressions."""
    if not tenant.ads_enabled:
        logger.debug(f"Ads disabled for tenant {tenant.slug}")
        return []

    now = now or datetime.utcnow()
    candidates = _candidates(db, tenant.id, position, now)
    if not candidates:
        return []

    if context.user_id:
        shown = _shown_today(db, context.user_id, [ad.id for ad in candidates], now)
        candidates = [ad for ad in candidates if shown.get(ad.id, 0) < FREQUENCY_LIMIT]

    scored = [(ad, calculate_relevance(ad, context)) for ad in candidates]
    relevant = [item for item in scored if item[1] >= MIN_RELEVANCE]
    relevant.sort(key=lambda item: (item[1], item[0].priority or 0), reverse=True)
    selected = relevant[:limit]

    for ad, score in selected:
        record_impression(db, ad, score, context.user_id)
    if selected:
        db.commit()
    return selected


def get_ad(db: Session, tenant_id: str, ad_id: str) -> Advertisement:
    ad = db.query(Advertisement).filter(
        Advertisement.id == ad_id,
        Advertisement.tenant_id == tenant_id
    ).first()
    if not ad:
        raise NotFoundError("Advertisement", ad_id)
    return ad


def list_ads(
    db: Session,
    tenant_id: str,
    position: Optional[str] = None,
    ad_type: Optional[str] = None,
    is_active: Optional[bool] = None,
) -> List[Advertisement]:
    query = db.query(Advertisement).filter(Advertisement.tenant_id == tenant_id)
    if position:
        query = query.filter(Advertisement.position == position)
    if ad_type:
        query = query.filter(Advertisement.ad_type == ad_type)
    if is_active is not None:
        query = query.filter(Advertisement.is_active.is_(is_active))
    return query.order_by(Advertisement.priority.desc(), Advertisement.created_at.desc()).all()


def create_ad(db: Session, tenant_id: str, data: Dict[str, Any]) -> Advertisement:
    ad = Advertisement(tenant_id=tenant_id, **data)
    db.add(ad)
    db.commit()
    db.refresh(ad)
    logger.info(f"Advertisement created: {ad.id}", extra={"tenant_id": tenant_id})
    return ad


def update_ad(db: Session, ad: Advertisement, data: Dict[str, Any]) -> Advertisement:
    for key, value in data.items():
        setattr(ad, key, value)
    db.commit()
    db.refresh(ad)
    return ad


def delete_ad(db: Session, ad: Advertisement) -> None:
    db.delete(ad)
    db.commit()
    logger.info(f"Advertisement deleted: {ad.id}", extra={"tenant_id": ad.tenant_id})


def register_click(db: Session, ad: Advertisement) -> Advertisement:
    ad.clicks += 1
    db.commit()
    return ad


def register_conversion(db: Session, ad: Advertisement, value: Optional[float] = None) -> Advertisement:
    ad.conversions += 1
    if value:
        ad.conversion_value += value
    db.commit()
    return ad


def get_stats(db: Session, ad: Advertisement) -> Dict[str, Any]:
    """Counters plus CTR and conversion rate (percentages)."""
    avg_relevance = (
        db.query(func.avg(AdImpression.relevance_score))
        .filter(AdImpression.advertisement_id == ad.id)
        .scalar()
    )
    ctr = (ad.clicks / ad.impressions) * 100 if ad.impressions else 0.0
    conversion_rate = (ad.conversions / ad.clicks) * 100 if ad.clicks else 0.0
    return {
        "advertisement_id": ad.id,
        "impressions": ad.impressions,
        "clicks": ad.clicks,
        "conversions": ad.conversions,
        "conversion_value": ad.conversion_value,
        "ctr": round(ctr, 2),
        "conversion_rate": round(conversion_rate, 2),
        "avg_relevance_score": round(float(avg_relevance), 4) if avg_relevance is not None else None,
    }
