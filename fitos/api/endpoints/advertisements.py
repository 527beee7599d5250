"""
Advertisement Endpoints

OWNER/ADMIN manage their tenant's ads; any member can be served ads and
report clicks and conversions.
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional

from fitos.database import get_db
from fitos.models.tenant import Tenant
from fitos.models.user import User, UserRole
from fitos.schemas.advertisement import (
    AdStatsResponse,
    AdvertisementCreate,
    AdvertisementResponse,
    AdvertisementUpdate,
    ConversionRequest,
    RelevantAdsResponse,
)
from fitos.api.deps import get_current_tenant, get_current_user, require_roles
from fitos.core.exceptions import InvalidInputError
from fitos.services import advertisements as ad_service
from fitos.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/advertisements", tags=["advertisements"])

require_manager = require_roles(UserRole.OWNER, UserRole.ADMIN)


def _check_window(start_date, end_date) -> None:
    if start_date and end_date and end_date <= start_date:
        raise InvalidInputError("end_date must be after start_date")


@router.get("", response_model=List[AdvertisementResponse])
async def list_ads(
    position: Optional[str] = Query(None),
    ad_type: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    current_user: User = Depends(require_manager),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    return ad_service.list_ads(db, tenant.id, position, ad_type, is_active)


@router.post("", response_model=AdvertisementResponse, status_code=status.HTTP_201_CREATED)
async def create_ad(
    payload: AdvertisementCreate,
    current_user: User = Depends(require_manager),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    _check_window(payload.start_date, payload.end_date)
    return ad_service.create_ad(db, tenant.id, payload.model_dump())


@router.get("/relevant", response_model=RelevantAdsResponse)
async def relevant_ads(
    position: str = Query(..., min_length=1),
    goal: Optional[str] = Query(None),
    preferences: Optional[List[str]] = Query(None),
    limit: int = Query(1, ge=1, le=5),
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """
    Ads to show at a position, best match first.

    Empty when the tenant's plan has no ads. Serving records impressions.
    """
    context = ad_service.AdContext(
        user_id=current_user.id,
        current_goal=goal,
        nutrition_preferences=preferences or [],
    )
    selected = ad_service.get_relevant_ads(db, tenant, position, context, limit=limit)
    return {"ads": [{"advertisement": ad, "relevance_score": score} for ad, score in selected]}


@router.get("/{ad_id}", response_model=AdvertisementResponse)
async def get_ad(
    ad_id: str,
    current_user: User = Depends(require_manager),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    return ad_service.get_ad(db, tenant.id, ad_id)


@router.patch("/{ad_id}", response_model=AdvertisementResponse)
async def update_ad(
    ad_id: str,
    payload: AdvertisementUpdate,
    current_user: User = Depends(require_manager),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    ad = ad_service.get_ad(db, tenant.id, ad_id)
    data = payload.model_dump(exclude_unset=True)
    _check_window(data.get("start_date", ad.start_date), data.get("end_date", ad.end_date))
    return ad_service.update_ad(db, ad, data)


@router.delete("/{ad_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_ad(
    ad_id: str,
    current_user: User = Depends(require_manager),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    ad_service.delete_ad(db, ad_service.get_ad(db, tenant.id, ad_id))
    return None


@router.post("/{ad_id}/click", status_code=status.HTTP_204_NO_CONTENT)
async def register_click(
    ad_id: str,
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    ad_service.register_click(db, ad_service.get_ad(db, tenant.id, ad_id))
    return None


@router.post("/{ad_id}/conversion", status_code=status.HTTP_204_NO_CONTENT)
async def register_conversion(
    ad_id: str,
    payload: ConversionRequest,
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    ad_service.register_conversion(db, ad_service.get_ad(db, tenant.id, ad_id), payload.value)
    return None


@router.get("/{ad_id}/stats", response_model=AdStatsResponse)
async def ad_stats(
    ad_id: str,
    current_user: User = Depends(require_manager),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    return ad_service.get_stats(db, ad_service.get_ad(db, tenant.id, ad_id))
