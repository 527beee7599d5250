"""
Advertisement Schemas
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime

AD_TYPE_PATTERN = "^(banner|native|video|adsense)$"
POSITION_PATTERN = "^(header|sidebar|dashboard|footer|between_content)$"


class AdvertisementBase(BaseModel):
    ad_type: str = Field(..., pattern=AD_TYPE_PATTERN)
    position: str = Field(..., pattern=POSITION_PATTERN)
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    image_url: Optional[str] = Field(None, max_length=512)
    target_url: Optional[str] = Field(None, max_length=512)
    ad_code: Optional[str] = None
    # {"goals": [...], "nutritionPreferences": [...]}
    targeting: Dict[str, Any] = Field(default_factory=dict)
    priority: int = Field(0, ge=0, le=100)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: bool = True


class AdvertisementCreate(AdvertisementBase):
    pass


class AdvertisementUpdate(BaseModel):
    """Schema for updating an ad. All fields optional."""
    ad_type: Optional[str] = Field(None, pattern=AD_TYPE_PATTERN)
    position: Optional[str] = Field(None, pattern=POSITION_PATTERN)
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    image_url: Optional[str] = Field(None, max_length=512)
    target_url: Optional[str] = Field(None, max_length=512)
    ad_code: Optional[str] = None
    targeting: Optional[Dict[str, Any]] = None
    priority: Optional[int] = Field(None, ge=0, le=100)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: Optional[bool] = None


class AdvertisementResponse(AdvertisementBase):
    id: str
    tenant_id: str
    impressions: int
    clicks: int
    conversions: int
    conversion_value: float
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class RelevantAd(BaseModel):
    advertisement: AdvertisementResponse
    relevance_score: float


class RelevantAdsResponse(BaseModel):
    ads: List[RelevantAd]


class ConversionRequest(BaseModel):
    value: Optional[float] = Field(None, ge=0)


class AdStatsResponse(BaseModel):
    advertisement_id: str
    impressions: int
    clicks: int
    conversions: int
    conversion_value: float
    ctr: float
    conversion_rate: float
    avg_relevance_score: Optional[float]
