"""
Advertisement Models

Tenant-scoped ads rendered in fixed positions of the app (header, sidebar,
dashboard...). AdImpression rows drive the per-user daily frequency cap and
the relevance statistics.
"""
from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey, Index, Integer, Float, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from fitos.database import Base
import uuid


class Advertisement(Base):
    __tablename__ = "advertisements"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    ad_type = Column(String(30), nullable=False)  # banner, native, video, adsense
    position = Column(String(30), nullable=False)  # header, sidebar, dashboard, footer
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    image_url = Column(String(512), nullable=True)
    target_url = Column(String(512), nullable=True)
    ad_code = Column(Text, nullable=True)

    # {"goals": [...], "nutritionPreferences": [...]}
    targeting = Column(JSON, nullable=False, default=dict)
    priority = Column(Integer, default=0, nullable=False)

    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    impressions = Column(Integer, default=0, nullable=False)
    clicks = Column(Integer, default=0, nullable=False)
    conversions = Column(Integer, default=0, nullable=False)
    conversion_value = Column(Float, default=0.0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    impression_log = relationship("AdImpression", back_populates="advertisement", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_ad_tenant_position_active', 'tenant_id', 'position', 'is_active'),
    )

    def __repr__(self):
        return f"<Advertisement {self.title} ({self.position})>"


class AdImpression(Base):
    __tablename__ = "ad_impressions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    advertisement_id = Column(
        String(36),
        ForeignKey("advertisements.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), nullable=True, index=True)
    relevance_score = Column(Float, nullable=False, default=0.0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    advertisement = relationship("Advertisement", back_populates="impression_log")

    __table_args__ = (
        Index('idx_impression_user_ad_created', 'user_id', 'advertisement_id', 'created_at'),
    )
