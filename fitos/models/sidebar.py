"""
Sidebar Models

SidebarMenuConfig: versioned per-plan default menu, managed by the
platform admin. SidebarCustomization: a tenant's overrides on top of it.
"""
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index, Integer, JSON
from datetime import datetime
from fitos.database import Base
import uuid


class SidebarMenuConfig(Base):
    __tablename__ = "sidebar_menu_configs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    plan = Column(String(30), nullable=False, index=True)
    version = Column(Integer, nullable=False, default=1)
    menu_items = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, default=True, nullable=False)
    created_by = Column(String(36), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_sidebar_plan_version', 'plan', 'version', unique=True),
    )

    def __repr__(self):
        return f"<SidebarMenuConfig {self.plan} v{self.version}>"


class SidebarCustomization(Base):
    __tablename__ = "sidebar_customizations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        unique=True
    )

    hidden_items = Column(JSON, nullable=False, default=list)   # [item_id, ...]
    renamed_items = Column(JSON, nullable=False, default=dict)  # {item_id: title}
    item_order = Column(JSON, nullable=False, default=dict)     # {item_id: order}

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<SidebarCustomization tenant={self.tenant_id}>"
