"""
Sidebar Schemas

Menu items keep the camelCase keys the front end reads.
"""
from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from datetime import datetime


class SidebarItem(BaseModel):
    id: str = Field(..., min_length=1, max_length=64)
    title: str = Field(..., min_length=1, max_length=100)
    url: str
    icon: Optional[str] = None
    module: str = "core"
    isVisible: bool = True
    order: int = 0
    requiredRoles: Optional[List[str]] = None
    requiredFeature: Optional[str] = None


class SidebarResponse(BaseModel):
    plan: str
    role: str
    items: List[SidebarItem]


class CustomizationRequest(BaseModel):
    hidden_items: List[str] = Field(default_factory=list)
    renamed_items: Dict[str, str] = Field(default_factory=dict)
    item_order: Dict[str, int] = Field(default_factory=dict)


class CustomizationResponse(CustomizationRequest):
    tenant_id: str
    updated_at: datetime

    class Config:
        from_attributes = True


class PlanMenuRequest(BaseModel):
    menu_items: List[SidebarItem] = Field(..., min_length=1)


class PlanMenuResponse(BaseModel):
    id: str
    plan: str
    version: int
    is_active: bool
    menu_items: List[SidebarItem]
    created_by: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True
