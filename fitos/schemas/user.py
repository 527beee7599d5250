"""
User Schemas

Request/response models for the tenant user directory.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from fitos.models.user import UserRole, UserStatus


class ProfileFields(BaseModel):
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=32)


class UserBase(ProfileFields):
    email: EmailStr

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class UserCreate(UserBase):
    """A member added by a tenant administrator. Clients unless told otherwise."""
    password: str = Field(..., min_length=8, max_length=128)
    role: UserRole = UserRole.CLIENT


class UserUpdate(ProfileFields):
    """Partial update; only fields that are sent are applied."""
    role: Optional[UserRole] = None
    status: Optional[UserStatus] = None
    sidebar_view: Optional[str] = Field(None, pattern="^(standard|admin)$")


class UserResponse(UserBase):
    """Never carries the password hash or lockout counters."""
    id: str
    tenant_id: str
    role: UserRole
    status: UserStatus
    email_verified: bool
    sidebar_view: str
    created_at: datetime
    last_login_at: Optional[datetime]

    class Config:
        from_attributes = True


class UserListResponse(BaseModel):
    users: list[UserResponse]
    total: int
    page: int
    page_size: int
