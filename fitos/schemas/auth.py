"""
Authentication Schemas

Request/response models for authentication endpoints.
"""
from pydantic import BaseModel, EmailStr, Field
from typing import List, Optional
from datetime import datetime

from fitos.models.user import UserRole
from fitos.schemas.tenant import TenantSummary
from fitos.schemas.user import UserResponse


class LoginRequest(BaseModel):
    """Login request body."""
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)

    # Optional when the email exists in a single tenant
    tenant_slug: Optional[str] = Field(None, min_length=1)


class SignupRequest(BaseModel):
    """
    User registration.

    tenant_slug joins an existing tenant as CLIENT; organization_name
    creates a business tenant; neither creates a personal account.
    """
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=32)
    tenant_slug: Optional[str] = Field(None, min_length=1)
    organization_name: Optional[str] = Field(None, min_length=1, max_length=255)

    class Config:
        json_schema_extra = {
            "example": {
                "email": "owner@ironhouse.com",
                "password": "Str0ngPassword",
                "first_name": "Ana",
                "last_name": "Souza",
                "organization_name": "Iron House Gym"
            }
        }


class AuthResponse(BaseModel):
    """Login / signup response. session_token is only ever shown here."""
    access_token: str
    token_type: str = "bearer"
    session_token: str
    expires_at: datetime
    role_redirect: str
    user: UserResponse
    tenant: TenantSummary


class Token(BaseModel):
    """JWT token response."""
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime


class SessionResponse(BaseModel):
    id: str
    ip_address: Optional[str]
    user_agent: Optional[str]
    expires_at: datetime
    last_activity_at: datetime
    created_at: datetime
    is_current: bool = False

    class Config:
        from_attributes = True


class CurrentSessionResponse(BaseModel):
    session: SessionResponse
    user: UserResponse
    tenant: TenantSummary


class SessionListResponse(BaseModel):
    sessions: List[SessionResponse]


class RevokeResponse(BaseModel):
    revoked: int


class ForgotPasswordRequest(BaseModel):
    email: EmailStr
    tenant_slug: Optional[str] = None


class ForgotPasswordResponse(BaseModel):
    message: str
    # Only returned when DEBUG is on, for local testing without e-mail
    reset_token: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=128)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=128)


class PasswordStrengthRequest(BaseModel):
    password: str = Field(..., max_length=256)


class PasswordStrengthResponse(BaseModel):
    is_valid: bool
    score: int
    errors: List[str]
    suggestions: List[str]


class RouteAccessResponse(BaseModel):
    path: str
    role: UserRole
    allowed: bool
    redirect: Optional[str] = None


class MessageResponse(BaseModel):
    message: str
