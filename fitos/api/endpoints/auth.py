"""
Authentication Endpoints

Signup, login and the server-side session lifecycle.

Login returns both credentials: a short-lived JWT for the Authorization
header and the opaque session token (also set as an HttpOnly cookie).
Both are tied to the same session row, so logout invalidates both.
"""
from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session
from datetime import datetime

from fitos.database import get_db
from fitos.models.session import Session as UserSession
from fitos.models.user import User
from fitos.schemas.auth import (
    AuthResponse,
    ChangePasswordRequest,
    CurrentSessionResponse,
    ForgotPasswordRequest,
    ForgotPasswordResponse,
    LoginRequest,
    MessageResponse,
    PasswordStrengthRequest,
    PasswordStrengthResponse,
    ResetPasswordRequest,
    RevokeResponse,
    RouteAccessResponse,
    SessionListResponse,
    SignupRequest,
    Token,
)
from fitos.api.deps import client_ip, get_current_session, get_current_user
from fitos.core.permissions import can_access_route, redirect_for_role
from fitos.core.security import validate_password_strength
from fitos.config import get_settings
from fitos.services import auth as auth_service
from fitos.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])

FORGOT_PASSWORD_MESSAGE = "If the account exists, a password reset link has been sent."


def _set_session_cookie(response: Response, token: str, expires_at: datetime) -> None:
    settings = get_settings()
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=token,
        max_age=int((expires_at - datetime.utcnow()).total_seconds()),
        httponly=True,
        secure=settings.ENVIRONMENT.lower() == "production",
        samesite="lax",
        path="/",
    )


def _auth_response(response: Response, result: auth_service.AuthResult) -> dict:
    _set_session_cookie(response, result.session_token, result.session.expires_at)
    return {
        "access_token": result.access_token,
        "token_type": "bearer",
        "session_token": result.session_token,
        "expires_at": result.session.expires_at,
        "role_redirect": redirect_for_role(result.user.role),
        "user": result.user,
        "tenant": result.tenant,
    }


def _session_dict(session: UserSession, current_id: str) -> dict:
    return {
        "id": session.id,
        "ip_address": session.ip_address,
        "user_agent": session.user_agent,
        "expires_at": session.expires_at,
        "last_activity_at": session.last_activity_at,
        "created_at": session.created_at,
        "is_current": session.id == current_id,
    }


@router.post("/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def signup(
    payload: SignupRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db)
):
    """
    Register a user and start a session.

    - tenant_slug: join that tenant as CLIENT (plan limits apply)
    - organization_name: new business tenant on the starter plan, as OWNER
    - neither: personal account on the free individual plan
    """
    result = auth_service.signup(
        db,
        email=payload.email,
        password=payload.password,
        first_name=payload.first_name,
        last_name=payload.last_name,
        phone=payload.phone,
        tenant_slug=payload.tenant_slug,
        organization_name=payload.organization_name,
        ip_address=client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )
    return _auth_response(response, result)


@router.post("/login", response_model=AuthResponse)
async def login(
    credentials: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db)
):
    """
    Authenticate and start a session.

    SECURITY: unknown users and wrong passwords get the same generic error.
    Repeated failures lock the account (423 ACCOUNT_LOCKED).
    """
    result = auth_service.login(
        db,
        email=credentials.email,
        password=credentials.password,
        tenant_slug=credentials.tenant_slug,
        ip_address=client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )
    return _auth_response(response, result)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    response: Response,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db)
):
    auth_service.revoke_session(db, session)
    response.delete_cookie(get_settings().SESSION_COOKIE_NAME, path="/")
    logger.info("User logged out", extra={"user_id": session.user_id, "tenant_id": session.tenant_id})
    return {"message": "Logged out"}


@router.post("/refresh", response_model=Token)
async def refresh_token(
    current_user: User = Depends(get_current_user),
    session: UserSession = Depends(get_current_session),
):
    """New access token for the current (still live) session."""
    return {
        "access_token": auth_service.issue_access_token(current_user, session),
        "token_type": "bearer",
        "expires_at": session.expires_at,
    }


@router.get("/session", response_model=CurrentSessionResponse)
async def current_session(
    current_user: User = Depends(get_current_user),
    session: UserSession = Depends(get_current_session),
):
    return {
        "session": _session_dict(session, session.id),
        "user": current_user,
        "tenant": current_user.tenant,
    }


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    current_user: User = Depends(get_current_user),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db)
):
    sessions = auth_service.list_sessions(db, current_user)
    return {"sessions": [_session_dict(item, session.id) for item in sessions]}


@router.post("/sessions/revoke-all", response_model=RevokeResponse)
async def revoke_all_sessions(
    current_user: User = Depends(get_current_user),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db)
):
    """Sign out every other device; the current session stays."""
    revoked = auth_service.revoke_all_sessions(db, current_user.id, except_session_id=session.id)
    return {"revoked": revoked}


@router.post("/forgot-password", response_model=ForgotPasswordResponse)
async def forgot_password(
    payload: ForgotPasswordRequest,
    db: Session = Depends(get_db)
):
    """
    Start a password reset.

    SECURITY: the answer is the same whether or not the account exists.
    """
    token = auth_service.request_password_reset(db, payload.email, payload.tenant_slug)
    # TODO: hand the token to the transactional e-mail sender once one is configured
    body = {"message": FORGOT_PASSWORD_MESSAGE}
    if token and get_settings().DEBUG:
        body["reset_token"] = token
    return body


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    payload: ResetPasswordRequest,
    db: Session = Depends(get_db)
):
    auth_service.reset_password(db, payload.token, payload.new_password)
    return {"message": "Password updated. Please sign in again."}


@router.post("/change-password", response_model=RevokeResponse)
async def change_password(
    payload: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db)
):
    """Change the password; other sessions are signed out."""
    revoked = auth_service.change_password(
        db, current_user, payload.current_password, payload.new_password, keep_session_id=session.id
    )
    return {"revoked": revoked}


@router.post("/password-strength", response_model=PasswordStrengthResponse)
async def password_strength(payload: PasswordStrengthRequest):
    return validate_password_strength(payload.password)


@router.get("/route-access", response_model=RouteAccessResponse)
async def route_access(
    path: str = Query(..., min_length=1),
    current_user: User = Depends(get_current_user),
):
    """Front-end route guard: may the current role open `path`?"""
    allowed = can_access_route(current_user.role, path)
    return {
        "path": path,
        "role": current_user.role,
        "allowed": allowed,
        "redirect": None if allowed else redirect_for_role(current_user.role),
    }
