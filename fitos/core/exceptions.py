"""
Custom Exceptions

Centralized exception definitions. Each carries a stable `code` that
clients can branch on; the exception handlers in main.py render
{"detail", "type"} bodies from them.
"""
from typing import Optional, Dict
from fastapi import HTTPException, status


class FitOSError(HTTPException):
    """Base class for API errors with a machine-readable code."""

    code = "UNKNOWN_ERROR"

    def __init__(
        self,
        status_code: int,
        detail: str,
        code: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        if code:
            self.code = code


class TenantNotFoundError(FitOSError):
    """Raised when tenant cannot be found."""

    code = "TENANT_NOT_FOUND"

    def __init__(self, tenant_identifier: str = ""):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Tenant not found: {tenant_identifier}" if tenant_identifier else "Tenant not found"
        )


class TenantInactiveError(FitOSError):
    """Raised when a suspended tenant is used."""

    code = "TENANT_INACTIVE"

    def __init__(self, detail: str = "Tenant account is inactive"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class UserNotFoundError(FitOSError):
    """Raised when user cannot be found."""

    code = "USER_NOT_FOUND"

    def __init__(self, user_id: str = ""):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User not found: {user_id}" if user_id else "User not found"
        )


class AuthenticationError(FitOSError):
    """Raised when authentication fails."""

    code = "INVALID_CREDENTIALS"

    def __init__(self, detail: str = "Could not validate credentials", code: Optional[str] = None):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            code=code,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AccountLockedError(FitOSError):
    """Raised while an account is locked after repeated failed logins."""

    code = "ACCOUNT_LOCKED"

    def __init__(self, retry_after: int):
        super().__init__(
            status_code=status.HTTP_423_LOCKED,
            detail="Account temporarily locked after too many failed login attempts",
            headers={"Retry-After": str(retry_after)},
        )


class PermissionDenied(FitOSError):
    """Raised when the user's role does not allow the action."""

    code = "INSUFFICIENT_PERMISSIONS"

    def __init__(self, detail: str = "Permission denied"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class TenantIsolationError(FitOSError):
    """
    Raised when a tenant isolation violation is detected.

    Logged as a security event by the exception handler.
    """

    code = "TENANT_ISOLATION_VIOLATION"

    def __init__(self, detail: str = "Tenant isolation violation"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class RateLimitExceeded(FitOSError):
    """Raised when rate limit is exceeded."""

    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, retry_after: int = 60):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Please try again later.",
            headers={"Retry-After": str(retry_after)}
        )


class PlanLimitExceeded(FitOSError):
    """Raised when an action would exceed the tenant's plan limits."""

    code = "PLAN_LIMIT_EXCEEDED"

    def __init__(self, resource: str, limit: int, current: int):
        super().__init__(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=f"Plan limit reached for {resource}: {current}/{limit}. Upgrade your plan or buy extra slots."
        )
        self.resource = resource
        self.limit = limit
        self.current = current


class PlanNotFoundError(FitOSError):
    code = "PLAN_NOT_FOUND"

    def __init__(self, plan_id: str = ""):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Plan not found: {plan_id}" if plan_id else "Plan not found"
        )


class SubscriptionNotFoundError(FitOSError):
    code = "SUBSCRIPTION_NOT_FOUND"

    def __init__(self, detail: str = "Subscription not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class NotFoundError(FitOSError):
    """Generic tenant-scoped lookup miss (advertisements, cost entries, ...)."""

    code = "NOT_FOUND"

    def __init__(self, kind: str, identifier: str = ""):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{kind} not found: {identifier}" if identifier else f"{kind} not found"
        )


class PaymentProviderError(FitOSError):
    """Raised when Stripe or MercadoPago rejects or fails a call."""

    code = "PAYMENT_PROVIDER_ERROR"

    def __init__(self, provider: str, detail: str):
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"{provider}: {detail}"
        )
        self.provider = provider


class WebhookSignatureError(FitOSError):
    code = "INVALID_WEBHOOK_SIGNATURE"

    def __init__(self, detail: str = "Invalid webhook signature"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class InvalidInputError(FitOSError):
    """Raised when input validation fails."""

    code = "INVALID_INPUT"

    def __init__(self, detail: str = "Invalid input"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail
        )


class ConflictError(FitOSError):
    """Raised when a unique resource already exists."""

    code = "ALREADY_EXISTS"

    def __init__(self, detail: str = "Resource already exists"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)
