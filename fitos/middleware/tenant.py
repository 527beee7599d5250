"""
Tenant Middleware

Extracts tenant context from requests and makes it available throughout
the request lifecycle. This is CRITICAL for multi-tenant isolation.

Tenant resolution order:
1. X-Tenant-Slug header (API clients, the SPA in development)
2. Subdomain of the Host header: acme.fitos.app -> "acme"
3. X-Tenant-ID header (legacy)

Public routes (docs, health, login/signup, plan catalog, payment webhooks,
the platform admin API) are served without a tenant.
"""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import Optional
import logging

from fitos.database import SessionLocal
from fitos.models.tenant import Tenant
from fitos.utils.logging import bind_context, reset_context

logger = logging.getLogger(__name__)

PUBLIC_PREFIXES = (
    "/docs",
    "/redoc",
    "/openapi.json",
    "/health",
    "/api/v1/auth/login",
    "/api/v1/auth/signup",
    "/api/v1/auth/forgot-password",
    "/api/v1/auth/reset-password",
    "/api/v1/auth/password-strength",
    "/api/v1/billing/plans",
    "/api/v1/billing/webhooks",
    "/api/v1/admin",
    "/api/v1/notifications/vapid-public-key",
)

PUBLIC_EXACT = ("/",)

# Subdomains that never name a tenant
NON_TENANT_SUBDOMAINS = ("www", "api", "app")


def is_public_path(path: str) -> bool:
    if path in PUBLIC_EXACT:
        return True
    return any(path == prefix or path.startswith(prefix + "/") for prefix in PUBLIC_PREFIXES)


def _error(status_code: int, detail: str, error_type: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail, "type": error_type})


class TenantMiddleware(BaseHTTPMiddleware):
    """
    Middleware to extract and validate tenant from request.

    This runs on EVERY request and adds tenant context to request.state.

    SECURITY: This is the first line of defense for tenant isolation.
    The token/tenant match is checked later, in fitos.api.deps.
    """

    async def dispatch(self, request: Request, call_next):
        """Process each request and inject tenant context."""
        request.state.tenant = None
        request.state.tenant_id = None

        if request.method == "OPTIONS" or is_public_path(request.url.path):
            return await call_next(request)

        tenant_identifier = self._extract_tenant_identifier(request)

        if not tenant_identifier:
            logger.warning(f"No tenant identifier in request: {request.url.path}")
            return _error(
                400,
                "Tenant identifier required (subdomain or X-Tenant-Slug header)",
                "tenant_required",
            )

        db = SessionLocal()
        try:
            tenant = self._load_tenant(db, tenant_identifier)

            if not tenant:
                logger.warning(f"Tenant not found: {tenant_identifier}")
                return _error(404, f"Tenant not found: {tenant_identifier}", "tenant_not_found")

            if not tenant.is_active:
                logger.warning(f"Inactive tenant attempted access: {tenant_identifier}")
                return _error(403, "Tenant account is inactive", "tenant_inactive")

            request.state.tenant = tenant
            request.state.tenant_id = tenant.id

            logger.debug(f"Request for tenant: {tenant.slug} ({tenant.id})")
        finally:
            db.close()

        token = bind_context(tenant_id=tenant.id)
        try:
            return await call_next(request)
        finally:
            reset_context(token)

    def _extract_tenant_identifier(self, request: Request) -> Optional[str]:
        tenant_slug = request.headers.get("X-Tenant-Slug")
        if tenant_slug:
            return tenant_slug.strip().lower()

        host = request.headers.get("Host", "").split(":")[0]
        parts = host.split(".")
        if len(parts) >= 3:  # subdomain.domain.tld
            subdomain = parts[0].lower()
            if subdomain not in NON_TENANT_SUBDOMAINS:
                return subdomain

        tenant_id = request.headers.get("X-Tenant-ID")
        if tenant_id:
            logger.debug("Using X-Tenant-ID header (legacy)")
            return tenant_id.strip()

        return None

    def _load_tenant(self, db: Session, identifier: str) -> Optional[Tenant]:
        """Slug, then subdomain, then id."""
        tenant = db.query(Tenant).filter(Tenant.slug == identifier).first()
        if tenant:
            return tenant

        tenant = db.query(Tenant).filter(Tenant.subdomain == identifier).first()
        if tenant:
            return tenant

        return db.query(Tenant).filter(Tenant.id == identifier).first()
