"""
Main FastAPI Application

Entry point for the FitOS API: middleware stack, error rendering,
health routes and the /api/v1 routers.

Request flow (outermost first):
    CORS -> request context -> TenantMiddleware -> RateLimitMiddleware -> router
"""
from contextlib import asynccontextmanager
from uuid import uuid4
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fitos import __version__
from fitos.api.endpoints import (
    admin,
    advertisements,
    auth,
    billing,
    notifications,
    sidebar,
    tenants,
    users,
)
from fitos.config import get_settings
from fitos.core.exceptions import FitOSError, TenantIsolationError
from fitos.database import engine, init_db
from fitos.middleware.rate_limit import RateLimitMiddleware
from fitos.middleware.tenant import TenantMiddleware
from fitos.utils.logging import bind_context, get_logger, log_security_event, reset_context, setup_logging

API_PREFIX = "/api/v1"
ROUTERS = (auth, users, tenants, billing, advertisements, sidebar, notifications, admin)

settings = get_settings()
setup_logging(log_level=settings.LOG_LEVEL, json_format=settings.ENVIRONMENT == "production")
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"FitOS {__version__} starting ({settings.ENVIRONMENT})")

    # Outside development the schema is managed with `fitos-admin init-db`
    if settings.ENVIRONMENT == "development":
        logger.warning("Creating database tables on startup")
        init_db()

    yield

    engine.dispose()
    logger.info("FitOS stopped")


app = FastAPI(
    title="FitOS API",
    description="Multi-tenant fitness platform: gyms, trainers, nutritionists and their clients",
    version=__version__,
    lifespan=lifespan,
)


# ============================================================================
# MIDDLEWARE
# ============================================================================

# Middleware added last runs first: the tenant is resolved before the
# rate limiter looks for request.state.tenant.
app.add_middleware(RateLimitMiddleware)
app.add_middleware(TenantMiddleware)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """
    Tag the request with an id (the caller's X-Request-ID when given).

    The id is bound to the logging context for everything downstream and
    echoed back together with the handling time.
    """
    request_id = request.headers.get("X-Request-ID") or uuid4().hex
    request.state.request_id = request_id
    token = bind_context(request_id=request_id)
    started = time.perf_counter()
    try:
        response = await call_next(request)
    finally:
        reset_context(token)

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = f"{time.perf_counter() - started:.4f}"
    return response


# Cookie sessions need credentials, so origins are listed explicitly.
# Added last so that error responses from the inner layers carry CORS headers too.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.TRUSTED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Retry-After", "X-Process-Time", "X-Request-ID"],
)


# ============================================================================
# ERRORS
# ============================================================================

def _error(status_code: int, detail: str, error_type: str, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "type": error_type},
        headers=headers or {},
    )


@app.exception_handler(FitOSError)
async def fitos_error_handler(request: Request, exc: FitOSError):
    if isinstance(exc, TenantIsolationError):
        log_security_event(
            "tenant_isolation_violation",
            {"path": request.url.path, "method": request.method, "reason": exc.detail},
            logger,
        )
    return _error(exc.status_code, exc.detail, exc.code.lower(), exc.headers)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    """Log the traceback; only DEBUG deployments show the message to the caller."""
    logger.error(f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}", exc_info=exc)

    if settings.DEBUG:
        return _error(500, str(exc), type(exc).__name__)
    return _error(500, "Internal server error", "internal_error")


# ============================================================================
# ROUTES
# ============================================================================

@app.get("/health", tags=["health"])
async def health_check():
    """Liveness probe for the load balancer."""
    return {"status": "healthy", "environment": settings.ENVIRONMENT, "version": __version__}


@app.get("/", tags=["root"])
async def root():
    return {"name": "FitOS API", "version": __version__, "docs": app.docs_url, "health": "/health"}


for module in ROUTERS:
    app.include_router(module.router, prefix=API_PREFIX)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "fitos.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
