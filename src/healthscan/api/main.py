"""Main FastAPI application for the HealthScan waitlist."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware

from healthscan import __version__
from healthscan.api.deps import dispatcher
from healthscan.api.rate_limit import limiter
from healthscan.api.v1.admin import router as admin_router
from healthscan.api.v1.referral import router as referral_router
from healthscan.api.v1.waitlist import router as waitlist_router
from healthscan.api.v1.webhooks import router as webhooks_router
from healthscan.errors import InvalidInput, RateLimited, WaitlistError
from healthscan.logging_config import configure_logging, get_logger
from healthscan.settings import settings
from healthscan.storage.db import db

logger = get_logger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses.

    The API serves JSON only, so the content policy forbids everything.
    """

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        response.headers["Permissions-Policy"] = "camera=(), geolocation=(), microphone=()"

        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    configure_logging()
    logger.info("app_starting", env=settings.env)

    db.create_tables()

    yield

    logger.info("app_shutting_down", pending_jobs=dispatcher.pending)
    await dispatcher.drain()


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI app
    """
    is_production = settings.env == "production"

    app = FastAPI(
        title="HealthScan Waitlist API",
        description="Waitlist signups, referrals and email confirmation",
        version=__version__,
        docs_url=None if is_production else "/docs",
        redoc_url=None,
        openapi_url=None if is_production else "/openapi.json",
        lifespan=lifespan,
    )

    # Security Headers middleware (must be added before CORS)
    app.add_middleware(SecurityHeadersMiddleware)

    allowed_origins = [
        origin.strip()
        for origin in settings.allowed_origins.split(",")
        if origin.strip()
    ]
    if is_production and "*" in allowed_origins:
        logger.error("cors_wildcard_blocked", message="Wildcard CORS not allowed in production")
        allowed_origins = []

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", settings.tally_signature_header],
        expose_headers=["X-RateLimit-Remaining", "Retry-After"],
        max_age=3600,
    )

    app.state.limiter = limiter

    @app.exception_handler(RateLimitExceeded)
    async def admin_rate_limit_handler(request: Request, exc: RateLimitExceeded):
        return JSONResponse(
            status_code=429,
            content={
                "success": False,
                "error": "Too many requests. Please try again later.",
                "errorType": RateLimited.error_type,
            },
        )

    @app.exception_handler(RateLimited)
    async def signup_rate_limit_handler(request: Request, exc: RateLimited):
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers={
                "Retry-After": str(exc.retry_after_seconds),
                "X-RateLimit-Remaining": str(exc.remaining),
            },
        )

    @app.exception_handler(WaitlistError)
    async def waitlist_error_handler(request: Request, exc: WaitlistError):
        if exc.status_code >= 500:
            logger.error("request_failed", path=request.url.path, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(part) for part in first.get("loc", ())[1:])
        message = "Email is required" if field == "email" else "Invalid request"
        error = InvalidInput(message, details=f"{field}: {first.get('msg', '')}".strip(": "))
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    app.include_router(waitlist_router)
    app.include_router(referral_router)
    app.include_router(webhooks_router)
    app.include_router(admin_router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        database_ok = db.ping()
        return JSONResponse(
            status_code=200 if database_ok else 503,
            content={
                "status": "healthy" if database_ok else "degraded",
                "database": database_ok,
                "version": __version__,
                "env": settings.env,
            },
        )

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": "HealthScan Waitlist API",
            "version": __version__,
            "docs": None if is_production else "/docs",
        }

    return app


# Create app instance
app = create_app()
