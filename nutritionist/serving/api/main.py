"""
FastAPI Application Factory

Creates and configures the API application: middleware, error handlers and
routers. Startup and shutdown live in `nutritionist.main`.
"""

from typing import Optional

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from nutritionist.config import Settings, get_settings
from nutritionist.serving.api.middleware import (
    RateLimitMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from nutritionist.serving.api.routes import (
    admin_auth_router,
    admin_router,
    files_router,
    health_router,
    shopify_router,
    tracking_router,
    users_router,
    webhooks_router,
)

logger = structlog.get_logger(__name__)

API_PREFIX = "/api"
RATE_LIMIT_EXEMPT = (f"{API_PREFIX}/webhooks", f"{API_PREFIX}/health")


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    logger.warning("Request validation error", method=request.method, path=request.url.path, errors=errors)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Validation error", "errors": errors},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception", method=request.method, path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


def create_api_app(settings: Optional[Settings] = None, lifespan=None) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        settings: Settings to build the app from (defaults to cached settings)
        lifespan: Optional lifespan context manager

    Returns:
        Configured FastAPI app instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="AI Nutritionist API",
        description="Supplement chat assistant backend: tracking, Shopify integration and admin analytics",
        version=settings.version,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        lifespan=lifespan,
    )

    # Outermost last
    if settings.security.rate_limit_enabled:
        app.add_middleware(
            RateLimitMiddleware,
            max_requests=settings.security.rate_limit_requests,
            window_seconds=settings.security.rate_limit_window_seconds,
            exempt_prefixes=RATE_LIMIT_EXEMPT,
            trusted_proxies=settings.security.trusted_proxies,
        )
    app.add_middleware(SecurityHeadersMiddleware, enable_hsts=settings.is_production)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.security.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health_router, prefix=API_PREFIX, tags=["Health"])
    app.include_router(tracking_router, prefix=API_PREFIX, tags=["Tracking"])
    app.include_router(users_router, prefix=API_PREFIX, tags=["Users"])
    app.include_router(admin_auth_router, prefix=API_PREFIX, tags=["Admin"])
    app.include_router(admin_router, prefix=API_PREFIX, tags=["Admin"])
    app.include_router(webhooks_router, prefix=API_PREFIX, tags=["Webhooks"])
    app.include_router(shopify_router, prefix=API_PREFIX, tags=["Shopify"])
    app.include_router(files_router, prefix=API_PREFIX, tags=["Files"])

    @app.get(f"{API_PREFIX}/info")
    async def api_info():
        """API information endpoint."""
        return {
            "name": settings.app_name,
            "version": settings.version,
            "environment": settings.app_env,
        }

    return app
