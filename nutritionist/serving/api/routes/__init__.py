"""
API Routes Module
"""
from .health import router as health_router
from .tracking import router as tracking_router
from .users import router as users_router
from .admin import auth_router as admin_auth_router, router as admin_router
from .webhooks import router as webhooks_router
from .shopify import router as shopify_router
from .files import router as files_router

__all__ = [
    "health_router",
    "tracking_router",
    "users_router",
    "admin_auth_router",
    "admin_router",
    "webhooks_router",
    "shopify_router",
    "files_router",
]
