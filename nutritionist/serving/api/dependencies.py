"""
API Dependencies

Shared FastAPI dependencies: admin authentication and the Shopify client.
"""

from typing import Optional

import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from nutritionist.commerce.shopify_client import ShopifyClient
from nutritionist.config import Settings, get_settings
from nutritionist.security.admin_auth import ADMIN_SESSION_COOKIE, validate_session_token

logger = structlog.get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def is_admin_request(
    request: Request,
    settings: Settings,
    credentials: Optional[HTTPAuthorizationCredentials] = None,
) -> bool:
    """Valid session cookie or bearer token."""
    password = settings.security.admin_password.get_secret_value()

    if validate_session_token(request.cookies.get(ADMIN_SESSION_COOKIE), password):
        return True
    if credentials is not None and credentials.scheme.lower() == "bearer":
        return validate_session_token(credentials.credentials, password)
    return False


async def require_admin(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> bool:
    """Gate for /api/admin endpoints."""
    if not is_admin_request(request, settings, credentials):
        logger.warning("Admin authentication failed", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin authentication required",
        )
    return True


async def get_shopify_client(settings: Settings = Depends(get_settings)) -> ShopifyClient:
    return ShopifyClient(settings.shopify)
