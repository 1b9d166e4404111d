"""
Shopify Storefront Endpoints

Cart additions from the chat widget, app proxy customer detection and
product catalogue prefetch.
"""

from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from nutritionist.commerce.app_proxy import extract_customer_info, verify_app_proxy_signature
from nutritionist.commerce.shopify_client import CartUserError, ShopifyAPIError, ShopifyClient
from nutritionist.config import Settings, get_settings
from nutritionist.database.connection import get_db_dependency
from nutritionist.serving.api.dependencies import get_shopify_client
from nutritionist.serving.cache import products_cache
from nutritionist.timeutils import utcnow
from nutritionist.users.service import UserProfileService

logger = structlog.get_logger(__name__)
router = APIRouter()

PRODUCTS_CACHE_KEY = "catalogue"


class CartRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    cart_id: Optional[str] = None
    merchandise_id: str = Field(..., min_length=1)
    quantity: int = Field(default=1, ge=1, le=100)


# =============================================================================
# CART
# =============================================================================

@router.post("/shopify/cart")
async def add_to_cart(
    payload: CartRequest,
    client: ShopifyClient = Depends(get_shopify_client),
) -> Dict[str, Any]:
    """Add a variant to the shopper's cart, creating the cart when needed."""
    try:
        cart = await client.add_to_cart(payload.merchandise_id, payload.quantity, payload.cart_id)
    except CartUserError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ShopifyAPIError as e:
        logger.error("Cart API error", error=str(e), status_code=e.status_code)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    return {"success": True, **cart, "message": "Product added to cart."}


# =============================================================================
# CUSTOMER
# =============================================================================

@router.get("/shopify/customer")
async def get_customer(
    request: Request,
    settings: Settings = Depends(get_settings),
    client: ShopifyClient = Depends(get_shopify_client),
    db: AsyncSession = Depends(get_db_dependency),
) -> Dict[str, Any]:
    """
    Logged-in Shopify customer for the current app proxy request.

    The customer is linked to a profile as a side effect. Admin API lookup
    and profile storage failures are logged and the customer is still
    returned.
    """
    customer = extract_customer_info(request.query_params, request.headers)
    if customer is None:
        return {"isLoggedIn": False, "customer": None}

    proxy_secret = settings.shopify.app_proxy_secret
    if proxy_secret and not verify_app_proxy_signature(request.query_params, proxy_secret.get_secret_value()):
        logger.warning("Invalid Shopify app proxy signature", customer_id=customer.customer_id)

    if not customer.customer_name:
        try:
            full = await client.get_customer(customer.customer_id)
        except ShopifyAPIError as e:
            logger.warning("Customer lookup failed", customer_id=customer.customer_id, error=str(e))
            full = None
        if full is not None:
            customer.customer_name = full.customer_name
            customer.email = customer.email or full.email

    try:
        await UserProfileService(db).link_shopify_customer(customer)
    except SQLAlchemyError as e:
        logger.error("Failed to store Shopify customer", customer_id=customer.customer_id, error=str(e))
        await db.rollback()

    return {"isLoggedIn": True, "customer": customer.to_dict()}


# =============================================================================
# PRODUCT PREFETCH
# =============================================================================

async def prefetch_products(client: ShopifyClient) -> None:
    """Warm the product cache. Errors are logged, never raised."""
    started = utcnow()
    try:
        products = await client.fetch_products()
    except ShopifyAPIError as e:
        logger.error("Product prefetch failed", error=str(e))
        return

    await products_cache.set(PRODUCTS_CACHE_KEY, products)
    logger.info(
        "Product prefetch completed",
        products=len(products),
        duration_s=round((utcnow() - started).total_seconds(), 2),
    )


@router.get("/products/prefetch")
async def trigger_prefetch(
    background_tasks: BackgroundTasks,
    client: ShopifyClient = Depends(get_shopify_client),
) -> Dict[str, Any]:
    """Start the catalogue prefetch and answer immediately."""
    background_tasks.add_task(prefetch_products, client)
    return {"success": True, "message": "Product prefetching started in background"}
