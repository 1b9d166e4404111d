"""
Shopify Webhook Endpoints

`orders/create` receiver that links completed orders back to chat sessions,
plus a development-only order simulator.
"""

import random
import time
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from nutritionist.analytics.events import AnalyticsEventService
from nutritionist.commerce.webhooks import (
    SUPPORTED_TOPICS,
    TEST_WEBHOOK_SOURCE,
    ShopifyLineItem,
    ShopifyOrder,
    build_purchase_events,
    extract_session_id,
    verify_webhook_signature,
)
from nutritionist.config import Settings, get_settings
from nutritionist.database.connection import get_db_dependency

logger = structlog.get_logger(__name__)
router = APIRouter()

TEST_CURRENCY = "EUR"
TEST_EMAIL = "test@example.com"


class SimulatedProduct(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    title: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    quantity: int = Field(default=1, ge=1)
    variant_id: Optional[str] = None


class SimulatedOrderRequest(BaseModel):
    """Simulated order"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    session_id: str = Field(..., min_length=1)
    products: List[SimulatedProduct] = Field(..., min_length=1)
    email: Optional[str] = None


async def require_development(settings: Settings = Depends(get_settings)) -> None:
    if not settings.is_development:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Test endpoint only available in development mode",
        )


@router.post("/webhooks/shopify")
async def receive_order_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db_dependency),
) -> Dict[str, Any]:
    """
    Verify and record a Shopify order.

    Orders without a chat session id are acknowledged with 200 so Shopify
    does not retry them.
    """
    body = await request.body()
    topic = request.headers.get("x-shopify-topic")
    secret = settings.shopify.webhook_secret

    if not verify_webhook_signature(
        body,
        request.headers.get("x-shopify-hmac-sha256"),
        secret.get_secret_value() if secret else None,
        allow_unsigned=settings.is_development,
    ):
        logger.error("Rejected Shopify webhook", topic=topic)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")

    try:
        order = ShopifyOrder.model_validate_json(body)
    except ValidationError as e:
        logger.warning("Unparseable Shopify order payload", topic=topic, errors=e.error_count())
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid order payload")

    logger.info(
        "Shopify order received",
        topic=topic,
        order_id=order.id,
        order_number=order.order_number,
        total_price=order.total_price,
        item_count=len(order.line_items),
    )

    session_id = extract_session_id(order)
    if not session_id:
        logger.info("No chat session on order, skipping purchase verification", order_id=order.id)
        return {"success": True, "message": "Webhook received, no chatbot session to track"}

    events = build_purchase_events(order, session_id)
    await AnalyticsEventService(db).record_events(events)

    logger.info("Purchase verified", session_id=session_id, order_id=order.id, events=len(events))
    return {
        "success": True,
        "message": "Purchase verified and tracked",
        "sessionId": session_id,
        "orderId": order.id,
        "itemsTracked": len(order.line_items),
    }


@router.get("/webhooks/shopify")
async def webhook_info() -> Dict[str, Any]:
    return {
        "status": "ok",
        "endpoint": "Shopify webhook handler",
        "supported_topics": SUPPORTED_TOPICS,
    }


@router.post("/webhooks/shopify/test", dependencies=[Depends(require_development)])
async def simulate_order(
    payload: SimulatedOrderRequest,
    db: AsyncSession = Depends(get_db_dependency),
) -> Dict[str, Any]:
    """Record the events a real order for the given session would produce."""
    total_value = round(sum(p.price * p.quantity for p in payload.products), 2)
    order = ShopifyOrder(
        id=int(time.time() * 1000),
        order_number=random.randint(1000, 10999),
        email=payload.email or TEST_EMAIL,
        total_price=total_value,
        currency=TEST_CURRENCY,
        line_items=[
            ShopifyLineItem(
                title=product.title,
                quantity=product.quantity,
                price=product.price,
                product_id=product.variant_id or "test-product",
                variant_id=product.variant_id or "test-variant",
            )
            for product in payload.products
        ],
    )

    events = build_purchase_events(order, payload.session_id, source=TEST_WEBHOOK_SOURCE)
    await AnalyticsEventService(db).record_events(events)

    logger.info("Simulated order recorded", session_id=payload.session_id, order_id=order.id)
    return {
        "success": True,
        "message": "Test purchase events created successfully",
        "orderId": order.id,
        "orderNumber": order.order_number,
        "sessionId": payload.session_id,
        "totalValue": total_value,
        "productsTracked": len(payload.products),
    }


@router.get("/webhooks/shopify/test", dependencies=[Depends(require_development)])
async def simulator_info() -> Dict[str, Any]:
    return {
        "endpoint": "Shopify Webhook Test Simulator",
        "usage": "POST with { sessionId, products: [{ title, price, quantity?, variantId? }] }",
        "example": {
            "sessionId": "session_1234567890_abc123xyz",
            "products": [
                {"title": "Vitamine D3", "price": 19.99, "quantity": 1},
                {"title": "Omega 3", "price": 29.99, "quantity": 2},
            ],
        },
    }
