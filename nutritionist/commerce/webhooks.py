"""
Shopify Order Webhooks

Signature verification, chat session attribution and purchase recording for
`orders/create` webhooks. An order is linked to a chat session only through a
session id the widget stored on the cart.
"""

import base64
import hashlib
import hmac
import re
from typing import Any, Dict, List, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field

from nutritionist.database.models import EventName

logger = structlog.get_logger(__name__)

SESSION_ATTRIBUTE_NAMES = ("sessionId", "_chatbot_session")
SESSION_NOTE_PATTERN = re.compile(r"sessionId[=:]\s*([^\s,]+)", re.IGNORECASE)
SUPPORTED_TOPICS = ["orders/create"]

WEBHOOK_SOURCE = "shopify_webhook"
TEST_WEBHOOK_SOURCE = "test_webhook"


# =============================================================================
# PAYLOAD MODELS
# =============================================================================

class NameValue(BaseModel):
    """Note attribute or line item property"""
    model_config = ConfigDict(extra="ignore")

    name: str
    value: Any = None


class ShopifyLineItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = ""
    quantity: int = 1
    price: Union[str, float] = "0"
    product_id: Optional[Union[int, str]] = None
    variant_id: Optional[Union[int, str]] = None
    properties: List[NameValue] = Field(default_factory=list)

    @property
    def unit_price(self) -> float:
        return _to_float(self.price)


class ShopifyOrder(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Union[int, str]
    order_number: Optional[Union[int, str]] = None
    email: Optional[str] = None
    total_price: Union[str, float] = "0"
    currency: Optional[str] = None
    created_at: Optional[str] = None
    line_items: List[ShopifyLineItem] = Field(default_factory=list)
    note: Optional[str] = None
    note_attributes: List[NameValue] = Field(default_factory=list)
    cart_token: Optional[str] = None


def _to_float(value: Union[str, float, None]) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


# =============================================================================
# SIGNATURE VERIFICATION
# =============================================================================

def compute_webhook_signature(body: bytes, secret: str) -> str:
    """Base64 HMAC-SHA256 of the raw body, as Shopify sends it."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_webhook_signature(
    body: bytes,
    signature: Optional[str],
    secret: Optional[str],
    allow_unsigned: bool = False,
) -> bool:
    """
    Verify that a webhook came from Shopify.

    Args:
        body: Raw request body bytes
        signature: X-Shopify-Hmac-Sha256 header value
        secret: Webhook shared secret
        allow_unsigned: Accept everything when no secret is configured
            (development only)

    Returns:
        True if the signature is valid
    """
    if not secret:
        logger.warning("Shopify webhook secret not configured", allow_unsigned=allow_unsigned)
        return allow_unsigned

    if not signature:
        logger.warning("Shopify webhook signature missing")
        return False

    expected = compute_webhook_signature(body, secret)
    if len(expected) != len(signature):
        logger.warning("Shopify webhook signature length mismatch")
        return False

    is_valid = hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))
    if not is_valid:
        logger.warning("Invalid Shopify webhook signature")
    return is_valid


# =============================================================================
# SESSION ATTRIBUTION
# =============================================================================

def _find_session_value(pairs: List[NameValue]) -> Optional[str]:
    for pair in pairs:
        if pair.name in SESSION_ATTRIBUTE_NAMES and pair.value:
            return str(pair.value)
    return None


def extract_session_id(order: ShopifyOrder) -> Optional[str]:
    """
    Chat session id stored on the order.

    Checked in order: cart note attributes, line item properties, then a
    `sessionId=...` marker in the free-text note.
    """
    session_id = _find_session_value(order.note_attributes)
    if session_id:
        return session_id

    for item in order.line_items:
        session_id = _find_session_value(item.properties)
        if session_id:
            return session_id

    if order.note:
        match = SESSION_NOTE_PATTERN.search(order.note)
        if match:
            return match.group(1)

    return None


# =============================================================================
# PURCHASE EVENTS
# =============================================================================

def build_purchase_events(
    order: ShopifyOrder,
    session_id: str,
    source: str = WEBHOOK_SOURCE,
) -> List[Dict[str, Any]]:
    """
    Events recording a verified purchase: one purchase_verified per line item
    followed by one order_completed carrying the order total.
    """
    events = []
    for item in order.line_items:
        unit_price = item.unit_price
        events.append({
            "event": EventName.PURCHASE_VERIFIED.value,
            "session_id": session_id,
            "properties": {
                "order_id": order.id,
                "order_number": order.order_number,
                "product_name": item.title,
                "product_id": str(item.product_id) if item.product_id is not None else None,
                "variant_id": str(item.variant_id) if item.variant_id is not None else None,
                "quantity": item.quantity,
                "unit_price": unit_price,
                "total_value": round(unit_price * item.quantity, 2),
                "currency": order.currency,
                "email": order.email,
                "source": source,
            },
        })

    events.append({
        "event": EventName.ORDER_COMPLETED.value,
        "session_id": session_id,
        "properties": {
            "order_id": order.id,
            "order_number": order.order_number,
            "total_value": _to_float(order.total_price),
            "currency": order.currency,
            "item_count": len(order.line_items),
            "email": order.email,
            "source": source,
        },
    })
    return events
