"""
Commerce Module

Shopify integration: order webhooks, app proxy customers, cart and catalogue.
"""
from .shopify_client import ShopifyClient, ShopifyAPIError, CartUserError
from .webhooks import ShopifyOrder, extract_session_id, verify_webhook_signature

__all__ = [
    "ShopifyClient",
    "ShopifyAPIError",
    "CartUserError",
    "ShopifyOrder",
    "extract_session_id",
    "verify_webhook_signature",
]
