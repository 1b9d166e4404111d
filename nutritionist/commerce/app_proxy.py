"""
Shopify App Proxy

Requests served under the merchant's domain through the app proxy carry the
logged-in customer in query parameters (or forwarded headers) and a hex HMAC
`signature` over the remaining parameters.
"""

import hashlib
import hmac
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_CUSTOMER_NAME = "Customer"

CUSTOMER_ID_PARAMS = ("customer_id", "customerId", "customer.id")
CUSTOMER_NAME_PARAMS = ("customer_name", "customerName", "customer.name", "customer_first_name")
CUSTOMER_EMAIL_PARAMS = ("customer_email", "customerEmail")

CUSTOMER_ID_HEADERS = ("x-shopify-customer-id",)
CUSTOMER_NAME_HEADERS = ("x-shopify-customer-name", "x-shopify-customer-first-name")
CUSTOMER_EMAIL_HEADERS = ("x-shopify-customer-email",)


@dataclass
class ShopifyCustomerInfo:
    customer_id: str
    customer_name: Optional[str] = None
    email: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.customer_name or DEFAULT_CUSTOMER_NAME

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"id": self.customer_id, "name": self.display_name, "email": self.email}


def app_proxy_message(params: Mapping[str, str]) -> str:
    """Sorted `key=value` pairs joined with `&`, without the signature."""
    return "&".join(
        f"{key}={params[key]}"
        for key in sorted(params)
        if key != "signature" and params[key]
    )


def verify_app_proxy_signature(params: Mapping[str, str], secret: str) -> bool:
    """
    Verify the hex HMAC-SHA256 `signature` query parameter.

    Args:
        params: Query parameters of the proxied request
        secret: App proxy shared secret
    """
    signature = params.get("signature")
    if not signature or not secret:
        return False

    expected = hmac.new(
        secret.encode("utf-8"),
        app_proxy_message(params).encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()

    if len(expected) != len(signature):
        return False
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


def _first(source: Mapping[str, str], names) -> Optional[str]:
    for name in names:
        value = source.get(name)
        if value:
            return str(value)
    return None


def extract_customer_info(
    params: Mapping[str, str],
    headers: Mapping[str, str],
) -> Optional[ShopifyCustomerInfo]:
    """
    Logged-in customer from query parameters, falling back to headers.

    Returns:
        Customer info, or None for anonymous visitors
    """
    customer_id = _first(params, CUSTOMER_ID_PARAMS)
    if customer_id:
        return ShopifyCustomerInfo(
            customer_id=customer_id,
            customer_name=_first(params, CUSTOMER_NAME_PARAMS),
            email=_first(params, CUSTOMER_EMAIL_PARAMS),
        )

    customer_id = _first(headers, CUSTOMER_ID_HEADERS)
    if customer_id:
        return ShopifyCustomerInfo(
            customer_id=customer_id,
            customer_name=_first(headers, CUSTOMER_NAME_HEADERS),
            email=_first(headers, CUSTOMER_EMAIL_HEADERS),
        )

    return None
