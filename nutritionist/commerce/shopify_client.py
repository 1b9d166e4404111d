"""
Shopify API Client

Thin httpx wrapper over the Storefront GraphQL API (carts, product catalogue)
and the Admin REST API (customer lookup). No retries or backoff: failures
surface as ShopifyAPIError and the caller decides.
"""

from typing import Any, Dict, List, Optional

import httpx
import structlog

from nutritionist.commerce.app_proxy import ShopifyCustomerInfo
from nutritionist.config.settings import ShopifySettings

logger = structlog.get_logger(__name__)

PRODUCTS_PAGE_SIZE = 250

CART_CREATE_MUTATION = """
mutation cartCreate($lines: [CartLineInput!]) {
  cartCreate(input: { lines: $lines }) {
    cart { id checkoutUrl }
    userErrors { field message }
  }
}
"""

CART_LINES_ADD_MUTATION = """
mutation cartLinesAdd($cartId: ID!, $lines: [CartLineInput!]!) {
  cartLinesAdd(cartId: $cartId, lines: $lines) {
    cart { id checkoutUrl }
    userErrors { field message }
  }
}
"""

PRODUCTS_QUERY = """
query fetchProducts($first: Int!, $cursor: String) {
  products(first: $first, after: $cursor) {
    pageInfo { hasNextPage endCursor }
    edges {
      node {
        id
        title
        handle
        description
        productType
        tags
        availableForSale
        priceRange { minVariantPrice { amount currencyCode } }
        variants(first: 10) {
          edges { node { id title availableForSale price { amount currencyCode } } }
        }
      }
    }
  }
}
"""


class ShopifyAPIError(Exception):
    """Failed or rejected Shopify request."""

    def __init__(self, message: str, status_code: Optional[int] = None, errors: Optional[List] = None):
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []


class CartUserError(ShopifyAPIError):
    """Shopify accepted the request but refused the cart mutation."""


class ShopifyClient:
    """
    Client for one store.

    Usage:
        client = ShopifyClient(get_settings().shopify)
        cart = await client.add_to_cart("gid://shopify/ProductVariant/1", quantity=2)
    """

    def __init__(self, settings: ShopifySettings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.settings.request_timeout, transport=self._transport)

    @property
    def storefront_url(self) -> str:
        return f"https://{self.settings.store_domain}/api/{self.settings.storefront_api_version}/graphql.json"

    def admin_url(self, path: str) -> str:
        return f"https://{self.settings.store_domain}/admin/api/{self.settings.admin_api_version}/{path}"

    @property
    def cart_url(self) -> str:
        return f"{self.settings.shop_url.rstrip('/')}/cart"

    # -------------------------------------------------------------------------
    # Storefront GraphQL
    # -------------------------------------------------------------------------

    async def storefront_query(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Execute a Storefront GraphQL operation.

        Raises:
            ShopifyAPIError: When unconfigured, on HTTP errors or GraphQL errors
        """
        if not self.settings.is_storefront_configured:
            raise ShopifyAPIError(
                "Shopify configuration missing. Check SHOPIFY_STORE_DOMAIN and SHOPIFY_STOREFRONT_TOKEN."
            )

        headers = {
            "Content-Type": "application/json",
            "X-Shopify-Storefront-Access-Token": self.settings.storefront_token.get_secret_value(),
        }
        payload = {"query": query, "variables": variables or {}}

        try:
            async with self._client() as client:
                response = await client.post(self.storefront_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error("Shopify request failed", error=str(e))
            raise ShopifyAPIError(f"Shopify request failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        errors = body.get("errors") or []
        if response.status_code >= 400:
            message = errors[0].get("message") if errors and isinstance(errors[0], dict) else None
            raise ShopifyAPIError(
                message or f"Shopify request failed with status {response.status_code}",
                status_code=response.status_code,
                errors=errors,
            )
        if errors:
            raise ShopifyAPIError(", ".join(str(e.get("message", e)) for e in errors), errors=errors)

        return body.get("data") or {}

    async def add_to_cart(
        self,
        merchandise_id: str,
        quantity: int = 1,
        cart_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Add a variant to an existing cart, or to a new cart.

        When Shopify refuses the lines for the given cart (expired or
        checked-out cart) a fresh cart is created with the same line.

        Returns:
            dict with `cartId`, `checkoutUrl` and `cartUrl`

        Raises:
            CartUserError: If creating the cart is refused
            ShopifyAPIError: On request failures
        """
        lines = [{"merchandiseId": merchandise_id, "quantity": quantity}]
        active_cart_id = cart_id
        checkout_url = None

        if active_cart_id:
            data = await self.storefront_query(CART_LINES_ADD_MUTATION, {"cartId": active_cart_id, "lines": lines})
            result = data.get("cartLinesAdd") or {}
            user_errors = result.get("userErrors") or []
            if user_errors:
                logger.warning("cartLinesAdd refused, creating new cart", cart_id=cart_id, errors=user_errors)
                active_cart_id = None
            else:
                cart = result.get("cart") or {}
                active_cart_id = cart.get("id") or active_cart_id
                checkout_url = cart.get("checkoutUrl")

        if not active_cart_id:
            data = await self.storefront_query(CART_CREATE_MUTATION, {"lines": lines})
            result = data.get("cartCreate") or {}
            user_errors = result.get("userErrors") or []
            if user_errors:
                raise CartUserError(", ".join(e.get("message", "") for e in user_errors), errors=user_errors)
            cart = result.get("cart") or {}
            active_cart_id = cart.get("id")
            checkout_url = cart.get("checkoutUrl") or checkout_url

        if not active_cart_id:
            raise ShopifyAPIError("Shopify returned no cart")

        logger.info("Product added to cart", cart_id=active_cart_id, merchandise_id=merchandise_id, quantity=quantity)
        return {"cartId": active_cart_id, "checkoutUrl": checkout_url, "cartUrl": self.cart_url}

    async def fetch_products(self, max_pages: int = 20) -> List[Dict[str, Any]]:
        """Full product catalogue, flattened for caching."""
        products: List[Dict[str, Any]] = []
        cursor = None

        for _ in range(max_pages):
            data = await self.storefront_query(PRODUCTS_QUERY, {"first": PRODUCTS_PAGE_SIZE, "cursor": cursor})
            connection = data.get("products") or {}
            products.extend(_flatten_product(edge["node"]) for edge in connection.get("edges", []))

            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                break
            cursor = page_info.get("endCursor")

        return products

    # -------------------------------------------------------------------------
    # Admin REST
    # -------------------------------------------------------------------------

    async def get_customer(self, customer_id: str) -> Optional[ShopifyCustomerInfo]:
        """
        Look a customer up by id through the Admin API.

        Returns:
            Customer info, or None when the Admin API is unconfigured or the
            customer does not exist

        Raises:
            ShopifyAPIError: On request failures
        """
        if not self.settings.is_admin_configured:
            return None

        headers = {
            "X-Shopify-Access-Token": self.settings.admin_access_token.get_secret_value(),
            "Content-Type": "application/json",
        }
        try:
            async with self._client() as client:
                response = await client.get(self.admin_url(f"customers/{customer_id}.json"), headers=headers)
        except httpx.HTTPError as e:
            raise ShopifyAPIError(f"Shopify request failed: {e}") from e

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise ShopifyAPIError(
                f"Shopify API error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        customer = (response.json() or {}).get("customer")
        if not customer:
            return None

        name = f"{customer.get('first_name') or ''} {customer.get('last_name') or ''}".strip()
        return ShopifyCustomerInfo(
            customer_id=str(customer["id"]),
            customer_name=name or None,
            email=customer.get("email"),
        )


def _flatten_product(node: Dict[str, Any]) -> Dict[str, Any]:
    price = ((node.get("priceRange") or {}).get("minVariantPrice") or {})
    return {
        "id": node.get("id"),
        "title": node.get("title"),
        "handle": node.get("handle"),
        "description": node.get("description"),
        "productType": node.get("productType"),
        "tags": node.get("tags") or [],
        "availableForSale": node.get("availableForSale", False),
        "price": price.get("amount"),
        "currencyCode": price.get("currencyCode"),
        "variants": [
            {
                "id": edge["node"].get("id"),
                "title": edge["node"].get("title"),
                "availableForSale": edge["node"].get("availableForSale", False),
                "price": (edge["node"].get("price") or {}).get("amount"),
            }
            for edge in (node.get("variants") or {}).get("edges", [])
        ],
    }
