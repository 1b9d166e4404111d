"""
Integration Tests - HTTP API
"""

import json

import pytest
from httpx import ASGITransport, AsyncClient

from nutritionist.commerce.webhooks import compute_webhook_signature
from nutritionist.config.settings import SecuritySettings

PROFILE = {
    "userId": "user_123",
    "age": 34,
    "gender": "female",
    "goals": ["energy", "sleep"],
    "allergies": ["gluten"],
    "budget": {"min": 20, "max": 80, "currency": "EUR"},
}

ORDER = {
    "id": 820982911946154508,
    "order_number": 1001,
    "email": "client@example.com",
    "total_price": "49.98",
    "currency": "EUR",
    "note_attributes": [{"name": "sessionId", "value": "session_1736951400_abc"}],
    "line_items": [
        {"title": "Omega 3", "quantity": 1, "price": "29.99", "product_id": 1, "variant_id": 11},
        {"title": "Vitamine D3", "quantity": 1, "price": "19.99", "product_id": 2, "variant_id": 12},
    ],
}


def signed_headers(body: bytes, secret: str) -> dict:
    return {
        "Content-Type": "application/json",
        "X-Shopify-Topic": "orders/create",
        "X-Shopify-Hmac-Sha256": compute_webhook_signature(body, secret),
    }


class TestMisc:
    """Tests for info, health and security headers"""

    async def test_info(self, client):
        response = await client.get("/api/info")

        assert response.status_code == 200
        assert response.json()["environment"] == "testing"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert "X-Request-ID" in response.headers

    async def test_liveness(self, client):
        response = await client.get("/api/health/live")

        assert response.json() == {"status": "alive"}

    async def test_unknown_route_uses_error_body(self, client):
        response = await client.get("/api/does-not-exist")

        assert response.status_code == 404
        assert "error" in response.json()


class TestTracking:
    """Tests for the event tracking endpoint"""

    async def test_track_event(self, client, admin_headers):
        response = await client.post("/api/analytics", json={
            "event": "add_to_cart",
            "sessionId": "session_1",
            "userId": "user_1",
            "properties": {"product_name": "Omega 3", "value": 29.99},
        })

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["eventId"]

        events = (await client.get("/api/admin/events", headers=admin_headers)).json()
        assert events["count"] == 1
        assert events["data"][0]["properties"]["value"] == 29.99

    @pytest.mark.parametrize("payload", [
        {"sessionId": "session_1"},
        {"event": "chat_api_request"},
        {"event": "", "sessionId": "session_1"},
    ])
    async def test_missing_fields(self, client, payload):
        response = await client.post("/api/analytics", json=payload)

        assert response.status_code == 400
        assert response.json()["error"] == "Validation error"


class TestUserProfile:
    """Tests for profile CRUD"""

    async def test_create_then_replace(self, client):
        created = await client.post("/api/user", json=PROFILE)
        replaced = await client.post("/api/user", json={**PROFILE, "age": 35})

        assert created.status_code == 201
        assert created.json()["budget"] == {"min": 20.0, "max": 80.0, "currency": "EUR"}
        assert replaced.status_code == 200
        assert replaced.json()["age"] == 35

    async def test_get_update_delete(self, client):
        await client.post("/api/user", json=PROFILE)

        fetched = await client.get("/api/user", params={"userId": "user_123"})
        updated = await client.put("/api/user", params={"userId": "user_123"}, json={"goals": ["focus"]})
        deleted = await client.delete("/api/user", params={"userId": "user_123"})
        missing = await client.get("/api/user", params={"userId": "user_123"})

        assert fetched.json()["goals"] == ["energy", "sleep"]
        assert updated.json()["goals"] == ["focus"]
        assert updated.json()["age"] == 34
        assert deleted.status_code == 200
        assert missing.status_code == 404
        assert missing.json() == {"error": "User profile not found"}

    async def test_invalid_profile(self, client):
        response = await client.post("/api/user", json={**PROFILE, "budget": {"min": 50, "max": 10}})

        assert response.status_code == 400

    async def test_shopify_customer_attached(self, client):
        response = await client.post(
            "/api/user",
            params={"customer_id": "42", "customer_name": "Marie"},
            json=PROFILE,
        )

        assert response.json()["shopifyCustomerId"] == "42"
        assert response.json()["shopifyCustomerName"] == "Marie"


class TestAdminAuth:
    """Tests for admin login and protection"""

    async def test_protected_without_session(self, client):
        response = await client.get("/api/admin/stats")

        assert response.status_code == 401
        assert response.json() == {"error": "Admin authentication required"}

    async def test_wrong_password(self, client):
        response = await client.post("/api/admin/auth", json={"password": "nope"})

        assert response.status_code == 401

    async def test_missing_password(self, client):
        response = await client.post("/api/admin/auth", json={})

        assert response.status_code == 400

    async def test_cookie_session(self, client, admin_password):
        login = await client.post("/api/admin/auth", json={"password": admin_password})

        assert login.status_code == 200
        assert "admin_session" in login.cookies
        assert (await client.get("/api/admin/auth")).json() == {"authenticated": True}
        assert (await client.get("/api/admin/stats")).status_code == 200

        await client.delete("/api/admin/auth")
        assert (await client.get("/api/admin/auth")).json() == {"authenticated": False}

    async def test_bearer_token(self, client, admin_headers):
        response = await client.get("/api/admin/auth", headers=admin_headers)

        assert response.json() == {"authenticated": True}

    async def test_forged_token(self, client):
        response = await client.get("/api/admin/stats", headers={"Authorization": "Bearer 99999999999999.abc"})

        assert response.status_code == 401


class TestAdminStats:
    """Tests for the dashboard endpoints"""

    async def test_stats(self, client, admin_headers):
        for payload in [
            {"event": "chat_api_request", "sessionId": "s1"},
            {"event": "product_recommended", "sessionId": "s1", "properties": {"product_name": "Zinc"}},
            {"event": "add_to_cart", "sessionId": "s1", "properties": {"product_name": "Zinc", "value": 14.9}},
        ]:
            response = await client.post("/api/admin/events", json=payload, headers=admin_headers)
            assert response.status_code == 201

        response = await client.get("/api/admin/stats", headers=admin_headers)

        data = response.json()["data"]
        assert data["totalConversations"] == 1
        assert data["totalRevenue"] == 14.9
        assert data["conversionRate"] == 100.0
        assert data["topProducts"][0]["productName"] == "Zinc"

    async def test_comparison_defaults(self, client, admin_headers):
        response = await client.get("/api/admin/stats/comparison", headers=admin_headers)

        data = response.json()["data"]
        assert set(data) == {"current", "previous", "changes", "currentPeriod", "previousPeriod"}
        assert data["changes"]["conversations"] == 0.0

    async def test_comparison_inverted_window(self, client, admin_headers):
        response = await client.get(
            "/api/admin/stats/comparison",
            params={"compareStartDate": "2025-01-10T00:00:00Z", "compareEndDate": "2025-01-01T00:00:00Z"},
            headers=admin_headers,
        )

        assert response.status_code == 400

    @pytest.mark.parametrize("granularity,points", [("week", 7), ("month", 30), ("year", 12)])
    async def test_sales_chart(self, client, admin_headers, granularity, points):
        response = await client.get(
            "/api/admin/stats/sales-chart",
            params={"granularity": granularity},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert len(response.json()["data"]["data"]) == points

    async def test_sales_chart_invalid(self, client, admin_headers):
        response = await client.get(
            "/api/admin/stats/sales-chart",
            params={"granularity": "decade"},
            headers=admin_headers,
        )

        assert response.status_code == 400
        assert response.json()["error"].startswith("Invalid granularity")

    async def test_usage(self, client, admin_headers):
        created = await client.post("/api/admin/usage", headers=admin_headers, json={
            "provider": "openai",
            "modelName": "gpt-4o-mini",
            "promptTokens": 2000,
            "completionTokens": 500,
            "requestType": "chat",
        })
        stats = await client.get("/api/admin/usage", headers=admin_headers)

        assert created.status_code == 201
        assert created.json()["data"]["estimatedCost"] == 0.0006
        assert stats.json()["totalRequests"] == 1
        assert stats.json()["byRequestType"]["chat"]["tokens"] == 2500

    async def test_usage_unknown_provider(self, client, admin_headers):
        response = await client.post("/api/admin/usage", headers=admin_headers, json={
            "provider": "mistral",
            "modelName": "large",
            "promptTokens": 1,
            "completionTokens": 1,
            "requestType": "chat",
        })

        assert response.status_code == 400


class TestShopifyWebhook:
    """Tests for the orders/create webhook"""

    async def test_signed_order_recorded(self, client, admin_headers, webhook_secret):
        body = json.dumps(ORDER).encode("utf-8")

        response = await client.post(
            "/api/webhooks/shopify",
            content=body,
            headers=signed_headers(body, webhook_secret),
        )

        assert response.status_code == 200
        assert response.json()["sessionId"] == "session_1736951400_abc"
        assert response.json()["itemsTracked"] == 2

        stats = (await client.get("/api/admin/stats", headers=admin_headers)).json()["data"]
        assert stats["verifiedPurchases"] == 2
        assert stats["verifiedOrders"] == 1
        assert stats["verifiedRevenue"] == 49.98
        assert stats["totalRevenue"] == 0.0

    async def test_bad_signature(self, client):
        body = json.dumps(ORDER).encode("utf-8")

        response = await client.post(
            "/api/webhooks/shopify",
            content=body,
            headers=signed_headers(body, secret="wrong"),
        )

        assert response.status_code == 401

    async def test_unsigned_rejected(self, client):
        response = await client.post("/api/webhooks/shopify", json=ORDER)

        assert response.status_code == 401

    async def test_no_session(self, client, admin_headers, webhook_secret):
        body = json.dumps({**ORDER, "note_attributes": []}).encode("utf-8")

        response = await client.post(
            "/api/webhooks/shopify",
            content=body,
            headers=signed_headers(body, webhook_secret),
        )

        assert response.status_code == 200
        assert "no chatbot session" in response.json()["message"]
        assert (await client.get("/api/admin/events", headers=admin_headers)).json()["count"] == 0

    async def test_invalid_payload(self, client, webhook_secret):
        body = b'{"line_items": []}'

        response = await client.post(
            "/api/webhooks/shopify",
            content=body,
            headers=signed_headers(body, webhook_secret),
        )

        assert response.status_code == 400

    async def test_info(self, client):
        response = await client.get("/api/webhooks/shopify")

        assert response.json()["supported_topics"] == ["orders/create"]


class TestWebhookSimulator:
    """Tests for the development order simulator"""

    ORDER_REQUEST = {
        "sessionId": "session_sim",
        "products": [
            {"title": "Vitamine D3", "price": 19.99},
            {"title": "Omega 3", "price": 29.99, "quantity": 2},
        ],
    }

    async def test_forbidden_outside_development(self, client):
        response = await client.post("/api/webhooks/shopify/test", json=self.ORDER_REQUEST)

        assert response.status_code == 403

    async def test_records_events_in_development(self, dev_client, admin_headers):
        response = await dev_client.post("/api/webhooks/shopify/test", json=self.ORDER_REQUEST)
        events = await dev_client.get(
            "/api/admin/events",
            params={"sessionId": "session_sim"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["totalValue"] == 79.97
        assert response.json()["productsTracked"] == 2
        assert events.json()["count"] == 3
        assert {e["properties"]["source"] for e in events.json()["data"]} == {"test_webhook"}


class TestShopifyEndpoints:
    """Tests for storefront endpoints without Shopify credentials"""

    async def test_cart_unconfigured(self, client):
        response = await client.post("/api/shopify/cart", json={"merchandiseId": "gid://shopify/ProductVariant/1"})

        assert response.status_code == 500
        assert "configuration missing" in response.json()["error"]

    async def test_cart_requires_variant(self, client):
        response = await client.post("/api/shopify/cart", json={"quantity": 1})

        assert response.status_code == 400

    async def test_anonymous_customer(self, client):
        response = await client.get("/api/shopify/customer")

        assert response.json() == {"isLoggedIn": False, "customer": None}

    async def test_customer_linked_to_profile(self, client):
        response = await client.get("/api/shopify/customer", params={"customer_id": "42", "customer_name": "Marie"})
        profile = await client.get("/api/user", params={"userId": "shopify_42"})

        assert response.json() == {
            "isLoggedIn": True,
            "customer": {"id": "42", "name": "Marie", "email": None},
        }
        assert profile.status_code == 200
        assert profile.json()["shopifyCustomerName"] == "Marie"

    async def test_prefetch_answers_immediately(self, client):
        response = await client.get("/api/products/prefetch")

        assert response.status_code == 200
        assert response.json()["success"] is True


class TestTempFiles:
    """Tests for generated file serving"""

    async def test_serves_file(self, client, test_settings):
        temp_dir = test_settings.storage.temp_dir
        temp_dir.mkdir(parents=True)
        (temp_dir / "plan_1.pdf").write_bytes(b"%PDF-1.4")

        response = await client.get("/api/temp/plan_1.pdf")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content == b"%PDF-1.4"

    async def test_missing_file(self, client):
        response = await client.get("/api/temp/missing.pdf")

        assert response.status_code == 404

    async def test_traversal_rejected(self, client):
        response = await client.get("/api/temp/..%2Fsecret.txt")

        assert response.status_code == 403


class TestRateLimit:
    """Tests for the in-memory rate limiter"""

    @pytest.fixture
    async def limited_client(self, make_app, test_settings, admin_password):
        settings = test_settings.model_copy(update={
            "security": SecuritySettings(
                admin_password=admin_password,
                rate_limit_enabled=True,
                rate_limit_requests=2,
            ),
        })
        transport = ASGITransport(app=make_app(settings))
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac

    async def test_limit_exceeded(self, limited_client):
        responses = [await limited_client.get("/api/info") for _ in range(3)]

        assert [r.status_code for r in responses] == [200, 200, 429]
        assert responses[0].headers["X-RateLimit-Remaining"] == "1"
        assert responses[2].json() == {"error": "Too many requests"}

    async def test_webhooks_exempt(self, limited_client):
        responses = [await limited_client.get("/api/webhooks/shopify") for _ in range(3)]

        assert all(r.status_code == 200 for r in responses)

    async def test_forwarded_header_ignored_from_untrusted_peer(self, limited_client):
        """Rotating X-Forwarded-For should not reset the limit"""
        responses = [
            await limited_client.get("/api/info", headers={"X-Forwarded-For": f"10.0.0.{i}"})
            for i in range(5)
        ]

        assert [r.status_code for r in responses] == [200, 200, 429, 429, 429]

    async def test_forwarded_header_used_behind_trusted_proxy(self, make_app, test_settings, admin_password):
        settings = test_settings.model_copy(update={
            "security": SecuritySettings(
                admin_password=admin_password,
                rate_limit_enabled=True,
                rate_limit_requests=2,
                trusted_proxies=["127.0.0.1"],
            ),
        })
        transport = ASGITransport(app=make_app(settings))
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            first = [await ac.get("/api/info", headers={"X-Forwarded-For": "10.0.0.1"}) for _ in range(3)]
            other = await ac.get("/api/info", headers={"X-Forwarded-For": "10.0.0.2"})

        assert [r.status_code for r in first] == [200, 200, 429]
        assert other.status_code == 200
