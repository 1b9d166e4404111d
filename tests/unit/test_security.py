"""
Unit Tests - Admin Sessions and App Proxy
"""

import hashlib
import hmac

import pytest

from nutritionist.commerce.app_proxy import (
    app_proxy_message,
    extract_customer_info,
    verify_app_proxy_signature,
)
from nutritionist.security.admin_auth import (
    authenticate_admin,
    generate_session_token,
    validate_session_token,
)

PASSWORD = "s3cret"
NOW_MS = 1_736_951_400_000


class TestAdminSession:
    """Tests for admin session tokens"""

    def test_round_trip(self):
        token = generate_session_token(PASSWORD, now_ms=NOW_MS)

        assert validate_session_token(token, PASSWORD, now_ms=NOW_MS + 1000)

    def test_expired(self):
        token = generate_session_token(PASSWORD, lifetime_hours=1, now_ms=NOW_MS)

        assert not validate_session_token(token, PASSWORD, now_ms=NOW_MS + 3600 * 1000 + 1)

    def test_password_change_invalidates(self):
        token = generate_session_token(PASSWORD, now_ms=NOW_MS)

        assert not validate_session_token(token, "new-password", now_ms=NOW_MS)

    @pytest.mark.parametrize("token", [None, "", "abc", "123.", ".abc", "12a.deadbeef", "١٢٣.deadbeef"])
    def test_malformed(self, token):
        assert not validate_session_token(token, PASSWORD, now_ms=NOW_MS)

    def test_forged_expiry(self):
        """Extending the expiry breaks the signature"""
        token = generate_session_token(PASSWORD, now_ms=NOW_MS)
        _, signature = token.split(".")
        forged = f"{NOW_MS * 2}.{signature}"

        assert not validate_session_token(forged, PASSWORD, now_ms=NOW_MS)

    def test_authenticate(self):
        assert authenticate_admin(PASSWORD, PASSWORD) is not None
        assert authenticate_admin("wrong", PASSWORD) is None
        assert authenticate_admin("", PASSWORD) is None


class TestAppProxy:
    """Tests for app proxy signatures and customer extraction"""

    SECRET = "proxy-secret"

    def sign(self, params):
        return hmac.new(
            self.SECRET.encode("utf-8"),
            app_proxy_message(params).encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def test_message_sorted_without_signature(self):
        params = {"shop": "store.myshopify.com", "customer_id": "42", "signature": "x", "empty": ""}

        assert app_proxy_message(params) == "customer_id=42&shop=store.myshopify.com"

    def test_valid_signature(self):
        params = {"shop": "store.myshopify.com", "customer_id": "42", "timestamp": "1736951400"}
        params["signature"] = self.sign(params)

        assert verify_app_proxy_signature(params, self.SECRET)

    def test_invalid_signature(self):
        params = {"shop": "store.myshopify.com", "customer_id": "42"}
        params["signature"] = self.sign(params)
        params["customer_id"] = "43"

        assert not verify_app_proxy_signature(params, self.SECRET)
        assert not verify_app_proxy_signature({"shop": "x"}, self.SECRET)

    def test_customer_from_params(self):
        info = extract_customer_info({"customer_id": "42", "customer_name": "Marie"}, {})

        assert info.to_dict() == {"id": "42", "name": "Marie", "email": None}

    def test_customer_from_headers(self):
        """Headers are used when the query carries no customer"""
        info = extract_customer_info(
            {},
            {"x-shopify-customer-id": "7", "x-shopify-customer-email": "c@example.com"},
        )

        assert info.customer_id == "7"
        assert info.display_name == "Customer"
        assert info.email == "c@example.com"

    def test_anonymous(self):
        assert extract_customer_info({"shop": "store"}, {}) is None
