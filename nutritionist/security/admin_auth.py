"""
Admin Session Tokens

Stateless tokens of the form `<expires_ms>.<hex HMAC-SHA256(expires_ms)>`
keyed by the admin password. Changing the password invalidates every
outstanding token; logging out only clears the cookie.
"""

import hashlib
import hmac
import time
from typing import Optional

ADMIN_SESSION_COOKIE = "admin_session"


def _now_ms() -> int:
    return int(time.time() * 1000)


def sign(payload: str, password: str) -> str:
    return hmac.new(password.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def generate_session_token(password: str, lifetime_hours: int = 24, now_ms: Optional[int] = None) -> str:
    expires_at = (now_ms if now_ms is not None else _now_ms()) + lifetime_hours * 3600 * 1000
    payload = str(expires_at)
    return f"{payload}.{sign(payload, password)}"


def authenticate_admin(
    attempt: str,
    password: str,
    lifetime_hours: int = 24,
) -> Optional[str]:
    """Session token when the attempt matches the admin password, else None."""
    if not attempt or not hmac.compare_digest(attempt.encode("utf-8"), password.encode("utf-8")):
        return None
    return generate_session_token(password, lifetime_hours)


def validate_session_token(token: Optional[str], password: str, now_ms: Optional[int] = None) -> bool:
    """Reject malformed, expired or forged tokens."""
    if not token:
        return False

    payload, _, signature = token.partition(".")
    if not payload or not signature or not (payload.isascii() and payload.isdigit()):
        return False

    if (now_ms if now_ms is not None else _now_ms()) > int(payload):
        return False

    expected = sign(payload, password)
    if len(expected) != len(signature):
        return False
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))
