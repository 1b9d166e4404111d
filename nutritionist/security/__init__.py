"""
Security Module
"""
from .admin_auth import (
    ADMIN_SESSION_COOKIE,
    authenticate_admin,
    generate_session_token,
    validate_session_token,
)

__all__ = [
    "ADMIN_SESSION_COOKIE",
    "authenticate_admin",
    "generate_session_token",
    "validate_session_token",
]
