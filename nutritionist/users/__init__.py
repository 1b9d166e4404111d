"""
Users Module
"""
from .service import UserProfileService, serialize_profile

__all__ = ["UserProfileService", "serialize_profile"]
