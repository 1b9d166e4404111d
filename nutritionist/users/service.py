"""
User Profile Service

Profile CRUD and Shopify customer linkage.
"""

from typing import Any, Dict, Optional

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from nutritionist.commerce.app_proxy import ShopifyCustomerInfo
from nutritionist.database.models import Currency, Gender, UserProfile
from nutritionist.timeutils import utcnow

logger = structlog.get_logger(__name__)


def minimal_profile_fields() -> Dict[str, Any]:
    """Placeholders until the customer completes onboarding."""
    return {
        "age": 30,
        "gender": Gender.PREFER_NOT_TO_SAY.value,
        "goals": [],
        "allergies": [],
        "budget_min": 0.0,
        "budget_max": 0.0,
        "budget_currency": Currency.USD.value,
    }


def serialize_profile(profile: UserProfile) -> Dict[str, Any]:
    return {
        "userId": profile.user_id,
        "age": profile.age,
        "gender": profile.gender,
        "goals": profile.goals or [],
        "allergies": profile.allergies or [],
        "budget": {
            "min": profile.budget_min,
            "max": profile.budget_max,
            "currency": profile.budget_currency,
        },
        "shopifyCustomerId": profile.shopify_customer_id,
        "shopifyCustomerName": profile.shopify_customer_name,
        "lastInteraction": profile.last_interaction.isoformat(),
        "createdAt": profile.created_at.isoformat(),
        "updatedAt": profile.updated_at.isoformat(),
    }


class UserProfileService:
    """Profile storage bound to one session"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        result = await self.db.execute(select(UserProfile).where(UserProfile.user_id == user_id))
        return result.scalar_one_or_none()

    async def get_by_shopify_customer_id(self, customer_id: str) -> Optional[UserProfile]:
        result = await self.db.execute(
            select(UserProfile).where(UserProfile.shopify_customer_id == customer_id).limit(1)
        )
        return result.scalar_one_or_none()

    async def create_profile(self, user_id: str, **fields: Any) -> UserProfile:
        now = utcnow()
        profile = UserProfile(
            user_id=user_id,
            last_interaction=now,
            created_at=now,
            updated_at=now,
            **fields,
        )
        self.db.add(profile)
        await self.db.flush()

        logger.info("User profile created", user_id=user_id)
        return profile

    async def update_profile(self, profile: UserProfile, **fields: Any) -> UserProfile:
        """Apply field updates and refresh last_interaction."""
        for name, value in fields.items():
            setattr(profile, name, value)
        now = utcnow()
        profile.last_interaction = now
        profile.updated_at = now
        await self.db.flush()

        logger.info("User profile updated", user_id=profile.user_id, fields=sorted(fields))
        return profile

    async def delete_profile(self, user_id: str) -> bool:
        result = await self.db.execute(delete(UserProfile).where(UserProfile.user_id == user_id))
        deleted = result.rowcount > 0
        if deleted:
            logger.info("User profile deleted", user_id=user_id)
        return deleted

    async def link_shopify_customer(self, customer: ShopifyCustomerInfo) -> UserProfile:
        """
        Attach a Shopify customer to a profile.

        Looks the profile up by Shopify customer id, then by user id, and
        creates a minimal `shopify_<id>` profile when neither exists.
        """
        link = {
            "shopify_customer_id": customer.customer_id,
            "shopify_customer_name": customer.display_name,
        }

        profile = await self.get_by_shopify_customer_id(customer.customer_id)
        if profile is None:
            profile = await self.get_profile(customer.customer_id)
        if profile is None:
            profile = await self.get_profile(f"shopify_{customer.customer_id}")

        if profile is not None:
            return await self.update_profile(profile, **link)

        return await self.create_profile(
            f"shopify_{customer.customer_id}",
            **minimal_profile_fields(),
            **link,
        )
