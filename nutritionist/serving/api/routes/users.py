"""
User Profile Endpoints

Onboarding profile storage keyed by the widget's user id.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from nutritionist.commerce.app_proxy import extract_customer_info
from nutritionist.database.connection import get_db_dependency
from nutritionist.database.models import Currency, Gender
from nutritionist.users.service import UserProfileService, serialize_profile

router = APIRouter()


# =============================================================================
# REQUEST MODELS
# =============================================================================

class Budget(BaseModel):
    min: float = Field(..., ge=0)
    max: float = Field(..., ge=0)
    currency: Currency = Currency.USD

    @model_validator(mode="after")
    def check_range(self) -> "Budget":
        if self.max < self.min:
            raise ValueError("budget max must be >= min")
        return self

    def to_columns(self) -> Dict[str, Any]:
        return {
            "budget_min": self.min,
            "budget_max": self.max,
            "budget_currency": self.currency.value,
        }


class ProfileRequest(BaseModel):
    """Full profile submitted at the end of onboarding"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: str = Field(..., min_length=1, max_length=255)
    age: int = Field(..., ge=1, le=120)
    gender: Gender
    goals: List[str] = Field(default_factory=list, max_length=10)
    allergies: List[str] = Field(default_factory=list, max_length=20)
    budget: Budget

    def to_columns(self) -> Dict[str, Any]:
        return {
            "age": self.age,
            "gender": self.gender.value,
            "goals": self.goals,
            "allergies": self.allergies,
            **self.budget.to_columns(),
        }


class ProfileUpdate(BaseModel):
    """Partial profile edit"""
    age: Optional[int] = Field(default=None, ge=1, le=120)
    gender: Optional[Gender] = None
    goals: Optional[List[str]] = Field(default=None, max_length=10)
    allergies: Optional[List[str]] = Field(default=None, max_length=20)
    budget: Optional[Budget] = None

    def to_columns(self) -> Dict[str, Any]:
        updates = self.model_dump(exclude_unset=True, exclude_none=True, exclude={"budget"})
        if "gender" in updates:
            updates["gender"] = self.gender.value
        if self.budget is not None:
            updates.update(self.budget.to_columns())
        return updates


# =============================================================================
# ENDPOINTS
# =============================================================================

async def _get_or_404(service: UserProfileService, user_id: str):
    profile = await service.get_profile(user_id)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User profile not found")
    return profile


@router.get("/user")
async def get_user(
    user_id: str = Query(..., alias="userId", min_length=1),
    db: AsyncSession = Depends(get_db_dependency),
) -> Dict[str, Any]:
    profile = await _get_or_404(UserProfileService(db), user_id)
    return serialize_profile(profile)


@router.post("/user")
async def create_or_update_user(
    payload: ProfileRequest,
    request: Request,
    db: AsyncSession = Depends(get_db_dependency),
) -> JSONResponse:
    """
    Create the profile, or replace it when the user id already exists.

    Shopify customer details present on the request are linked to the
    profile; otherwise an existing link is preserved.
    """
    service = UserProfileService(db)
    columns = payload.to_columns()

    customer = extract_customer_info(request.query_params, request.headers)
    if customer is not None:
        columns["shopify_customer_id"] = customer.customer_id
        columns["shopify_customer_name"] = customer.display_name

    existing = await service.get_profile(payload.user_id)
    if existing is not None:
        profile = await service.update_profile(existing, **columns)
        return JSONResponse(serialize_profile(profile), status_code=status.HTTP_200_OK)

    profile = await service.create_profile(payload.user_id, **columns)
    return JSONResponse(serialize_profile(profile), status_code=status.HTTP_201_CREATED)


@router.put("/user")
async def update_user(
    payload: ProfileUpdate,
    user_id: str = Query(..., alias="userId", min_length=1),
    db: AsyncSession = Depends(get_db_dependency),
) -> Dict[str, Any]:
    service = UserProfileService(db)
    profile = await _get_or_404(service, user_id)
    profile = await service.update_profile(profile, **payload.to_columns())
    return serialize_profile(profile)


@router.delete("/user")
async def delete_user(
    user_id: str = Query(..., alias="userId", min_length=1),
    db: AsyncSession = Depends(get_db_dependency),
) -> Dict[str, str]:
    if not await UserProfileService(db).delete_profile(user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User profile not found")
    return {"message": "User profile deleted successfully"}
